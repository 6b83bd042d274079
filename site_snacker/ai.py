"""Image description and audio transcription backed by the OpenAI API."""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from openai import AsyncOpenAI, OpenAIError
from PIL import Image

from .config import AudioConfig, ImageConfig
from .errors import GenerationError

logger = logging.getLogger("site_snacker")

# Rough bitrate used when the API does not report a duration.
BYTES_PER_AUDIO_MINUTE = 1024 * 1024


@dataclass
class Description:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class Transcript:
    text: str
    model: str
    duration_seconds: float = 0.0


class ImageDescriber(Protocol):
    model: str

    async def describe(self, data: bytes, mime_type: str, alt_text: str) -> Description:
        ...


class AudioTranscriber(Protocol):
    model: str

    async def transcribe(self, data: bytes, filename: str) -> Transcript:
        ...


def prepare_image(data: bytes, mime_type: str, max_side: int) -> Tuple[bytes, str]:
    """Downscale images whose longest edge exceeds ``max_side``.

    Anything Pillow cannot open is returned untouched.
    """
    try:
        with Image.open(io.BytesIO(data)) as raw_image:
            width, height = raw_image.size
            longest_edge = max(width, height)
            if longest_edge <= max_side:
                return data, mime_type
            scale = max_side / float(longest_edge)
            new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
            image = raw_image.convert("RGBA" if raw_image.mode in ("RGBA", "LA", "P") else "RGB")
            image = image.resize(new_size, Image.Resampling.LANCZOS)
    except (OSError, Image.DecompressionBombError) as exc:
        logger.debug("Skipping resize of %s image: %s", mime_type, exc)
        return data, mime_type

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    logger.debug("Downscaled image from %dx%d to %dx%d", width, height, *new_size)
    return buffer.getvalue(), "image/png"


class OpenAIImageDescriber:
    """Describe an image with a vision-capable chat model."""

    def __init__(self, config: ImageConfig, client: AsyncOpenAI) -> None:
        self.config = config
        self.client = client
        self.model = config.model

    def _prompt(self, alt_text: str) -> str:
        return self.config.prompt.replace("{alt_text}", alt_text or "")

    async def describe(self, data: bytes, mime_type: str, alt_text: str) -> Description:
        payload, payload_mime = prepare_image(data, mime_type, self.config.max_image_side)
        encoded = base64.b64encode(payload).decode("ascii")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.config.max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self._prompt(alt_text)},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": f"data:{payload_mime};base64,{encoded}",
                                    "detail": self.config.detail,
                                },
                            },
                        ],
                    }
                ],
            )
        except OpenAIError as exc:
            raise GenerationError(f"Image description failed: {exc}") from exc

        if not response.choices:
            raise GenerationError("Image description failed: the model returned no choices")
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise GenerationError("Image description failed: the model returned no text")

        usage = response.usage
        return Description(
            text=text,
            model=response.model or self.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )


class OpenAIAudioTranscriber:
    """Transcribe an audio file with the speech-to-text endpoint."""

    def __init__(self, config: AudioConfig, client: AsyncOpenAI) -> None:
        self.config = config
        self.client = client
        self.model = config.model

    async def transcribe(self, data: bytes, filename: str) -> Transcript:
        try:
            response = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, data),
                language=self.config.language,
                response_format=self.config.response_format,
            )
        except OpenAIError as exc:
            raise GenerationError(f"Audio transcription failed: {exc}") from exc

        if isinstance(response, str):
            text = response
            duration: Optional[float] = None
        else:
            text = getattr(response, "text", "") or ""
            duration = getattr(response, "duration", None)
        if duration is None:
            duration = len(data) / BYTES_PER_AUDIO_MINUTE * 60
        return Transcript(text=text.strip(), model=self.model, duration_seconds=float(duration))


def build_openai_client(api_key: str, timeout: Optional[float] = None) -> AsyncOpenAI:
    kwargs = {"api_key": api_key}
    if timeout:
        kwargs["timeout"] = timeout
    return AsyncOpenAI(**kwargs)
