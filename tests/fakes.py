"""Test doubles for the network, the browser, and the AI models."""

import io
from typing import Callable, Dict, List, Optional, Tuple, Union

import httpx
from PIL import Image

from site_snacker.ai import Description, Transcript


EXAMPLE_HTML = (
    "<html><head><title>Example Domain</title></head>"
    "<body><div><h1>Example Domain</h1>"
    "<p>This domain is for use in illustrative examples in documents.</p>"
    "</div></body></html>"
)

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def png_bytes(color: str = "red", size: Tuple[int, int] = (4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeDescriber:
    """Stands in for the vision model and records every call."""

    def __init__(self, text: str = "A test image", model: str = "fake-vision", error: Optional[Exception] = None):
        self.text = text
        self.model = model
        self.error = error
        self.calls: List[Tuple[bytes, str, str]] = []

    async def describe(self, data: bytes, mime_type: str, alt_text: str) -> Description:
        self.calls.append((data, mime_type, alt_text))
        if self.error:
            raise self.error
        return Description(text=self.text, model=self.model, prompt_tokens=100, completion_tokens=50)


class FakeTranscriber:
    def __init__(self, text: str = "Hello from the audio", model: str = "fake-whisper"):
        self.text = text
        self.model = model
        self.calls: List[Tuple[bytes, str]] = []

    async def transcribe(self, data: bytes, filename: str) -> Transcript:
        self.calls.append((data, filename))
        return Transcript(text=self.text, model=self.model, duration_seconds=30.0)


class FakeRenderer:
    """Browser double returning canned HTML."""

    def __init__(self, html: str = EXAMPLE_HTML, error: Optional[Exception] = None):
        self.html = html
        self.error = error
        self.calls: List[Tuple[str, Optional[float], Optional[float]]] = []

    async def render(self, url: str, wait: Optional[float] = None, timeout: Optional[float] = None) -> str:
        self.calls.append((url, wait, timeout))
        if self.error:
            raise self.error
        return self.html


class FakeSite:
    """Routes requests by URL to canned responses and counts them."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="Not Found")
        if callable(route):
            return route(request)
        # Fresh copy per request so a canned response can be served repeatedly.
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def calls_to(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

