"""Append AI-generated descriptions and transcripts to Markdown media."""

from __future__ import annotations

import hashlib
import json
import logging
import posixpath
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from .ai import AudioTranscriber, ImageDescriber
from .config import SnackerConfig
from .costs import CostTracker
from .download import ContentDownloader, infer_mime_type, resolve_media_url
from .errors import DownloadError, SnackerError
from .markdown import (
    IMAGE,
    MediaReference,
    has_enrichment,
    is_audio_link,
    iter_media,
    render_enrichment_tag,
    rewrite,
    tokenize,
)
from .models import MediaKind
from .registry import MediaRegistry
from .utils import sanitize_file_path

logger = logging.getLogger("site_snacker")

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
SUPPORTED_SCHEMES = ("http", "https", "file")


def derive_asset_name(url: str, kind: MediaKind) -> str:
    """Stable file name for an asset when its URL carries a UUID, else a timestamped one."""
    path = unquote(urlparse(url).path)
    suffix = posixpath.splitext(posixpath.basename(path))[1].lower()
    suffix = sanitize_file_path(suffix) if len(suffix) <= 6 else ""
    match = UUID_PATTERN.search(path)
    if match:
        return f"{match.group(0).lower()}{suffix}"
    # The URL digest keeps two assets named in the same millisecond apart.
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    return f"{kind.value}-{int(time.time() * 1000)}-{digest}{suffix}"


def sidecar_path(asset_path: Path) -> Path:
    return asset_path.with_name(asset_path.name + ".json")


@dataclass
class _Job:
    index: int
    reference: MediaReference
    kind: MediaKind
    source: str
    error: Optional[str] = None


class MediaEnricher:
    """Walk a page's media in document order and enrich each one.

    Two caches are consulted before any AI call: the page-scoped sidecar
    next to the downloaded asset (skips the download entirely when the
    model matches) and the global content-hash registry (skips the model
    call for bytes seen on any page). Failures are confined to the asset
    that caused them.
    """

    def __init__(
        self,
        config: SnackerConfig,
        downloader: ContentDownloader,
        registry: MediaRegistry,
        costs: CostTracker,
        describer: ImageDescriber,
        transcriber: AudioTranscriber,
    ) -> None:
        self.config = config
        self.downloader = downloader
        self.registry = registry
        self.costs = costs
        self.describer = describer
        self.transcriber = transcriber

    def _tag(self, kind: MediaKind) -> str:
        if kind is MediaKind.IMAGE:
            return self.config.image.description_tag
        return self.config.audio.transcript_tag

    def _content_key(self, kind: MediaKind) -> str:
        return "description" if kind is MediaKind.IMAGE else "transcription"

    def _model(self, kind: MediaKind) -> str:
        return self.describer.model if kind is MediaKind.IMAGE else self.transcriber.model

    def _directory(self, asset_root: Path, kind: MediaKind) -> Path:
        if kind is MediaKind.IMAGE:
            return asset_root / self.config.image.directory
        return asset_root / self.config.audio.directory

    def _plan(self, segments, base_url: str) -> List[_Job]:
        jobs: List[_Job] = []
        for index, reference in iter_media(segments):
            if reference.kind == IMAGE:
                kind = MediaKind.IMAGE
            elif is_audio_link(reference.target, self.config.audio.extensions):
                kind = MediaKind.AUDIO
            else:
                continue
            if not reference.target:
                logger.debug("Skipping %s with an empty target", kind.value)
                continue
            error = None
            try:
                absolute, origin = resolve_media_url(reference.target, base_url)
            except ValueError as exc:
                logger.warning("Malformed %s URL %s: %s", kind.value, reference.target[:80], exc)
                absolute, origin, error = reference.target, None, f"invalid URL ({exc})"
            source = origin or absolute
            if error is None and urlparse(source).scheme not in SUPPORTED_SCHEMES:
                logger.debug("Skipping %s with unsupported URL %s", kind.value, source[:80])
                continue
            if has_enrichment(segments, index, self._tag(kind), source):
                logger.debug("%s already enriched, skipping", source)
                continue
            jobs.append(_Job(index=index, reference=reference, kind=kind, source=source, error=error))
        return jobs

    async def enrich(self, markdown: str, base_url: str, asset_root: Path) -> str:
        """Return ``markdown`` with an enrichment block after every image and audio link."""
        segments = tokenize(markdown)
        jobs = self._plan(segments, base_url)
        if not jobs:
            return markdown
        logger.info("Enriching %d media reference(s) from %s", len(jobs), base_url)

        additions: Dict[int, List[str]] = {}
        for job in jobs:
            tag = self._tag(job.kind)
            try:
                if job.error:
                    raise DownloadError(job.source, job.error)
                content = await self._content_for(job, base_url, asset_root)
            except (SnackerError, OSError) as exc:
                logger.error("Failed to process %s %s: %s", job.kind.value, job.source, exc)
                prefix = (
                    self.config.image.error_prefix
                    if job.kind is MediaKind.IMAGE
                    else self.config.audio.error_prefix
                )
                content = f"{prefix}: {exc}"
            additions.setdefault(job.index, []).append(
                render_enrichment_tag(tag, job.source, content)
            )
        return rewrite(segments, additions)

    def _read_sidecar(self, path: Path, kind: MediaKind) -> Optional[str]:
        if not path.is_file():
            return None
        try:
            cached = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable media cache %s: %s", path, exc)
            return None
        if not isinstance(cached, dict) or cached.get("model") != self._model(kind):
            return None
        content = cached.get(self._content_key(kind))
        return content if isinstance(content, str) and content else None

    def _write_sidecar(self, path: Path, kind: MediaKind, content: str) -> None:
        payload: Dict[str, Any] = {
            self._content_key(kind): content,
            "model": self._model(kind),
            "timestamp": int(time.time() * 1000),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    async def _content_for(self, job: _Job, base_url: str, asset_root: Path) -> str:
        kind = job.kind
        directory = self._directory(asset_root, kind)
        asset_path = directory / derive_asset_name(job.source, kind)
        sidecar = sidecar_path(asset_path)

        cached = self._read_sidecar(sidecar, kind)
        if cached is not None:
            logger.info("Using cached %s for %s", self._content_key(kind), job.source)
            return cached

        limits = self.config.image if kind is MediaKind.IMAGE else self.config.audio
        download = await self.downloader.download(
            job.reference.target,
            base_url,
            headers={"Accept": limits.accept},
            max_bytes=limits.max_bytes,
        )
        directory.mkdir(parents=True, exist_ok=True)
        asset_path.write_bytes(download.content)

        metadata: Dict[str, Any] = {"originalUrl": job.source, "pageUrl": base_url}
        entry = self.registry.get_entry(asset_path)
        if entry is not None:
            logger.info("Reusing registry %s for %s", self._content_key(kind), job.source)
            self.registry.add_entry(
                asset_path, kind, entry.content, metadata, page_path=base_url
            )
            content = entry.content
        else:
            self.costs.check_budget()
            if kind is MediaKind.IMAGE:
                content, cost, model = await self._describe(job, download.content, download.content_type)
            else:
                content, cost, model = await self._transcribe(asset_path, download.content)
            metadata["model"] = model
            self.registry.add_entry(
                asset_path, kind, content, metadata, api_cost=cost, page_path=base_url
            )

        self._write_sidecar(sidecar, kind, content)
        return content

    async def _describe(self, job: _Job, data: bytes, content_type: Optional[str]):
        mime_type = infer_mime_type(content_type, data, job.source)
        if not mime_type or not mime_type.startswith("image/"):
            raise DownloadError(job.source, f"expected an image but received {mime_type or 'unknown data'}")
        logger.info("Describing image %s", job.source)
        description = await self.describer.describe(data, mime_type, job.reference.text)
        cost = self.costs.track_vision(
            description.prompt_tokens,
            description.completion_tokens,
            image_count=1,
            model=description.model,
        )
        return description.text, cost, description.model

    async def _transcribe(self, asset_path: Path, data: bytes):
        logger.info("Transcribing audio %s", asset_path.name)
        transcript = await self.transcriber.transcribe(data, asset_path.name)
        cost = self.costs.track_audio(transcript.duration_seconds, model=transcript.model)
        return transcript.text, cost, transcript.model
