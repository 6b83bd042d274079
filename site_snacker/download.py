"""Downloading of embedded media and file-type detection."""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qs, unquote, urljoin, urlparse

import httpx
from filetype import guess

from .config import FetchConfig
from .errors import DownloadError
from .fetcher import browser_headers
from .models import DownloadResult

logger = logging.getLogger("site_snacker")

# Path fragments of image-optimising proxies that carry the origin in ``?url=``.
PROXY_PATH_MARKERS = ("/_next/image",)
PREVIEW_CHARS = 100


def resolve_media_url(url: str, base_url: str) -> Tuple[str, Optional[str]]:
    """Resolve ``url`` against ``base_url``.

    Returns ``(absolute_url, origin_url)`` where ``origin_url`` is the
    unwrapped target of a known image proxy, or ``None`` when the URL is
    not proxied.
    """
    absolute = urljoin(base_url, url.strip())
    parsed = urlparse(absolute)
    if any(marker in parsed.path for marker in PROXY_PATH_MARKERS):
        inner = parse_qs(parsed.query).get("url")
        if inner and inner[0]:
            return absolute, urljoin(absolute, inner[0])
    return absolute, None


def detect_media_format(data: bytes) -> Optional[Tuple[str, str]]:
    """Detect ``(extension, mime)`` from the file signature using filetype."""
    kind = guess(data)
    if kind is None:
        return None
    extension = kind.extension.lower()
    if extension == "jpeg":
        extension = "jpg"
    return extension, kind.mime


def infer_mime_type(content_type: Optional[str], data: bytes, url: str = "") -> Optional[str]:
    """Best guess at a MIME type from signature, HTTP metadata, then URL suffix."""
    detected = detect_media_format(data)
    if detected:
        return detected[1]
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime and mime != "application/octet-stream":
            return mime
    if url:
        guessed, _ = mimetypes.guess_type(posixpath.basename(urlparse(url).path))
        return guessed
    return None


def _preview(data: bytes) -> str:
    if not data:
        return ""
    return data[:PREVIEW_CHARS].decode("utf-8", errors="replace")


class ContentDownloader:
    """Fetch raw bytes for images and audio referenced by a page."""

    def __init__(
        self,
        config: FetchConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.config = config
        self.timeout = timeout or config.timeout
        self._transport = transport

    async def download(
        self,
        url: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        max_bytes: Optional[int] = None,
    ) -> DownloadResult:
        try:
            absolute, origin = resolve_media_url(url, base_url)
        except ValueError as exc:
            raise DownloadError(url, f"invalid URL ({exc})") from exc
        target = origin or absolute
        logger.info("Downloading %s", target)

        if target.startswith("file://"):
            local_path = Path(unquote(urlparse(target).path))
            try:
                content = local_path.read_bytes()
            except OSError as exc:
                raise DownloadError(target, str(exc)) from exc
            return DownloadResult(
                content=content,
                content_type=infer_mime_type(None, content, target),
                url=target,
                original_url=origin,
            )

        request_headers = browser_headers(
            self.config,
            accept="*/*",
            fetch_dest="empty",
            fetch_mode="cors",
            fetch_site="cross-site",
        )
        request_headers["Referer"] = base_url
        if headers:
            request_headers.update(headers)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(target, headers=request_headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise DownloadError(target, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code != 200:
            preview = _preview(response.content)
            logger.error(
                "Download of %s failed with HTTP %d (preview: %r)",
                target,
                response.status_code,
                preview,
            )
            raise DownloadError(
                target, f"HTTP {response.status_code}", response.status_code, preview
            )

        content = response.content
        if max_bytes and len(content) > max_bytes:
            raise DownloadError(target, f"response larger than {max_bytes} bytes")
        return DownloadResult(
            content=content,
            content_type=response.headers.get("content-type"),
            url=target,
            original_url=origin,
        )
