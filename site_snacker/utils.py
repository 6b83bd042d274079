"""Utility helpers for string normalization and path handling."""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import urlparse

from .errors import InvalidURLError

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
INVALID_PATH_CHARS = re.compile(r'[<>:"|?*\\]')
EMPTY_PATH_PLACEHOLDER = "index"


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def sanitize_file_path(value: str) -> str:
    """Replace characters that most filesystems reject with underscores."""
    return INVALID_PATH_CHARS.sub("_", value)


def _split_url(url: str) -> Tuple[str, str]:
    """Return ``(hostname, path)`` with surrounding slashes stripped from the path."""
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as exc:
        raise InvalidURLError(url, str(exc)) from exc
    if not parsed.scheme or not hostname:
        raise InvalidURLError(url, "missing scheme or host")
    segments = [
        sanitize_file_path(segment)
        for segment in parsed.path.split("/")
        if segment and segment not in (".", "..")
    ]
    url_path = "/".join(segments) or EMPTY_PATH_PLACEHOLDER
    return hostname, url_path


def extract_domain(url: str) -> str:
    return _split_url(url)[0]


def extract_path(url: str) -> str:
    try:
        return urlparse(url).path
    except ValueError as exc:
        raise InvalidURLError(url, str(exc)) from exc


def url_to_file_path(
    url: str,
    base_dir: Union[str, Path] = "tmp",
    filename: Optional[str] = None,
) -> Path:
    """Map a URL onto a deterministic location below ``base_dir``.

    The hostname becomes the first directory and the URL path is mirrored
    beneath it, with the last path segment (minus its extension) turned
    into a directory of its own. ``https://host/docs/page.html`` therefore
    maps to ``<base_dir>/host/docs/page/page.html``. An empty path maps to
    ``index``. ``filename`` replaces the final file name when given.
    """
    hostname, url_path = _split_url(url)
    basename = posixpath.basename(url_path)
    stem, _ = posixpath.splitext(basename)
    parent = posixpath.dirname(url_path)
    directory = Path(base_dir) / hostname
    if parent:
        directory = directory.joinpath(*parent.split("/"))
    directory = directory / (stem or basename)
    return directory / (filename or basename)


def url_to_dir_path(url: str, base_dir: Union[str, Path] = "tmp") -> Path:
    """Directory that holds every artifact derived from ``url``."""
    return url_to_file_path(url, base_dir).parent


def page_filename(url: str, suffix: str) -> str:
    """Page name for ``url`` with its extension replaced by ``suffix``."""
    _, url_path = _split_url(url)
    stem, _ = posixpath.splitext(posixpath.basename(url_path))
    return f"{stem or EMPTY_PATH_PLACEHOLDER}{suffix}"
