"""Data models used throughout the snacking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


@dataclass
class PageMetadata:
    """Metadata describing the converted page."""

    source_url: str
    title: Optional[str]
    description: Optional[str]
    byline: Optional[str]


@dataclass
class FetchResult:
    """Raw HTML for a URL and where it came from (cache, http, browser)."""

    url: str
    html: str
    cache_path: Path
    source: str


@dataclass
class DownloadResult:
    """Bytes of an embedded asset.

    ``original_url`` is only set when an image-proxy URL was unwrapped, and
    then holds the true origin URL that was actually downloaded.
    """

    content: bytes
    content_type: Optional[str]
    url: str
    original_url: Optional[str] = None


@dataclass
class RunOptions:
    """Per-run overrides coming from the command line."""

    use_browser: bool = False
    wait: Optional[float] = None
    timeout: Optional[float] = None
    use_cache: bool = True
    merge: bool = True


@dataclass
class OrchestrationResult:
    """Artifacts produced for one page."""

    url: str
    html_path: Path
    markdown_path: Path
    processed_path: Path
    cost_summary: str


@dataclass
class FailedUrl:
    url: str
    error: str
    retry_command: str


@dataclass
class SitemapRunResult:
    """Outcome of processing every page listed by a sitemap."""

    source: str
    results: List[OrchestrationResult] = field(default_factory=list)
    failed_urls: List[FailedUrl] = field(default_factory=list)
    merged_path: Optional[Path] = None
    total_cost_summary: str = ""
