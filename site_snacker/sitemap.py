"""Expansion of XML sitemaps (and pages pretending to be one) into page URLs."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Tuple
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from .config import SnackerConfig
from .errors import ChallengeDetectedError, FetchError, SitemapError
from .fetcher import HtmlFetcher

logger = logging.getLogger("site_snacker")

HREF_PATTERN = re.compile(r"""href\s*=\s*["']([^"'#][^"']*)["']""", re.IGNORECASE)
URL_PATTERN = re.compile(r"""https?://[^\s"'<>()\[\]]+""")
ROBOTS_SITEMAP_PATTERN = re.compile(r"^\s*sitemap\s*:\s*(\S+)", re.IGNORECASE | re.MULTILINE)
SKIPPED_SUFFIXES = (
    ".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico",
    ".woff", ".woff2", ".ttf", ".pdf", ".zip",
)


def is_sitemap_source(source: str) -> bool:
    """Whether ``source`` looks like a sitemap rather than a single page."""
    lowered = source.lower()
    try:
        if Path(source).is_file():
            return lowered.endswith(".xml")
    except (OSError, ValueError):
        return False
    path = urlparse(lowered).path
    return "sitemap" in lowered or path.endswith(".xml")


def parse_sitemap_xml(content: str) -> Optional[Tuple[str, List[str]]]:
    """Return ``("index", child_sitemaps)``, ``("urlset", page_urls)`` or ``None``."""
    soup = BeautifulSoup(content, "xml")
    index = soup.find("sitemapindex")
    if index is not None:
        return "index", _locations(index.find_all("sitemap"))
    urlset = soup.find("urlset")
    if urlset is not None:
        return "urlset", _locations(urlset.find_all("url"))
    return None


def _locations(nodes: Iterable) -> List[str]:
    urls = []
    for node in nodes:
        loc = node.find("loc")
        if loc is not None and loc.get_text(strip=True):
            urls.append(loc.get_text(strip=True))
    return urls


def _same_site_pages(candidates: Iterable[str], base_url: str) -> List[str]:
    host = urlparse(base_url).hostname
    seen: Set[str] = set()
    pages: List[str] = []
    for candidate in candidates:
        absolute, _ = urldefrag(urljoin(base_url, candidate.strip()))
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or parsed.hostname != host:
            continue
        if parsed.path.lower().endswith(SKIPPED_SUFFIXES) or absolute == base_url:
            continue
        if absolute not in seen:
            seen.add(absolute)
            pages.append(absolute)
    return pages


def links_from_anchors(html: str, base_url: str) -> List[str]:
    soup = BeautifulSoup(html, "lxml")
    return _same_site_pages((a["href"] for a in soup.find_all("a", href=True)), base_url)


def links_from_href_attributes(html: str, base_url: str) -> List[str]:
    return _same_site_pages(HREF_PATTERN.findall(html), base_url)


def links_from_text(html: str, base_url: str) -> List[str]:
    return _same_site_pages(URL_PATTERN.findall(html), base_url)


HTML_LINK_EXTRACTORS: List[Tuple[str, Callable[[str, str], List[str]]]] = [
    ("anchor tags", links_from_anchors),
    ("href attributes", links_from_href_attributes),
    ("raw URLs", links_from_text),
]


def sitemaps_from_robots(robots_txt: str) -> List[str]:
    return ROBOTS_SITEMAP_PATTERN.findall(robots_txt)


class SitemapWalker:
    """Resolve a sitemap URL or file into the flat list of page URLs it names."""

    def __init__(self, config: SnackerConfig, fetcher: HtmlFetcher) -> None:
        self.config = config.sitemap
        self.browser_config = config.browser
        self.fetcher = fetcher

    async def collect(self, source: str) -> List[str]:
        urls = await self._walk(source, set(), allow_robots=self.config.robots_fallback)
        if not urls:
            raise SitemapError(f"No URLs found in sitemap {source}")
        logger.info("Sitemap %s expanded to %d URLs", source, len(urls))
        return urls

    async def _read(self, source: str) -> str:
        path = Path(source)
        if path.is_file():
            logger.info("Reading sitemap from local file: %s", source)
            return path.read_text(encoding="utf-8")

        logger.info("Fetching sitemap from URL: %s", source)
        try:
            return await self.fetcher.fetch_light(source)
        except ChallengeDetectedError as exc:
            if not self.browser_config.auto_detect:
                raise
            logger.warning("Sitemap %s is behind a bot challenge (%s), using the browser", source, exc.signature)
            return await self.fetcher.renderer.render(
                source,
                wait=self.browser_config.fallback_wait,
                timeout=self.browser_config.fallback_timeout,
            )

    async def _walk(self, source: str, seen: Set[str], allow_robots: bool) -> List[str]:
        if source in seen:
            logger.warning("Skipping already visited sitemap %s", source)
            return []
        seen.add(source)

        try:
            content = await self._read(source)
        except (FetchError, OSError) as exc:
            if allow_robots and not Path(source).is_file():
                logger.warning("Could not read sitemap %s (%s), consulting robots.txt", source, exc)
                return await self._from_robots(source, seen)
            raise SitemapError(f"Failed to read sitemap {source}: {exc}") from exc

        parsed = parse_sitemap_xml(content)
        if parsed is None:
            logger.warning("%s is not an XML sitemap, extracting links from HTML", source)
            return await self._from_html(content, source, seen, allow_robots)

        kind, locations = parsed
        if kind == "urlset":
            logger.info("Found sitemap with %d URLs", len(locations))
            return locations

        logger.info("Found sitemap index with %d sitemaps", len(locations))
        if self.config.parallel:
            return await self._walk_parallel(locations, seen)
        urls: List[str] = []
        for child in locations:
            urls.extend(await self._walk_child(child, seen))
        return urls

    async def _walk_child(self, child: str, seen: Set[str]) -> List[str]:
        try:
            return await self._walk(child, seen, allow_robots=False)
        except SitemapError as exc:
            logger.error("Skipping child sitemap %s: %s", child, exc)
            return []

    async def _walk_parallel(self, children: List[str], seen: Set[str]) -> List[str]:
        batch_size = max(1, self.config.max_concurrent)
        urls: List[str] = []
        for start in range(0, len(children), batch_size):
            batch = children[start : start + batch_size]
            results = await asyncio.gather(*(self._walk_child(child, seen) for child in batch))
            for child_urls in results:
                urls.extend(child_urls)
        return urls

    async def _from_html(
        self, html: str, base_url: str, seen: Set[str], allow_robots: bool
    ) -> List[str]:
        for name, extractor in HTML_LINK_EXTRACTORS:
            try:
                urls = extractor(html, base_url)
            except (ValueError, TypeError) as exc:
                logger.warning("Link extraction via %s failed: %s", name, exc)
                continue
            if urls:
                logger.info("Extracted %d URLs via %s", len(urls), name)
                return urls
            logger.debug("No URLs found via %s", name)

        if allow_robots and not Path(base_url).is_file():
            return await self._from_robots(base_url, seen)
        return []

    async def _from_robots(self, source: str, seen: Set[str]) -> List[str]:
        parsed = urlparse(source)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return []
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        try:
            robots_txt = await self.fetcher.fetch_light(robots_url)
        except FetchError as exc:
            logger.warning("Could not read %s: %s", robots_url, exc)
            return []

        sitemaps = [url for url in sitemaps_from_robots(robots_txt) if url not in seen]
        if not sitemaps:
            logger.warning("%s lists no sitemaps", robots_url)
            return []
        logger.info("robots.txt lists %d sitemap(s)", len(sitemaps))
        urls: List[str] = []
        for sitemap_url in sitemaps:
            urls.extend(await self._walk_child(sitemap_url, seen))
        return urls
