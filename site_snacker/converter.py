"""HTML extraction and conversion to Markdown."""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup
from markdownify import markdownify as md
from readability import Document
from readability.readability import Unparseable

from .errors import ConversionError
from .models import PageMetadata

logger = logging.getLogger("site_snacker")

_MIN_PLAINTEXT_CHARS = 200
_BLANK_RUN = re.compile(r"\n{3,}")

BREADCRUMB_SELECTORS = (
    ".breadcrumb",
    ".breadcrumbs",
    '[aria-label="breadcrumb"]',
    'nav[aria-label="Breadcrumb"]',
    ".navigation-path",
    ".path",
    "#breadcrumb",
    "#breadcrumbs",
)
BREADCRUMB_ITEMS = 'li, span[itemprop="name"], [class*="breadcrumb-"]'


@dataclass
class ExtractedPage:
    metadata: PageMetadata
    content_html: str
    plain_text: str


@dataclass
class Breadcrumb:
    text: str
    url: Optional[str] = None


def _clean_content(soup: BeautifulSoup, strip_chrome: bool = False) -> BeautifulSoup:
    """Remove noisy tags while keeping relevant article markup."""
    for tag in soup(["script", "style", "noscript", "form", "iframe", "svg"]):
        tag.decompose()
    if strip_chrome:
        for tag in soup(["header", "footer", "nav", "aside"]):
            tag.decompose()
    return soup


def _join_plain_text(soup: BeautifulSoup) -> str:
    return "\n".join(s for s in soup.stripped_strings)


def _iter_primary_candidates(soup_full: BeautifulSoup) -> Iterable[BeautifulSoup]:
    """Yield progressively broader content scopes to fall back on."""
    for selector in ("main", "article"):
        candidate = soup_full.select_one(selector)
        if candidate:
            yield BeautifulSoup(str(candidate), "html.parser")
    if soup_full.body:
        yield BeautifulSoup(str(soup_full.body), "html.parser")


def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": name})
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def extract_content(html: str, source_url: str) -> ExtractedPage:
    """Pick the main article markup of ``html`` along with page metadata.

    The readability summary is preferred. When it is thin, or it dropped
    every image the page has, the broader ``main``/``article``/``body``
    scopes are tried and the richest one wins.
    """
    soup_full = BeautifulSoup(html, "lxml")
    document = Document(html)
    title: Optional[str] = None

    try:
        summary = BeautifulSoup(document.summary(html_partial=True), "html.parser")
        title = document.short_title() or None
        if title == "[no-title]":
            title = None
    except Unparseable as exc:
        logger.warning("Readability could not parse %s: %s", source_url, exc)
        summary = BeautifulSoup("", "html.parser")
    summary = _clean_content(summary)

    plain_text = _join_plain_text(summary)
    summary_has_images = bool(summary.find("img"))
    full_has_images = bool(soup_full.find("img"))

    if len(plain_text) < _MIN_PLAINTEXT_CHARS or (full_has_images and not summary_has_images):
        for candidate in _iter_primary_candidates(soup_full):
            candidate = _clean_content(candidate, strip_chrome=True)
            candidate_plain = _join_plain_text(candidate)
            candidate_has_images = bool(candidate.find("img"))
            if (
                len(candidate_plain) >= _MIN_PLAINTEXT_CHARS
                or (full_has_images and candidate_has_images and not summary_has_images)
                or len(candidate_plain) > len(plain_text)
            ):
                summary = candidate
                plain_text = candidate_plain
                summary_has_images = candidate_has_images
                if len(plain_text) >= _MIN_PLAINTEXT_CHARS:
                    break

    if not plain_text and not summary_has_images:
        raise ConversionError(f"No readable content found for {source_url}")

    if not title and soup_full.title and soup_full.title.string:
        title = soup_full.title.string.strip()

    metadata = PageMetadata(
        source_url=source_url,
        title=title,
        description=_meta_content(soup_full, "description"),
        byline=_meta_content(soup_full, "author"),
    )
    return ExtractedPage(metadata=metadata, content_html=summary.decode(), plain_text=plain_text)


def extract_breadcrumbs(html: str) -> List[Breadcrumb]:
    soup = BeautifulSoup(html, "lxml")
    container = None
    for selector in BREADCRUMB_SELECTORS:
        container = soup.select_one(selector)
        if container:
            break
    if container is None:
        return []

    crumbs: List[Breadcrumb] = []
    for item in container.select(BREADCRUMB_ITEMS):
        link = item.find("a")
        if link:
            text = link.get_text(strip=True)
            if text:
                crumbs.append(Breadcrumb(text=text, url=link.get("href") or None))
            continue
        text = item.get_text(strip=True)
        if text:
            crumbs.append(Breadcrumb(text=text))
    return crumbs


def breadcrumbs_to_markdown(crumbs: List[Breadcrumb]) -> str:
    if not crumbs:
        return ""
    parts = [f"[{crumb.text}]({crumb.url})" if crumb.url else crumb.text for crumb in crumbs]
    return "> " + " > ".join(parts) + "\n\n"


def _code_language(element) -> str:
    for cls in element.get("class", []) or []:
        if cls.startswith("language-"):
            return cls[len("language-") :]
        if cls.startswith("lang-"):
            return cls[len("lang-") :]
    return ""


def html_to_markdown(html: str, source_url: str = "", include_breadcrumbs: bool = True) -> str:
    """Convert a full HTML page into Markdown for its main content."""
    page = extract_content(html, source_url)
    markdown = md(
        page.content_html,
        heading_style="ATX",
        bullets="-",
        code_language_callback=_code_language,
        escape_asterisks=False,
        escape_underscores=False,
    )
    markdown = _BLANK_RUN.sub("\n\n", markdown).strip()
    if include_breadcrumbs:
        markdown = breadcrumbs_to_markdown(extract_breadcrumbs(html)) + markdown
    return markdown + "\n"


def generate_metadata(markdown: str, url: str) -> Dict[str, Any]:
    """Size statistics for a Markdown document; the token count is estimated as chars/4."""
    char_count = len(markdown)
    first_line = markdown.split("\n", 1)[0]
    return {
        "url": url,
        "title": re.sub(r"^#+\s+", "", first_line).strip(),
        "wordCount": len(markdown.split()),
        "charCount": char_count,
        "lineCount": len(markdown.split("\n")),
        "tokenCount": math.ceil(char_count / 4),
        "generatedAt": dt.datetime.now(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z"),
    }


def save_metadata(metadata: Dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
    logger.info("Saved metadata to %s", path)
    return path
