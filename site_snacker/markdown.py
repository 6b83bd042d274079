"""Markdown scanning and rewriting for media enrichment.

The document is split into a flat sequence of segments: literal text
(including fenced blocks and inline code, which are never scanned) and
media references (``![alt](src)`` images and ``[label](href)`` links).
Serialising the segments with no changes reproduces the input exactly,
so enrichment can build a new document by appending to segments instead
of editing the string while iterating over it.
"""

from __future__ import annotations

import html
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple, Union
from urllib.parse import urlparse

FENCE_PATTERN = re.compile(r"^ {0,3}(?P<fence>`{3,}|~{3,})")

INLINE_PATTERN = re.compile(
    r"(?P<code>(?P<ticks>`+).+?(?P=ticks))"
    r"|(?P<ref>(?P<bang>!?)\[(?P<label>(?:[^\[\]\n]|\[[^\[\]\n]*\])*)\]"
    r"\(\s*(?P<dest><[^>\n]*>|[^\s()]*(?:\([^\s()]*\)[^\s()]*)*)"
    r"(?:\s+(?:\"[^\"\n]*\"|'[^'\n]*'|\([^)\n]*\)))?\s*\))",
    re.DOTALL,
)

IMAGE_PATTERN = re.compile(
    r"!\[(?P<label>[^\[\]\n]*)\]"
    r"\(\s*(?P<dest><[^>\n]*>|[^\s()]*(?:\([^\s()]*\)[^\s()]*)*)"
    r"(?:\s+(?:\"[^\"\n]*\"|'[^'\n]*'|\([^)\n]*\)))?\s*\)"
)

# Enrichment blocks directly following a media reference.
LEADING_BLOCKS_PATTERN = re.compile(r'(?:\s*<(\w+) src="[^"]*">.*?</\1>)+', re.DOTALL)

IMAGE = "image"
LINK = "link"


@dataclass(frozen=True)
class TextSegment:
    raw: str


@dataclass(frozen=True)
class MediaReference:
    """An image or link as written in the document.

    ``children`` holds images nested in a link label, as in
    ``[![alt](thumb.png)](page.html)``.
    """

    raw: str
    kind: str
    text: str
    target: str
    children: Tuple["MediaReference", ...] = field(default_factory=tuple)


Segment = Union[TextSegment, MediaReference]


def _destination(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("<") and raw.endswith(">"):
        return raw[1:-1].strip()
    return raw


def _is_escaped(text: str, index: int) -> bool:
    backslashes = 0
    while index > 0 and text[index - 1] == "\\":
        backslashes += 1
        index -= 1
    return backslashes % 2 == 1


def _nested_images(label: str) -> Tuple[MediaReference, ...]:
    return tuple(
        MediaReference(
            raw=match.group(0),
            kind=IMAGE,
            text=match.group("label"),
            target=_destination(match.group("dest")),
        )
        for match in IMAGE_PATTERN.finditer(label)
    )


def _scan_inline(chunk: str) -> Iterator[Segment]:
    position = 0
    for match in INLINE_PATTERN.finditer(chunk):
        if match.group("code") or _is_escaped(chunk, match.start()):
            continue
        if match.start() > position:
            yield TextSegment(chunk[position : match.start()])
        label = match.group("label")
        if match.group("bang"):
            yield MediaReference(
                raw=match.group(0),
                kind=IMAGE,
                text=label,
                target=_destination(match.group("dest")),
            )
        else:
            yield MediaReference(
                raw=match.group(0),
                kind=LINK,
                text=label,
                target=_destination(match.group("dest")),
                children=_nested_images(label),
            )
        position = match.end()
    if position < len(chunk):
        yield TextSegment(chunk[position:])


def _merge_text(segments: Iterable[Segment]) -> List[Segment]:
    merged: List[Segment] = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            if not segment.raw:
                continue
            if merged and isinstance(merged[-1], TextSegment):
                merged[-1] = TextSegment(merged[-1].raw + segment.raw)
                continue
        merged.append(segment)
    return merged


def tokenize(markdown: str) -> List[Segment]:
    """Split ``markdown`` into text and media-reference segments."""
    segments: List[Segment] = []
    pending: List[str] = []
    fence = ""

    def flush() -> None:
        if pending:
            segments.extend(_scan_inline("".join(pending)))
            pending.clear()

    for line in markdown.splitlines(keepends=True):
        match = FENCE_PATTERN.match(line)
        if fence:
            segments.append(TextSegment(line))
            closing = match.group("fence") if match else ""
            if closing and closing[0] == fence[0] and len(closing) >= len(fence):
                fence = ""
            continue
        if match:
            flush()
            fence = match.group("fence")
            segments.append(TextSegment(line))
            continue
        pending.append(line)
    flush()
    return _merge_text(segments)


def serialize(segments: Sequence[Segment]) -> str:
    return "".join(segment.raw for segment in segments)


def iter_media(segments: Sequence[Segment]) -> Iterator[Tuple[int, MediaReference]]:
    """Yield ``(segment_index, reference)`` in document order.

    Images nested in a link label are reported before the link itself and
    share the link's segment index.
    """
    for index, segment in enumerate(segments):
        if isinstance(segment, MediaReference):
            for child in segment.children:
                yield index, child
            yield index, segment


def render_enrichment_tag(tag: str, src: str, content: str) -> str:
    return f'<{tag} src="{html.escape(src, quote=True)}">{content}</{tag}>'


def rewrite(segments: Sequence[Segment], additions: Dict[int, List[str]]) -> str:
    """Serialise ``segments`` with enrichment blocks placed after their media."""
    parts: List[str] = []
    for index, segment in enumerate(segments):
        parts.append(segment.raw)
        for block in additions.get(index, []):
            parts.append(f"\n\n{block}\n\n")
    return "".join(parts)


def has_enrichment(segments: Sequence[Segment], index: int, tag: str, src: str) -> bool:
    """True when the text right after ``segments[index]`` already holds the tag for ``src``."""
    if index + 1 >= len(segments):
        return False
    following = segments[index + 1]
    if not isinstance(following, TextSegment):
        return False
    leading = LEADING_BLOCKS_PATTERN.match(following.raw)
    opening = f'<{tag} src="{html.escape(src, quote=True)}">'
    return bool(leading) and opening in leading.group(0)


def is_audio_link(target: str, extensions: Iterable[str]) -> bool:
    """Whether a link target points at an audio file, judged by its path suffix."""
    try:
        path = urlparse(target).path
    except ValueError:
        return False
    suffix = posixpath.splitext(path)[1].lower().lstrip(".")
    return bool(suffix) and suffix in {ext.lower().lstrip(".") for ext in extensions}


def count_tags(markdown: str, tag: str) -> int:
    return len(re.findall(rf"<{re.escape(tag)}[\s>]", markdown))


def compose_processed(source_url: str, body: str) -> str:
    """Final enriched document with its source header."""
    return f"[source: {source_url}]\n\n{body.strip()}\n"
