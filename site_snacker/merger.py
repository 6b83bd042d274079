"""Concatenate processed pages into one Markdown document."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .markdown import count_tags

logger = logging.getLogger("site_snacker")


@dataclass
class FileToMerge:
    markdown_path: Path
    url: str


def merge_markdown_files(
    files: List[FileToMerge],
    output_path: Path,
    source: str,
    description_tag: str = "image_description",
) -> Path:
    """Write every page in ``files`` into ``output_path``, in order."""
    logger.info("Merging %d Markdown files into %s", len(files), output_path)
    timestamp = (
        dt.datetime.now(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )

    lines = [
        "# Merged Documentation from Sitemap",
        "",
        f"Source: {source}",
        "",
        f"Generated on: {timestamp}",
        "",
        "## Included Pages",
        "",
    ]
    lines.extend(f"{index}. {item.url}" for index, item in enumerate(files, start=1))
    header = "\n".join(lines) + "\n\n---\n\n"

    sections: List[str] = []
    for item in files:
        content = Path(item.markdown_path).read_text(encoding="utf-8")
        tags = count_tags(content, description_tag)
        if tags:
            logger.debug("%s carries %d %s tag(s)", item.markdown_path, tags, description_tag)
        name = Path(item.markdown_path).stem
        sections.append(f"## {name}\n\nURL: {item.url}\n\n{content.strip()}")

    merged = header + "\n\n---\n\n".join(sections) + "\n"
    total = count_tags(merged, description_tag)
    logger.info("Merged document keeps %d %s tag(s)", total, description_tag)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(merged, encoding="utf-8")
    logger.info("Merged content saved to %s", output_path)
    return output_path
