"""Content-addressed registry of generated media descriptions and transcripts.

Each entry is keyed by the SHA-256 of a media file's bytes, so the same
image or audio clip referenced from many pages is described only once.
The registry is stored as a single JSON document::

    {"entries": {"<sha256>": {...}}, "stats": {...}}

and the previous version is kept beside it with a ``.backup`` suffix.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import RegistryError, RegistryErrorType
from .models import MediaKind

logger = logging.getLogger("site_snacker")

HASH_CHUNK_BYTES = 1024 * 1024


def utc_timestamp() -> str:
    return (
        dt.datetime.now(dt.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(HASH_CHUNK_BYTES), b""):
                digest.update(chunk)
    except FileNotFoundError as exc:
        raise RegistryError(RegistryErrorType.FILE_NOT_FOUND, f"No such file: {path}") from exc
    return digest.hexdigest()


@dataclass
class MediaOccurrence:
    """One place a media file was seen."""

    page_path: str
    original_url: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pagePath": self.page_path,
            "originalUrl": self.original_url,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaOccurrence":
        return cls(
            page_path=data["pagePath"],
            original_url=data.get("originalUrl", ""),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class RegistryEntry:
    type: MediaKind
    hash: str
    content: str
    occurrences: List[MediaOccurrence]
    first_processed: str
    last_used: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    api_cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "hash": self.hash,
            "content": self.content,
            "occurrences": [item.to_dict() for item in self.occurrences],
            "firstProcessed": self.first_processed,
            "lastUsed": self.last_used,
            "metadata": self.metadata,
            "apiCost": self.api_cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryEntry":
        return cls(
            type=MediaKind(data["type"]),
            hash=data["hash"],
            content=data["content"],
            occurrences=[MediaOccurrence.from_dict(item) for item in data.get("occurrences", [])],
            first_processed=data.get("firstProcessed", ""),
            last_used=data.get("lastUsed", ""),
            metadata=dict(data.get("metadata") or {}),
            api_cost=float(data.get("apiCost") or 0.0),
        )


@dataclass
class RegistryStats:
    """Aggregates derived from the entry set; never edited directly."""

    total_files: int = 0
    unique_files: Dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in MediaKind}
    )
    duplicate_count: Dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in MediaKind}
    )
    total_api_cost: float = 0.0
    last_updated: str = field(default_factory=utc_timestamp)

    @classmethod
    def compute(cls, entries: Dict[str, RegistryEntry]) -> "RegistryStats":
        stats = cls()
        for entry in entries.values():
            kind = entry.type.value
            stats.total_files += len(entry.occurrences)
            stats.unique_files[kind] += 1
            stats.duplicate_count[kind] += max(0, len(entry.occurrences) - 1)
            stats.total_api_cost += entry.api_cost
        return stats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "uniqueFiles": dict(self.unique_files),
            "duplicateCount": dict(self.duplicate_count),
            "totalApiCost": self.total_api_cost,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryStats":
        stats = cls()
        stats.total_files = int(data.get("totalFiles", 0))
        stats.unique_files.update(data.get("uniqueFiles") or {})
        stats.duplicate_count.update(data.get("duplicateCount") or {})
        stats.total_api_cost = float(data.get("totalApiCost", 0.0))
        stats.last_updated = data.get("lastUpdated", stats.last_updated)
        return stats


class MediaRegistry:
    """Hash-indexed store of media descriptions with dirty-tracked persistence.

    The registry assumes a single writer process: mutations are synchronous
    and complete before control returns to the event loop, so no locking is
    performed.
    """

    def __init__(
        self,
        registry_path: Union[str, Path],
        auto_save: bool = True,
        backup: bool = True,
    ) -> None:
        self.path = Path(registry_path)
        self.auto_save = auto_save
        self.backup = backup
        self._dirty = False
        self.entries: Dict[str, RegistryEntry] = {}
        self.stats = RegistryStats()
        self._load()

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".backup")

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug("No registry at %s, starting empty", self.path)
            return
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise RegistryError(
                RegistryErrorType.LOAD_FAILED,
                f"Failed to load registry from {self.path}: {exc}",
            ) from exc
        if not isinstance(document, dict) or not isinstance(document.get("entries"), dict):
            raise RegistryError(
                RegistryErrorType.INVALID_FORMAT,
                f"Registry {self.path} has no 'entries' mapping",
            )
        try:
            self.entries = {
                key: RegistryEntry.from_dict(value)
                for key, value in document["entries"].items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise RegistryError(
                RegistryErrorType.INVALID_FORMAT,
                f"Registry {self.path} contains a malformed entry: {exc}",
            ) from exc
        self.stats = RegistryStats.compute(self.entries)
        persisted = document.get("stats")
        if isinstance(persisted, dict) and isinstance(persisted.get("lastUpdated"), str):
            self.stats.last_updated = persisted["lastUpdated"]
        logger.info("Loaded media registry with %d entries from %s", len(self.entries), self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": {key: entry.to_dict() for key, entry in self.entries.items()},
            "stats": self.stats.to_dict(),
        }

    def _save(self) -> None:
        if not self._dirty and self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.backup and self.path.exists():
                shutil.copyfile(self.path, self.backup_path)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            tmp_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise RegistryError(
                RegistryErrorType.SAVE_FAILED,
                f"Failed to save registry to {self.path}: {exc}",
            ) from exc
        self._dirty = False
        logger.debug("Saved media registry to %s", self.path)

    def save(self) -> None:
        """Persist now, regardless of ``auto_save``."""
        self._save()

    def _mutated(self) -> None:
        self.stats = RegistryStats.compute(self.entries)
        self._dirty = True
        if self.auto_save:
            self._save()

    def has_file(self, path: Union[str, Path]) -> bool:
        return hash_file(path) in self.entries

    def get_entry(self, path: Union[str, Path]) -> Optional[RegistryEntry]:
        return self.entries.get(hash_file(path))

    def get_entry_by_hash(self, digest: str) -> Optional[RegistryEntry]:
        return self.entries.get(digest)

    def add_entry(
        self,
        path: Union[str, Path],
        kind: MediaKind,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        api_cost: float = 0.0,
        page_path: Optional[str] = None,
    ) -> RegistryEntry:
        """Register ``path`` under the hash of its bytes.

        A known hash gains an occurrence (at most one per page path) and
        keeps its original content; an unseen hash creates a new entry.
        ``page_path`` names the page that references the file and defaults
        to ``path`` itself.
        """
        metadata = dict(metadata or {})
        digest = hash_file(path)
        now = utc_timestamp()
        page_path = page_path or str(path)
        occurrence = MediaOccurrence(
            page_path=page_path,
            original_url=metadata.get("originalUrl", ""),
            timestamp=now,
        )

        entry = self.entries.get(digest)
        if entry is not None:
            if not any(item.page_path == page_path for item in entry.occurrences):
                entry.occurrences.append(occurrence)
            entry.last_used = now
            logger.debug("Registry hit for %s (%d occurrences)", page_path, len(entry.occurrences))
        else:
            entry = RegistryEntry(
                type=MediaKind(kind),
                hash=digest,
                content=content,
                occurrences=[occurrence],
                first_processed=now,
                last_used=now,
                metadata=metadata,
                api_cost=api_cost,
            )
            self.entries[digest] = entry
            logger.debug("Registered new %s %s", entry.type.value, digest[:12])

        self._mutated()
        return entry

    def find_duplicates(self, path: Union[str, Path]) -> List[MediaOccurrence]:
        entry = self.get_entry(path)
        return list(entry.occurrences) if entry else []

    def get_stats(self) -> RegistryStats:
        return RegistryStats.from_dict(self.stats.to_dict())
