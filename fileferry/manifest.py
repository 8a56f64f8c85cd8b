"""Manifest entries, content hashing, and the JSON wire format."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

logger = logging.getLogger("fileferry.manifest")

HASH_CHUNK_SIZE = 64 * 1024

_SEPARATORS = re.compile(r"[\\/]")


@dataclass(frozen=True)
class ManifestEntry:
    """A single published file: relative path plus content digest."""

    name: str  # Forward-slash relative path, unique within a manifest
    content_hash: str  # Lowercase hex MD5 of the file bytes

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "md5": self.content_hash}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        name = data["name"]
        digest = data["md5"]
        if not isinstance(name, str) or not isinstance(digest, str):
            raise ValueError("manifest entry fields must be strings")
        return cls(name=normalize_name(name), content_hash=digest.lower())


class Manifest:
    """Collection of entries keyed by name, built and published as a unit."""

    def __init__(self, entries: Optional[Iterable[ManifestEntry]] = None) -> None:
        self._entries: Dict[str, ManifestEntry] = {}
        for entry in entries or ():
            self.add(entry)

    def add(self, entry: ManifestEntry) -> None:
        if entry.name in self._entries:
            logger.warning("Duplicate manifest entry '%s'; keeping the last one", entry.name)
        self._entries[entry.name] = entry

    def get(self, name: str) -> Optional[ManifestEntry]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return list(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def to_list(self) -> List[Dict[str, str]]:
        return [entry.to_dict() for entry in self._entries.values()]

    def to_json(self) -> str:
        return json.dumps(self.to_list())

    @classmethod
    def from_list(cls, data: Any) -> "Manifest":
        """Build a manifest from the decoded wire array.

        Raises:
            ValueError: if the payload is not an array of ``{name, md5}`` objects.
        """
        if not isinstance(data, list):
            raise ValueError("manifest payload must be a JSON array")
        manifest = cls()
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise ValueError(f"manifest item {index} is not an object")
            try:
                manifest.add(ManifestEntry.from_dict(item))
            except KeyError as exc:
                raise ValueError(f"manifest item {index} is missing {exc}") from exc
        return manifest

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "Manifest":
        return cls.from_list(json.loads(text))


def normalize_name(name: str) -> str:
    """Normalize a relative path to forward slashes without a leading './'."""
    cleaned = name.replace("\\", "/")
    return str(PurePosixPath(cleaned)) if cleaned else cleaned


def is_unsafe_name(name: str) -> bool:
    """True for absolute paths, drive-qualified paths, or paths with a '..' segment."""
    if PurePosixPath(name).is_absolute():
        return True
    windows = PureWindowsPath(name)
    if windows.is_absolute() or windows.drive:
        return True
    return ".." in _SEPARATORS.split(name)


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Stream a file through MD5 and return the hex digest."""
    hasher = hashlib.md5(usedforsecurity=False)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


__all__ = [
    "HASH_CHUNK_SIZE",
    "Manifest",
    "ManifestEntry",
    "compute_file_hash",
    "is_unsafe_name",
    "normalize_name",
]
