"""Manifest generation for the served tree and the atomically swapped cache file."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Iterator, Optional

from ..errors import CacheRebuildError
from ..manifest import HASH_CHUNK_SIZE, Manifest, ManifestEntry, compute_file_hash

logger = logging.getLogger("fileferry.server.builder")

EMPTY_MANIFEST = "[]"


class ManifestCache:
    """The published manifest file.

    Writers go through :meth:`publish`, which writes a sibling temp file and
    renames it over the cache path, so readers see the old or the new
    manifest and never a partial one.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    def exists(self) -> bool:
        return self.path.is_file()

    def read_text(self) -> str:
        """Return the cached wire payload, or an empty array when nothing is published."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return EMPTY_MANIFEST

    def load(self) -> Manifest:
        return Manifest.from_json(self.read_text())

    def publish(self, manifest: Manifest) -> None:
        """Serialize and atomically swap in a new manifest.

        Raises:
            CacheRebuildError: if serialization or any filesystem step fails;
                the previously published file is left untouched.
        """
        temp_path = self.temp_path
        try:
            payload = manifest.to_json()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_exc:
                logger.warning("Could not remove temp cache %s: %s", temp_path, cleanup_exc)
            raise CacheRebuildError(f"Failed to publish manifest to {self.path}: {exc}") from exc


class ManifestBuilder:
    """Scans the served root and publishes a manifest, one rebuild at a time."""

    def __init__(
        self,
        files_dir: Path,
        cache: ManifestCache,
        cancel_event: Optional[threading.Event] = None,
        chunk_size: int = HASH_CHUNK_SIZE,
    ) -> None:
        self.files_dir = Path(files_dir)
        self.cache = cache
        self.cancel_event = cancel_event or threading.Event()
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self.last_count: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def rebuild(self) -> Optional[Manifest]:
        """Rebuild and publish the manifest.

        Returns the published manifest, or None when another rebuild was already
        running, the rebuild was cancelled, or publishing failed.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Manifest rebuild already in progress; trigger ignored")
            return None

        try:
            logger.info("Regenerating manifest from %s...", self.files_dir)
            manifest = self.scan()
            if self.cancel_event.is_set():
                logger.info("Manifest rebuild cancelled; keeping previous cache")
                return None
            self.cache.publish(manifest)
            self.last_count = len(manifest)
            logger.info("Manifest regenerated successfully with %d files", len(manifest))
            return manifest
        except CacheRebuildError as exc:
            logger.error("Error regenerating manifest: %s", exc)
            return None
        finally:
            self._lock.release()

    def scan(self) -> Manifest:
        """Hash every file under the served root. Unreadable files are skipped."""
        if not self.files_dir.exists():
            logger.warning("Files directory does not exist: %s", self.files_dir)
            self.files_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created files directory: %s", self.files_dir)

        manifest = Manifest()
        for file_path in self._iter_files():
            if self.cancel_event.is_set():
                break
            rel_path = file_path.relative_to(self.files_dir).as_posix()
            try:
                digest = compute_file_hash(file_path, self.chunk_size)
            except OSError as exc:
                logger.error("Error processing file %s: %s", file_path, exc)
                continue
            manifest.add(ManifestEntry(name=rel_path, content_hash=digest))
        return manifest

    def _iter_files(self) -> Iterator[Path]:
        root = self.files_dir.resolve()
        skip = {self.cache.path.resolve(), self.cache.temp_path.resolve()}
        for dirpath, dirnames, filenames in os.walk(self.files_dir):
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = Path(dirpath) / filename
                resolved = file_path.resolve()
                if resolved in skip:
                    continue
                if not resolved.is_file():
                    continue
                # The file route refuses anything that resolves outside the root.
                if resolved != root and root not in resolved.parents:
                    logger.debug("Skipping %s: resolves outside the served root", file_path)
                    continue
                yield file_path


__all__ = ["EMPTY_MANIFEST", "ManifestBuilder", "ManifestCache"]
