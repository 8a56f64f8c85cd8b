"""Comparison of a remote manifest against the local tree."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import LocalHashError, PathTraversalRejected
from ..manifest import HASH_CHUNK_SIZE, Manifest, ManifestEntry, compute_file_hash, is_unsafe_name
from .work import WorkQueue

logger = logging.getLogger("fileferry.client.diff")


@dataclass
class DiffReport:
    """Outcome of a diff phase."""

    work: WorkQueue
    checked: int = 0
    missing: int = 0
    changed: int = 0
    unreadable: int = 0
    rejected: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def queued(self) -> int:
        return len(self.work)


def local_target(root: Path, name: str) -> Path:
    """Local path for a manifest name, refusing names that escape ``root``."""
    if not name or is_unsafe_name(name):
        raise PathTraversalRejected(name)
    canonical_root = root.resolve()
    candidate = (canonical_root / name).resolve()
    if canonical_root not in candidate.parents:
        raise PathTraversalRejected(name)
    return canonical_root / name


class DiffEngine:
    """Bounded pool of workers hashing local files against manifest entries.

    Local files absent from the manifest are never looked at.
    """

    def __init__(
        self,
        target_dir: Path,
        workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
        chunk_size: int = HASH_CHUNK_SIZE,
    ) -> None:
        self.target_dir = Path(target_dir)
        self.workers = max(1, workers)
        self.cancel_event = cancel_event or threading.Event()
        self.chunk_size = chunk_size
        self._lock = threading.Lock()

    def run(self, manifest: Manifest) -> DiffReport:
        """Diff every entry and return once all workers have finished."""
        source: "queue.Queue[ManifestEntry]" = queue.Queue()
        for entry in manifest:
            source.put(entry)

        report = DiffReport(work=WorkQueue())
        worker_count = min(self.workers, max(1, len(manifest)))
        threads = [
            threading.Thread(
                target=self._worker,
                args=(source, report),
                daemon=True,
                name=f"fileferry-diff-{i}",
            )
            for i in range(worker_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        report.cancelled = self.cancel_event.is_set()
        logger.info(
            "Diff checked %d files: %d missing, %d changed, %d unreadable, %d rejected",
            report.checked,
            report.missing,
            report.changed,
            report.unreadable,
            len(report.rejected),
        )
        return report

    def _worker(self, source: "queue.Queue[ManifestEntry]", report: DiffReport) -> None:
        while not self.cancel_event.is_set():
            try:
                entry = source.get_nowait()
            except queue.Empty:
                return
            try:
                self._check(entry, report)
            except Exception:
                logger.exception("Unexpected error diffing %s", entry.name)

    def _check(self, entry: ManifestEntry, report: DiffReport) -> None:
        try:
            local_path = local_target(self.target_dir, entry.name)
        except PathTraversalRejected:
            logger.warning("Refusing manifest entry outside the target directory: %s", entry.name)
            with self._lock:
                report.checked += 1
                report.rejected.append(entry.name)
            return

        if not local_path.is_file():
            reason = "missing"
        else:
            try:
                reason = self._compare(local_path, entry)
            except LocalHashError as exc:
                logger.warning("%s; will download again", exc)
                reason = "unreadable"

        with self._lock:
            report.checked += 1
            if reason == "missing":
                report.missing += 1
            elif reason == "changed":
                report.changed += 1
            elif reason == "unreadable":
                report.unreadable += 1

        if reason != "current":
            logger.debug("Queued %s (%s)", entry.name, reason)
            report.work.submit(entry, local_path, reason=reason)

    def _compare(self, local_path: Path, entry: ManifestEntry) -> str:
        try:
            digest = compute_file_hash(local_path, self.chunk_size)
        except OSError as exc:
            raise LocalHashError(f"Cannot hash {local_path}: {exc}") from exc
        return "current" if digest == entry.content_hash else "changed"


__all__ = ["DiffEngine", "DiffReport", "local_target"]
