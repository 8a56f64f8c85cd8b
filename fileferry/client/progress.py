"""Throughput aggregation for the fetch pool."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("fileferry.client.progress")


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a download phase."""

    completed_count: int
    total_count: int
    cumulative_bytes: int
    elapsed_time: float

    @property
    def bytes_per_second(self) -> float:
        if self.elapsed_time <= 0:
            return 0.0
        return self.cumulative_bytes / self.elapsed_time

    @property
    def fraction(self) -> float:
        if self.total_count <= 0:
            return 1.0
        return self.completed_count / self.total_count


ProgressCallback = Callable[[ProgressSnapshot], None]


class ProgressReporter:
    """Shared counters updated by workers, reported at most once per ``interval``.

    Counter updates and the throttle decision happen under one lock; the
    callback itself runs outside it on whichever worker won the slot.
    """

    def __init__(
        self,
        total_count: int,
        callback: Optional[ProgressCallback] = None,
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total_count = total_count
        self.callback = callback
        self.interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._completed = 0
        self._bytes = 0
        self._started = clock()
        self._last_report: Optional[float] = None
        self.reports = 0

    def add_bytes(self, count: int) -> None:
        with self._lock:
            self._bytes += count
            snapshot = self._due_snapshot()
        self._emit(snapshot)

    def complete_one(self) -> None:
        with self._lock:
            self._completed += 1
            snapshot = self._due_snapshot()
        self._emit(snapshot)

    def finish(self) -> ProgressSnapshot:
        """Report unconditionally and return the final snapshot."""
        with self._lock:
            snapshot = self._snapshot()
            self._last_report = self._clock()
            self.reports += 1
        self._emit(snapshot)
        return snapshot

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            completed_count=self._completed,
            total_count=self.total_count,
            cumulative_bytes=self._bytes,
            elapsed_time=self._clock() - self._started,
        )

    def _due_snapshot(self) -> Optional[ProgressSnapshot]:
        # Caller holds the lock.
        now = self._clock()
        if self._last_report is not None and now - self._last_report < self.interval:
            return None
        self._last_report = now
        self.reports += 1
        return self._snapshot()

    def _emit(self, snapshot: Optional[ProgressSnapshot]) -> None:
        if snapshot is None or self.callback is None:
            return
        try:
            self.callback(snapshot)
        except Exception:
            logger.exception("Progress callback failed")


__all__ = ["ProgressCallback", "ProgressReporter", "ProgressSnapshot"]
