"""Periodic manifest regeneration."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .builder import ManifestBuilder

logger = logging.getLogger("fileferry.server.scheduler")


class RebuildTicker:
    """Runs a rebuild at start, then every ``interval`` seconds until stopped.

    The builder's cancel event doubles as the stop signal, so :meth:`stop`
    also aborts a scan in progress. An interval of 0 runs the startup
    rebuild only.
    """

    def __init__(self, builder: ManifestBuilder, interval: float) -> None:
        self.builder = builder
        self.interval = max(0.0, float(interval))
        self._stop_event = builder.cancel_event
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="fileferry-rebuild",
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Rebuild thread did not stop within %.1fs", timeout)
        self._thread = None

    def _loop(self) -> None:
        logger.info("Manifest service starting...")
        self._tick()

        if self.interval <= 0:
            logger.info("Automatic manifest regeneration disabled (interval = 0)")
            return

        logger.info("Manifest will regenerate every %s seconds", self.interval)
        while not self._stop_event.wait(self.interval):
            self._tick()
        logger.info("Manifest service stopped")

    def _tick(self) -> None:
        try:
            self.builder.rebuild()
        except Exception:
            # A surprise here must not end the loop; the last cache stays served.
            logger.exception("Unexpected error during manifest rebuild")
        self.ticks += 1


__all__ = ["RebuildTicker"]
