"""Admission gate limiting concurrent file transfers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..configuration import GatePolicy
from ..errors import GateSaturated

logger = logging.getLogger("fileferry.server.gate")


class AdmissionGate:
    """Fixed-capacity gate for in-flight transfers.

    ``capacity`` of 0 means unlimited. Under the ``wait`` policy a request
    beyond capacity waits for a slot; under ``reject`` it fails with
    :class:`GateSaturated`. All bookkeeping runs on the event loop thread.
    """

    def __init__(self, capacity: int, policy: GatePolicy = "wait") -> None:
        self.capacity = max(0, int(capacity))
        self.policy = policy
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(self.capacity) if self.capacity else None
        )
        self.in_flight = 0
        self.peak = 0
        self.waiting = 0

    @property
    def unlimited(self) -> bool:
        return self._semaphore is None

    @property
    def saturated(self) -> bool:
        return self._semaphore is not None and self._semaphore.locked()

    async def acquire(self, path: str) -> None:
        if self._semaphore is not None:
            if self.saturated:
                if self.policy == "reject":
                    logger.warning("Transfer slots exhausted; rejecting %s", path)
                    raise GateSaturated(path, f"all {self.capacity} transfer slots are busy")
                logger.debug("Transfer slots exhausted; %s waiting", path)
            self.waiting += 1
            try:
                await self._semaphore.acquire()
            finally:
                self.waiting -= 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)

    def release(self) -> None:
        self.in_flight -= 1
        if self._semaphore is not None:
            self._semaphore.release()


__all__ = ["AdmissionGate"]
