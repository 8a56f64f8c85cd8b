"""Work items queued for download and the arena that owns them."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..manifest import ManifestEntry


class WorkState(str, Enum):
    """Lifecycle of a single download."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PERMANENTLY_FAILED = "permanently_failed"


@dataclass
class WorkItem:
    """A file that is missing locally or whose content differs from the manifest."""

    index: int
    entry: ManifestEntry
    local_path: Path
    reason: str = "missing"  # missing, changed, unreadable
    attempt_count: int = 0
    state: WorkState = WorkState.PENDING
    last_error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def terminal(self) -> bool:
        return self.state in (WorkState.SUCCESS, WorkState.PERMANENTLY_FAILED)


class WorkQueue:
    """Arena of work items plus a FIFO of their indices.

    Only indices travel through the queue. Whoever dequeues an index owns that
    item until it calls :meth:`requeue` or :meth:`task_done`, so item fields
    such as ``attempt_count`` need no lock of their own.
    """

    def __init__(self) -> None:
        self._items: List[WorkItem] = []
        self._queue: "queue.Queue[int]" = queue.Queue()
        self._arena_lock = threading.Lock()

    def submit(self, entry: ManifestEntry, local_path: Path, reason: str = "missing") -> WorkItem:
        with self._arena_lock:
            item = WorkItem(index=len(self._items), entry=entry, local_path=local_path, reason=reason)
            self._items.append(item)
        self._queue.put(item.index)
        return item

    def get(self, timeout: float) -> int:
        """Dequeue the next index; raises ``queue.Empty`` after ``timeout``."""
        return self._queue.get(timeout=timeout)

    def requeue(self, index: int) -> None:
        self._queue.put(index)

    def task_done(self) -> None:
        self._queue.task_done()

    def item(self, index: int) -> WorkItem:
        return self._items[index]

    def items(self) -> List[WorkItem]:
        with self._arena_lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def drained(self) -> bool:
        """True once every submitted or requeued index has been marked done."""
        return self._queue.unfinished_tasks == 0

    def wait_drained(self, cancel_event: threading.Event, poll: float = 0.1) -> bool:
        """Block until drained or cancelled. Returns True when drained."""
        condition = self._queue.all_tasks_done
        with condition:
            while self._queue.unfinished_tasks:
                if cancel_event.is_set():
                    return False
                condition.wait(timeout=poll)
        return True


__all__ = ["WorkItem", "WorkQueue", "WorkState"]
