"""Concurrent, retrying download of queued work items."""

from __future__ import annotations

import hashlib
import http.client
import logging
import os
import queue
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from urllib.error import HTTPError

from ..errors import PermanentDownloadFailure, TransientDownloadError
from .progress import ProgressCallback, ProgressReporter, ProgressSnapshot
from .transport import Transport, UrllibTransport, file_url
from .work import WorkItem, WorkQueue, WorkState

logger = logging.getLogger("fileferry.client.pool")

PART_SUFFIX = ".part"


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# mkstemp creates 0600 files; finished downloads get the process default mode.
_FILE_MODE = 0o666 & ~_current_umask()


class TransferCancelled(Exception):
    """Raised inside a worker when the cancel signal interrupts a transfer."""


@dataclass
class FetchReport:
    """Outcome of a fetch phase."""

    succeeded: List[str] = field(default_factory=list)
    failures: List[PermanentDownloadFailure] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    progress: Optional[ProgressSnapshot] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.pending and not self.cancelled

    def to_dict(self) -> Dict[str, object]:
        return {
            "succeeded": list(self.succeeded),
            "failures": [
                {"name": f.name, "reason": f.reason, "attempts": f.attempts}
                for f in self.failures
            ],
            "pending": list(self.pending),
            "cancelled": self.cancelled,
        }


class FetchPool:
    """Fixed pool of download workers draining a :class:`WorkQueue`.

    A failed attempt puts the item back on the queue until it has been tried
    ``max_attempts`` times, after which it is reported as permanently failed.
    Sibling transfers are unaffected by one file failing.
    """

    def __init__(
        self,
        base_url: str,
        transport: Optional[Transport] = None,
        workers: int = 4,
        max_attempts: int = 3,
        timeout: float = 60.0,
        buffer_size: int = 81920,
        verify: bool = True,
        retry_backoff: float = 0.0,
        progress_callback: Optional[ProgressCallback] = None,
        progress_interval: float = 0.5,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
    ) -> None:
        self.base_url = base_url
        self.transport = transport or UrllibTransport()
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.verify = verify
        self.retry_backoff = retry_backoff
        self.progress_callback = progress_callback
        self.progress_interval = progress_interval
        self.cancel_event = cancel_event or threading.Event()
        self.poll_interval = poll_interval

        self._done = threading.Event()
        self._report_lock = threading.Lock()
        self._progress: Optional[ProgressReporter] = None

    def run(self, work: WorkQueue) -> FetchReport:
        """Download every queued item; returns once the queue is drained or cancelled."""
        report = FetchReport()
        self._progress = ProgressReporter(
            total_count=len(work),
            callback=self.progress_callback,
            interval=self.progress_interval,
        )
        self._done.clear()

        if len(work):
            worker_count = min(self.workers, len(work))
            threads = [
                threading.Thread(
                    target=self._worker,
                    args=(work, report),
                    daemon=True,
                    name=f"fileferry-fetch-{i}",
                )
                for i in range(worker_count)
            ]
            for thread in threads:
                thread.start()

            drained = work.wait_drained(self.cancel_event, poll=self.poll_interval)
            self._done.set()
            for thread in threads:
                thread.join()
            report.cancelled = not drained or self.cancel_event.is_set()

        report.progress = self._progress.finish()
        report.pending = [item.name for item in work.items() if not item.terminal]
        logger.info(
            "Fetch finished: %d downloaded, %d failed, %d pending, %d bytes in %.2fs",
            len(report.succeeded),
            len(report.failures),
            len(report.pending),
            report.progress.cumulative_bytes,
            report.progress.elapsed_time,
        )
        return report

    def _worker(self, work: WorkQueue, report: FetchReport) -> None:
        while not self.cancel_event.is_set():
            try:
                index = work.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._done.is_set() or work.drained:
                    return
                continue
            try:
                self._process(work, work.item(index), report)
            except Exception:
                item = work.item(index)
                item.attempt_count += 1
                item.state = WorkState.PERMANENTLY_FAILED
                logger.exception("Unexpected error downloading %s", item.name)
                self._record_failure(report, item, "unexpected error")
            finally:
                work.task_done()

    def _process(self, work: WorkQueue, item: WorkItem, report: FetchReport) -> None:
        item.state = WorkState.IN_PROGRESS
        try:
            self._download(item)
        except TransferCancelled:
            item.state = WorkState.PENDING
            logger.info("Download of %s cancelled", item.name)
            return
        except TransientDownloadError as exc:
            item.attempt_count += 1
            item.last_error = str(exc)
            if item.attempt_count < self.max_attempts:
                item.state = WorkState.PENDING
                logger.warning(
                    "Download of %s failed (attempt %d/%d): %s; retrying",
                    item.name,
                    item.attempt_count,
                    self.max_attempts,
                    exc,
                )
                if self.retry_backoff > 0 and self.cancel_event.wait(
                    self.retry_backoff * item.attempt_count
                ):
                    return
                work.requeue(item.index)
            else:
                item.state = WorkState.PERMANENTLY_FAILED
                logger.error(
                    "Download of %s failed permanently after %d attempts: %s",
                    item.name,
                    item.attempt_count,
                    exc,
                )
                self._record_failure(report, item, str(exc))
            return

        item.attempt_count += 1
        item.state = WorkState.SUCCESS
        with self._report_lock:
            report.succeeded.append(item.name)
        self._progress.complete_one()
        logger.debug("Downloaded %s", item.name)

    def _record_failure(self, report: FetchReport, item: WorkItem, reason: str) -> None:
        failure = PermanentDownloadFailure(item.name, item.attempt_count, reason)
        with self._report_lock:
            report.failures.append(failure)
        self._progress.complete_one()

    def _download(self, item: WorkItem) -> None:
        """Stream one file into place through a uniquely named hidden ``.part`` sibling.

        The destination is only replaced once the whole body has arrived (and
        matched its hash when verification is on). Only the temp file this call
        created is ever removed or renamed.
        """
        url = file_url(self.base_url, item.name)
        part_path: Optional[Path] = None
        hasher = hashlib.md5(usedforsecurity=False)
        received = 0
        replaced = False

        try:
            item.local_path.parent.mkdir(parents=True, exist_ok=True)
            with self.transport.open(url, self.timeout) as resp:
                expected = resp.headers.get("Content-Length")
                fd, temp_name = tempfile.mkstemp(
                    dir=item.local_path.parent,
                    prefix="." + item.local_path.name + ".",
                    suffix=PART_SUFFIX,
                )
                part_path = Path(temp_name)
                with os.fdopen(fd, "wb") as out:
                    while True:
                        if self.cancel_event.is_set():
                            raise TransferCancelled(item.name)
                        chunk = resp.read(self.buffer_size)
                        if not chunk:
                            break
                        out.write(chunk)
                        hasher.update(chunk)
                        received += len(chunk)
                        self._progress.add_bytes(len(chunk))

            if expected is not None and received != int(expected):
                raise TransientDownloadError(
                    f"incomplete transfer: {received} of {expected} bytes"
                )
            if self.verify and hasher.hexdigest() != item.entry.content_hash:
                raise TransientDownloadError(
                    f"content hash mismatch: got {hasher.hexdigest()}"
                )
            os.chmod(part_path, _FILE_MODE)
            os.replace(part_path, item.local_path)
            replaced = True
        except HTTPError as exc:
            raise TransientDownloadError(f"HTTP {exc.code} {exc.reason}") from exc
        except (OSError, http.client.HTTPException, ValueError) as exc:
            raise TransientDownloadError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            if not replaced and part_path is not None:
                _remove_quietly(part_path)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove partial file %s: %s", path, exc)


__all__ = ["FetchPool", "FetchReport", "PART_SUFFIX", "TransferCancelled"]
