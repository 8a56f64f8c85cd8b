"""Sync client: fetch the manifest, diff the local tree, download what differs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..configuration import ClientSettings
from .diff import DiffEngine, DiffReport
from .fetcher import ManifestFetcher
from .pool import FetchPool, FetchReport
from .progress import ProgressCallback
from .transport import Transport, UrllibTransport

logger = logging.getLogger("fileferry.client.sync")


@dataclass
class FileFailure:
    """A file that could not be brought up to date."""

    name: str
    reason: str
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "reason": self.reason, "attempts": self.attempts}


@dataclass
class SyncResult:
    """Result of a sync run."""

    success: bool
    checked: int = 0
    queued: int = 0
    downloaded: int = 0
    failed: List[FileFailure] = field(default_factory=list)
    bytes_transferred: int = 0
    elapsed: float = 0.0
    cancelled: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "checked": self.checked,
            "queued": self.queued,
            "downloaded": self.downloaded,
            "failed": [failure.to_dict() for failure in self.failed],
            "bytes_transferred": self.bytes_transferred,
            "elapsed": self.elapsed,
            "cancelled": self.cancelled,
            "message": self.message,
        }


class SyncClient:
    """Brings ``settings.target_dir`` in line with the remote manifest.

    Only adds and updates files; local files the manifest does not mention
    are left alone. The diff phase finishes completely before any download
    starts.
    """

    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[Transport] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport or UrllibTransport()
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event or threading.Event()

        self.fetcher = ManifestFetcher(
            settings.manifest_url,
            transport=self.transport,
            timeout=settings.connect_timeout,
        )
        self.diff_engine = DiffEngine(
            settings.target_dir,
            workers=settings.diff_workers,
            cancel_event=self.cancel_event,
        )

    def cancel(self) -> None:
        """Ask every worker to stop after its current step."""
        self.cancel_event.set()

    def build_pool(self) -> FetchPool:
        return FetchPool(
            self.settings.file_base_url,
            transport=self.transport,
            workers=self.settings.download_workers,
            max_attempts=self.settings.max_attempts,
            timeout=self.settings.transfer_timeout,
            buffer_size=self.settings.buffer_size,
            verify=self.settings.verify_downloads,
            retry_backoff=self.settings.retry_backoff,
            progress_callback=self.progress_callback,
            progress_interval=self.settings.progress_interval,
            cancel_event=self.cancel_event,
        )

    def diff(self) -> DiffReport:
        """Fetch the manifest and diff it without downloading anything.

        Raises:
            ManifestFetchError: if the manifest is unreachable or malformed.
        """
        manifest = self.fetcher.fetch()
        self.settings.target_dir.mkdir(parents=True, exist_ok=True)
        return self.diff_engine.run(manifest)

    def run(self) -> SyncResult:
        """Perform a full sync.

        Per-file problems end up in ``SyncResult.failed``; only an unreachable
        or malformed manifest raises.

        Raises:
            ManifestFetchError: if the manifest cannot be fetched or decoded.
        """
        started = time.monotonic()
        diff_report = self.diff()

        fetch_report = FetchReport()
        if diff_report.queued and not diff_report.cancelled:
            logger.info("Downloading %d files", diff_report.queued)
            fetch_report = self.build_pool().run(diff_report.work)

        result = _build_result(diff_report, fetch_report)
        result.elapsed = time.monotonic() - started
        logger.info("Sync finished: %s", result.message)
        return result


def _build_result(diff_report: DiffReport, fetch_report: FetchReport) -> SyncResult:
    failed = [
        FileFailure(name, "refused: path escapes the target directory")
        for name in diff_report.rejected
    ]
    failed.extend(
        FileFailure(f.name, f.reason, f.attempts) for f in fetch_report.failures
    )
    cancelled = diff_report.cancelled or fetch_report.cancelled

    result = SyncResult(
        success=not failed and not cancelled,
        checked=diff_report.checked,
        queued=diff_report.queued,
        downloaded=len(fetch_report.succeeded),
        failed=failed,
        bytes_transferred=(
            fetch_report.progress.cumulative_bytes if fetch_report.progress else 0
        ),
        cancelled=cancelled,
    )

    if cancelled:
        result.message = (
            f"Cancelled after downloading {result.downloaded} of {result.queued} files"
        )
    elif failed:
        result.message = f"{len(failed)} files failed; {result.downloaded} downloaded"
    elif result.queued:
        result.message = f"Downloaded {result.downloaded} files"
    else:
        result.message = "Already in sync"
    return result


__all__ = ["FileFailure", "SyncClient", "SyncResult"]
