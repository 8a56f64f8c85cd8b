"""Sync client: manifest fetch, diff engine, and fetch pool."""

from __future__ import annotations

from .diff import DiffEngine, DiffReport, local_target
from .fetcher import ManifestFetcher
from .pool import FetchPool, FetchReport
from .progress import ProgressReporter, ProgressSnapshot
from .sync import FileFailure, SyncClient, SyncResult
from .transport import Transport, UrllibTransport
from .work import WorkItem, WorkQueue, WorkState

__all__ = [
    # Phases
    "ManifestFetcher",
    "DiffEngine",
    "DiffReport",
    "FetchPool",
    "FetchReport",
    "local_target",
    # Work items
    "WorkItem",
    "WorkQueue",
    "WorkState",
    # Progress
    "ProgressReporter",
    "ProgressSnapshot",
    # Client
    "FileFailure",
    "SyncClient",
    "SyncResult",
    "Transport",
    "UrllibTransport",
]
