"""Manifest server: builder, rebuild ticker, and HTTP routes."""

from __future__ import annotations

from .access import resolve_served_file
from .app import FileServer, ServerState, create_app
from .builder import EMPTY_MANIFEST, ManifestBuilder, ManifestCache
from .gate import AdmissionGate
from .scheduler import RebuildTicker

__all__ = [
    # Builder
    "EMPTY_MANIFEST",
    "ManifestBuilder",
    "ManifestCache",
    "RebuildTicker",
    # HTTP
    "AdmissionGate",
    "FileServer",
    "ServerState",
    "create_app",
    "resolve_served_file",
]
