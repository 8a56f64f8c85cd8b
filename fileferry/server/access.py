"""Path-safety and size checks for file requests."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import FileNotFound, PathTraversalRejected, SizeLimitExceeded
from ..manifest import is_unsafe_name

logger = logging.getLogger("fileferry.server.access")


def resolve_served_file(
    root: Path,
    relative_path: str,
    *,
    traversal_protection: bool = True,
    max_file_size: int = 0,
) -> Path:
    """Map a request path onto a file inside ``root``.

    Raises:
        PathTraversalRejected: lexically unsafe path, or the canonical path
            escapes the canonical root.
        FileNotFound: nothing servable at that path.
        SizeLimitExceeded: the file is larger than ``max_file_size`` (when > 0).
    """
    if traversal_protection and is_unsafe_name(relative_path):
        logger.warning("Path traversal attempt blocked: %s", relative_path)
        raise PathTraversalRejected(relative_path)

    canonical_root = root.resolve()
    try:
        candidate = (canonical_root / relative_path).resolve()
    except (OSError, ValueError) as exc:
        logger.warning("Unresolvable request path %r: %s", relative_path, exc)
        raise FileNotFound(relative_path) from exc
    if candidate != canonical_root and canonical_root not in candidate.parents:
        logger.warning("Path traversal attempt blocked: %s (normalized check)", relative_path)
        raise PathTraversalRejected(relative_path)

    if not relative_path or not candidate.is_file():
        logger.debug("File not found: %s", relative_path)
        raise FileNotFound(relative_path)

    if max_file_size > 0:
        try:
            size = candidate.stat().st_size
        except OSError as exc:
            logger.debug("File vanished before it could be sized: %s (%s)", relative_path, exc)
            raise FileNotFound(relative_path) from exc
        if size > max_file_size:
            logger.warning("File too large: %s (%d bytes)", relative_path, size)
            raise SizeLimitExceeded(relative_path, size, max_file_size)

    return candidate


__all__ = ["resolve_served_file"]
