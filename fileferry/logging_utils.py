"""Logging helpers for the fileferry server and client."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Optional, Union

MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".fileferry_runtime"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra") and record.extra:
            log_entry["extra"] = record.extra
        return json.dumps(log_entry)


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[Path] = None,
    structured: bool = False,
) -> Optional[Path]:
    """Configure the ``fileferry`` logger tree.

    Args:
        level: Logging level (string name or int constant).
        log_file: Optional text log file; console only when omitted.
        structured: Also write JSON lines next to the text log (``.jsonl``).

    Returns:
        The path actually used for the text log, or None for console only.
    """
    resolved_level = _resolve_level(level)
    text_formatter = logging.Formatter(TEXT_FORMAT)

    logger = logging.getLogger("fileferry")
    _reset_handlers(logger)
    logger.setLevel(resolved_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(text_formatter)
    logger.addHandler(console_handler)

    log_path: Optional[Path] = None
    if log_file is not None:
        log_path = _resolve_log_path(Path(log_file))
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(text_formatter)
        logger.addHandler(file_handler)

        if structured:
            json_handler = RotatingFileHandler(
                log_path.with_suffix(".jsonl"),
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
            json_handler.setFormatter(JSONFormatter())
            logger.addHandler(json_handler)

    logger.propagate = False

    _silence_third_party()
    return log_path


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def _resolve_log_path(target: Path) -> Path:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    except PermissionError:
        fallback = FALLBACK_ROOT / "logs" / target.name
        fallback.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Unable to write logs under '{target.parent}'; "
            f"falling back to '{fallback.parent}'.",
            file=sys.stderr,
        )
        return fallback


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _silence_third_party() -> None:
    # uvicorn logs every request and lifecycle event; the server has its own
    # request logging middleware.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.WARNING)


__all__ = ["setup_logging", "JSONFormatter", "FALLBACK_ROOT", "TEXT_FORMAT"]
