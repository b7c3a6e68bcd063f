"""Configure loguru sinks and summarize engine events for logs and the console."""

from __future__ import annotations

import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import LOG_RETENTION_DAYS, LOGS_DIR, STATE_DIR_NAME
from .utils import _utc_stamp

STDERR_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Install the coloured stderr sink and, optionally, a JSON file sink.

    Args:
        level: Minimum level for the stderr sink.
        log_file: When given, every DEBUG+ record is also written there as JSON lines.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=STDERR_FORMAT)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_file), level="DEBUG", serialize=True, enqueue=False)


def build_log_path(repo_path: Path, slug: str, moment: Optional[datetime] = None) -> Path:
    return repo_path / STATE_DIR_NAME / LOGS_DIR / slug / f"{_utc_stamp(moment)}.log"


def cleanup_old_logs(
    repo_path: Path,
    retention_days: int = LOG_RETENTION_DAYS,
    now: Optional[float] = None,
) -> list[Path]:
    """Delete `.log` files older than the retention window, then empty slug directories.

    Returns:
        The removed log files.
    """
    logs_root = repo_path / STATE_DIR_NAME / LOGS_DIR
    if not logs_root.is_dir():
        return []
    cutoff = (now if now is not None else time.time()) - retention_days * 86400
    removed: list[Path] = []
    for path in sorted(logs_root.rglob("*.log")):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except OSError as exc:
            logger.warning("Unable to remove old log {}: {}", path, exc)
    for directory in sorted((p for p in logs_root.iterdir() if p.is_dir()), reverse=True):
        try:
            if not any(directory.iterdir()):
                directory.rmdir()
        except OSError as exc:
            logger.warning("Unable to remove log directory {}: {}", directory, exc)
    if removed:
        logger.debug("Removed {} old log file(s)", len(removed))
    return removed


def summarize_event(event: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of an event object.

    Args:
        event: Event model instance (or None).

    Returns:
        A dictionary suitable for logging or display.
    """
    if event is None:
        return {"event": None}
    event_type = getattr(event, "event_type", event.__class__.__name__)
    d: dict[str, Any] = {"event": event_type}

    if event_type == "run_started":
        d["feature"] = _clip(getattr(event, "feature", ""), 120)
        d["total_phases"] = getattr(event, "total_phases", 0)
    elif event_type in {"phase_started", "phase_committed"}:
        d["phase"] = getattr(event, "index", 0) + 1
        if event_type == "phase_started":
            d["name"] = getattr(event, "name", "")
        else:
            d["commit"] = str(getattr(event, "commit", ""))[:12]
    elif event_type == "hook_result":
        d["phase"] = getattr(event, "phase_index", 0) + 1
        d["hook"] = getattr(event, "hook", "")
        d["passed"] = bool(getattr(event, "passed", False))
        d["attempt"] = getattr(event, "attempt", 0)
    elif event_type == "review_completed":
        d["issues_found"] = getattr(event, "issues_found", 0)
        d["issues_fixed"] = getattr(event, "issues_fixed", 0)
        d["passed"] = bool(getattr(event, "passed", False))
        d["unresolved_n"] = len(getattr(event, "unresolved", []) or [])
    elif event_type == "verification_completed":
        d["passed"] = bool(getattr(event, "passed", False))
        d["details"] = _clip(getattr(event, "details", ""), 240)
    elif event_type == "pr_created":
        d["url"] = getattr(event, "url", "")
    elif event_type == "run_finished":
        d["total_turns"] = getattr(event, "total_turns", 0)
        d["pr"] = getattr(event, "pr", None)
    elif event_type == "run_error":
        d["error_type"] = getattr(event, "error_type", None)
        d["message"] = _clip(getattr(event, "message", ""), 240)
        phase_index = getattr(event, "phase_index", None)
        if phase_index is not None:
            d["phase"] = phase_index + 1
        hook = getattr(event, "hook", None)
        if hook:
            d["hook"] = hook
        d["issues_n"] = len(getattr(event, "issues", []) or [])
    return d


def _clip(value: Any, limit: int) -> str:
    text = str(value or "").strip()
    return (text[:limit] + "…") if len(text) > limit else text
