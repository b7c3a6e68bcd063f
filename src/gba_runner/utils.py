"""Provide utility helpers for timestamps and run identifiers."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

_SLUG_ID_RE = re.compile(r"^\d+$")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _utc_stamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as `YYYYMMDD_HHMMSS` in UTC."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y%m%d_%H%M%S")


def _new_run_id(label: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    safe_label = re.sub(r"[^A-Za-z0-9_.-]+", "-", label).strip("-") or "run"
    return f"{stamp}-{uuid.uuid4().hex[:8]}-{safe_label}"


def _extract_slug_id(slug: str) -> str:
    """Return the numeric prefix of a feature slug (`0001_login` -> `0001`), else the slug."""
    head = slug.split("_", 1)[0]
    if head and _SLUG_ID_RE.match(head):
        return head
    return slug
