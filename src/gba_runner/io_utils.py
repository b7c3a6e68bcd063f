"""Durable file primitives for feature state: locked YAML records and JSONL event logs."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import IO, Any, Optional

import yaml
from loguru import logger

from .constants import WINDOWS_LOCK_BYTES
from .utils import _now_iso

if os.name == "nt":
    import msvcrt

    def _lock_handle(handle: IO[str]) -> None:
        handle.seek(0)
        handle.truncate(WINDOWS_LOCK_BYTES)
        handle.flush()
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, WINDOWS_LOCK_BYTES)

    def _unlock_handle(handle: IO[str]) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, WINDOWS_LOCK_BYTES)

else:
    import fcntl

    def _lock_handle(handle: IO[str]) -> None:
        fcntl.flock(handle, fcntl.LOCK_EX)

    def _unlock_handle(handle: IO[str]) -> None:
        fcntl.flock(handle, fcntl.LOCK_UN)


class FileLock:
    """Exclusive lock on a sidecar file, held while a record is read or replaced."""

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        self.handle: Optional[IO[str]] = None

    def __enter__(self) -> "FileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.handle = open(self.lock_path, "w")
        _lock_handle(self.handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.handle is None:
            return
        try:
            _unlock_handle(self.handle)
        finally:
            self.handle.close()
            self.handle = None


def _load_yaml_with_error(path: Path) -> tuple[dict[str, Any], Optional[str]]:
    """
    Load a YAML mapping and return (data, error_message).

    A missing file is not an error and yields an empty mapping. Parse/IO failures
    are reported instead of raised so callers can refuse to overwrite a corrupted
    record.
    """
    if not path.exists():
        return {}, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected mapping, got {type(data).__name__}"
    return data, None


def _atomic_write_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            yaml.safe_dump(
                data,
                handle,
                sort_keys=False,
                default_flow_style=False,
                allow_unicode=True,
            )
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def _append_jsonl(path: Path, payload: dict[str, Any]) -> None:
    """Append one timestamped JSON object as a line and fsync it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    row = dict(payload)
    row.setdefault("timestamp", _now_iso())
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(row, default=str) + "\n")
        handle.flush()
        os.fsync(handle.fileno())


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    rows: list[dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                # a crash mid-append can leave a partial last line
                logger.warning("Skipping malformed line {} of {}", lineno, path)
                continue
            if isinstance(payload, dict):
                rows.append(payload)
    return rows


def _tail_text(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return "[runner] ... output truncated ...\n" + text[-max_chars:]
