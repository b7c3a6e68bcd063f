"""Persist execution records and event logs under `.gba/features/<slug>/`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from .constants import (
    DESIGN_SPEC_FILE,
    EVENTS_FILE,
    FEATURES_DIR,
    LOCK_SUFFIX,
    RECORD_FILE,
    RUNS_DIR,
    SPECS_DIR,
    STATE_DIR_NAME,
)
from .errors import InvalidRecord, RecordMissing
from .io_utils import FileLock, _append_jsonl, _atomic_write_yaml, _load_yaml_with_error, _read_jsonl
from .models import Event, ExecutionRecord


class RecordStore:
    """Load and atomically save `phases.yaml` for the features of one repository."""

    def __init__(self, repo_path: Path):
        self.repo_path = Path(repo_path).resolve()
        self.state_dir = self.repo_path / STATE_DIR_NAME

    def feature_dir(self, slug: str) -> Path:
        return self.state_dir / FEATURES_DIR / slug

    def record_path(self, slug: str) -> Path:
        return self.feature_dir(slug) / RECORD_FILE

    def lock_path(self, slug: str) -> Path:
        return self.feature_dir(slug) / (RECORD_FILE + LOCK_SUFFIX)

    def events_path(self, slug: str) -> Path:
        return self.feature_dir(slug) / EVENTS_FILE

    def runs_dir(self, slug: str) -> Path:
        return self.feature_dir(slug) / RUNS_DIR

    def design_spec_path(self, slug: str) -> Path:
        return self.feature_dir(slug) / SPECS_DIR / DESIGN_SPEC_FILE

    def load(self, slug: str) -> ExecutionRecord:
        """Load the execution record of a feature.

        Raises:
            RecordMissing: If the feature has never been planned.
            InvalidRecord: If the file cannot be parsed into a record.
        """
        path = self.record_path(slug)
        if not path.exists():
            raise RecordMissing(slug, path)
        with FileLock(self.lock_path(slug)):
            data, err = _load_yaml_with_error(path)
        if err:
            raise InvalidRecord(err)
        return ExecutionRecord.from_dict(data)

    def save(self, slug: str, record: ExecutionRecord) -> None:
        """Atomically persist the record; readers see the old or the new file, never a mix."""
        record.recompute_total_turns()
        payload = record.to_dict()
        with FileLock(self.lock_path(slug)):
            _atomic_write_yaml(self.record_path(slug), payload)
        logger.debug("Saved execution record for {} ({} phases)", slug, len(record.phases))

    def load_design_spec(self, slug: str) -> str:
        path = self.design_spec_path(slug)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Design spec not found at {}; continuing without it", path)
            return ""
        except OSError as exc:
            logger.warning("Unable to read design spec {}: {}", path, exc)
            return ""

    def append_event(self, slug: str, event: Event) -> None:
        _append_jsonl(self.events_path(slug), event.to_dict())

    def read_events(self, slug: str) -> list[dict[str, Any]]:
        return _read_jsonl(self.events_path(slug))
