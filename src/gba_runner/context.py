"""Hold the collaborators and mutable state shared by the stages of one run."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .agent import AgentGateway
from .config import RunnerConfig
from .errors import RunCancelled
from .git_utils import GitOps
from .hooks import HookRunner
from .models import Execution, ExecutionRecord
from .store import RecordStore


@dataclass
class RunContext:
    slug: str
    record: ExecutionRecord
    store: RecordStore
    gateway: AgentGateway
    hook_runner: HookRunner
    git: GitOps
    config: RunnerConfig
    worktree: Path
    design: str = ""
    cancel_token: Optional[threading.Event] = None
    phase_index: Optional[int] = None

    @property
    def execution(self) -> Execution:
        if self.record.execution is None:
            self.record.execution = Execution()
        return self.record.execution

    def persist(self) -> None:
        self.store.save(self.slug, self.record)

    def check_cancelled(self) -> None:
        if self.cancel_token is not None and self.cancel_token.is_set():
            raise RunCancelled()

    def commit_fixes(self, message: str) -> Optional[str]:
        if not self.config.git.auto_commit:
            return None
        return self.git.commit(self.worktree, message)

    def base_context(self) -> dict[str, Any]:
        """Context shared by every prompt of this run."""
        return {
            "slug": self.slug,
            "feature": self.record.feature_description,
            "design": self.design,
            "verification_plan": self.record.verification_plan,
            "total_phases": len(self.record.phases),
        }
