"""Define the exception hierarchy raised by the run execution engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from .constants import (
    ERROR_TYPE_AGENT,
    ERROR_TYPE_CANCELLED,
    ERROR_TYPE_CONFIG,
    ERROR_TYPE_GIT,
    ERROR_TYPE_HOOK_EXHAUSTED,
    ERROR_TYPE_INVALID_RECORD,
    ERROR_TYPE_RECORD_MISSING,
    ERROR_TYPE_REVIEW_UNRESOLVED,
    ERROR_TYPE_VERIFICATION_FAILED,
)

if TYPE_CHECKING:
    from .models import HookOutcome


class RunnerError(Exception):
    """Base class for engine failures; `error_type` is surfaced in `run_error` events."""

    error_type = "runner_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class RecordMissing(RunnerError):
    error_type = ERROR_TYPE_RECORD_MISSING

    def __init__(self, slug: str, path: Any = None):
        super().__init__(f"Feature '{slug}' has not been planned (no {path or 'phases.yaml'})")
        self.slug = slug
        self.path = path


class InvalidRecord(RunnerError):
    error_type = ERROR_TYPE_INVALID_RECORD


class ConfigError(RunnerError):
    error_type = ERROR_TYPE_CONFIG


class AgentError(RunnerError):
    """Raised when an agent invocation cannot complete (spawn, exit code, timeout)."""

    error_type = ERROR_TYPE_AGENT


class GitError(RunnerError):
    error_type = ERROR_TYPE_GIT


class HookExhausted(RunnerError):
    """Raised when a phase still has failing hooks after every fix cycle."""

    error_type = ERROR_TYPE_HOOK_EXHAUSTED

    def __init__(
        self,
        phase_index: int,
        phase_name: str,
        failures: list["HookOutcome"],
        attempts: int,
    ):
        names = ", ".join(outcome.name for outcome in failures) or "unknown"
        super().__init__(
            f"Phase {phase_index + 1} ({phase_name}) hooks still failing after "
            f"{attempts} fix attempt(s): {names}"
        )
        self.phase_index = phase_index
        self.phase_name = phase_name
        self.failures = list(failures)
        self.attempts = attempts

    @property
    def hook(self) -> Optional[str]:
        return self.failures[0].name if self.failures else None


class VerificationFailed(RunnerError):
    error_type = ERROR_TYPE_VERIFICATION_FAILED

    def __init__(self, iterations: int, output: str = "", issues: Optional[list[Any]] = None):
        super().__init__(f"Verification failed after {iterations} iteration(s)")
        self.iterations = iterations
        self.output = output
        self.issues = list(issues or [])


class RunCancelled(RunnerError):
    error_type = ERROR_TYPE_CANCELLED

    def __init__(self, message: str = "Run cancelled"):
        super().__init__(message)


class ReviewUnresolved(RunnerError):
    """Raised when review issues remain and the config refuses to proceed."""

    error_type = ERROR_TYPE_REVIEW_UNRESOLVED

    def __init__(self, issues: list[Any], iterations: int):
        super().__init__(f"{len(issues)} review issue(s) unresolved after {iterations} iteration(s)")
        self.issues = list(issues)
        self.iterations = iterations
