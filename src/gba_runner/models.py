"""Define the persisted execution record and structured events emitted by the engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, cast

from .errors import InvalidRecord


class StepStatus(str, Enum):
    """Represent the status of a phase or of the whole execution."""

    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except Exception:
        return default


def _coerce_count(value: Any, key: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidRecord(f"{key}: expected a non-negative integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRecord(f"{key}: expected a non-negative integer, got {value!r}") from exc
    if number < 0:
        raise InvalidRecord(f"{key}: expected a non-negative integer, got {number}")
    return number


def _coerce_str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidRecord(f"{key}: expected a list")
    return [str(item) for item in value]


def _mapping(value: Any, key: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidRecord(f"{key}: expected a mapping")
    return value


@dataclass
class PhaseResult:
    status: StepStatus = StepStatus.PENDING
    turns: int = 0
    commit: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], key: str = "result") -> "PhaseResult":
        commit = data.get("commit")
        return cls(
            status=cast(StepStatus, _coerce_enum(StepStatus, data.get("status"), StepStatus.PENDING)),
            turns=_coerce_count(data.get("turns"), f"{key}.turns"),
            commit=str(commit) if commit else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "turns": self.turns}
        if self.commit:
            data["commit"] = self.commit
        return data


@dataclass
class Phase:
    name: str
    description: str = ""
    tasks: list[str] = field(default_factory=list)
    result: Optional[PhaseResult] = None

    @property
    def is_completed(self) -> bool:
        return self.result is not None and self.result.status == StepStatus.COMPLETED

    @property
    def turns(self) -> int:
        return self.result.turns if self.result else 0

    @classmethod
    def from_dict(cls, data: Any, index: int) -> "Phase":
        key = f"phases[{index}]"
        if not isinstance(data, dict):
            raise InvalidRecord(f"{key}: expected a mapping")
        name = data.get("name")
        if not name:
            raise InvalidRecord(f"{key}: missing name")
        raw_result = data.get("result")
        result = None
        if raw_result is not None:
            result = PhaseResult.from_dict(_mapping(raw_result, f"{key}.result"), f"{key}.result")
        return cls(
            name=str(name),
            description=str(data.get("description") or ""),
            tasks=_coerce_str_list(data.get("tasks"), f"{key}.tasks"),
            result=result,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "tasks": list(self.tasks),
        }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


@dataclass
class VerificationPlan:
    criteria: list[str] = field(default_factory=list)
    test_commands: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.criteria and not self.test_commands

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationPlan":
        return cls(
            criteria=_coerce_str_list(data.get("criteria"), "verification.criteria"),
            test_commands=_coerce_str_list(data.get("testCommands"), "verification.testCommands"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"criteria": list(self.criteria), "testCommands": list(self.test_commands)}


@dataclass
class ReviewResult:
    turns: int = 0
    issues_found: int = 0
    issues_fixed: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewResult":
        result = cls(
            turns=_coerce_count(data.get("turns"), "execution.review.turns"),
            issues_found=_coerce_count(data.get("issuesFound"), "execution.review.issuesFound"),
            issues_fixed=_coerce_count(data.get("issuesFixed"), "execution.review.issuesFixed"),
        )
        if result.issues_fixed > result.issues_found:
            raise InvalidRecord("execution.review: issuesFixed exceeds issuesFound")
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "turns": self.turns,
            "issuesFound": self.issues_found,
            "issuesFixed": self.issues_fixed,
        }


@dataclass
class VerificationResult:
    turns: int = 0
    passed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationResult":
        return cls(
            turns=_coerce_count(data.get("turns"), "execution.verification.turns"),
            passed=bool(data.get("passed", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"turns": self.turns, "passed": self.passed}


@dataclass
class Execution:
    status: StepStatus = StepStatus.IN_PROGRESS
    total_turns: int = 0
    review: ReviewResult = field(default_factory=ReviewResult)
    verification: VerificationResult = field(default_factory=VerificationResult)
    pr: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Execution":
        pr = data.get("pr")
        return cls(
            status=cast(
                StepStatus,
                _coerce_enum(StepStatus, data.get("status"), StepStatus.PENDING),
            ),
            total_turns=_coerce_count(data.get("totalTurns"), "execution.totalTurns"),
            review=ReviewResult.from_dict(_mapping(data.get("review"), "execution.review")),
            verification=VerificationResult.from_dict(
                _mapping(data.get("verification"), "execution.verification")
            ),
            pr=str(pr) if pr else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "totalTurns": self.total_turns,
            "review": self.review.to_dict(),
            "verification": self.verification.to_dict(),
        }
        if self.pr:
            data["pr"] = self.pr
        return data


@dataclass
class ExecutionRecord:
    """Store the durable plan and progress of a feature run (`phases.yaml`)."""

    feature_description: str
    phases: list[Phase] = field(default_factory=list)
    verification_plan: VerificationPlan = field(default_factory=VerificationPlan)
    execution: Optional[Execution] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ExecutionRecord":
        """Create an `ExecutionRecord` from the persisted YAML mapping.

        Args:
            data: Parsed `phases.yaml` document.

        Returns:
            The typed record. Unknown status strings coerce to `pending`.

        Raises:
            InvalidRecord: If the document is structurally invalid.
        """
        if not isinstance(data, dict):
            raise InvalidRecord("phases.yaml: expected a mapping at the document root")
        if "feature" not in data:
            raise InvalidRecord("phases.yaml: missing 'feature'")
        if "phases" not in data:
            raise InvalidRecord("phases.yaml: missing 'phases'")
        raw_phases = data.get("phases") or []
        if not isinstance(raw_phases, list):
            raise InvalidRecord("phases: expected a list")
        raw_execution = data.get("execution")
        execution = None
        if raw_execution is not None:
            execution = Execution.from_dict(_mapping(raw_execution, "execution"))
        return cls(
            feature_description=str(data.get("feature") or ""),
            phases=[Phase.from_dict(item, idx) for idx, item in enumerate(raw_phases)],
            verification_plan=VerificationPlan.from_dict(
                _mapping(data.get("verification"), "verification")
            ),
            execution=execution,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "feature": self.feature_description,
            "phases": [phase.to_dict() for phase in self.phases],
            "verification": self.verification_plan.to_dict(),
        }
        if self.execution is not None:
            data["execution"] = self.execution.to_dict()
        return data

    def completed_phases(self) -> list[tuple[int, Phase]]:
        return [(idx, phase) for idx, phase in enumerate(self.phases) if phase.is_completed]

    def recompute_total_turns(self) -> int:
        """Derive `total_turns` from phase, review and verification turns."""
        if self.execution is None:
            return 0
        total = sum(phase.turns for phase in self.phases)
        total += self.execution.review.turns + self.execution.verification.turns
        self.execution.total_turns = total
        return total

    @property
    def is_finished(self) -> bool:
        return (
            self.execution is not None
            and self.execution.status == StepStatus.COMPLETED
            and bool(self.execution.pr)
        )


@dataclass
class Issue:
    """A single review or verification finding reported by an agent."""

    severity: Severity
    file: Path
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "file": str(self.file),
            "description": self.description,
        }


@dataclass
class HookOutcome:
    name: str
    command: str
    passed: bool
    output: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False


@dataclass
class AgentOutcome:
    """Terminal result of one agent invocation."""

    turns: int = 1
    output: str = ""
    issues: list[Issue] = field(default_factory=list)
    passed: Optional[bool] = None
    resolved: Optional[int] = None
    run_id: Optional[str] = None


@dataclass
class Event:
    """Base class for structured events emitted by the run controller."""

    event_type: str = field(init=False, default="event")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event as a dictionary, converting enums and paths.

        Returns:
            A JSON-friendly dictionary representation of the event.
        """
        def _serialize(value: Any) -> Any:
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, Path):
                return str(value)
            if isinstance(value, list):
                return [_serialize(item) for item in value]
            if isinstance(value, dict):
                return {key: _serialize(val) for key, val in value.items()}
            return value

        data = cast(dict[str, Any], _serialize(asdict(self)))
        data["event_type"] = self.event_type
        return data


@dataclass
class RunStarted(Event):
    feature: str
    total_phases: int

    event_type: str = field(init=False, default="run_started")


@dataclass
class PhaseStarted(Event):
    index: int
    name: str

    event_type: str = field(init=False, default="phase_started")


@dataclass
class HookResult(Event):
    phase_index: int
    hook: str
    command: str
    passed: bool
    attempt: int

    event_type: str = field(init=False, default="hook_result")


@dataclass
class PhaseCommitted(Event):
    index: int
    commit: str

    event_type: str = field(init=False, default="phase_committed")


@dataclass
class ReviewStarted(Event):
    event_type: str = field(init=False, default="review_started")


@dataclass
class ReviewCompleted(Event):
    issues_found: int
    issues_fixed: int
    passed: bool
    unresolved: list[dict[str, Any]] = field(default_factory=list)

    event_type: str = field(init=False, default="review_completed")


@dataclass
class VerificationStarted(Event):
    event_type: str = field(init=False, default="verification_started")


@dataclass
class VerificationCompleted(Event):
    passed: bool
    details: str = ""

    event_type: str = field(init=False, default="verification_completed")


@dataclass
class PrCreated(Event):
    url: str

    event_type: str = field(init=False, default="pr_created")


@dataclass
class RunFinished(Event):
    total_turns: int
    pr: Optional[str] = None

    event_type: str = field(init=False, default="run_finished")


@dataclass
class RunError(Event):
    error_type: str
    message: str
    phase_index: Optional[int] = None
    phase_name: Optional[str] = None
    hook: Optional[str] = None
    issues: list[dict[str, Any]] = field(default_factory=list)

    event_type: str = field(init=False, default="run_error")

