"""Test the run controller: phase sequencing, hook retries, review/verify loops and resume."""

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import Any, Optional

import pytest
import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from gba_runner.agent import AgentGateway
from gba_runner.config import HookSpec, RunnerConfig
from gba_runner.errors import AgentError, GitError
from gba_runner.hooks import HookRunner
from gba_runner.models import AgentOutcome, HookOutcome, Issue, Severity, StepStatus
from gba_runner.orchestrator import execute_run
from gba_runner.store import RecordStore

SLUG = "0001_login"


class FakeGateway(AgentGateway):
    """Scripted agent: each prompt key maps to a queue; the last entry repeats."""

    def __init__(self, script: Optional[dict[str, list[Any]]] = None, on_call=None):
        self.script = {key: list(values) for key, values in (script or {}).items()}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.on_call = on_call

    def keys(self) -> list[str]:
        return [key for key, _ in self.calls]

    def count(self, prompt_key: str) -> int:
        return self.keys().count(prompt_key)

    def _default(self, prompt_key: str) -> AgentOutcome:
        if prompt_key.startswith("code/"):
            return AgentOutcome(turns=2, output="done")
        if prompt_key == "review/task":
            return AgentOutcome(turns=1, output="No issues found", passed=True)
        if prompt_key == "verify/task":
            return AgentOutcome(turns=1, output="VERIFICATION: PASSED", passed=True)
        return AgentOutcome(turns=1, output="fixed")

    def invoke(self, prompt_key, context, cwd=None):
        self.calls.append((prompt_key, context))
        if self.on_call is not None:
            self.on_call(prompt_key)
        queue = self.script.get(prompt_key)
        if not queue:
            return self._default(prompt_key)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeHookRunner:
    """Returns scripted pass/fail lists per `run_all` call; the last entry repeats."""

    def __init__(self, results: Optional[list[list[bool]]] = None):
        self.results = list(results or [[True]])
        self.calls = 0

    def run_all(self, hooks, working_dir):
        self.calls += 1
        flags = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return [
            HookOutcome(name=hook.name, command=hook.command, passed=flag, output="" if flag else "boom")
            for hook, flag in zip(hooks, flags)
        ]


class FakeGit:
    def __init__(self, worktree: Path, *, diff_text: str = "diff --git a/x b/x\n+change\n", pr_error=None):
        self.worktree = worktree
        self.diff_text = diff_text
        self.pr_error = pr_error
        self.commits: list[str] = []
        self.pr_calls = 0

    def ensure_worktree(self, slug):
        self.worktree.mkdir(parents=True, exist_ok=True)
        return self.worktree

    def branch_name(self, slug):
        return f"feat/0001-{slug}"

    def commit(self, working_dir, message):
        self.commits.append(message)
        return f"sha{len(self.commits):03d}"

    def head_sha(self, working_dir):
        return "headsha"

    def diff(self, worktree, base=None):
        return self.diff_text

    def commits_since_base(self, worktree, base=None):
        return [f"{idx} {msg}" for idx, msg in enumerate(self.commits)]

    def create_pr(self, metadata):
        self.pr_calls += 1
        if self.pr_error is not None:
            raise self.pr_error
        return "https://github.com/acme/app/pull/7"


def _record_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "feature": "Add login",
        "phases": [
            {"name": "Models", "description": "User model", "tasks": ["add user table"]},
            {"name": "API", "description": "Login endpoint", "tasks": ["add /login"]},
        ],
        "verification": {"criteria": ["users can log in"], "testCommands": ["pytest"]},
    }
    data.update(overrides)
    return data


def _write_record(repo: Path, data: dict[str, Any], slug: str = SLUG) -> Path:
    path = repo / ".gba" / "features" / slug / "phases.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


def _config(**hooks: Any) -> RunnerConfig:
    config = RunnerConfig()
    config.hooks.pre_commit = [HookSpec(name="lint", command="make lint")]
    for key, value in hooks.items():
        setattr(config.hooks, key, value)
    return config


def _run(
    repo: Path,
    *,
    gateway: Optional[FakeGateway] = None,
    hooks: Optional[FakeHookRunner] = None,
    git: Optional[FakeGit] = None,
    config: Optional[RunnerConfig] = None,
    store: Optional[RecordStore] = None,
    cancel_token: Optional[threading.Event] = None,
) -> list:
    return list(
        execute_run(
            SLUG,
            store=store or RecordStore(repo),
            gateway=gateway or FakeGateway(),
            hook_runner=hooks or FakeHookRunner(),
            git=git or FakeGit(repo / ".trees" / SLUG),
            config=config or _config(),
            cancel_token=cancel_token,
        )
    )


def _one_turn_coding() -> dict[str, list[Any]]:
    return {key: [AgentOutcome(turns=1, output="done")] for key in ("code/task", "code/resume", "code/hook_fix")}


def _types(events: list) -> list[str]:
    return [event.event_type for event in events]


def test_full_run_commits_each_phase_and_creates_pr(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, git=git)

    assert _types(events) == [
        "run_started",
        "phase_started",
        "hook_result",
        "phase_committed",
        "phase_started",
        "hook_result",
        "phase_committed",
        "review_started",
        "review_completed",
        "verification_started",
        "verification_completed",
        "pr_created",
        "run_finished",
    ]
    assert git.commits == ["feat(0001_login): phase 1 - Models", "feat(0001_login): phase 2 - API"]

    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.status == StepStatus.COMPLETED
    assert record.execution.pr == "https://github.com/acme/app/pull/7"
    assert [phase.result.commit for phase in record.phases] == ["sha001", "sha002"]
    # 2 phases x 2 coding turns + 1 review turn + 1 verification turn
    assert record.execution.total_turns == 6
    assert events[-1].total_turns == 6
    assert record.execution.verification.passed is True


def test_first_phase_uses_task_prompt_then_resume_prompt(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway()

    _run(tmp_path, gateway=gateway)

    code_keys = [key for key in gateway.keys() if key.startswith("code/")]
    assert code_keys == ["code/task", "code/resume"]
    resume_context = gateway.calls[1][1]
    assert [(idx, phase.name) for idx, phase in resume_context["completed"]] == [(0, "Models")]


def test_hook_failing_once_triggers_one_fix_and_counts_turns(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data(phases=[{"name": "Only", "tasks": []}]))
    gateway = FakeGateway(_one_turn_coding())
    hooks = FakeHookRunner([[False], [True]])

    events = _run(tmp_path, gateway=gateway, hooks=hooks)

    assert gateway.count("code/hook_fix") == 1
    hook_events = [event for event in events if event.event_type == "hook_result"]
    assert [(event.passed, event.attempt) for event in hook_events] == [(False, 1), (True, 2)]
    fix_context = dict(gateway.calls)["code/hook_fix"]
    assert [outcome.name for outcome in fix_context["failures"]] == ["lint"]
    assert fix_context["failures"][0].output == "boom"

    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.COMPLETED
    assert record.phases[0].result.turns == 2
    assert events[-1].event_type == "run_finished"


@pytest.mark.parametrize("max_retries", [0, 1, 3])
def test_hook_retries_are_bounded(tmp_path: Path, max_retries: int) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway(_one_turn_coding())
    hooks = FakeHookRunner([[False]])
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, gateway=gateway, hooks=hooks, git=git, config=_config(max_retries=max_retries))

    assert gateway.count("code/hook_fix") == max_retries
    assert hooks.calls == max_retries + 1
    error = events[-1]
    assert error.event_type == "run_error"
    assert error.error_type == "hook_exhausted"
    assert error.phase_index == 0
    assert error.phase_name == "Models"
    assert error.hook == "lint"
    assert git.commits == []
    assert git.pr_calls == 0

    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.FAILED
    assert record.phases[0].result.commit is None
    assert record.phases[0].result.turns == 1 + max_retries
    assert record.phases[1].result is None
    assert record.execution.status == StepStatus.FAILED


def test_verification_always_failing_halts_before_pr(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    failing = AgentOutcome(
        turns=1,
        output="VERIFICATION: FAILED",
        passed=False,
        issues=[Issue(Severity.ERROR, Path("app/login.py"), "login returns 500")],
    )
    gateway = FakeGateway({"verify/task": [failing]})
    git = FakeGit(tmp_path / ".trees" / SLUG)
    config = _config()
    config.verification.max_iterations = 3

    events = _run(tmp_path, gateway=gateway, git=git, config=config)

    assert gateway.count("verify/task") == 3
    assert gateway.count("verify/fix") == 2
    assert git.pr_calls == 0
    assert "pr_created" not in _types(events)
    completed = [event for event in events if event.event_type == "verification_completed"]
    assert len(completed) == 1 and completed[0].passed is False
    error = events[-1]
    assert error.error_type == "verification_failed"
    assert error.issues == [{"severity": "error", "file": "app/login.py", "description": "login returns 500"}]
    assert error.phase_index is None

    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.status == StepStatus.FAILED
    assert record.execution.pr is None
    assert record.execution.verification.passed is False
    assert record.execution.verification.turns == 5
    assert git.commits[-2:] == [
        "fix(0001_login): verification iteration 1 fixes",
        "fix(0001_login): verification iteration 2 fixes",
    ]


def test_resume_skips_completed_phase(tmp_path: Path) -> None:
    data = _record_data()
    data["phases"][0]["result"] = {"status": "completed", "turns": 4, "commit": "abc123"}
    data["execution"] = {
        "status": "failed",
        "totalTurns": 4,
        "review": {"turns": 0, "issuesFound": 0, "issuesFixed": 0},
        "verification": {"turns": 0, "passed": False},
    }
    _write_record(tmp_path, data)
    gateway = FakeGateway()
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, gateway=gateway, git=git)

    started = [event.index for event in events if event.event_type == "phase_started"]
    assert started == [1]
    assert [key for key in gateway.keys() if key.startswith("code/")] == ["code/resume"]
    completed = gateway.calls[0][1]["completed"]
    assert completed[0][1].result.commit == "abc123"

    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.to_dict() == {"status": "completed", "turns": 4, "commit": "abc123"}
    assert record.execution.status == StepStatus.COMPLETED
    assert record.execution.total_turns == 4 + 2 + 1 + 1


def test_rerunning_a_finished_run_is_a_no_op(tmp_path: Path) -> None:
    path = _write_record(tmp_path, _record_data())
    _run(tmp_path)
    before = path.read_text()
    gateway = FakeGateway()
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, gateway=gateway, git=git)

    assert _types(events) == ["run_started", "run_finished"]
    assert events[-1].pr == "https://github.com/acme/app/pull/7"
    assert gateway.calls == []
    assert git.commits == []
    assert path.read_text() == before


def test_total_turns_never_decrease_across_saves(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    store = RecordStore(tmp_path)
    totals: list[int] = []
    original_save = store.save

    def _spy_save(slug, record):
        original_save(slug, record)
        totals.append(record.execution.total_turns)

    store.save = _spy_save  # type: ignore[method-assign]
    issues = [Issue(Severity.WARNING, Path("a.py"), "nit")]
    gateway = FakeGateway(
        {"review/task": [AgentOutcome(turns=2, issues=issues), AgentOutcome(turns=1)]}
    )

    _run(tmp_path, gateway=gateway, hooks=FakeHookRunner([[False], [True]]), store=store)

    assert len(totals) > 5
    assert totals == sorted(totals)


def test_review_fix_count_is_capped_by_found_issues(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    issues = [
        Issue(Severity.ERROR, Path("a.py"), "bug"),
        Issue(Severity.SUGGESTION, Path("b.py"), "rename"),
    ]
    gateway = FakeGateway(
        {
            "review/task": [AgentOutcome(turns=1, issues=issues), AgentOutcome(turns=1)],
            "review/fix": [AgentOutcome(turns=3, resolved=9)],
        }
    )
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, gateway=gateway, git=git)

    review = [event for event in events if event.event_type == "review_completed"][0]
    assert review.issues_found == 2
    assert review.issues_fixed == 2
    assert review.passed is True
    assert "fix(0001_login): review iteration 1 fixes" in git.commits
    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.review.to_dict() == {"turns": 5, "issuesFound": 2, "issuesFixed": 2}


def test_unresolved_review_issues_are_surfaced_and_run_proceeds(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    issue = Issue(Severity.ERROR, Path("a.py"), "still broken")
    gateway = FakeGateway(
        {
            "review/task": [AgentOutcome(turns=1, issues=[issue])],
            "review/fix": [AgentOutcome(turns=1, resolved=0)],
        }
    )
    config = _config()
    config.review.max_iterations = 2

    events = _run(tmp_path, gateway=gateway, config=config)

    assert gateway.count("review/task") == 2
    assert gateway.count("review/fix") == 1
    review = [event for event in events if event.event_type == "review_completed"][0]
    assert review.passed is False
    assert review.issues_found == 2
    assert review.issues_fixed == 0
    assert review.unresolved == [issue.to_dict()]
    assert events[-1].event_type == "run_finished"


def test_unresolved_review_halts_when_not_allowed_to_proceed(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    issue = Issue(Severity.ERROR, Path("a.py"), "still broken")
    gateway = FakeGateway({"review/task": [AgentOutcome(turns=1, issues=[issue])]})
    git = FakeGit(tmp_path / ".trees" / SLUG)
    config = _config()
    config.review.max_iterations = 1
    config.review.proceed_on_unresolved = False

    events = _run(tmp_path, gateway=gateway, git=git, config=config)

    assert gateway.count("review/fix") == 0
    assert gateway.count("verify/task") == 0
    assert events[-1].error_type == "review_unresolved"
    assert events[-1].issues == [issue.to_dict()]
    assert git.pr_calls == 0
    assert RecordStore(tmp_path).load(SLUG).execution.status == StepStatus.FAILED


def test_empty_diff_skips_review_agent(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway()

    events = _run(tmp_path, gateway=gateway, git=FakeGit(tmp_path / ".trees" / SLUG, diff_text="  \n"))

    assert gateway.count("review/task") == 0
    review = [event for event in events if event.event_type == "review_completed"][0]
    assert review.passed is True
    assert events[-1].event_type == "run_finished"


def test_empty_verification_plan_passes_without_agent(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data(verification={"criteria": [], "testCommands": []}))
    gateway = FakeGateway()

    events = _run(tmp_path, gateway=gateway)

    assert gateway.count("verify/task") == 0
    verification = [event for event in events if event.event_type == "verification_completed"][0]
    assert verification.passed is True
    assert RecordStore(tmp_path).load(SLUG).execution.verification.passed is True


def test_disabled_loops_are_skipped(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway()
    config = _config()
    config.review.enabled = False
    config.verification.enabled = False

    events = _run(tmp_path, gateway=gateway, config=config)

    types = _types(events)
    assert "review_started" not in types
    assert "verification_started" not in types
    assert types[-2:] == ["pr_created", "run_finished"]
    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.review.to_dict() == {"turns": 0, "issuesFound": 0, "issuesFixed": 0}
    assert record.execution.verification.to_dict() == {"turns": 0, "passed": False}


def test_agent_error_marks_phase_failed(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway(
        {"code/resume": [AgentError("quota exceeded")]}
    )

    events = _run(tmp_path, gateway=gateway)

    error = events[-1]
    assert error.event_type == "run_error"
    assert error.error_type == "agent_error"
    assert error.phase_index == 1
    assert error.phase_name == "API"
    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.COMPLETED
    assert record.phases[1].result.status == StepStatus.FAILED
    assert record.phases[1].result.commit is None
    assert record.execution.status == StepStatus.FAILED


def test_pr_failure_keeps_completed_work(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    git = FakeGit(tmp_path / ".trees" / SLUG, pr_error=GitError("gh: not logged in"))

    events = _run(tmp_path, git=git)

    assert git.pr_calls == 1
    assert events[-1].error_type == "git_error"
    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.status == StepStatus.FAILED
    assert record.execution.pr is None
    assert all(phase.result.status == StepStatus.COMPLETED for phase in record.phases)
    assert record.execution.verification.passed is True


def test_auto_commit_disabled_records_head(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    git = FakeGit(tmp_path / ".trees" / SLUG)
    config = _config()
    config.git.auto_commit = False

    _run(tmp_path, git=git, config=config)

    assert git.commits == []
    record = RecordStore(tmp_path).load(SLUG)
    assert [phase.result.commit for phase in record.phases] == ["headsha", "headsha"]


def test_missing_record_emits_single_error(tmp_path: Path) -> None:
    events = _run(tmp_path)

    assert _types(events) == ["run_error"]
    assert events[0].error_type == "record_missing"
    assert not (tmp_path / ".gba" / "features" / SLUG).exists()


def test_invalid_record_is_reported_and_left_untouched(tmp_path: Path) -> None:
    path = _write_record(tmp_path, _record_data())
    path.write_text("feature: [unclosed\n")

    events = _run(tmp_path)

    assert _types(events) == ["run_error"]
    assert events[0].error_type == "invalid_record"
    assert path.read_text() == "feature: [unclosed\n"


def test_cancel_mid_phase_keeps_progress_and_marks_nothing_failed(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    token = threading.Event()

    def _cancel_on_second_phase(prompt_key: str) -> None:
        if prompt_key == "code/resume":
            token.set()

    gateway = FakeGateway(on_call=_cancel_on_second_phase)

    events = _run(tmp_path, gateway=gateway, cancel_token=token)

    error = events[-1]
    assert error.error_type == "cancelled"
    assert error.phase_index == 1
    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.COMPLETED
    assert record.phases[1].result.status == StepStatus.IN_PROGRESS
    assert record.execution.status == StepStatus.IN_PROGRESS

    resumed = _run(tmp_path)
    assert [event.index for event in resumed if event.event_type == "phase_started"] == [1]
    assert resumed[-1].event_type == "run_finished"


def test_events_are_appended_to_jsonl(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())

    events = _run(tmp_path)

    path = tmp_path / ".gba" / "features" / SLUG / "events.jsonl"
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["event_type"] for line in lines] == _types(events)
    assert all("timestamp" in line for line in lines)


def test_nothing_follows_terminal_event(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())

    events = _run(tmp_path, hooks=FakeHookRunner([[False]]), config=_config(max_retries=1))

    terminal = [idx for idx, event in enumerate(events) if event.event_type in {"run_error", "run_finished"}]
    assert terminal == [len(events) - 1]


def test_undecodable_hook_output_is_a_hook_failure(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    config = _config(max_retries=0)
    config.hooks.pre_commit = [HookSpec(name="binary", command="printf '\\377'; exit 1")]

    events = _run(tmp_path, gateway=FakeGateway(_one_turn_coding()), hooks=HookRunner(), config=config)

    assert _types(events)[-1] == "run_error"
    assert events[-1].error_type == "hook_exhausted"
    assert events[-1].hook == "binary"
    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.FAILED
    assert record.phases[0].result.turns == 1
    assert record.execution.status == StepStatus.FAILED


def test_unexpected_error_ends_stream_with_run_error(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())
    gateway = FakeGateway({"code/resume": [OSError("No space left on device")]})

    events = _run(tmp_path, gateway=gateway)

    error = events[-1]
    assert error.event_type == "run_error"
    assert error.error_type == "unexpected"
    assert "No space left on device" in error.message
    assert error.phase_index == 1
    record = RecordStore(tmp_path).load(SLUG)
    assert record.phases[0].result.status == StepStatus.COMPLETED
    assert record.phases[1].result.status == StepStatus.FAILED
    assert record.execution.status == StepStatus.FAILED
    lines = (tmp_path / ".gba" / "features" / SLUG / "events.jsonl").read_text().splitlines()
    assert json.loads(lines[-1])["error_type"] == "unexpected"


class FailingSaveStore(RecordStore):
    """Store whose saves start failing after a number of successful ones."""

    def __init__(self, repo_path: Path, ok_saves: int):
        super().__init__(repo_path)
        self.ok_saves = ok_saves

    def save(self, slug, record):
        if self.ok_saves <= 0:
            raise OSError("read-only file system")
        self.ok_saves -= 1
        super().save(slug, record)


def test_failing_save_still_emits_terminal_event(tmp_path: Path) -> None:
    _write_record(tmp_path, _record_data())

    events = _run(tmp_path, store=FailingSaveStore(tmp_path, ok_saves=2))

    assert events[-1].event_type == "run_error"
    assert events[-1].error_type == "unexpected"
    assert "read-only file system" in events[-1].message


def test_recorded_pr_skips_review_and_verification(tmp_path: Path) -> None:
    data = _record_data()
    for phase in data["phases"]:
        phase["result"] = {"status": "completed", "turns": 1, "commit": "abc"}
    data["execution"] = {
        "status": "inProgress",
        "totalTurns": 4,
        "review": {"turns": 1, "issuesFound": 0, "issuesFixed": 0},
        "verification": {"turns": 1, "passed": True},
        "pr": "https://github.com/acme/app/pull/7",
    }
    _write_record(tmp_path, data)
    gateway = FakeGateway()
    git = FakeGit(tmp_path / ".trees" / SLUG)

    events = _run(tmp_path, gateway=gateway, git=git)

    assert _types(events) == ["run_started", "run_finished"]
    assert events[-1].pr == "https://github.com/acme/app/pull/7"
    assert gateway.calls == []
    assert git.pr_calls == 0
    record = RecordStore(tmp_path).load(SLUG)
    assert record.execution.status == StepStatus.COMPLETED
    assert record.execution.total_turns == 4
