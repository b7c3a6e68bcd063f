"""Drive a feature run: phases, review, verification and PR creation, with resume."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Generator, Iterator, Optional

from loguru import logger

from .actions.run_phase import run_phase_action
from .actions.run_review import run_review_action
from .actions.run_verification import run_verification_action
from .agent import AgentGateway, CommandAgentGateway
from .config import RunnerConfig, load_project_config
from .constants import BLOCKING_RESOLUTION_STEPS, ERROR_TYPE_UNEXPECTED
from .context import RunContext
from .errors import (
    HookExhausted,
    ReviewUnresolved,
    RunCancelled,
    RunnerError,
    VerificationFailed,
)
from .fsm import LoopStatus, resume_index
from .git_utils import GitOps, PrMetadata
from .hooks import HookRunner
from .logging_utils import summarize_event
from .models import (
    Event,
    Execution,
    ExecutionRecord,
    PrCreated,
    RunError,
    RunFinished,
    RunStarted,
    StepStatus,
)
from .store import RecordStore

_PR_TITLE_MAX_CHARS = 72


def _pr_title(slug: str, record: ExecutionRecord) -> str:
    summary = (record.feature_description or "").strip().splitlines()
    headline = summary[0].strip() if summary else slug
    title = f"feat({slug}): {headline}"
    if len(title) > _PR_TITLE_MAX_CHARS:
        title = title[: _PR_TITLE_MAX_CHARS - 1].rstrip() + "…"
    return title


def _build_pr_body(record: ExecutionRecord, commits: list[str]) -> str:
    execution = record.execution or Execution()
    lines = ["## Summary", "", record.feature_description.strip() or "(no description)", "", "## Phases", ""]
    for idx, phase in enumerate(record.phases):
        commit = phase.result.commit[:12] if phase.result and phase.result.commit else "-"
        lines.append(f"{idx + 1}. **{phase.name}** ({commit}): {phase.description}".rstrip(": "))
    lines += [
        "",
        "## Review",
        "",
        f"- Issues found: {execution.review.issues_found}",
        f"- Issues fixed: {execution.review.issues_fixed}",
        "",
        "## Verification",
        "",
        f"- Passed: {'yes' if execution.verification.passed else 'no'}",
    ]
    for criterion in record.verification_plan.criteria:
        lines.append(f"- [x] {criterion}")
    if commits:
        lines += ["", "## Commits", ""]
        lines += [f"- {commit}" for commit in commits]
    return "\n".join(lines) + "\n"


def _run_error_event(exc: Exception, ctx: Optional[RunContext]) -> RunError:
    phase_index: Optional[int] = None
    phase_name: Optional[str] = None
    hook: Optional[str] = None
    issues: list[dict[str, Any]] = []
    if isinstance(exc, HookExhausted):
        phase_index, phase_name, hook = exc.phase_index, exc.phase_name, exc.hook
    elif ctx is not None and ctx.phase_index is not None:
        phase_index = ctx.phase_index
        phase_name = ctx.record.phases[phase_index].name
    if isinstance(exc, (ReviewUnresolved, VerificationFailed)):
        issues = [issue.to_dict() for issue in exc.issues]
    if isinstance(exc, RunnerError):
        error_type, message = exc.error_type, str(exc)
    else:
        error_type, message = ERROR_TYPE_UNEXPECTED, f"{exc.__class__.__name__}: {exc}"
    return RunError(
        error_type=error_type,
        message=message,
        phase_index=phase_index,
        phase_name=phase_name,
        hook=hook,
        issues=issues,
    )


def _persist_failure(store: RecordStore, slug: str, record: ExecutionRecord) -> None:
    if record.execution is not None:
        record.execution.status = StepStatus.FAILED
    try:
        store.save(slug, record)
    except Exception as exc:
        logger.error("Unable to persist failed status for {}: {}", slug, exc)


def execute_run(
    slug: str,
    *,
    store: RecordStore,
    gateway: AgentGateway,
    hook_runner: HookRunner,
    git: GitOps,
    config: RunnerConfig,
    cancel_token: Optional[threading.Event] = None,
) -> Iterator[Event]:
    """Run (or resume) a planned feature and yield its events.

    The stream ends with exactly one `run_finished` or `run_error`. Completed phases
    are never re-executed, and every stage persists the record before moving on.

    Args:
        slug: Feature slug under `.gba/features/`.
        store: Execution record store.
        gateway: Agent capability.
        hook_runner: Pre-commit hook runner.
        git: Git operations for the feature worktree.
        config: Resolved runner configuration.
        cancel_token: Optional event; when set, the run stops before the next agent
            call or hook run.
    """

    def _emit(event: Event) -> Event:
        if store.feature_dir(slug).is_dir():
            try:
                store.append_event(slug, event)
            except OSError as exc:
                logger.warning("Unable to append {} to the event log: {}", event.event_type, exc)
        logger.info("Event: {}", summarize_event(event))
        return event

    ctx: Optional[RunContext] = None
    try:
        record = store.load(slug)
    except (RunnerError, OSError) as exc:
        logger.error("Unable to load feature {}: {}", slug, exc)
        yield _emit(_run_error_event(exc, None))
        return

    yield _emit(RunStarted(feature=record.feature_description, total_phases=len(record.phases)))
    if record.is_finished:
        logger.info("Feature {} already completed with PR {}", slug, record.execution.pr)
        yield _emit(RunFinished(total_turns=record.recompute_total_turns(), pr=record.execution.pr))
        return

    try:
        if record.execution is None:
            record.execution = Execution(status=StepStatus.IN_PROGRESS)
        else:
            record.execution.status = StepStatus.IN_PROGRESS
        store.save(slug, record)

        if record.execution.pr:
            logger.info("PR {} already recorded for {}; finishing", record.execution.pr, slug)
            record.execution.status = StepStatus.COMPLETED
            store.save(slug, record)
            yield _emit(RunFinished(total_turns=record.execution.total_turns, pr=record.execution.pr))
            return

        worktree = git.ensure_worktree(slug)
        ctx = RunContext(
            slug=slug,
            record=record,
            store=store,
            gateway=gateway,
            hook_runner=hook_runner,
            git=git,
            config=config,
            worktree=worktree,
            design=store.load_design_spec(slug),
            cancel_token=cancel_token,
        )

        start = resume_index(record)
        if start is None:
            logger.info("All {} phase(s) already completed", len(record.phases))
            start = len(record.phases)
        elif start > 0:
            logger.info("Resuming {} at phase {}", slug, start + 1)
        for index in range(start, len(record.phases)):
            phase = record.phases[index]
            if phase.is_completed:
                logger.info("[Phase {}] Already completed ({}); skipping", index + 1, phase.name)
                continue
            for event in run_phase_action(ctx, index):
                yield _emit(event)

        if config.review.enabled:
            review_state = yield from _emit_all(run_review_action(ctx), _emit)
            if review_state.status == LoopStatus.EXHAUSTED and not config.review.proceed_on_unresolved:
                raise ReviewUnresolved(review_state.issues, review_state.iteration)
        else:
            logger.info("[Review] Disabled; skipping")

        if config.verification.enabled:
            verify_state = yield from _emit_all(run_verification_action(ctx), _emit)
            if verify_state.status != LoopStatus.PASSED:
                raise VerificationFailed(verify_state.iteration, verify_state.output, verify_state.issues)
        else:
            logger.info("[Verify] Disabled; skipping")

        execution = ctx.execution
        if not execution.pr:
            ctx.check_cancelled()
            commits = git.commits_since_base(worktree)
            metadata = PrMetadata(
                slug=slug,
                title=_pr_title(slug, record),
                body=_build_pr_body(record, commits),
                branch=git.branch_name(slug),
                base=config.git.base_branch,
                worktree=worktree,
                commits=commits,
            )
            execution.pr = git.create_pr(metadata)
            ctx.persist()
            yield _emit(PrCreated(url=execution.pr))

        execution.status = StepStatus.COMPLETED
        ctx.persist()
        yield _emit(RunFinished(total_turns=execution.total_turns, pr=execution.pr))
    except RunCancelled as exc:
        logger.warning("Run of {} cancelled; persisted progress is kept", slug)
        yield _emit(_run_error_event(exc, ctx))
    except RunnerError as exc:
        logger.error("Run of {} failed ({}): {}", slug, exc.error_type, exc)
        for step in BLOCKING_RESOLUTION_STEPS.get(exc.error_type, []):
            logger.info("Next step: {}", step)
        _persist_failure(store, slug, record)
        yield _emit(_run_error_event(exc, ctx))
    except Exception as exc:
        logger.exception("Run of {} stopped by an unexpected error", slug)
        for step in BLOCKING_RESOLUTION_STEPS[ERROR_TYPE_UNEXPECTED]:
            logger.info("Next step: {}", step)
        _persist_failure(store, slug, record)
        yield _emit(_run_error_event(exc, ctx))


def _emit_all(
    stage: Generator[Event, None, Any],
    emit: Callable[[Event], Event],
) -> Generator[Event, None, Any]:
    """Re-yield a stage's events through `emit` and pass its return value through."""
    while True:
        try:
            event = next(stage)
        except StopIteration as stop:
            return stop.value
        yield emit(event)


def run_feature(
    repo_path: Path,
    slug: str,
    *,
    config: Optional[RunnerConfig] = None,
    gateway: Optional[AgentGateway] = None,
    cancel_token: Optional[threading.Event] = None,
    on_event: Optional[Callable[[Event], None]] = None,
) -> list[Event]:
    """Run a feature with default collaborators built from `.gba/config.yaml`.

    Returns:
        Every event of the run, ending with `run_finished` or `run_error`.

    Raises:
        ConfigError: If the project config cannot be loaded.
    """
    repo_path = Path(repo_path).resolve()
    config = config or load_project_config(repo_path)
    store = RecordStore(repo_path)
    if gateway is None:
        gateway = CommandAgentGateway(config.agent, store.runs_dir(slug))
    events: list[Event] = []
    for event in execute_run(
        slug,
        store=store,
        gateway=gateway,
        hook_runner=HookRunner(timeout_seconds=config.hooks.timeout_seconds),
        git=GitOps(repo_path, config.git),
        config=config,
        cancel_token=cancel_token,
    ):
        events.append(event)
        if on_event is not None:
            on_event(event)
    return events
