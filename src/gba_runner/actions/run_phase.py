"""Run one phase: coding, the bounded hook-fix cycle, then the phase commit."""

from __future__ import annotations

from typing import Iterator

from loguru import logger

from ..constants import PROMPT_HOOK_FIX
from ..context import RunContext
from ..errors import HookExhausted, RunCancelled
from ..fsm import HookCycleState, LoopStatus, coding_prompt_key, record_hook_fix, reduce_hooks
from ..models import Event, HookResult, PhaseCommitted, PhaseResult, PhaseStarted, StepStatus


def phase_commit_message(slug: str, index: int, name: str) -> str:
    return f"feat({slug}): phase {index + 1} - {name}"


def run_phase_action(ctx: RunContext, index: int) -> Iterator[Event]:
    """Execute phase `index` and persist its result.

    Yields `phase_started`, one `hook_result` per hook per attempt, and
    `phase_committed` on success. Any failure other than cancellation leaves the
    phase marked failed with the turns spent so far.

    Raises:
        HookExhausted: Hooks still fail after `hooks.maxRetries` fix invocations.
        AgentError: An agent call failed; the phase is marked failed.
        GitError: Committing failed; the phase is marked failed.
        RunCancelled: The cancel token was set; the phase is left as persisted.
    """
    record = ctx.record
    phase = record.phases[index]
    ctx.phase_index = index
    hooks = ctx.config.hooks.pre_commit
    turns = phase.turns

    logger.info("[Phase {}] Starting {}", index + 1, phase.name)
    yield PhaseStarted(index=index, name=phase.name)
    phase.result = PhaseResult(status=StepStatus.IN_PROGRESS, turns=turns)
    ctx.persist()

    try:
        ctx.check_cancelled()
        prompt_key = coding_prompt_key(record)
        context = ctx.base_context()
        context.update(
            phase=phase,
            phase_index=index,
            completed=record.completed_phases(),
        )
        outcome = ctx.gateway.invoke(prompt_key, context, cwd=ctx.worktree)
        turns += outcome.turns

        state = HookCycleState(max_retries=ctx.config.hooks.max_retries)
        while True:
            outcomes = []
            if hooks:
                ctx.check_cancelled()
                outcomes = ctx.hook_runner.run_all(hooks, ctx.worktree)
            reduce_hooks(state, outcomes)
            for hook_outcome in outcomes:
                yield HookResult(
                    phase_index=index,
                    hook=hook_outcome.name,
                    command=hook_outcome.command,
                    passed=hook_outcome.passed,
                    attempt=state.attempt,
                )
            if state.status == LoopStatus.PASSED:
                break
            if state.status == LoopStatus.EXHAUSTED:
                logger.error(
                    "[Phase {}] Hooks still failing after {} fix attempt(s)",
                    index + 1,
                    state.retries,
                )
                phase.result = PhaseResult(status=StepStatus.FAILED, turns=turns)
                raise HookExhausted(index, phase.name, state.failures, state.retries)

            ctx.check_cancelled()
            logger.warning(
                "[Phase {}] {} hook(s) failed; requesting fix {}/{}",
                index + 1,
                len(state.failures),
                state.retries + 1,
                state.max_retries,
            )
            fix_context = ctx.base_context()
            fix_context.update(
                phase=phase,
                phase_index=index,
                failures=list(state.failures),
                attempt=state.retries + 1,
                max_retries=state.max_retries,
            )
            fix_outcome = ctx.gateway.invoke(PROMPT_HOOK_FIX, fix_context, cwd=ctx.worktree)
            turns += fix_outcome.turns
            record_hook_fix(state)

        commit = None
        if ctx.config.git.auto_commit:
            commit = ctx.git.commit(ctx.worktree, phase_commit_message(ctx.slug, index, phase.name))
        if not commit:
            commit = ctx.git.head_sha(ctx.worktree)
    except (HookExhausted, RunCancelled):
        raise
    except Exception as exc:
        logger.error("[Phase {}] Failed: {}", index + 1, exc)
        phase.result = PhaseResult(status=StepStatus.FAILED, turns=turns)
        raise

    phase.result = PhaseResult(status=StepStatus.COMPLETED, turns=turns, commit=commit)
    ctx.persist()
    ctx.phase_index = None
    logger.info("[Phase {}] Committed {} ({} turn(s))", index + 1, commit[:12], turns)
    yield PhaseCommitted(index=index, commit=commit)
