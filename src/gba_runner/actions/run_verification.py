"""Run the bounded verification loop against the feature's verification plan."""

from __future__ import annotations

from typing import Generator

from loguru import logger

from ..constants import PROMPT_VERIFY_FIX, PROMPT_VERIFY_TASK
from ..context import RunContext
from ..fsm import LoopStatus, VerifyState, record_verify_fix, reduce_verify
from ..models import Event, VerificationCompleted, VerificationStarted

_DETAILS_MAX_CHARS = 2000


def verification_commit_message(slug: str, iteration: int) -> str:
    return f"fix({slug}): verification iteration {iteration} fixes"


def _details(state: VerifyState) -> str:
    if state.status == LoopStatus.PASSED and not state.output:
        return "Verification passed"
    text = state.output.strip()
    if len(text) > _DETAILS_MAX_CHARS:
        text = text[:_DETAILS_MAX_CHARS] + "…"
    return text


def _store_result(ctx: RunContext, state: VerifyState) -> None:
    verification = ctx.execution.verification
    verification.turns = state.turns
    verification.passed = state.status == LoopStatus.PASSED
    ctx.persist()


def run_verification_action(ctx: RunContext) -> Generator[Event, None, VerifyState]:
    """Verify, fix and re-verify until passed or `verification.maxIterations` is reached.

    Each iteration is one `verify/task` call; failed non-final iterations are followed
    by one `verify/fix` call. A plan without criteria or test commands passes at once.
    """
    ctx.phase_index = None
    yield VerificationStarted()
    plan = ctx.record.verification_plan
    state = VerifyState(
        max_iterations=ctx.config.verification.max_iterations,
        turns=ctx.execution.verification.turns,
    )

    if plan.is_empty:
        logger.info("[Verify] No criteria or test commands; skipping")
        state.status = LoopStatus.PASSED
        _store_result(ctx, state)
        yield VerificationCompleted(passed=True, details="No verification criteria or test commands")
        return state

    while True:
        ctx.check_cancelled()
        context = ctx.base_context()
        context.update(iteration=state.iteration + 1)
        outcome = ctx.gateway.invoke(PROMPT_VERIFY_TASK, context, cwd=ctx.worktree)
        reduce_verify(state, outcome)
        _store_result(ctx, state)
        logger.info(
            "[Verify] Iteration {}/{}: {}",
            state.iteration,
            state.max_iterations,
            "passed" if state.status == LoopStatus.PASSED else "failed",
        )
        if state.status != LoopStatus.NEEDS_FIX:
            break

        ctx.check_cancelled()
        fix_context = ctx.base_context()
        fix_context.update(
            issues=list(state.issues),
            verifier_output=state.output,
            iteration=state.iteration,
        )
        fix_outcome = ctx.gateway.invoke(PROMPT_VERIFY_FIX, fix_context, cwd=ctx.worktree)
        record_verify_fix(state, fix_outcome)
        ctx.commit_fixes(verification_commit_message(ctx.slug, state.iteration))
        _store_result(ctx, state)

    yield VerificationCompleted(passed=state.status == LoopStatus.PASSED, details=_details(state))
    return state
