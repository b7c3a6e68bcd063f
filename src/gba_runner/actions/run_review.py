"""Run the bounded review loop over the accumulated feature diff."""

from __future__ import annotations

from typing import Generator

from loguru import logger

from ..constants import PROMPT_REVIEW_FIX, PROMPT_REVIEW_TASK
from ..context import RunContext
from ..fsm import LoopStatus, ReviewState, record_review_fix, reduce_review
from ..models import Event, ReviewCompleted, ReviewStarted


def review_commit_message(slug: str, iteration: int) -> str:
    return f"fix({slug}): review iteration {iteration} fixes"


def _store_tally(ctx: RunContext, state: ReviewState) -> None:
    review = ctx.execution.review
    review.turns = state.turns
    review.issues_found = state.issues_found
    review.issues_fixed = state.issues_fixed
    ctx.persist()


def run_review_action(ctx: RunContext) -> Generator[Event, None, ReviewState]:
    """Review, fix and re-review until clean or `review.maxIterations` is reached.

    The persisted tally is the starting point, so resumed runs keep counting.
    Returns the final `ReviewState`; EXHAUSTED means issues were left unresolved.
    """
    ctx.phase_index = None
    yield ReviewStarted()
    persisted = ctx.execution.review
    state = ReviewState(
        max_iterations=ctx.config.review.max_iterations,
        turns=persisted.turns,
        issues_found=persisted.issues_found,
        issues_fixed=persisted.issues_fixed,
    )

    while True:
        ctx.check_cancelled()
        diff = ctx.git.diff(ctx.worktree, ctx.config.git.base_branch)
        if not diff.strip():
            logger.info("[Review] Empty diff; nothing to review")
            state.issues = []
            state.status = LoopStatus.PASSED
            break

        context = ctx.base_context()
        context.update(diff=diff, iteration=state.iteration + 1)
        outcome = ctx.gateway.invoke(PROMPT_REVIEW_TASK, context, cwd=ctx.worktree)
        reduce_review(state, outcome)
        _store_tally(ctx, state)
        logger.info(
            "[Review] Iteration {}/{}: {} issue(s)",
            state.iteration,
            state.max_iterations,
            len(state.issues),
        )
        if state.status != LoopStatus.NEEDS_FIX:
            break

        ctx.check_cancelled()
        fix_context = ctx.base_context()
        fix_context.update(issues=list(state.issues), iteration=state.iteration)
        fix_outcome = ctx.gateway.invoke(PROMPT_REVIEW_FIX, fix_context, cwd=ctx.worktree)
        record_review_fix(state, fix_outcome)
        ctx.commit_fixes(review_commit_message(ctx.slug, state.iteration))
        _store_tally(ctx, state)

    unresolved = state.issues if state.status == LoopStatus.EXHAUSTED else []
    if unresolved:
        logger.warning("[Review] {} issue(s) left unresolved", len(unresolved))
    yield ReviewCompleted(
        issues_found=state.issues_found,
        issues_fixed=state.issues_fixed,
        passed=state.status == LoopStatus.PASSED,
        unresolved=[issue.to_dict() for issue in unresolved],
    )
    return state
