"""Pure reducers for the bounded hook, review and verification loops."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .constants import PROMPT_CODE_RESUME, PROMPT_CODE_TASK
from .models import AgentOutcome, ExecutionRecord, HookOutcome, Issue


class LoopStatus(str, Enum):
    RUNNING = "running"
    NEEDS_FIX = "needs_fix"
    PASSED = "passed"
    EXHAUSTED = "exhausted"


@dataclass
class HookCycleState:
    """Track one phase's HookRetry(n) state; `retries` counts hook-fix invocations."""

    max_retries: int
    retries: int = 0
    attempt: int = 0
    status: LoopStatus = LoopStatus.RUNNING
    failures: list[HookOutcome] = field(default_factory=list)


def reduce_hooks(state: HookCycleState, outcomes: Iterable[HookOutcome]) -> HookCycleState:
    state.attempt += 1
    state.failures = [outcome for outcome in outcomes if not outcome.passed]
    if not state.failures:
        state.status = LoopStatus.PASSED
    elif state.retries >= state.max_retries:
        state.status = LoopStatus.EXHAUSTED
    else:
        state.status = LoopStatus.NEEDS_FIX
    return state


def record_hook_fix(state: HookCycleState) -> HookCycleState:
    if state.status != LoopStatus.NEEDS_FIX:
        raise ValueError(f"Hook fix recorded in state {state.status.value}")
    state.retries += 1
    state.status = LoopStatus.RUNNING
    return state


@dataclass
class ReviewState:
    """Track the review loop; tallies may start from persisted values on resume."""

    max_iterations: int
    iteration: int = 0
    turns: int = 0
    issues_found: int = 0
    issues_fixed: int = 0
    status: LoopStatus = LoopStatus.RUNNING
    issues: list[Issue] = field(default_factory=list)


def reduce_review(state: ReviewState, outcome: AgentOutcome) -> ReviewState:
    state.iteration += 1
    state.turns += outcome.turns
    state.issues = list(outcome.issues)
    if not state.issues:
        state.status = LoopStatus.PASSED
        return state
    state.issues_found += len(state.issues)
    if state.iteration >= state.max_iterations:
        state.status = LoopStatus.EXHAUSTED
    else:
        state.status = LoopStatus.NEEDS_FIX
    return state


def record_review_fix(state: ReviewState, outcome: AgentOutcome) -> ReviewState:
    """Apply a `review/fix` result; fixes never exceed the issues that were found."""
    if state.status != LoopStatus.NEEDS_FIX:
        raise ValueError(f"Review fix recorded in state {state.status.value}")
    state.turns += outcome.turns
    submitted = len(state.issues)
    resolved = outcome.resolved if outcome.resolved is not None else submitted
    resolved = max(0, min(resolved, submitted))
    state.issues_fixed = min(state.issues_fixed + resolved, state.issues_found)
    state.status = LoopStatus.RUNNING
    return state


@dataclass
class VerifyState:
    max_iterations: int
    iteration: int = 0
    turns: int = 0
    status: LoopStatus = LoopStatus.RUNNING
    issues: list[Issue] = field(default_factory=list)
    output: str = ""


def reduce_verify(state: VerifyState, outcome: AgentOutcome) -> VerifyState:
    state.iteration += 1
    state.turns += outcome.turns
    state.issues = list(outcome.issues)
    state.output = outcome.output
    passed = outcome.passed if outcome.passed is not None else not outcome.issues
    if passed:
        state.status = LoopStatus.PASSED
    elif state.iteration >= state.max_iterations:
        state.status = LoopStatus.EXHAUSTED
    else:
        state.status = LoopStatus.NEEDS_FIX
    return state


def record_verify_fix(state: VerifyState, outcome: AgentOutcome) -> VerifyState:
    if state.status != LoopStatus.NEEDS_FIX:
        raise ValueError(f"Verification fix recorded in state {state.status.value}")
    state.turns += outcome.turns
    state.status = LoopStatus.RUNNING
    return state


def resume_index(record: ExecutionRecord) -> Optional[int]:
    """Return the first phase that still has to run, or None when all are completed."""
    for idx, phase in enumerate(record.phases):
        if not phase.is_completed:
            return idx
    return None


def coding_prompt_key(record: ExecutionRecord) -> str:
    return PROMPT_CODE_RESUME if record.completed_phases() else PROMPT_CODE_TASK
