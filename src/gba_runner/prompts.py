"""Build the text prompts passed to the agent for each prompt key."""

from __future__ import annotations

from typing import Any, Callable

from .constants import (
    PROMPT_CODE_RESUME,
    PROMPT_CODE_TASK,
    PROMPT_HOOK_FIX,
    PROMPT_REVIEW_FIX,
    PROMPT_REVIEW_TASK,
    PROMPT_VERIFY_FIX,
    PROMPT_VERIFY_TASK,
)
from .models import HookOutcome, Issue, Phase, VerificationPlan

ISSUE_FORMAT_BLOCK = """Report every issue as a list item in this exact format:

- severity: error|warning|suggestion
  file: path/to/file
  description: what is wrong and how to fix it

If the changes have no issues, reply with exactly: No issues found."""

RESOLVED_CONTRACT = "Finish your reply with a single line `Resolved: <n>` giving how many of the issues above you fixed."


def _bullets(items: list[str], empty: str = "- (none)") -> str:
    return "\n".join(f"- {item}" for item in items) if items else empty


def _design_block(context: dict[str, Any]) -> str:
    design = str(context.get("design") or "").strip()
    return design if design else "(no design document)"


def _phase_block(phase: Phase, index: int, total: int) -> str:
    return (
        f"Phase {index + 1} of {total}: {phase.name}\n"
        f"{phase.description or '(no description)'}\n\n"
        f"Tasks:\n{_bullets(phase.tasks)}"
    )


def _plan_block(plan: VerificationPlan) -> str:
    return (
        f"Acceptance criteria:\n{_bullets(plan.criteria)}\n\n"
        f"Test commands:\n{_bullets(plan.test_commands)}"
    )


def _issues_block(issues: list[Issue]) -> str:
    if not issues:
        return "- (none)"
    return "\n".join(
        f"- severity: {issue.severity.value}\n  file: {issue.file}\n  description: {issue.description}"
        for issue in issues
    )


def _build_code_task_prompt(context: dict[str, Any]) -> str:
    phase: Phase = context["phase"]
    plan: VerificationPlan = context.get("verification_plan") or VerificationPlan()
    return f"""You are implementing a feature in this repository, one phase at a time.

Feature:
{context.get("feature") or "(no description)"}

Design:
{_design_block(context)}

Current phase:
{_phase_block(phase, int(context.get("phase_index", 0)), int(context.get("total_phases", 1)))}

Overall verification plan (for orientation; do not run the full plan now):
{_plan_block(plan)}

Rules:
- Implement only the tasks of the current phase.
- Keep the repository building and the existing tests passing.
- Do not commit; the runner commits after the pre-commit hooks pass.
"""


def _build_code_resume_prompt(context: dict[str, Any]) -> str:
    completed: list[tuple[int, Phase]] = context.get("completed") or []
    completed_lines = [
        f"Phase {idx + 1}: {phase.name} (commit {phase.result.commit if phase.result else 'unknown'})"
        for idx, phase in completed
    ]
    return (
        "You are resuming an interrupted feature implementation.\n\n"
        f"Already completed and committed phases (do not redo them):\n{_bullets(completed_lines)}\n\n"
        + _build_code_task_prompt(context)
    )


def _build_hook_fix_prompt(context: dict[str, Any]) -> str:
    phase: Phase = context["phase"]
    failures: list[HookOutcome] = context.get("failures") or []
    sections = []
    for outcome in failures:
        sections.append(
            f"Hook: {outcome.name}\n"
            f"Command: {outcome.command}\n"
            f"Output:\n{outcome.output.strip() or '(no output)'}"
        )
    failures_block = "\n\n".join(sections) if sections else "(no failing hooks reported)"
    return f"""The pre-commit hooks failed after implementing phase "{phase.name}".

Attempt {context.get("attempt", 1)} of {context.get("max_retries", 1)}.

Failing hooks:
{failures_block}

Fix the code so every hook passes. Do not disable, skip or weaken the hooks.
"""


def _build_review_task_prompt(context: dict[str, Any]) -> str:
    plan: VerificationPlan = context.get("verification_plan") or VerificationPlan()
    return f"""Review the accumulated changes of this feature branch.

Feature:
{context.get("feature") or "(no description)"}

Design:
{_design_block(context)}

{_plan_block(plan)}

Diff against the base branch:
{context.get("diff") or "(empty diff)"}

Look for bugs, missing tasks, design deviations and risky code. Do not modify files.

{ISSUE_FORMAT_BLOCK}
"""


def _build_review_fix_prompt(context: dict[str, Any]) -> str:
    issues: list[Issue] = context.get("issues") or []
    return f"""Code review (iteration {context.get("iteration", 1)}) found these issues:

{_issues_block(issues)}

Fix them in the working tree. Do not commit.

{RESOLVED_CONTRACT}
"""


def _build_verify_task_prompt(context: dict[str, Any]) -> str:
    plan: VerificationPlan = context.get("verification_plan") or VerificationPlan()
    return f"""Verify that the implemented feature meets its acceptance criteria.

Feature:
{context.get("feature") or "(no description)"}

{_plan_block(plan)}

Run every test command and check every criterion. Do not modify files.
Report each unmet criterion or failing command as an issue.

{ISSUE_FORMAT_BLOCK}

End your reply with `VERIFICATION: PASSED` or `VERIFICATION: FAILED`.
"""


def _build_verify_fix_prompt(context: dict[str, Any]) -> str:
    plan: VerificationPlan = context.get("verification_plan") or VerificationPlan()
    issues: list[Issue] = context.get("issues") or []
    return f"""Verification (iteration {context.get("iteration", 1)}) failed.

{_plan_block(plan)}

Reported issues:
{_issues_block(issues)}

Verifier output:
{context.get("verifier_output") or "(no output)"}

Fix the implementation so the criteria hold and the test commands pass. Do not commit.

{RESOLVED_CONTRACT}
"""


PROMPT_BUILDERS: dict[str, Callable[[dict[str, Any]], str]] = {
    PROMPT_CODE_TASK: _build_code_task_prompt,
    PROMPT_CODE_RESUME: _build_code_resume_prompt,
    PROMPT_HOOK_FIX: _build_hook_fix_prompt,
    PROMPT_REVIEW_TASK: _build_review_task_prompt,
    PROMPT_REVIEW_FIX: _build_review_fix_prompt,
    PROMPT_VERIFY_TASK: _build_verify_task_prompt,
    PROMPT_VERIFY_FIX: _build_verify_fix_prompt,
}


def render_prompt(prompt_key: str, context: dict[str, Any]) -> str:
    try:
        builder = PROMPT_BUILDERS[prompt_key]
    except KeyError as exc:
        raise ValueError(f"Unknown prompt key: {prompt_key}") from exc
    return builder(context)
