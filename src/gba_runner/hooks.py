"""Run pre-commit verification hooks inside a worktree."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from .config import HookSpec
from .constants import DEFAULT_HOOK_TIMEOUT_SECONDS, MAX_HOOK_OUTPUT_CHARS
from .io_utils import _tail_text
from .models import HookOutcome


def _decode(stream: Any) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return str(stream)


class HookRunner:
    """Execute hook commands via `sh -c`; command failures are returned as data."""

    def __init__(
        self,
        *,
        timeout_seconds: Optional[int] = DEFAULT_HOOK_TIMEOUT_SECONDS,
        max_output_chars: int = MAX_HOOK_OUTPUT_CHARS,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_output_chars = max_output_chars

    def run_one(self, hook: HookSpec, working_dir: Path) -> HookOutcome:
        try:
            result = subprocess.run(
                ["sh", "-c", hook.command],
                cwd=working_dir,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            output = _decode(exc.stdout) + _decode(exc.stderr)
            output += f"\n[runner] Command timed out after {self.timeout_seconds}s\n"
            return HookOutcome(
                name=hook.name,
                command=hook.command,
                passed=False,
                output=_tail_text(output, self.max_output_chars),
                exit_code=124,
                timed_out=True,
            )
        except OSError as exc:
            return HookOutcome(
                name=hook.name,
                command=hook.command,
                passed=False,
                output=f"[runner] Unable to start hook: {exc}",
                exit_code=None,
            )
        output = (result.stdout or "") + (result.stderr or "")
        return HookOutcome(
            name=hook.name,
            command=hook.command,
            passed=result.returncode == 0,
            output=_tail_text(output, self.max_output_chars),
            exit_code=result.returncode,
        )

    def run_all(self, hooks: Iterable[HookSpec], working_dir: Path) -> list[HookOutcome]:
        """Run every hook in order, even after a failure.

        Args:
            hooks: Hooks in declaration order.
            working_dir: Directory the commands run in (the feature worktree).

        Returns:
            One `HookOutcome` per hook, in the same order.
        """
        outcomes: list[HookOutcome] = []
        for hook in hooks:
            outcome = self.run_one(hook, working_dir)
            if outcome.passed:
                logger.info("Hook {} passed", hook.name)
            else:
                logger.warning(
                    "Hook {} failed (exit={}, timed_out={})",
                    hook.name,
                    outcome.exit_code,
                    outcome.timed_out,
                )
            outcomes.append(outcome)
        return outcomes
