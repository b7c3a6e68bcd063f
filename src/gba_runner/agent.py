"""Invoke the coding/review/verification agent and interpret its output."""

from __future__ import annotations

import json
import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import AgentConfig
from .constants import (
    AGENT_ALLOWED_TOOLS,
    PROMPT_REVIEW_FIX,
    PROMPT_REVIEW_TASK,
    PROMPT_VERIFY_FIX,
    PROMPT_VERIFY_TASK,
)
from .errors import AgentError
from .models import AgentOutcome, Issue, Severity
from .prompts import render_prompt
from .utils import _new_run_id

_SEVERITY_ALIASES = {
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "suggestion": Severity.SUGGESTION,
    "info": Severity.SUGGESTION,
    "note": Severity.SUGGESTION,
}

_INLINE_ISSUE_RE = re.compile(r"^[-*]\s*\[(?P<severity>[A-Za-z]+)\]\s*(?P<file>[^:]+):\s*(?P<description>.+)$")
_RESOLVED_RE = re.compile(r"^\s*\**resolved\**\s*:\s*\**\s*(?P<count>\d+)", re.I | re.M)
_VERDICT_RE = re.compile(r"verification\s*:\s*\**\s*(?P<verdict>passed|failed)", re.I)


def parse_severity(value: str) -> Optional[Severity]:
    return _SEVERITY_ALIASES.get(value.strip().lower())


def _parse_block_issues(output: str) -> list[Issue]:
    issues: list[Issue] = []
    current: dict[str, str] = {}

    def _flush() -> None:
        severity = parse_severity(current.get("severity", ""))
        file = current.get("file", "").strip()
        description = current.get("description", "").strip()
        if severity and file and description:
            issues.append(Issue(severity=severity, file=Path(file), description=description))
        current.clear()

    for line in output.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("- "):
            trimmed_item = trimmed[2:].lstrip()
        else:
            trimmed_item = trimmed
        lowered = trimmed_item.lower()
        if lowered.startswith("severity:"):
            _flush()
            current["severity"] = trimmed_item.split(":", 1)[1].strip()
        elif lowered.startswith("file:") and "severity" in current:
            current["file"] = trimmed_item.split(":", 1)[1].strip()
        elif lowered.startswith("description:") and "severity" in current:
            current["description"] = trimmed_item.split(":", 1)[1].strip()
    _flush()
    return issues


def parse_review_issues(output: str) -> list[Issue]:
    """Parse issues from agent text.

    The block format (`- severity:` / `file:` / `description:`) wins when it yields
    anything; otherwise inline items (`- [severity] file: description`) are collected.
    Entries with an unknown severity are dropped.
    """
    block_issues = _parse_block_issues(output)
    if block_issues:
        return block_issues
    issues: list[Issue] = []
    for line in output.splitlines():
        match = _INLINE_ISSUE_RE.match(line.strip())
        if not match:
            continue
        severity = parse_severity(match.group("severity"))
        if severity is None:
            continue
        issues.append(
            Issue(
                severity=severity,
                file=Path(match.group("file").strip()),
                description=match.group("description").strip(),
            )
        )
    return issues


def check_verification_passed(output: str, is_error: bool = False) -> bool:
    """Decide whether a verification reply passed.

    An errored result fails. An explicit `VERIFICATION: PASSED|FAILED` line decides next
    (the last one wins). Otherwise fall back to fail/pass keywords, where a reply that
    mentions both counts as passed.
    """
    if is_error:
        return False
    verdicts = _VERDICT_RE.findall(output or "")
    if verdicts:
        return verdicts[-1].lower() == "passed"
    lower = (output or "").lower()
    has_fail = "fail" in lower or "error" in lower
    has_pass = "pass" in lower or "success" in lower
    if has_fail and not has_pass:
        return False
    return not has_fail or has_pass


def parse_resolved_count(output: str, default: int) -> int:
    matches = _RESOLVED_RE.findall(output or "")
    if not matches:
        return default
    return int(matches[-1])


def _parse_agent_output(stdout: str) -> tuple[str, int, bool]:
    """Return `(result_text, turns, is_error)` from the agent CLI output.

    JSON output (`{"result", "num_turns", "is_error"}` or a list of stream messages
    ending in a `result` message) is preferred; anything else is taken verbatim as a
    single turn.
    """
    text = (stdout or "").strip()
    if not text:
        return "", 1, False
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        return text, 1, False
    if isinstance(payload, list):
        results = [item for item in payload if isinstance(item, dict) and item.get("type") == "result"]
        payload = results[-1] if results else None
    if not isinstance(payload, dict):
        return text, 1, False
    result_text = payload.get("result")
    if result_text is None:
        result_text = text
    turns = payload.get("num_turns")
    try:
        turns = int(turns) if turns is not None else 1
    except (TypeError, ValueError):
        turns = 1
    return str(result_text), max(turns, 0), bool(payload.get("is_error", False))


class AgentGateway(ABC):
    """Capability that runs one agent conversation for a prompt key and context."""

    @abstractmethod
    def invoke(
        self,
        prompt_key: str,
        context: dict[str, Any],
        cwd: Optional[Path] = None,
    ) -> AgentOutcome:
        """Run the agent to a terminal outcome.

        Raises:
            AgentError: If the agent cannot be reached or exits abnormally.
        """


def _agent_role(prompt_key: str) -> str:
    return prompt_key.split("/", 1)[0]


class CommandAgentGateway(AgentGateway):
    """Run a command-line agent with the rendered prompt on stdin.

    The command template may use `{model}`, `{permission_mode}`, `{allowed_tools}`,
    `{prompt_file}`, `{project_dir}` and `{run_dir}`. Every invocation gets its own run
    directory holding `prompt.txt`, `stdout.log` and `stderr.log`.
    """

    def __init__(self, config: AgentConfig, runs_dir: Path):
        self.config = config
        self.runs_dir = Path(runs_dir)

    def _build_command(self, prompt_key: str, prompt_path: Path, project_dir: Path, run_dir: Path) -> list[str]:
        role = _agent_role(prompt_key)
        allowed_tools = ",".join(AGENT_ALLOWED_TOOLS.get(role, AGENT_ALLOWED_TOOLS["review"]))
        try:
            formatted = self.config.command.format(
                model=self.config.model or "",
                permission_mode=self.config.permission_flag,
                allowed_tools=allowed_tools,
                prompt_file=str(prompt_path),
                project_dir=str(project_dir),
                run_dir=str(run_dir),
            )
        except (KeyError, IndexError) as exc:
            raise AgentError(f"Unknown placeholder in agent command: {exc}") from exc
        parts = shlex.split(formatted)
        if self.config.model and "{model}" not in self.config.command:
            parts += ["--model", self.config.model]
        if not parts:
            raise AgentError("Agent command is empty")
        return parts

    def invoke(
        self,
        prompt_key: str,
        context: dict[str, Any],
        cwd: Optional[Path] = None,
    ) -> AgentOutcome:
        prompt = render_prompt(prompt_key, context)
        project_dir = Path(cwd) if cwd else Path.cwd()
        run_id = _new_run_id(prompt_key.replace("/", "-"))
        run_dir = self.runs_dir / run_id
        prompt_path = run_dir / "prompt.txt"
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            prompt_path.write_text(prompt, encoding="utf-8")
        except OSError as exc:
            raise AgentError(f"Unable to prepare agent run directory {run_dir}: {exc}", run_id=run_id) from exc
        command = self._build_command(prompt_key, prompt_path, project_dir, run_dir)

        logger.info("Invoking agent for {} (run {})", prompt_key, run_id)
        try:
            result = subprocess.run(
                command,
                cwd=project_dir,
                input=prompt,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.config.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise AgentError(
                f"Agent timed out after {self.config.timeout_seconds}s ({prompt_key})",
                run_id=run_id,
            ) from exc
        except OSError as exc:
            raise AgentError(f"Unable to start agent command {command[0]!r}: {exc}", run_id=run_id) from exc

        try:
            (run_dir / "stdout.log").write_text(result.stdout or "", encoding="utf-8")
            (run_dir / "stderr.log").write_text(result.stderr or "", encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to write agent logs for run {}: {}", run_id, exc)
        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip()[-400:]
            raise AgentError(
                f"Agent exited with code {result.returncode} ({prompt_key}): {stderr_tail}",
                run_id=run_id,
            )

        text, turns, is_error = _parse_agent_output(result.stdout)
        outcome = AgentOutcome(turns=turns, output=text, run_id=run_id)
        if prompt_key == PROMPT_VERIFY_TASK:
            outcome.issues = parse_review_issues(text)
            outcome.passed = check_verification_passed(text, is_error)
        elif is_error:
            raise AgentError(f"Agent reported an error result ({prompt_key}): {text[:400]}", run_id=run_id)
        elif prompt_key == PROMPT_REVIEW_TASK:
            outcome.issues = parse_review_issues(text)
            outcome.passed = not outcome.issues
        elif prompt_key in (PROMPT_REVIEW_FIX, PROMPT_VERIFY_FIX):
            submitted = len(context.get("issues") or [])
            outcome.resolved = parse_resolved_count(text, submitted)
        logger.info("Agent {} finished in {} turn(s)", prompt_key, turns)
        return outcome
