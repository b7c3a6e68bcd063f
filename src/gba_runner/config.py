"""Load optional runner configuration from `.gba/config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import (
    CONFIG_FILE,
    DEFAULT_AGENT_COMMAND,
    DEFAULT_AGENT_TIMEOUT_SECONDS,
    DEFAULT_BASE_BRANCH,
    DEFAULT_BRANCH_PATTERN,
    DEFAULT_HOOK_TIMEOUT_SECONDS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REMOTE,
    STATE_DIR_NAME,
)
from .errors import ConfigError
from .io_utils import _load_yaml_with_error

# Agent permission mode -> agent CLI permission flag value
PERMISSION_MODES = {
    "auto": "bypassPermissions",
    "manual": "default",
    "none": "plan",
}


def load_runner_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional runner config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_yaml_with_error(path)
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _section(config: dict[str, Any], key: str) -> dict[str, Any]:
    raw = _get_nested(config, key)
    return raw if isinstance(raw, dict) else {}


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_int(value: Any, default: int, *, key: str, minimum: int = 0) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key}: expected an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigError(f"{key}: must be >= {minimum}, got {number}")
    return number


@dataclass
class AgentConfig:
    model: Optional[str] = None
    permission_mode: str = "auto"
    command: str = DEFAULT_AGENT_COMMAND
    timeout_seconds: int = DEFAULT_AGENT_TIMEOUT_SECONDS

    @property
    def permission_flag(self) -> str:
        return PERMISSION_MODES[self.permission_mode]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        mode = str(data.get("permissionMode") or "auto").strip().lower()
        if mode not in PERMISSION_MODES:
            raise ConfigError(
                f"agent.permissionMode: expected one of {sorted(PERMISSION_MODES)}, got {mode!r}"
            )
        model = data.get("model")
        return cls(
            model=str(model) if model else None,
            permission_mode=mode,
            command=str(data.get("command") or DEFAULT_AGENT_COMMAND),
            timeout_seconds=_as_int(
                data.get("timeoutSeconds"),
                DEFAULT_AGENT_TIMEOUT_SECONDS,
                key="agent.timeoutSeconds",
                minimum=1,
            ),
        )


@dataclass
class GitConfig:
    auto_commit: bool = True
    branch_pattern: str = DEFAULT_BRANCH_PATTERN
    base_branch: str = DEFAULT_BASE_BRANCH
    remote: str = DEFAULT_REMOTE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GitConfig":
        return cls(
            auto_commit=_as_bool(data.get("autoCommit"), True),
            branch_pattern=str(data.get("branchPattern") or DEFAULT_BRANCH_PATTERN),
            base_branch=str(data.get("baseBranch") or DEFAULT_BASE_BRANCH),
            remote=str(data.get("remote") or DEFAULT_REMOTE),
        )


@dataclass
class ReviewConfig:
    enabled: bool = True
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    proceed_on_unresolved: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewConfig":
        return cls(
            enabled=_as_bool(data.get("enabled"), True),
            max_iterations=_as_int(
                data.get("maxIterations"),
                DEFAULT_MAX_ITERATIONS,
                key="review.maxIterations",
                minimum=1,
            ),
            proceed_on_unresolved=_as_bool(data.get("proceedOnUnresolved"), True),
        )


@dataclass
class VerificationConfig:
    enabled: bool = True
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationConfig":
        return cls(
            enabled=_as_bool(data.get("enabled"), True),
            max_iterations=_as_int(
                data.get("maxIterations"),
                DEFAULT_MAX_ITERATIONS,
                key="verification.maxIterations",
                minimum=1,
            ),
        )


@dataclass
class HookSpec:
    name: str
    command: str

    @classmethod
    def from_dict(cls, data: Any, index: int) -> "HookSpec":
        if isinstance(data, str):
            return cls(name=data.split()[0] if data.split() else f"hook-{index + 1}", command=data)
        if not isinstance(data, dict):
            raise ConfigError(f"hooks.preCommit[{index}]: expected a mapping with name/command")
        command = str(data.get("command") or "").strip()
        if not command:
            raise ConfigError(f"hooks.preCommit[{index}]: missing command")
        name = str(data.get("name") or f"hook-{index + 1}")
        return cls(name=name, command=command)


@dataclass
class HooksConfig:
    pre_commit: list[HookSpec] = field(default_factory=list)
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout_seconds: int = DEFAULT_HOOK_TIMEOUT_SECONDS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HooksConfig":
        raw_hooks = data.get("preCommit") or []
        if not isinstance(raw_hooks, list):
            raise ConfigError("hooks.preCommit: expected a list")
        return cls(
            pre_commit=[HookSpec.from_dict(item, idx) for idx, item in enumerate(raw_hooks)],
            max_retries=_as_int(
                data.get("maxRetries"),
                DEFAULT_MAX_RETRIES,
                key="hooks.maxRetries",
            ),
            timeout_seconds=_as_int(
                data.get("timeoutSeconds"),
                DEFAULT_HOOK_TIMEOUT_SECONDS,
                key="hooks.timeoutSeconds",
                minimum=1,
            ),
        )


@dataclass
class RunnerConfig:
    """Typed view over `.gba/config.yaml`; every section is optional."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    git: GitConfig = field(default_factory=GitConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    hooks: HooksConfig = field(default_factory=HooksConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunnerConfig":
        return cls(
            agent=AgentConfig.from_dict(_section(data, "agent")),
            git=GitConfig.from_dict(_section(data, "git")),
            review=ReviewConfig.from_dict(_section(data, "review")),
            verification=VerificationConfig.from_dict(_section(data, "verification")),
            hooks=HooksConfig.from_dict(_section(data, "hooks")),
        )


def load_project_config(
    project_dir: Path,
    *,
    model: Optional[str] = None,
    agent_command: Optional[str] = None,
) -> RunnerConfig:
    """Load and type the project config, applying CLI overrides.

    Args:
        project_dir: Repository root directory.
        model: Optional model override (`--model`).
        agent_command: Optional agent command template override (`--agent-command`).

    Returns:
        The resolved `RunnerConfig`.

    Raises:
        ConfigError: If the config file cannot be parsed or holds invalid values.
    """
    raw, err = load_runner_config(project_dir)
    if err:
        raise ConfigError(f"Unable to read {STATE_DIR_NAME}/{CONFIG_FILE}: {err}")
    config = RunnerConfig.from_dict(raw)
    if model:
        config.agent.model = model
    if agent_command:
        config.agent.command = agent_command
    logger.debug(
        "Loaded config: hooks={} review={} verification={} autoCommit={}",
        [hook.name for hook in config.hooks.pre_commit],
        config.review.enabled,
        config.verification.enabled,
        config.git.auto_commit,
    )
    return config
