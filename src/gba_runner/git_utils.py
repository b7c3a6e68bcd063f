"""Provide the git plumbing the engine consumes: worktrees, commits, diffs and PRs."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import GitConfig
from .constants import MAX_DIFF_CHARS, STATE_DIR_NAME, TREES_DIR_NAME
from .errors import GitError
from .utils import _extract_slug_id

_PR_URL_RE = re.compile(r"https://github\.com/[^\s]+/pull/\d+")


def _run_git(args: list[str], cwd: Path, *, check: bool = True) -> subprocess.CompletedProcess:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise GitError(f"git {' '.join(args)}: {exc}") from exc
    if check and result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        raise GitError(f"git {' '.join(args)} failed ({result.returncode}): {detail}")
    return result


def _git_head_sha(project_dir: Path) -> Optional[str]:
    result = _run_git(["rev-parse", "HEAD"], project_dir, check=False)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _git_branch_exists(project_dir: Path, branch: str) -> bool:
    result = _run_git(["show-ref", "--verify", f"refs/heads/{branch}"], project_dir, check=False)
    return result.returncode == 0


def _git_has_changes(project_dir: Path) -> bool:
    result = _run_git(["status", "--porcelain"], project_dir, check=False)
    return result.returncode == 0 and bool(result.stdout.strip())


def _ignore_file_has_entry(path: Path, ignore_entry: str) -> bool:
    if not path.exists():
        return False
    try:
        contents = path.read_text()
    except OSError:
        return False
    lines = {
        line.strip().rstrip("/")
        for line in contents.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    }
    return ignore_entry.strip().rstrip("/") in lines


def _ensure_gitignore(project_dir: Path) -> None:
    """Keep runner state and feature worktrees out of the main checkout's status."""
    gitignore_path = project_dir / ".gitignore"
    missing = [
        entry
        for entry in (f"{STATE_DIR_NAME}/", f"{TREES_DIR_NAME}/")
        if not _ignore_file_has_entry(gitignore_path, entry)
    ]
    if not missing:
        return
    try:
        contents = gitignore_path.read_text() if gitignore_path.exists() else ""
        if contents and not contents.endswith("\n"):
            contents += "\n"
        contents += "".join(entry + "\n" for entry in missing)
        gitignore_path.write_text(contents)
    except OSError as exc:
        logger.warning("Unable to update .gitignore: {}", exc)


def extract_pr_url(text: str) -> Optional[str]:
    match = _PR_URL_RE.search(text or "")
    return match.group(0) if match else None


@dataclass
class PrMetadata:
    """What the PR stage needs to open a pull request for a feature branch."""

    slug: str
    title: str
    body: str
    branch: str
    base: str
    worktree: Path
    commits: list[str] = field(default_factory=list)


class GitOps:
    """Git operations scoped to one repository and its `.trees/<slug>` worktrees."""

    def __init__(self, repo_path: Path, config: Optional[GitConfig] = None):
        self.repo_path = Path(repo_path).resolve()
        self.config = config or GitConfig()

    def worktree_path(self, slug: str) -> Path:
        return self.repo_path / TREES_DIR_NAME / slug

    def branch_name(self, slug: str) -> str:
        return self.config.branch_pattern.format(id=_extract_slug_id(slug), slug=slug)

    def ensure_worktree(self, slug: str) -> Path:
        """Create (or reuse) the feature worktree and return its path.

        Raises:
            GitError: If the worktree cannot be created.
        """
        path = self.worktree_path(slug)
        if (path / ".git").exists():
            logger.info("Reusing worktree {}", path)
            return path
        _ensure_gitignore(self.repo_path)
        branch = self.branch_name(slug)
        path.parent.mkdir(parents=True, exist_ok=True)
        if _git_branch_exists(self.repo_path, branch):
            _run_git(["worktree", "add", str(path), branch], self.repo_path)
        else:
            _run_git(
                ["worktree", "add", "-b", branch, str(path), self.config.base_branch],
                self.repo_path,
            )
        logger.info("Created worktree {} on branch {}", path, branch)
        return path

    def head_sha(self, working_dir: Path) -> str:
        sha = _git_head_sha(working_dir)
        if not sha:
            raise GitError(f"Unable to resolve HEAD in {working_dir}")
        return sha

    def commit(self, working_dir: Path, message: str) -> Optional[str]:
        """Stage everything and commit it.

        Returns:
            The new commit sha, or None when the tree is clean.

        Raises:
            GitError: If staging or committing fails.
        """
        if not _git_has_changes(working_dir):
            logger.info("Nothing to commit in {}", working_dir)
            return None
        _run_git(["add", "-A"], working_dir)
        _run_git(["commit", "-m", message], working_dir)
        sha = self.head_sha(working_dir)
        logger.info("Committed {} ({})", sha[:12], message)
        return sha

    def diff(self, worktree: Path, base: Optional[str] = None, *, max_chars: int = MAX_DIFF_CHARS) -> str:
        """Return the accumulated diff of the worktree against the merge base with `base`."""
        base = base or self.config.base_branch
        merge_base = _run_git(["merge-base", base, "HEAD"], worktree).stdout.strip()
        text = _run_git(["diff", merge_base], worktree).stdout
        if len(text) > max_chars:
            return text[:max_chars] + "\n[runner] ... diff truncated ...\n"
        return text

    def commits_since_base(self, worktree: Path, base: Optional[str] = None) -> list[str]:
        base = base or self.config.base_branch
        result = _run_git(["log", "--oneline", f"{base}..HEAD"], worktree, check=False)
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def create_pr(self, metadata: PrMetadata) -> str:
        """Push the feature branch and open a pull request with the `gh` CLI.

        Returns:
            The pull request URL.

        Raises:
            GitError: If the push or PR creation fails, or no URL is reported.
        """
        _run_git(["push", "-u", self.config.remote, metadata.branch], metadata.worktree)
        command = [
            "gh",
            "pr",
            "create",
            "--title",
            metadata.title,
            "--body",
            metadata.body,
            "--base",
            metadata.base,
            "--head",
            metadata.branch,
        ]
        try:
            result = subprocess.run(
                command,
                cwd=metadata.worktree,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise GitError(f"gh pr create: {exc}") from exc
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise GitError(f"gh pr create failed ({result.returncode}): {output.strip()}")
        url = extract_pr_url(output)
        if not url:
            raise GitError(f"gh pr create did not report a pull request URL: {output.strip()[:400]}")
        logger.info("Created pull request {}", url)
        return url
