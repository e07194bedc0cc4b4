"""Thin wrappers around the git commands the loop needs.

Every helper runs git with ``cwd`` set to the repository and raises GitError
on a non-zero exit, carrying stderr for the operator.
"""

import logging
import subprocess
from pathlib import Path

from ralph_loop.errors import GitError

logger = logging.getLogger(__name__)


def run_git(repo: Path, *args: str) -> str:
    """Run a git command in ``repo`` and return its stdout.

    Raises:
        GitError: If git exits non-zero or cannot be started
    """
    cmd = ["git", *args]
    logger.debug(f"git {' '.join(args)} (in {repo})")
    try:
        result = subprocess.run(
            cmd,
            cwd=repo,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise GitError(
            message=f"Could not run git in {repo}: {e}",
            error_code="GIT-NotStarted",
            details={"repo": str(repo), "args": list(args)},
        ) from e

    if result.returncode != 0:
        output = (result.stderr or result.stdout).strip()
        raise GitError(
            message=f"git {' '.join(args)} failed: {output}",
            error_code="GIT-CommandFailed",
            details={"repo": str(repo), "args": list(args), "returncode": result.returncode},
        )
    return result.stdout


def has_changes(repo: Path) -> bool:
    """True when the working tree has staged, unstaged or untracked changes."""
    return bool(run_git(repo, "status", "--porcelain").strip())


def stage_all(repo: Path) -> None:
    run_git(repo, "add", "-A")


def commit(repo: Path, message: str) -> None:
    run_git(repo, "commit", "-m", message)


def current_branch(repo: Path) -> str:
    return run_git(repo, "branch", "--show-current").strip()


def branch_exists(repo: Path, branch: str) -> bool:
    try:
        run_git(repo, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
    except GitError:
        return False
    return True


def checkout(repo: Path, branch: str, create: bool = False) -> None:
    if create:
        run_git(repo, "checkout", "-b", branch)
    else:
        run_git(repo, "checkout", branch)


def fetch(repo: Path, remote: str, branch: str) -> None:
    run_git(repo, "fetch", remote, branch)


def merge(repo: Path, ref: str) -> None:
    run_git(repo, "merge", ref, "--no-edit")
