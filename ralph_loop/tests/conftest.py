"""Shared fixtures for ralph_loop tests."""

import logging
import subprocess
from pathlib import Path
from typing import Any, Callable

import pytest

from ralph_loop.config import (
    GitConfig,
    HooksConfig,
    LoopConfig,
    PermissionsConfig,
    RalphConfig,
    RepoConfig,
)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by configure_logging so they never outlive a test."""
    yield
    package_logger = logging.getLogger("ralph_loop")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def orchestration_root(tmp_path: Path) -> Path:
    """An orchestration root with a task file, an empty ledger and two repo dirs."""
    root = tmp_path / "orchestration"
    root.mkdir()
    (root / "RALPH.md").write_text("# Tasks\n")
    (root / "progress.txt").write_text("")
    (tmp_path / "api").mkdir()
    (tmp_path / "web").mkdir()
    return root


@pytest.fixture
def make_config(orchestration_root: Path) -> Callable[..., RalphConfig]:
    """Factory for RalphConfig objects rooted at ``orchestration_root``."""

    def _make(
        git: GitConfig | None = None,
        loop: LoopConfig | None = None,
        hooks: HooksConfig | None = None,
        permissions: PermissionsConfig | None = None,
        backend_verify: str = "",
        frontend_verify: str = "",
        **overrides: Any,
    ) -> RalphConfig:
        parent = orchestration_root.parent
        values: dict[str, Any] = {
            "root": orchestration_root,
            "ralph_file": orchestration_root / "RALPH.md",
            "progress_file": orchestration_root / "progress.txt",
            "repos": {
                "backend": RepoConfig(
                    name="backend",
                    path=parent / "api",
                    task_prefixes=("B",),
                    verify_command=backend_verify,
                ),
                "frontend": RepoConfig(
                    name="frontend",
                    path=parent / "web",
                    task_prefixes=("F",),
                    verify_command=frontend_verify,
                ),
            },
            "default_repo": "frontend",
            "git": git or GitConfig(),
            "loop": loop or LoopConfig(max_iterations=10, pause_seconds=0),
            "hooks": hooks or HooksConfig(),
            "permissions": permissions or PermissionsConfig(),
        }
        values.update(overrides)
        return RalphConfig(**values)

    return _make


def run_git_cmd(repo: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    ).stdout


@pytest.fixture
def git_cmd() -> Callable[..., str]:
    """Run git in a repo for test setup and assertions."""
    return run_git_cmd


@pytest.fixture
def init_repo() -> Callable[[Path], Path]:
    """Factory creating a git repo on ``main`` with one initial commit."""

    def _init(path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        run_git_cmd(path, "init", "--quiet")
        run_git_cmd(path, "symbolic-ref", "HEAD", "refs/heads/main")
        run_git_cmd(path, "config", "user.name", "Test User")
        run_git_cmd(path, "config", "user.email", "test@example.com")
        run_git_cmd(path, "config", "commit.gpgsign", "false")
        (path / "README.md").write_text("initial\n")
        run_git_cmd(path, "add", "-A")
        run_git_cmd(path, "commit", "-q", "-m", "initial")
        return path

    return _init


@pytest.fixture
def commit_subjects() -> Callable[[Path], list[str]]:
    """Commit subjects of a repo, newest first."""

    def _subjects(repo: Path) -> list[str]:
        return run_git_cmd(repo, "log", "--format=%s").splitlines()

    return _subjects
