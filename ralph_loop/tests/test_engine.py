"""Tests for the iteration engine.

The agent is replaced by a scripted fake that appends to the progress
ledger (and optionally writes files) the way a real agent would.
"""

import io
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from ralph_loop.config import GitConfig, HooksConfig, LoopConfig
from ralph_loop.engine import RETRY_PAUSE_SECONDS, IterationEngine
from ralph_loop.models import FailureKind, HookResult

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5)


@dataclass
class Step:
    """One scripted agent invocation."""

    ledger: str = ""
    exit_code: int = 0
    files: dict[str, str] = field(default_factory=dict)


@dataclass
class FakeAgent:
    """Agent stand-in that replays steps and records where it ran."""

    progress_file: Path
    steps: list[Step]
    calls: list[tuple[Path, Path]] = field(default_factory=list)

    def run(self, work_dir: Path, log_file: Path) -> int:
        step = self.steps[min(len(self.calls), len(self.steps) - 1)]
        self.calls.append((work_dir, log_file))
        for name, content in step.files.items():
            (work_dir / name).write_text(content)
        if step.ledger:
            with open(self.progress_file, "a") as f:
                f.write(step.ledger)
        return step.exit_code


def make_engine(config, steps, sleeps=None):
    agent = FakeAgent(config.progress_file, steps)
    engine = IterationEngine(
        config,
        agent=agent,
        console=Console(file=io.StringIO()),
        sleep=(sleeps.append if sleeps is not None else lambda seconds: None),
        now=lambda: FIXED_NOW,
    )
    return engine, agent


class TestLoopTermination:
    """Test the three terminal states."""

    def test_completes_when_ledger_is_marked_complete(self, make_config):
        config = make_config()
        sleeps: list[float] = []
        engine, agent = make_engine(
            config,
            [
                Step("DONE: F0.1 - Shell\nNext: F0.2\n"),
                Step("DONE: F0.2 - Routing\nRALPH_COMPLETE\n"),
            ],
            sleeps,
        )

        result = engine.run()

        assert result.status == "completed"
        assert result.iterations == 2
        assert result.retries == 0
        assert result.failure is None
        assert result.last_task == "F0.2"
        assert sleeps == [0]
        assert [call[0] for call in agent.calls] == [config.repos["frontend"].path] * 2

    def test_stops_at_max_iterations(self, make_config):
        config = make_config(loop=LoopConfig(max_iterations=3, pause_seconds=5))
        sleeps: list[float] = []
        engine, agent = make_engine(config, [Step("Next: B1\n")], sleeps)

        result = engine.run()

        assert result.status == "max_iterations"
        assert result.iterations == 3
        assert len(agent.calls) == 3
        assert sleeps == [5, 5]

    def test_fails_on_agent_exit_without_retries(self, make_config):
        config = make_config()
        engine, agent = make_engine(config, [Step(exit_code=1)])

        result = engine.run()

        assert result.status == "failed"
        assert result.failure is FailureKind.AGENT_EXIT
        assert result.iterations == 1
        assert len(agent.calls) == 1

    def test_completion_on_first_iteration_of_already_complete_ledger(self, make_config):
        config = make_config()
        config.progress_file.write_text("DONE: F1 - x\nRALPH_COMPLETE\n")
        engine, agent = make_engine(config, [Step()])

        result = engine.run()

        assert result.status == "completed"
        assert len(agent.calls) == 1


class TestRouting:
    """Test that each iteration runs in the repo owning the next task."""

    def test_routes_by_next_task(self, make_config):
        config = make_config()
        config.progress_file.write_text("Next: B1.1\n")
        engine, agent = make_engine(
            config,
            [
                Step("DONE: B1.1 - Api\nNext: F1.1\n"),
                Step("DONE: F1.1 - Ui\nRALPH_COMPLETE\n"),
            ],
        )

        engine.run()

        assert [call[0] for call in agent.calls] == [
            config.repos["backend"].path,
            config.repos["frontend"].path,
        ]

    def test_log_file_per_iteration(self, make_config):
        config = make_config()
        engine, agent = make_engine(
            config, [Step("Next: F1\n"), Step("RALPH_COMPLETE\n")]
        )

        result = engine.run()

        log_files = [call[1] for call in agent.calls]
        assert log_files == [
            config.log_dir / "iteration-1-20260102-030405.log",
            config.log_dir / "iteration-2-20260102-030405.log",
        ]
        assert result.last_log_file == log_files[-1]


class TestRetries:
    """Test retry handling for the three failure kinds."""

    def test_ledger_error_is_cleared_and_retried(self, make_config):
        config = make_config(loop=LoopConfig(retry_on_error=1, pause_seconds=0))
        sleeps: list[float] = []
        engine, agent = make_engine(
            config,
            [
                Step("ERROR: tests failed\n"),
                Step("DONE: F1 - Fixed\nRALPH_COMPLETE\n"),
            ],
            sleeps,
        )

        result = engine.run()

        assert result.status == "completed"
        assert result.iterations == 2
        assert result.retries == 1
        assert sleeps == [RETRY_PAUSE_SECONDS]
        assert "ERROR:" not in config.progress_file.read_text()

    def test_ledger_error_without_retries_fails(self, make_config):
        config = make_config()
        engine, _ = make_engine(config, [Step("ERROR: cannot continue\n")])

        result = engine.run()

        assert result.status == "failed"
        assert result.failure is FailureKind.LEDGER_ERROR
        assert "ERROR: cannot continue" in config.progress_file.read_text()

    def test_bracketed_ledger_error_stops_cleanly(self, make_config):
        """Ledger text that looks like console markup is printed verbatim."""
        config = make_config()
        engine, _ = make_engine(config, [Step("Next: F1\nERROR: build failed in [/src/app]\n")])

        result = engine.run()

        assert result.status == "failed"
        assert result.failure is FailureKind.LEDGER_ERROR
        assert "[/src/app]" in engine.console.file.getvalue()

    def test_invalid_utf8_in_ledger_does_not_crash(self, make_config):
        config = make_config()
        config.progress_file.write_bytes(b"Next: F1 caf\xe9\n")
        engine, _ = make_engine(config, [Step("DONE: F1 - x\nRALPH_COMPLETE\n")])

        result = engine.run()

        assert result.status == "completed"
        assert result.last_task == "F1"

    def test_verification_failure(self, make_config):
        config = make_config(frontend_verify="exit 1")
        engine, _ = make_engine(config, [Step("DONE: F1 - x\nNext: F2\n")])

        result = engine.run()

        assert result.status == "failed"
        assert result.failure is FailureKind.VERIFICATION

    def test_verification_uses_routed_repo(self, make_config):
        config = make_config(backend_verify="exit 1", frontend_verify="true")
        engine, _ = make_engine(config, [Step("DONE: F1 - x\nRALPH_COMPLETE\n")])

        assert engine.run().status == "completed"

    def test_retries_exhausted(self, make_config):
        config = make_config(loop=LoopConfig(retry_on_error=2, pause_seconds=0))
        engine, agent = make_engine(config, [Step(exit_code=2)])

        result = engine.run()

        assert result.status == "failed"
        assert result.iterations == 3
        assert result.retries == 2
        assert len(agent.calls) == 3

    def test_retry_counter_resets_after_success(self, make_config):
        config = make_config(loop=LoopConfig(retry_on_error=1, pause_seconds=0))
        engine, _ = make_engine(
            config,
            [
                Step(exit_code=1),
                Step("DONE: F1 - a\nNext: F2\n"),
                Step(exit_code=1),
                Step("DONE: F2 - b\nRALPH_COMPLETE\n"),
            ],
        )

        result = engine.run()

        assert result.status == "completed"
        assert result.iterations == 4
        assert result.retries == 2

    def test_retries_count_as_iterations(self, make_config):
        config = make_config(loop=LoopConfig(max_iterations=2, retry_on_error=1, pause_seconds=0))
        engine, _ = make_engine(config, [Step(exit_code=1), Step("Next: F1\n")])

        result = engine.run()

        assert result.status == "max_iterations"
        assert result.iterations == 2


class TestHooks:
    """Test lifecycle hook invocation order."""

    def test_hooks_run_after_success_only(self, make_config):
        config = make_config(
            loop=LoopConfig(retry_on_error=1, pause_seconds=0),
            hooks=HooksConfig(post_task="post.sh", on_complete="done.sh"),
        )
        engine, _ = make_engine(
            config,
            [
                Step(exit_code=1),
                Step("DONE: F1 - a\nNext: F1.2\n"),
                Step("DONE: F1.2 - b\nRALPH_COMPLETE\n"),
            ],
        )

        with patch(
            "ralph_loop.engine.run_hook",
            side_effect=lambda name, script, root: HookResult(name=name, status="passed"),
        ) as mock_hook:
            engine.run()

        assert [call.args[0] for call in mock_hook.call_args_list] == [
            "post_task",
            "post_task",
            "on_complete",
        ]
        assert mock_hook.call_args_list[0].args[1] == "post.sh"
        assert mock_hook.call_args_list[0].args[2] == config.root

    def test_failing_hook_does_not_stop_loop(self, make_config):
        config = make_config(hooks=HooksConfig(post_task="post.sh"))
        (config.root / "post.sh").write_text("exit 9\n")
        engine, _ = make_engine(
            config, [Step("Next: F1\n"), Step("RALPH_COMPLETE\n")]
        )

        assert engine.run().status == "completed"

    def test_no_hooks_when_iteration_fails(self, make_config):
        config = make_config(hooks=HooksConfig(post_task="post.sh"))
        engine, _ = make_engine(config, [Step(exit_code=1)])

        with patch("ralph_loop.engine.run_hook") as mock_hook:
            engine.run()

        mock_hook.assert_not_called()


@requires_git
class TestGroupedCommits:
    """Test grouped commits across a full run."""

    def test_one_commit_per_group_transition(self, make_config, init_repo, commit_subjects):
        config = make_config(
            git=GitConfig(auto_commit=True),
            hooks=HooksConfig(post_group="group.sh"),
        )
        repo = init_repo(config.repos["frontend"].path)
        steps = [
            Step("DONE: F1.1 - Login form\nNext: F1.2\n", files={"a.txt": "a"}),
            Step("DONE: F1.2 - Validation\nNext: F1.3\n", files={"b.txt": "b"}),
            Step("DONE: F1.3 - Submit\nNext: F2.1\n", files={"c.txt": "c"}),
            Step("DONE: F2.1 - Dashboard\nNext: F2.2\n", files={"d.txt": "d"}),
            Step("DONE: F2.2 - Charts\nNext: F3.1\n", files={"e.txt": "e"}),
            Step("DONE: F3.1 - Settings\nRALPH_COMPLETE\n", files={"f.txt": "f"}),
        ]
        engine, _ = make_engine(config, steps)

        with patch(
            "ralph_loop.engine.run_hook",
            side_effect=lambda name, script, root: HookResult(name=name, status="passed"),
        ) as mock_hook:
            result = engine.run()

        assert result.status == "completed"
        assert result.commits == 3
        assert commit_subjects(repo) == [
            "ralph: F3 - Settings",
            "ralph: F2 - Dashboard",
            "ralph: F1 - Login form",
            "initial",
        ]
        hook_names = [call.args[0] for call in mock_hook.call_args_list]
        assert hook_names.count("post_group") == 2

    def test_no_commits_when_auto_commit_disabled(self, make_config, init_repo, commit_subjects):
        config = make_config()
        repo = init_repo(config.repos["frontend"].path)
        engine, _ = make_engine(
            config,
            [
                Step("DONE: F1 - a\nNext: F2\n", files={"a.txt": "a"}),
                Step("DONE: F2 - b\nRALPH_COMPLETE\n", files={"b.txt": "b"}),
            ],
        )

        result = engine.run()

        assert result.commits == 0
        assert commit_subjects(repo) == ["initial"]
