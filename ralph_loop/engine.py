"""Iteration engine.

Drives the loop: route the next task to a repo, invoke the agent there,
check for failures (agent exit, ledger ERROR marker, verification), run the
post-task hook, commit at task-group boundaries, and stop on completion, on
the iteration limit, or when a failure has used up its retries.

The ledger is re-read at every step; the engine keeps no task state between
iterations apart from the iteration and retry counters.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from opentelemetry import trace
from rich.console import Console
from rich.markup import escape

from ralph_loop import telemetry
from ralph_loop.agent import AgentRunner
from ralph_loop.commit_boundary import CommitBoundaryManager
from ralph_loop.config import RalphConfig
from ralph_loop.hooks import run_hook
from ralph_loop.ledger import ProgressLedger
from ralph_loop.models import (
    CommitResult,
    FailureKind,
    HookResult,
    IterationResult,
    LoopResult,
)
from ralph_loop.verification import run_verification

logger = logging.getLogger(__name__)

RETRY_PAUSE_SECONDS = 2


class Agent(Protocol):
    def run(self, work_dir: Path, log_file: Path) -> int: ...


class IterationEngine:
    """Runs iterations until the ledger is complete or the loop must stop.

    Usage:
        engine = IterationEngine(config)
        result = engine.run()

    Attributes:
        config: Resolved loop configuration
        agent: Agent runner (defaults to AgentRunner for the configured CLI)
        ledger: Progress ledger reader
        committer: Commit-boundary manager
    """

    def __init__(
        self,
        config: RalphConfig,
        agent: Optional[Agent] = None,
        tracer: Optional[trace.Tracer] = None,
        console: Optional[Console] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.agent = agent or AgentRunner(config)
        self.ledger = ProgressLedger(config.progress_file)
        self.committer = CommitBoundaryManager(config)
        self.tracer = tracer or trace.get_tracer("ralph_loop")
        self.console = console or Console()
        self.sleep = sleep
        self.now = now

    def run(self) -> LoopResult:
        """Run the loop to one of its terminal states.

        Returns:
            LoopResult with status completed, max_iterations or failed
        """
        loop_config = self.config.loop
        started = time.monotonic()
        iteration = 0
        retry_count = 0
        total_retries = 0
        commits = 0
        last: Optional[IterationResult] = None

        def finish(
            status: str, failure: Optional[FailureKind] = None
        ) -> LoopResult:
            return LoopResult(
                status=status,  # type: ignore[arg-type]
                iterations=iteration,
                retries=total_retries,
                commits=commits,
                duration_seconds=time.monotonic() - started,
                failure=failure,
                last_log_file=last.log_file if last else None,
                last_task=last.task_id if last else "",
            )

        with self.tracer.start_as_current_span("ralph.loop") as loop_span:
            loop_span.set_attribute("loop.max_iterations", loop_config.max_iterations)
            loop_span.set_attribute("loop.retry_on_error", loop_config.retry_on_error)

            while True:
                iteration += 1
                last = self.run_iteration(iteration)

                if last.failure is not None:
                    if retry_count < loop_config.retry_on_error:
                        retry_count += 1
                        total_retries += 1
                        self._prepare_retry(last.failure, retry_count)
                        continue

                    self.console.print(
                        f"[red]Stopping: {last.failure.value} on task "
                        f"{escape(last.task_id or '(none)')} after {retry_count} retries[/red]"
                    )
                    self.console.print(f"Check log: {escape(str(last.log_file))}")
                    loop_span.set_attribute("loop.status", "failed")
                    return finish("failed", last.failure)

                retry_count = 0
                self._run_hook("post_task", self.config.hooks.post_task)

                if self.config.git.auto_commit:
                    commit = self.committer.maybe_commit(self.ledger)
                    self._record_commit(commit)
                    if commit.committed:
                        commits += 1
                        self._run_hook("post_group", self.config.hooks.post_group)

                if self.ledger.is_complete():
                    self.console.print("[bold green]All tasks completed![/bold green]")
                    if self.config.git.auto_commit:
                        commit = self.committer.commit_final(self.ledger)
                        self._record_commit(commit)
                        if commit.committed:
                            commits += 1
                    self._run_hook("on_complete", self.config.hooks.on_complete)
                    loop_span.set_attribute("loop.status", "completed")
                    return finish("completed")

                if iteration >= loop_config.max_iterations:
                    self.console.print(
                        f"[red]Hit max iterations limit ({loop_config.max_iterations})[/red]"
                    )
                    loop_span.set_attribute("loop.status", "max_iterations")
                    return finish("max_iterations")

                self.console.print(
                    f"Pausing {loop_config.pause_seconds}s before next iteration..."
                )
                self.sleep(loop_config.pause_seconds)
                self.console.print()

    def run_iteration(self, iteration: int) -> IterationResult:
        """Route, invoke the agent and run the gating checks once.

        Hooks and commits are not part of this step; they only run after a
        successful iteration.
        """
        started_at = self.now()
        log_file = self.log_path(iteration, started_at)
        self.console.print(
            f"[yellow]=== Iteration {iteration} started at "
            f"{started_at:%Y-%m-%d %H:%M:%S} ===[/yellow]"
        )

        task_id = self.ledger.next_task()
        repo = self.config.route(task_id)
        self.console.print(f"Next task: [blue]{escape(task_id or '(none)')}[/blue]")
        self.console.print(
            f"Working directory: [blue]{escape(str(repo.path))}[/blue] ({escape(repo.name)})"
        )

        with self.tracer.start_as_current_span("ralph.iteration") as span:
            span.set_attribute("iteration.number", iteration)
            span.set_attribute("task.id", task_id)
            span.set_attribute("repo.name", repo.name)

            start = time.monotonic()
            exit_code = self.agent.run(repo.path, log_file)
            duration = time.monotonic() - start
            self.console.print(f"Iteration {iteration} completed in [green]{duration:.0f}s[/green]")

            failure = self._check(exit_code, repo.path, repo.verify_command)

            span.set_attribute("agent.exit_code", exit_code)
            span.set_attribute("iteration.outcome", failure.value if failure else "ok")
            _record("iterations_counter", 1, {"outcome": failure.value if failure else "ok"})
            _record_duration(duration)

        return IterationResult(
            iteration=iteration,
            task_id=task_id,
            repo=repo.name,
            exit_code=exit_code,
            log_file=log_file,
            duration_seconds=duration,
            failure=failure,
        )

    def log_path(self, iteration: int, started_at: datetime) -> Path:
        return self.config.log_dir / f"iteration-{iteration}-{started_at:%Y%m%d-%H%M%S}.log"

    def _check(self, exit_code: int, work_dir: Path, verify_command: str) -> Optional[FailureKind]:
        if exit_code != 0:
            self.console.print(f"[red]ERROR: agent exited with code {exit_code}[/red]")
            return FailureKind.AGENT_EXIT

        errors = self.ledger.errors()
        if errors:
            self.console.print("[red]ERROR marker found in progress file[/red]")
            for error in errors:
                self.console.print(f"  ERROR: {escape(error)}")
            return FailureKind.LEDGER_ERROR

        if not run_verification(work_dir, verify_command).passed:
            self.console.print("[red]Verification failed after task completion[/red]")
            return FailureKind.VERIFICATION

        return None

    def _prepare_retry(self, failure: FailureKind, attempt: int) -> None:
        self.console.print(
            f"[yellow]Retrying... (attempt {attempt} of {self.config.loop.retry_on_error})[/yellow]"
        )
        if failure is FailureKind.LEDGER_ERROR:
            self.ledger.clear_error()
        _record("retries_counter", 1, {"failure": failure.value})
        self.sleep(RETRY_PAUSE_SECONDS)

    def _run_hook(self, name: str, script: str) -> HookResult:
        result = run_hook(name, script, self.config.root)
        if result.status == "failed":
            self.console.print(f"[red]{name} hook failed[/red]")
        return result

    def _record_commit(self, commit: CommitResult) -> None:
        _record("commits_counter", 1, {"status": commit.status})
        if commit.committed:
            self.console.print(
                f"[green]Committed task group {escape(commit.group or '')} "
                f"in {escape(commit.repo or '')}[/green]"
            )
        elif commit.status == "failed":
            self.console.print(
                f"[red]Commit failed in {escape(commit.repo or '')}: "
                f"{escape(commit.error or '')}[/red]"
            )


def _record(instrument_name: str, amount: int, attributes: dict[str, str]) -> None:
    # instruments only exist once create_metrics() has run
    counter = getattr(telemetry, instrument_name, None)
    if counter is not None:
        counter.add(amount, attributes)


def _record_duration(seconds: float) -> None:
    histogram = getattr(telemetry, "iteration_duration", None)
    if histogram is not None:
        histogram.record(seconds)
