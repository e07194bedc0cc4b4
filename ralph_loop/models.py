"""Result models for the Ralph loop.

Typed results replace raw exit codes inside the engine; only the CLI turns
a LoopResult back into a process exit code.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Optional


class FailureKind(str, Enum):
    """Retryable failure classes, in the order they are checked."""

    AGENT_EXIT = "agent_exit"
    LEDGER_ERROR = "ledger_error"
    VERIFICATION = "verification"


StepStatus = Literal["passed", "failed", "skipped"]


@dataclass
class VerificationResult:
    """Outcome of a repo verification command."""

    status: StepStatus
    command: str = ""
    returncode: Optional[int] = None

    @property
    def passed(self) -> bool:
        return self.status != "failed"


@dataclass
class HookResult:
    """Outcome of a lifecycle hook.

    Status values:
        passed: Script ran and exited 0, or is configured but missing
        failed: Script exited non-zero
        skipped: No script configured
    """

    name: str
    status: StepStatus
    script: str = ""
    returncode: Optional[int] = None


@dataclass
class CommitResult:
    """Outcome of a commit-boundary check."""

    status: Literal["committed", "noop", "failed"]
    repo: Optional[str] = None
    group: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status == "committed"


@dataclass
class SyncResult:
    """Outcome of synchronizing one repo with its mainline."""

    repo: str
    status: Literal["synced", "skipped", "failed"]
    message: str = ""


@dataclass
class IterationResult:
    """Outcome of one pass through routing, invoking, checking and verifying.

    A failed iteration carries the failure kind; the engine decides whether
    to retry it.
    """

    iteration: int
    task_id: str
    repo: str
    exit_code: int
    log_file: Path
    duration_seconds: float
    failure: Optional[FailureKind] = None


@dataclass
class LoopResult:
    """Final report of a loop run.

    Status values:
        completed: Ledger reached RALPH_COMPLETE
        max_iterations: Safety limit reached before completion
        failed: A retryable failure exhausted its retries
    """

    status: Literal["completed", "max_iterations", "failed"]
    iterations: int
    retries: int
    commits: int
    duration_seconds: float
    failure: Optional[FailureKind] = None
    last_log_file: Optional[Path] = None
    last_task: str = ""
