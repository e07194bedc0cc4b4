"""Grouped commits at task-group boundaries.

A commit happens when the last completed task and the next task belong to
different task groups (F0.5 -> F1.1, or B1 -> B2). Subtasks inside one
group accumulate uncommitted edits until the group is left, so history gets
one commit per logical feature increment.
"""

import logging

from ralph_loop import git
from ralph_loop.config import RalphConfig
from ralph_loop.errors import GitError
from ralph_loop.ledger import ProgressLedger
from ralph_loop.models import CommitResult
from ralph_loop.task_id import group_of, same_group

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 60


def build_commit_message(prefix: str, group: str, description: str) -> str:
    """Format a group commit message, truncating the description."""
    description = description.strip()[:MAX_DESCRIPTION_LENGTH].rstrip()
    head = f"{prefix} {group}".strip()
    return f"{head} - {description}" if description else head


class CommitBoundaryManager:
    """Detects task-group transitions and commits the owning repo.

    Usage:
        manager = CommitBoundaryManager(config)
        result = manager.maybe_commit(ledger)
        if result.committed:
            ...
    """

    def __init__(self, config: RalphConfig) -> None:
        self.config = config

    def maybe_commit(self, ledger: ProgressLedger) -> CommitResult:
        """Commit the completed group if the ledger crossed a group boundary.

        Args:
            ledger: Progress ledger, read after the iteration finished

        Returns:
            CommitResult: committed, noop (no boundary or nothing to commit)
            or failed (git error, logged as a warning)
        """
        snapshot = ledger.snapshot()
        completed = snapshot.last_completed
        upcoming = snapshot.next_task
        if not completed or not upcoming:
            return CommitResult(status="noop")

        if same_group(completed, upcoming):
            return CommitResult(status="noop", group=group_of(completed))

        logger.info(f"Task group changed: {group_of(completed)} -> {group_of(upcoming)}")
        return self.commit_group(completed, ledger)

    def commit_final(self, ledger: ProgressLedger) -> CommitResult:
        """Commit the group of the last completed task, ignoring ``Next:``.

        Used once the ledger is complete so the trailing group is not left
        uncommitted.
        """
        completed = ledger.last_completed()
        if not completed:
            return CommitResult(status="noop")
        logger.info(f"Final commit for task group: {group_of(completed)}")
        return self.commit_group(completed, ledger)

    def commit_group(self, task_id: str, ledger: ProgressLedger) -> CommitResult:
        """Stage and commit every change in the repo that owns ``task_id``."""
        group = group_of(task_id)
        repo = self.config.route(task_id)

        if not repo.path.is_dir():
            logger.warning(f"Repo {repo.name} not found at {repo.path}, skipping commit")
            return CommitResult(status="noop", repo=repo.name, group=group)

        try:
            if not git.has_changes(repo.path):
                logger.info(f"No changes to commit in {repo.path}")
                return CommitResult(status="noop", repo=repo.name, group=group)

            message = build_commit_message(
                self.config.git.commit_prefix,
                group,
                ledger.description_for_group(group),
            )
            git.stage_all(repo.path)
            logger.info(f"Committing task group: {message}")
            git.commit(repo.path, message)
        except GitError as e:
            logger.warning(f"Commit failed in {repo.path}: {e.message}")
            return CommitResult(
                status="failed", repo=repo.name, group=group, error=e.message
            )

        return CommitResult(status="committed", repo=repo.name, group=group, message=message)
