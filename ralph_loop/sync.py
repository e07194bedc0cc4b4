"""Pre-loop synchronization of each repo with its mainline."""

import logging

from ralph_loop import git
from ralph_loop.config import RalphConfig, RepoConfig
from ralph_loop.errors import GitError
from ralph_loop.models import SyncResult

logger = logging.getLogger(__name__)


class RepoSyncManager:
    """Puts every tracked repo on the feature branch and merges mainline in.

    Runs once before the first iteration. Failures are reported per repo
    and never stop the loop; a merge conflict is left in place for the
    operator to resolve.
    """

    def __init__(self, config: RalphConfig) -> None:
        self.config = config

    def sync_all(self) -> list[SyncResult]:
        return [self.sync_repo(repo) for repo in self.config.repos.values()]

    def sync_repo(self, repo: RepoConfig) -> SyncResult:
        """Sync a single repo.

        Returns:
            SyncResult: skipped when the directory does not exist, failed on
            any git error, synced otherwise
        """
        if not repo.path.is_dir():
            logger.debug(f"Skipping sync for {repo.name} (not found: {repo.path})")
            return SyncResult(repo=repo.name, status="skipped", message="not found")

        settings = self.config.git
        upstream = f"{settings.remote}/{settings.main_branch}"
        logger.info(f"Syncing {repo.name} with {upstream}")

        try:
            branch = settings.feature_branch
            if branch and git.current_branch(repo.path) != branch:
                logger.info(f"{repo.name}: not on {branch}, switching")
                git.checkout(repo.path, branch, create=not git.branch_exists(repo.path, branch))

            git.fetch(repo.path, settings.remote, settings.main_branch)
            git.merge(repo.path, upstream)
        except GitError as e:
            logger.error(
                f"Sync failed for {repo.name}: {e.message}. Please resolve manually."
            )
            return SyncResult(repo=repo.name, status="failed", message=e.message)

        logger.info(f"{repo.name} synced with {upstream}")
        return SyncResult(repo=repo.name, status="synced")
