"""Lock for the orchestration root.

Only one loop process may drive a given orchestration root (and therefore
its repos and ledger) at a time. The lock file is created atomically; a
lock left behind by a dead process is removed and created again.
"""

import logging
import os
from pathlib import Path
from types import TracebackType

from ralph_loop.errors import LockHeldError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".ralph-loop.lock"


class LoopLock:
    """PID lock file in the orchestration root.

    Usage:
        with LoopLock(config.root):
            engine.run()

    Attributes:
        lock_path: Path to the lock file
    """

    def __init__(self, root: Path) -> None:
        self.lock_path = root / LOCK_FILE_NAME

    def acquire(self) -> bool:
        """Try to take the lock.

        Returns:
            True if this process now holds the lock, False if a live process
            (possibly this one) already does or won a concurrent takeover
        """
        if self._create():
            return True

        holder_pid = self.get_holder_pid()
        if holder_pid is not None and self._is_process_running(holder_pid):
            return False

        # Stale: remove it only if nobody replaced it since it was read
        if self.get_holder_pid() != holder_pid:
            return False
        logger.warning(f"Removing stale lock {self.lock_path} (PID: {holder_pid})")
        self.lock_path.unlink(missing_ok=True)
        return self._create()

    def release(self) -> None:
        """Remove the lock file if this process holds it."""
        if self.get_holder_pid() == os.getpid():
            self.lock_path.unlink(missing_ok=True)

    def get_holder_pid(self) -> int | None:
        """PID stored in the lock file, or None if absent or unreadable."""
        try:
            return int(self.lock_path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def _create(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def _is_process_running(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)  # signal 0 only checks existence
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by another user
            return True

    def __enter__(self) -> "LoopLock":
        """Acquire lock on context entry.

        Raises:
            LockHeldError: If another running process holds the lock
        """
        if not self.acquire():
            holder_pid = self.get_holder_pid()
            raise LockHeldError(
                message=f"Ralph loop already running (PID: {holder_pid})",
                error_code="LOCK-Held",
                details={"lock_path": str(self.lock_path), "pid": holder_pid},
            )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
