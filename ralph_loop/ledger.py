"""Progress ledger access.

The progress file is an append-only log written by the agent. The loop only
ever reads it, except for clearing ``ERROR:`` lines right before a retry.
Every accessor re-reads the file; nothing is cached between calls.

Recognized lines (matched by prefix, last one of each kind wins):

    DONE: <task-id> - <description>
    Next: <task-id>
    ERROR: <description>
    RALPH_COMPLETE
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ralph_loop.task_id import group_of

logger = logging.getLogger(__name__)

DONE_MARKER = "DONE:"
NEXT_MARKER = "Next:"
ERROR_MARKER = "ERROR:"
COMPLETE_MARKER = "RALPH_COMPLETE"


@dataclass(frozen=True)
class DoneEntry:
    """A completed-task record from a ``DONE:`` line."""

    task_id: str
    description: str


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable view of the ledger at the moment it was read.

    Attributes:
        done: All DONE entries in file order
        next_task: Task id from the last ``Next:`` line, "" if none
        errors: Text of every ``ERROR:`` line in file order
        complete: Whether a ``RALPH_COMPLETE`` line is present
    """

    done: tuple[DoneEntry, ...] = field(default_factory=tuple)
    next_task: str = ""
    errors: tuple[str, ...] = field(default_factory=tuple)
    complete: bool = False

    @classmethod
    def parse(cls, text: str) -> "LedgerSnapshot":
        """Build a snapshot from the raw ledger text."""
        done: list[DoneEntry] = []
        errors: list[str] = []
        next_task = ""
        complete = False

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if line.startswith(DONE_MARKER):
                entry = _parse_done(line[len(DONE_MARKER) :])
                if entry is not None:
                    done.append(entry)
            elif line.startswith(NEXT_MARKER):
                tokens = line[len(NEXT_MARKER) :].split()
                if tokens:
                    next_task = tokens[0]
            elif line.startswith(ERROR_MARKER):
                errors.append(line[len(ERROR_MARKER) :].strip())
            elif line.startswith(COMPLETE_MARKER):
                complete = True

        return cls(
            done=tuple(done),
            next_task=next_task,
            errors=tuple(errors),
            complete=complete,
        )

    @property
    def last_completed(self) -> str:
        """Task id of the most recent DONE line, "" if none."""
        return self.done[-1].task_id if self.done else ""

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    def description_for_group(self, group: str) -> str:
        """Description of the first DONE entry belonging to ``group``."""
        for entry in self.done:
            if group_of(entry.task_id) == group:
                return entry.description
        return ""


def _parse_done(rest: str) -> Optional[DoneEntry]:
    tokens = rest.split(maxsplit=1)
    if not tokens:
        return None
    task_id = tokens[0]
    tail = tokens[1] if len(tokens) > 1 else ""
    description = tail[1:].strip() if tail.startswith("-") else tail.strip()
    return DoneEntry(task_id=task_id, description=description)


class ProgressLedger:
    """Reader for the progress file, re-scanning it on every access.

    Usage:
        ledger = ProgressLedger(config.progress_file)
        if ledger.has_error():
            ledger.clear_error()
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read_bytes(self) -> bytes:
        """Raw ledger contents; a missing file reads as empty."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            logger.warning(f"Progress file not found: {self.path}")
            return b""

    def read_text(self) -> str:
        """Ledger text; bytes that are not valid UTF-8 decode as U+FFFD."""
        return self.read_bytes().decode("utf-8", errors="replace")

    def snapshot(self) -> LedgerSnapshot:
        """Parse a fresh snapshot of the ledger."""
        return LedgerSnapshot.parse(self.read_text())

    def last_completed(self) -> str:
        return self.snapshot().last_completed

    def next_task(self) -> str:
        return self.snapshot().next_task

    def has_error(self) -> bool:
        return self.snapshot().has_error

    def errors(self) -> tuple[str, ...]:
        return self.snapshot().errors

    def is_complete(self) -> bool:
        return self.snapshot().complete

    def description_for_group(self, group: str) -> str:
        return self.snapshot().description_for_group(group)

    def clear_error(self) -> int:
        """Remove every ``ERROR:`` line, keeping all other lines in order.

        Only called immediately before a retry.

        Returns:
            Number of lines removed
        """
        # line endings and undecodable bytes are written back as read
        lines = self.read_bytes().splitlines(keepends=True)
        marker = ERROR_MARKER.encode()
        kept = [line for line in lines if not line.strip().startswith(marker)]
        removed = len(lines) - len(kept)
        if removed:
            self.path.write_bytes(b"".join(kept))
            logger.info(f"Cleared {removed} ERROR line(s) from {self.path.name}")
        return removed
