"""Task identifier parsing and repo routing.

Task identifiers look like ``<prefix><group>[.<subtask>]``, e.g. ``B3``,
``F0.2`` or ``API-USER-12.4``. The prefix selects which repository a task
belongs to; the ``(prefix, group)`` pair defines the task group used for
grouped commits.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

_TASK_ID_PATTERN = re.compile(r"^(?P<prefix>\D+)(?P<group>\d+)(?:\.(?P<subtask>.+))?$")


@dataclass(frozen=True)
class TaskId:
    """A parsed task identifier.

    Attributes:
        prefix: Leading run of non-digit characters (e.g. "F", "API-USER-")
        group: Digits that follow the prefix
        subtask: Text after the first dot, if any
    """

    prefix: str
    group: str
    subtask: Optional[str] = None

    @property
    def group_key(self) -> str:
        """Identifier of the task group (prefix + group, no subtask)."""
        return f"{self.prefix}{self.group}"

    def __str__(self) -> str:
        if self.subtask is None:
            return self.group_key
        return f"{self.group_key}.{self.subtask}"


def parse_task_id(task_id: str) -> TaskId:
    """Parse a task identifier into prefix, group and subtask.

    Args:
        task_id: Raw identifier such as "F1.2"

    Returns:
        TaskId with the decomposed parts

    Raises:
        ValueError: If the identifier does not follow the grammar
    """
    match = _TASK_ID_PATTERN.match(task_id.strip())
    if match is None:
        raise ValueError(f"Not a task identifier: {task_id!r}")
    return TaskId(
        prefix=match.group("prefix"),
        group=match.group("group"),
        subtask=match.group("subtask"),
    )


def group_of(task_id: str) -> str:
    """Return the task group of an identifier (F1.2 -> F1, B3 -> B3).

    Identifiers outside the grammar group on the text before the first dot,
    so the function is total and idempotent.
    """
    task_id = task_id.strip()
    try:
        return parse_task_id(task_id).group_key
    except ValueError:
        return task_id.split(".", 1)[0]


def same_group(first: str, second: str) -> bool:
    """True when both identifiers belong to the same task group."""
    return group_of(first) == group_of(second)


def route_repo(
    task_id: str,
    prefixes_by_repo: Mapping[str, Iterable[str]],
    default_repo: str,
) -> str:
    """Pick the repo a task belongs to by longest matching prefix.

    Ties between equally long prefixes go to the repo listed first. An empty
    identifier (no ``Next:`` line yet) or one that matches no prefix routes
    to ``default_repo``.

    Args:
        task_id: Task identifier, may be empty
        prefixes_by_repo: Repo name -> configured task prefixes, in table order
        default_repo: Fallback repo name

    Returns:
        Name of the repo that owns the task
    """
    task_id = task_id.strip()
    if not task_id:
        return default_repo

    best_repo = default_repo
    best_length = 0
    for repo_name, prefixes in prefixes_by_repo.items():
        for prefix in prefixes:
            if prefix and task_id.startswith(prefix) and len(prefix) > best_length:
                best_repo = repo_name
                best_length = len(prefix)
    return best_repo
