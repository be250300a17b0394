"""Backlog: tasks that belong to no sprint."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .assignment import build_membership_index
from .errors import NotFoundError
from .identity import resolve_me_alias
from .sprint_model import SprintRecord
from .task_store import TaskFilter, TaskStore, task_sort_key

DEFAULT_BACKLOG_LIMIT = 20


@dataclass(frozen=True)
class SprintBacklogOptions:
    project: str | None = None
    tags: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    assignee: str | None = None
    limit: int = DEFAULT_BACKLOG_LIMIT  # 0 = unlimited


@dataclass(frozen=True)
class SprintBacklogEntry:
    id: str
    title: str
    status: str
    priority: str | None = None
    assignee: str | None = None
    due_date: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "assignee": self.assignee,
            "due_date": self.due_date,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class SprintBacklogResult:
    entries: list[SprintBacklogEntry]
    truncated: bool = False

    def to_dict(self) -> dict:
        return {
            "count": len(self.entries),
            "truncated": self.truncated,
            "tasks": [entry.to_dict() for entry in self.entries],
        }


def fetch_backlog(
    task_store: TaskStore,
    records: list[SprintRecord],
    options: SprintBacklogOptions,
    *,
    root: str | Path | None = None,
) -> SprintBacklogResult:
    """List tasks in no sprint, filtered and sorted by id.

    Project, tag, and status filters are pushed down to the task search.
    ``@me`` as the assignee resolves to the current user.

    Raises:
        NotFoundError: If the assignee alias cannot be resolved.
    """
    assignee = None
    if options.assignee and options.assignee.strip():
        assignee = resolve_me_alias(options.assignee, root or task_store.root)
        if not assignee:
            msg = (
                f"Unable to resolve assignee '{options.assignee}'. Set "
                "FILETRACK_IDENTITY or default_reporter, or provide the full value."
            )
            raise NotFoundError(msg)

    index = build_membership_index(records)
    candidates = task_store.search(
        TaskFilter(
            project=options.project, tags=options.tags, statuses=options.statuses
        )
    )
    entries = []
    for task in candidates:
        if task.id in index:
            continue
        if assignee and (task.assignee or "").lower() != assignee.lower():
            continue
        entries.append(
            SprintBacklogEntry(
                id=task.id,
                title=task.title,
                status=task.status,
                priority=task.priority,
                assignee=task.assignee,
                due_date=task.due_date,
                tags=list(task.tags),
            )
        )

    entries.sort(key=lambda entry: task_sort_key(entry.id))
    truncated = False
    if options.limit and len(entries) > options.limit:
        entries = entries[: options.limit]
        truncated = True
    return SprintBacklogResult(entries=entries, truncated=truncated)
