"""Task records stored as ``<root>/<PROJECT>/<n>.yml``.

The sprint engine only needs a small slice of task behaviour: lookup by id,
filtered search, and rewriting a task's ``sprints`` membership field. Fields
this module does not model are kept in ``extra`` and written back untouched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from .errors import NotFoundError, PersistenceError
from .storage import (
    LEGACY_SPRINTS_DIRNAME,
    RECORD_SUFFIX,
    numeric_stems,
    read_text,
    write_text_atomic,
)
from .timeutil import to_rfc3339, utc_now

logger = logging.getLogger(__name__)

_TASK_ID_RE = re.compile(r"^([A-Za-z][A-Za-z0-9_]*)-(\d+)$")
_PROJECT_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

_KNOWN_FIELDS = (
    "title",
    "status",
    "priority",
    "task_type",
    "reporter",
    "assignee",
    "created",
    "modified",
    "due_date",
    "effort",
    "tags",
    "sprints",
    "history",
)


@dataclass(frozen=True)
class TaskRecord:
    id: str
    title: str = ""
    status: str = "todo"
    priority: str | None = None
    task_type: str | None = None
    reporter: str | None = None
    assignee: str | None = None
    created: str | None = None
    modified: str | None = None
    due_date: str | None = None
    effort: str | None = None
    tags: tuple[str, ...] = ()
    sprints: tuple[int, ...] = ()
    history: tuple[dict, ...] = ()
    extra: dict = field(default_factory=dict, compare=False)

    @property
    def project(self) -> str:
        return split_task_id(self.id)[0]

    @property
    def number(self) -> int:
        return split_task_id(self.id)[1]


@dataclass(frozen=True)
class TaskFilter:
    """Criteria pushed down to task search. Empty fields match everything."""

    project: str | None = None
    tags: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()


def split_task_id(task_id: str) -> tuple[str, int]:
    """Split ``PROJ-12`` into ``("PROJ", 12)``.

    Raises:
        ValueError: If the id is not ``<PROJECT>-<number>``.
    """
    match = _TASK_ID_RE.match(task_id.strip())
    if not match:
        msg = f"Invalid task identifier '{task_id}'"
        raise ValueError(msg)
    return match.group(1).upper(), int(match.group(2))


def task_sort_key(task_id: str) -> tuple[str, int, str]:
    try:
        project, number = split_task_id(task_id)
    except ValueError:
        return (task_id, 0, task_id)
    return (project, number, task_id)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime | date):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _sprint_ids(value: Any) -> tuple[int, ...]:
    if value is None:
        return ()
    items = value if isinstance(value, list) else [value]
    ids = []
    for item in items:
        try:
            ids.append(int(str(item).lstrip("#")))
        except ValueError:
            logger.warning("Ignoring non-numeric sprint reference %r", item)
    return tuple(ids)


def task_from_dict(task_id: str, data: dict) -> TaskRecord:
    tags = data.get("tags") or []
    if not isinstance(tags, list):
        tags = [tags]
    history = data.get("history") or []
    return TaskRecord(
        id=task_id,
        title=_text(data.get("title")) or "",
        status=_text(data.get("status")) or "todo",
        priority=_text(data.get("priority")),
        task_type=_text(data.get("task_type")),
        reporter=_text(data.get("reporter")),
        assignee=_text(data.get("assignee")),
        created=_text(data.get("created")),
        modified=_text(data.get("modified")),
        due_date=_text(data.get("due_date")),
        effort=_text(data.get("effort")),
        tags=tuple(t for t in (_text(tag) for tag in tags) if t),
        sprints=_sprint_ids(data.get("sprints")),
        history=tuple(h for h in history if isinstance(h, dict)),
        extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
    )


def task_to_dict(task: TaskRecord) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for name in _KNOWN_FIELDS:
        value = getattr(task, name)
        if name in ("tags", "sprints", "history"):
            value = list(value)
        if value is None or value == [] or value == "":
            continue
        data[name] = value
    data.update(task.extra)
    return data


class TaskStore:
    """Task lookup, search, and write-back for a tasks root."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, task_id: str) -> Path:
        project, number = split_task_id(task_id)
        return self.root / project / f"{number}{RECORD_SUFFIX}"

    def _load(self, task_id: str, path: Path) -> TaskRecord:
        try:
            data = yaml.safe_load(read_text(path)) or {}
        except yaml.YAMLError as e:
            msg = f"Failed to parse task {task_id} ({path}): {e}"
            raise PersistenceError(msg) from e
        if not isinstance(data, dict):
            msg = f"Task {task_id} ({path}) is not a mapping"
            raise PersistenceError(msg)
        return task_from_dict(task_id, data)

    def projects(self) -> list[str]:
        """Project directories under the root, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.name
            for p in self.root.iterdir()
            if p.is_dir()
            and _PROJECT_RE.match(p.name)
            and p.name != LEGACY_SPRINTS_DIRNAME
        )

    def exists(self, task_id: str) -> bool:
        try:
            return self._path(task_id).is_file()
        except ValueError:
            return False

    def get(self, task_id: str) -> TaskRecord:
        """Get a task by its fully-qualified id.

        Raises:
            NotFoundError: If the id is malformed or no such task exists.
            PersistenceError: If the task file cannot be parsed.
        """
        try:
            path = self._path(task_id)
            canonical_id = "{}-{}".format(*split_task_id(task_id))
        except ValueError:
            msg = f"Task {task_id} not found."
            raise NotFoundError(msg) from None
        if not path.is_file():
            msg = f"Task {task_id} not found."
            raise NotFoundError(msg)
        return self._load(canonical_id, path)

    def iter_project(self, project: str) -> list[TaskRecord]:
        """All readable tasks in one project, sorted by number.

        Unreadable task files are logged and skipped.
        """
        tasks = []
        for number in numeric_stems(self.root / project):
            task_id = f"{project}-{number}"
            try:
                tasks.append(self._load(task_id, self.root / project / f"{number}{RECORD_SUFFIX}"))
            except PersistenceError as e:
                logger.warning("Skipping unreadable task: %s", e)
        return tasks

    def search(self, task_filter: TaskFilter | None = None) -> list[TaskRecord]:
        """Find tasks matching a filter, sorted by id.

        Tags match if the task carries any of the requested tags. Statuses
        and tags compare case-insensitively.
        """
        task_filter = task_filter or TaskFilter()
        projects = self.projects()
        if task_filter.project:
            wanted = task_filter.project.upper()
            projects = [p for p in projects if p.upper() == wanted]
        statuses = {s.lower() for s in task_filter.statuses}
        tags = {t.lower() for t in task_filter.tags}

        results = []
        for project in projects:
            for task in self.iter_project(project):
                if statuses and task.status.lower() not in statuses:
                    continue
                if tags and not tags.intersection(t.lower() for t in task.tags):
                    continue
                results.append(task)
        results.sort(key=lambda t: task_sort_key(t.id))
        return results

    def find_by_numeric_id(self, number: str) -> list[str]:
        """Ids of tasks in any project whose numeric suffix equals ``number``."""
        matches = []
        for project in self.projects():
            path = self.root / project / f"{int(number)}{RECORD_SUFFIX}"
            if path.is_file():
                matches.append(f"{project}-{int(number)}")
        return matches

    def edit(self, task: TaskRecord, *, touch: bool = True) -> TaskRecord:
        """Persist a full task record.

        Raises:
            NotFoundError: If the task does not exist.
            PersistenceError: If the file cannot be written.
        """
        path = self._path(task.id)
        if not path.is_file():
            msg = f"Task {task.id} not found."
            raise NotFoundError(msg)
        if touch:
            task = replace(task, modified=to_rfc3339(utc_now()))
        write_text_atomic(path, _dump(task))
        return task

    def create(self, project: str, title: str, **fields: Any) -> TaskRecord:
        """Create a task with the next free number in ``project``."""
        project = project.upper()
        if not _PROJECT_RE.match(project):
            msg = f"Invalid project name '{project}'"
            raise ValueError(msg)
        numbers = numeric_stems(self.root / project)
        number = (numbers[-1] + 1) if numbers else 1
        stamp = to_rfc3339(utc_now())
        fields.setdefault("created", stamp)
        fields.setdefault("modified", stamp)
        for name in ("tags", "sprints", "history"):
            if name in fields:
                fields[name] = tuple(fields[name])
        task = TaskRecord(id=f"{project}-{number}", title=title, **fields)
        write_text_atomic(self.root / project / f"{number}{RECORD_SUFFIX}", _dump(task))
        return task


def _dump(task: TaskRecord) -> str:
    return yaml.safe_dump(
        task_to_dict(task), sort_keys=False, allow_unicode=True, default_flow_style=False
    )
