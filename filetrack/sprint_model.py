"""Sprint record model, canonicalization, and YAML codec.

Sprints are immutable values. Every change produces a new ``Sprint`` via
``dataclasses.replace`` or the ``with_*`` helpers, so the same record can
be shared between "target" and "other sprints" views without aliasing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any

import yaml

# --- Data Models ---


@dataclass(frozen=True)
class SprintCapacity:
    points: int | None = None
    hours: int | None = None


@dataclass(frozen=True)
class SprintPlan:
    label: str | None = None
    goal: str | None = None
    length: str | None = None
    ends_at: str | None = None
    starts_at: str | None = None
    capacity: SprintCapacity | None = None
    overdue_after: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SprintActual:
    started_at: str | None = None
    closed_at: str | None = None


@dataclass(frozen=True)
class SprintTaskEntry:
    """Membership entry. ``order`` is an input hint only and is never stored."""

    id: str
    order: int | None = None


@dataclass(frozen=True)
class HistoryChange:
    field: str | None = None
    old: str | None = None
    new: str | None = None


@dataclass(frozen=True)
class HistoryEntry:
    at: str | None = None
    actor: str | None = None
    changes: tuple[HistoryChange, ...] = ()


@dataclass(frozen=True)
class Sprint:
    created: str | None = None
    modified: str | None = None
    plan: SprintPlan | None = None
    actual: SprintActual | None = None
    tasks: tuple[SprintTaskEntry, ...] = ()
    history: tuple[HistoryEntry, ...] = ()

    @property
    def task_ids(self) -> list[str]:
        return [entry.id for entry in self.tasks]

    @property
    def label(self) -> str | None:
        return self.plan.label if self.plan else None

    @property
    def started_at(self) -> str | None:
        return self.actual.started_at if self.actual else None

    @property
    def closed_at(self) -> str | None:
        return self.actual.closed_at if self.actual else None


@dataclass(frozen=True)
class SprintRecord:
    """A sprint paired with its integer id."""

    id: int
    sprint: Sprint

    @property
    def display_name(self) -> str:
        return sprint_display_name(self)


class CanonicalizationWarning(Enum):
    """Informational notes produced while normalizing a sprint."""

    LENGTH_DISCARDED_IN_FAVOR_OF_ENDS_AT = "length_discarded_in_favor_of_ends_at"

    @property
    def code(self) -> str:
        return self.value

    @property
    def message(self) -> str:
        return _WARNING_MESSAGES[self]

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


_WARNING_MESSAGES = {
    CanonicalizationWarning.LENGTH_DISCARDED_IN_FAVOR_OF_ENDS_AT: (
        "plan.length was ignored because plan.ends_at was provided."
    ),
}


def sprint_display_name(record: SprintRecord) -> str:
    """Label of the sprint, or ``Sprint <id>`` when it has none."""
    label = record.sprint.label
    return label if label else f"Sprint {record.id}"


# --- Canonicalization ---


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _clean_capacity(capacity: SprintCapacity | None) -> SprintCapacity | None:
    if capacity is None:
        return None
    points = capacity.points or None
    hours = capacity.hours or None
    if points is None and hours is None:
        return None
    return SprintCapacity(points=points, hours=hours)


def _clean_plan(
    plan: SprintPlan | None, warnings: list[CanonicalizationWarning]
) -> SprintPlan | None:
    if plan is None:
        return None
    cleaned = SprintPlan(
        label=_clean(plan.label),
        goal=_clean(plan.goal),
        length=_clean(plan.length),
        ends_at=_clean(plan.ends_at),
        starts_at=_clean(plan.starts_at),
        capacity=_clean_capacity(plan.capacity),
        overdue_after=_clean(plan.overdue_after),
        notes=_clean(plan.notes),
    )
    if cleaned.ends_at and cleaned.length:
        cleaned = replace(cleaned, length=None)
        warnings.append(CanonicalizationWarning.LENGTH_DISCARDED_IN_FAVOR_OF_ENDS_AT)
    if cleaned == SprintPlan():
        return None
    return cleaned


def _clean_actual(actual: SprintActual | None) -> SprintActual | None:
    if actual is None:
        return None
    cleaned = SprintActual(
        started_at=_clean(actual.started_at), closed_at=_clean(actual.closed_at)
    )
    if cleaned == SprintActual():
        return None
    return cleaned


def _clean_tasks(tasks: tuple[SprintTaskEntry, ...]) -> tuple[SprintTaskEntry, ...]:
    seen: set[str] = set()
    result = []
    for entry in tasks:
        task_id = _clean(entry.id)
        if task_id is None or task_id in seen:
            continue
        seen.add(task_id)
        result.append(SprintTaskEntry(id=task_id))
    return tuple(result)


def _clean_history(history: tuple[HistoryEntry, ...]) -> tuple[HistoryEntry, ...]:
    result = []
    for entry in history:
        changes = tuple(
            change
            for change in (
                HistoryChange(
                    field=_clean(c.field),
                    old=c.old,
                    new=c.new,
                )
                for c in entry.changes
            )
            if change.field or change.old is not None or change.new is not None
        )
        at = _clean(entry.at)
        actor = _clean(entry.actor)
        if at is None and actor is None and not changes:
            continue
        result.append(HistoryEntry(at=at, actor=actor, changes=changes))
    return tuple(result)


def canonicalize(sprint: Sprint) -> tuple[Sprint, list[CanonicalizationWarning]]:
    """Normalize a sprint before it is persisted.

    Returns:
        The normalized sprint and any warnings. Canonicalizing an already
        canonical sprint returns an equal value and no warnings.
    """
    warnings: list[CanonicalizationWarning] = []
    canonical = Sprint(
        created=_clean(sprint.created),
        modified=_clean(sprint.modified),
        plan=_clean_plan(sprint.plan, warnings),
        actual=_clean_actual(sprint.actual),
        tasks=_clean_tasks(sprint.tasks),
        history=_clean_history(sprint.history),
    )
    return canonical, warnings


# --- Membership helpers ---


def contains_task(sprint: Sprint, task_id: str) -> bool:
    return any(entry.id == task_id for entry in sprint.tasks)


def with_task_added(sprint: Sprint, task_id: str) -> Sprint:
    """Return a copy with ``task_id`` appended, unchanged if already present."""
    if contains_task(sprint, task_id):
        return sprint
    return replace(sprint, tasks=(*sprint.tasks, SprintTaskEntry(id=task_id)))


def with_task_removed(sprint: Sprint, task_id: str) -> Sprint:
    """Return a copy without ``task_id``, unchanged if it was absent."""
    if not contains_task(sprint, task_id):
        return sprint
    return replace(
        sprint, tasks=tuple(entry for entry in sprint.tasks if entry.id != task_id)
    )


# --- YAML codec ---


def _text(value: Any) -> str | None:
    """Coerce a loaded scalar to text. YAML turns bare dates into date objects."""
    if value is None:
        return None
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def _int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"{field_name} must be an integer"
        raise ValueError(msg)
    try:
        return int(value)
    except (TypeError, ValueError):
        msg = f"{field_name} must be an integer (got {value!r})"
        raise ValueError(msg) from None


def _mapping(value: Any, field_name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"{field_name} must be a mapping"
        raise ValueError(msg)
    return value


def _task_entry_from(value: Any) -> SprintTaskEntry:
    if isinstance(value, dict):
        return SprintTaskEntry(
            id=_text(value.get("id")) or "",
            order=_int(value.get("order"), "tasks[].order"),
        )
    return SprintTaskEntry(id=_text(value) or "")


def _history_from(value: Any) -> HistoryEntry:
    data = _mapping(value, "history[]")
    changes = tuple(
        HistoryChange(
            field=_text(c.get("field")),
            old=_text(c.get("old")),
            new=_text(c.get("new")),
        )
        for c in (_mapping(item, "history[].changes[]") for item in data.get("changes") or [])
    )
    return HistoryEntry(
        at=_text(data.get("at")), actor=_text(data.get("actor")), changes=changes
    )


def sprint_from_dict(data: Any) -> Sprint:
    """Build a Sprint from a parsed YAML document.

    Raises:
        ValueError: If the document does not have the sprint shape.
    """
    data = _mapping(data, "sprint")
    plan_data = data.get("plan")
    plan = None
    if plan_data is not None:
        plan_data = _mapping(plan_data, "plan")
        capacity = None
        if plan_data.get("capacity") is not None:
            cap = _mapping(plan_data["capacity"], "plan.capacity")
            capacity = SprintCapacity(
                points=_int(cap.get("points"), "plan.capacity.points"),
                hours=_int(cap.get("hours"), "plan.capacity.hours"),
            )
        plan = SprintPlan(
            label=_text(plan_data.get("label")),
            goal=_text(plan_data.get("goal")),
            length=_text(plan_data.get("length")),
            ends_at=_text(plan_data.get("ends_at")),
            starts_at=_text(plan_data.get("starts_at")),
            capacity=capacity,
            overdue_after=_text(plan_data.get("overdue_after")),
            notes=_text(plan_data.get("notes")),
        )
    actual = None
    if data.get("actual") is not None:
        actual_data = _mapping(data["actual"], "actual")
        actual = SprintActual(
            started_at=_text(actual_data.get("started_at")),
            closed_at=_text(actual_data.get("closed_at")),
        )
    tasks = data.get("tasks") or []
    history = data.get("history") or []
    if not isinstance(tasks, list) or not isinstance(history, list):
        msg = "tasks and history must be lists"
        raise ValueError(msg)
    return Sprint(
        created=_text(data.get("created")),
        modified=_text(data.get("modified")),
        plan=plan,
        actual=actual,
        tasks=tuple(_task_entry_from(item) for item in tasks),
        history=tuple(_history_from(item) for item in history),
    )


def _compact(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    return {key: value for key, value in pairs if value is not None and value != []}


def sprint_to_dict(sprint: Sprint) -> dict[str, Any]:
    """Serialize a Sprint, omitting absent fields."""
    plan = None
    if sprint.plan is not None:
        p = sprint.plan
        capacity = None
        if p.capacity is not None:
            capacity = _compact(
                [("points", p.capacity.points), ("hours", p.capacity.hours)]
            ) or None
        plan = _compact(
            [
                ("label", p.label),
                ("goal", p.goal),
                ("length", p.length),
                ("ends_at", p.ends_at),
                ("starts_at", p.starts_at),
                ("capacity", capacity),
                ("overdue_after", p.overdue_after),
                ("notes", p.notes),
            ]
        ) or None
    actual = None
    if sprint.actual is not None:
        actual = _compact(
            [
                ("started_at", sprint.actual.started_at),
                ("closed_at", sprint.actual.closed_at),
            ]
        ) or None
    tasks = [
        entry.id if entry.order is None else {"id": entry.id, "order": entry.order}
        for entry in sprint.tasks
    ]
    history = [
        _compact(
            [
                ("at", entry.at),
                ("actor", entry.actor),
                (
                    "changes",
                    [
                        _compact(
                            [("field", c.field), ("old", c.old), ("new", c.new)]
                        )
                        for c in entry.changes
                    ],
                ),
            ]
        )
        for entry in sprint.history
    ]
    return _compact(
        [
            ("created", sprint.created),
            ("modified", sprint.modified),
            ("plan", plan),
            ("actual", actual),
            ("tasks", tasks),
            ("history", history),
        ]
    )


def dump_sprint_yaml(sprint: Sprint) -> str:
    return yaml.safe_dump(
        sprint_to_dict(sprint),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def load_sprint_yaml(text: str) -> Sprint:
    """Parse YAML text into a Sprint. Empty documents load as an empty sprint.

    Raises:
        ValueError: If the text is not valid YAML or not a sprint mapping.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        msg = f"Invalid sprint YAML: {e}"
        raise ValueError(msg) from e
    return sprint_from_dict(data or {})
