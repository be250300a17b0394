"""Sprint metrics: stats, review, summary, burndown, and velocity payloads.

Everything here is read-only. Payloads are plain dicts ready for JSON.
Ratios never divide by zero; an empty denominator reports 0.0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from .config import TrackerConfig, load_config
from .errors import NotFoundError, PersistenceError
from .lifecycle import SprintLifecycleState, SprintLifecycleStatus, derive_status
from .sprint_model import SprintRecord
from .task_store import TaskRecord, TaskStore, task_sort_key
from .timeutil import (
    duration_to_days,
    format_duration,
    parse_effort,
    to_rfc3339,
    try_parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_VELOCITY_WINDOW = 6
METRICS = ("tasks", "points", "hours")


def ratio(done: float, total: float) -> float:
    if not total:
        return 0.0
    return round(done / total, 4)


def _fmt(value: datetime | None) -> str | None:
    return to_rfc3339(value) if value else None


# --- Task aggregation ---


@dataclass(frozen=True)
class SprintReviewTask:
    id: str
    title: str
    status: str
    assignee: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "assignee": self.assignee,
        }


@dataclass(frozen=True)
class StatusMetric:
    status: str
    count: int
    done: bool

    def to_dict(self) -> dict:
        return {"status": self.status, "count": self.count, "done": self.done}


@dataclass
class SprintTaskMetrics:
    total_tasks: int = 0
    done_tasks: int = 0
    status_breakdown: list[StatusMetric] = field(default_factory=list)
    remaining: list[SprintReviewTask] = field(default_factory=list)
    blocked: list[SprintReviewTask] = field(default_factory=list)
    total_points: float = 0.0
    done_points: float = 0.0
    total_hours: float = 0.0
    done_hours: float = 0.0

    @property
    def remaining_tasks(self) -> int:
        return self.total_tasks - self.done_tasks

    @property
    def remaining_points(self) -> float:
        return max(self.total_points - self.done_points, 0.0)

    @property
    def remaining_hours(self) -> float:
        return max(self.total_hours - self.done_hours, 0.0)


def task_effort(task: TaskRecord) -> tuple[float, float]:
    """(points, hours) for a task. Missing or invalid estimates count as zero."""
    if not task.effort:
        return 0.0, 0.0
    try:
        effort = parse_effort(task.effort)
    except ValueError:
        logger.debug("Ignoring invalid effort %r on %s", task.effort, task.id)
        return 0.0, 0.0
    if effort.kind == "points":
        return effort.value, 0.0
    return 0.0, effort.value


def load_sprint_tasks(record: SprintRecord, task_store: TaskStore) -> list[TaskRecord]:
    """Tasks listed in a sprint. Ids that no longer resolve are skipped."""
    tasks = []
    for task_id in record.sprint.task_ids:
        try:
            tasks.append(task_store.get(task_id))
        except (NotFoundError, PersistenceError) as e:
            logger.debug("Skipping sprint #%d member: %s", record.id, e)
    return tasks


def summarize_sprint_tasks(
    tasks: list[TaskRecord], config: TrackerConfig
) -> SprintTaskMetrics:
    metrics = SprintTaskMetrics()
    counts: dict[str, tuple[str, int]] = {}
    for task in tasks:
        metrics.total_tasks += 1
        is_done = config.is_done(task.status)
        points, hours = task_effort(task)
        metrics.total_points += points
        metrics.total_hours += hours
        if is_done:
            metrics.done_tasks += 1
            metrics.done_points += points
            metrics.done_hours += hours
        key = task.status.lower()
        label, count = counts.get(key, (task.status, 0))
        counts[key] = (label, count + 1)

        review_task = SprintReviewTask(
            id=task.id, title=task.title, status=task.status, assignee=task.assignee
        )
        if not is_done:
            metrics.remaining.append(review_task)
        if config.is_blocked(task.status):
            metrics.blocked.append(review_task)

    metrics.status_breakdown = [
        StatusMetric(status=label, count=count, done=config.is_done(label))
        for _, (label, count) in sorted(counts.items())
    ]
    metrics.remaining.sort(key=lambda t: (t.status.lower(), task_sort_key(t.id)))
    metrics.blocked.sort(key=lambda t: task_sort_key(t.id))
    return metrics


# --- Durations ---


@dataclass(frozen=True)
class SprintDurations:
    planned: timedelta | None = None
    actual: timedelta | None = None
    elapsed: timedelta | None = None
    remaining: timedelta | None = None
    overdue: timedelta | None = None


def compute_sprint_durations(
    lifecycle: SprintLifecycleStatus, now: datetime
) -> SprintDurations:
    planned = None
    if lifecycle.planned_start and lifecycle.planned_end:
        planned = lifecycle.planned_end - lifecycle.planned_start
    actual = None
    elapsed = None
    if lifecycle.actual_start:
        if lifecycle.actual_end:
            actual = lifecycle.actual_end - lifecycle.actual_start
        elapsed = (lifecycle.actual_end or now) - lifecycle.actual_start
    remaining = None
    overdue = None
    if lifecycle.state is not SprintLifecycleState.COMPLETE and lifecycle.computed_end:
        if lifecycle.computed_end >= now:
            remaining = lifecycle.computed_end - now
        elif lifecycle.state is SprintLifecycleState.OVERDUE:
            overdue = now - lifecycle.computed_end
    return SprintDurations(
        planned=planned,
        actual=actual,
        elapsed=elapsed,
        remaining=remaining,
        overdue=overdue,
    )


def _days(value: timedelta | None) -> float | None:
    return duration_to_days(value) if value is not None else None


def _timeline(lifecycle: SprintLifecycleStatus, durations: SprintDurations) -> dict:
    return {
        "planned_start": _fmt(lifecycle.planned_start),
        "actual_start": _fmt(lifecycle.actual_start),
        "planned_end": _fmt(lifecycle.planned_end),
        "computed_end": _fmt(lifecycle.computed_end),
        "actual_end": _fmt(lifecycle.actual_end),
        "planned_duration_days": _days(durations.planned),
        "actual_duration_days": _days(durations.actual),
        "elapsed_days": _days(durations.elapsed),
        "remaining_days": _days(durations.remaining),
        "overdue_days": _days(durations.overdue),
        "elapsed": format_duration(durations.elapsed) if durations.elapsed else None,
        "remaining": format_duration(durations.remaining)
        if durations.remaining
        else None,
        "overdue": format_duration(durations.overdue) if durations.overdue else None,
    }


# --- Payloads ---


def sprint_detail(record: SprintRecord) -> dict:
    """JSON view of a sprint record."""
    sprint = record.sprint
    plan = sprint.plan
    capacity = plan.capacity if plan else None
    return {
        "id": record.id,
        "label": sprint.label,
        "display_name": record.display_name,
        "goal": plan.goal if plan else None,
        "length": plan.length if plan else None,
        "starts_at": plan.starts_at if plan else None,
        "ends_at": plan.ends_at if plan else None,
        "overdue_after": plan.overdue_after if plan else None,
        "notes": plan.notes if plan else None,
        "capacity": {
            "points": capacity.points if capacity else None,
            "hours": capacity.hours if capacity else None,
        },
        "started_at": sprint.started_at,
        "closed_at": sprint.closed_at,
        "created": sprint.created,
        "modified": sprint.modified,
        "tasks": sprint.task_ids,
        "task_count": len(sprint.tasks),
    }


def _counts_payload(metrics: SprintTaskMetrics) -> dict:
    return {
        "committed": metrics.total_tasks,
        "done": metrics.done_tasks,
        "remaining": metrics.remaining_tasks,
        "completion_ratio": ratio(metrics.done_tasks, metrics.total_tasks),
    }


def _effort_payload(
    committed: float, done: float, capacity: int | None
) -> dict | None:
    if not committed and not capacity:
        return None
    return {
        "committed": committed,
        "done": done,
        "remaining": max(committed - done, 0.0),
        "completion_ratio": ratio(done, committed),
        "capacity": capacity,
        "capacity_commitment_ratio": ratio(committed, capacity) if capacity else None,
        "capacity_consumed_ratio": ratio(done, capacity) if capacity else None,
    }


def _capacity(record: SprintRecord) -> tuple[int | None, int | None]:
    plan = record.sprint.plan
    if plan is None or plan.capacity is None:
        return None, None
    return plan.capacity.points, plan.capacity.hours


def _prepare(
    record: SprintRecord,
    task_store: TaskStore,
    config: TrackerConfig | None,
    now: datetime | None,
) -> tuple[TrackerConfig, datetime, SprintLifecycleStatus, SprintTaskMetrics]:
    config = config or load_config(task_store.root)
    now = now or utc_now()
    lifecycle = derive_status(record.sprint, now)
    metrics = summarize_sprint_tasks(load_sprint_tasks(record, task_store), config)
    return config, now, lifecycle, metrics


def compute_sprint_stats(
    record: SprintRecord,
    task_store: TaskStore,
    *,
    config: TrackerConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """Completion, effort, capacity, and timeline figures for one sprint."""
    config, now, lifecycle, metrics = _prepare(record, task_store, config, now)
    points_capacity, hours_capacity = _capacity(record)
    durations = compute_sprint_durations(lifecycle, now)
    return {
        "status": "ok",
        "sprint": sprint_detail(record),
        "lifecycle": lifecycle.to_dict(),
        "metrics": {
            "tasks": _counts_payload(metrics),
            "points": _effort_payload(
                metrics.total_points, metrics.done_points, points_capacity
            ),
            "hours": _effort_payload(
                metrics.total_hours, metrics.done_hours, hours_capacity
            ),
            "status_breakdown": [m.to_dict() for m in metrics.status_breakdown],
        },
        "timeline": _timeline(lifecycle, durations),
    }


def compute_sprint_review(
    record: SprintRecord,
    task_store: TaskStore,
    *,
    config: TrackerConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """End-of-sprint review: what got done and what is left."""
    config, now, lifecycle, metrics = _prepare(record, task_store, config, now)
    return {
        "status": "ok",
        "sprint": sprint_detail(record),
        "lifecycle": lifecycle.to_dict(),
        "metrics": {
            "total_tasks": metrics.total_tasks,
            "done_tasks": metrics.done_tasks,
            "remaining_tasks": metrics.remaining_tasks,
            "status_breakdown": [m.to_dict() for m in metrics.status_breakdown],
        },
        "remaining_tasks": [t.to_dict() for t in metrics.remaining],
    }


def compute_sprint_summary(
    record: SprintRecord,
    task_store: TaskStore,
    *,
    config: TrackerConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """Headline numbers plus blocked tasks."""
    config, now, lifecycle, metrics = _prepare(record, task_store, config, now)
    points_capacity, hours_capacity = _capacity(record)
    return {
        "status": "ok",
        "sprint": sprint_detail(record),
        "lifecycle": lifecycle.to_dict(),
        "metrics": {
            "tasks": _counts_payload(metrics),
            "points": _effort_payload(
                metrics.total_points, metrics.done_points, points_capacity
            ),
            "hours": _effort_payload(
                metrics.total_hours, metrics.done_hours, hours_capacity
            ),
            "blocked": len(metrics.blocked),
        },
        "timeline": _timeline(lifecycle, compute_sprint_durations(lifecycle, now)),
        "blocked_tasks": [t.to_dict() for t in metrics.blocked],
    }


# --- Burndown ---


def task_done_at(task: TaskRecord, config: TrackerConfig) -> datetime | None:
    """When a currently-done task reached a done status.

    Uses the latest history entry that moved the status to a done value,
    falling back to the task's modified (then created) time.
    """
    if not config.is_done(task.status):
        return None
    latest: datetime | None = None
    for entry in task.history:
        at = try_parse_datetime(str(entry.get("at") or ""))
        if at is None:
            continue
        for change in entry.get("changes") or []:
            if not isinstance(change, dict) or change.get("field") != "status":
                continue
            if config.is_done(str(change.get("new") or "")) and (
                latest is None or at > latest
            ):
                latest = at
    return latest or try_parse_datetime(task.modified) or try_parse_datetime(task.created)


def _burndown_window(
    lifecycle: SprintLifecycleStatus, tasks: list[TaskRecord], now: datetime
) -> tuple[datetime, datetime]:
    start = lifecycle.actual_start or lifecycle.planned_start
    if start is None:
        created = [c for c in (try_parse_datetime(t.created) for t in tasks) if c]
        start = min(created) if created else now
    ends = [
        e
        for e in (lifecycle.actual_end, lifecycle.computed_end, lifecycle.planned_end)
        if e is not None
    ]
    end = max(ends) if ends else now
    return start, max(end, start + timedelta(days=1))


def compute_sprint_burndown(
    record: SprintRecord,
    task_store: TaskStore,
    *,
    config: TrackerConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """Daily remaining-work series with an ideal line."""
    config = config or load_config(task_store.root)
    now = now or utc_now()
    lifecycle = derive_status(record.sprint, now)
    tasks = load_sprint_tasks(record, task_store)
    start, end = _burndown_window(lifecycle, tasks, now)

    items = []
    for task in tasks:
        points, hours = task_effort(task)
        items.append((task_done_at(task, config), points, hours))
    total_tasks = len(items)
    total_points = sum(points for _, points, _ in items)
    total_hours = sum(hours for _, _, hours in items)

    first_day = start.astimezone(UTC).date()
    last_day = end.astimezone(UTC).date()
    days = (last_day - first_day).days + 1
    series = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        cutoff = datetime(day.year, day.month, day.day, tzinfo=UTC) + timedelta(days=1)
        open_items = [item for item in items if item[0] is None or item[0] >= cutoff]
        progress = offset / (days - 1) if days > 1 else 1.0
        point = {
            "date": day.isoformat(),
            "remaining_tasks": len(open_items),
            "ideal_tasks": round(total_tasks * (1 - progress), 2),
        }
        if total_points:
            point["remaining_points"] = sum(p for _, p, _ in open_items)
            point["ideal_points"] = round(total_points * (1 - progress), 2)
        if total_hours:
            point["remaining_hours"] = sum(h for _, _, h in open_items)
            point["ideal_hours"] = round(total_hours * (1 - progress), 2)
        series.append(point)

    return {
        "status": "ok",
        "sprint": sprint_detail(record),
        "lifecycle": lifecycle.to_dict(),
        "totals": {
            "tasks": total_tasks,
            "points": total_points or None,
            "hours": total_hours or None,
        },
        "series": series,
    }


# --- Velocity ---


def compute_velocity(
    records: list[SprintRecord],
    task_store: TaskStore,
    *,
    config: TrackerConfig | None = None,
    limit: int = DEFAULT_VELOCITY_WINDOW,
    include_active: bool = False,
    metric: str = "tasks",
    now: datetime | None = None,
) -> dict:
    """Completed work per sprint over the most recent sprints.

    Only Complete sprints count unless ``include_active`` is set. Entries
    are ordered newest first and capped at ``limit`` (0 = unlimited).

    Raises:
        ValueError: If ``metric`` is not tasks, points, or hours.
    """
    if metric not in METRICS:
        msg = f"Unknown velocity metric '{metric}'. Expected one of: {', '.join(METRICS)}"
        raise ValueError(msg)
    config = config or load_config(task_store.root)
    now = now or utc_now()

    entries = []
    skipped_incomplete = False
    for record in records:
        lifecycle = derive_status(record.sprint, now)
        if lifecycle.state is SprintLifecycleState.PENDING or (
            lifecycle.state.is_running and not include_active
        ):
            skipped_incomplete = True
            continue
        metrics = summarize_sprint_tasks(load_sprint_tasks(record, task_store), config)
        points_capacity, hours_capacity = _capacity(record)
        if metric == "points":
            committed, completed = metrics.total_points, metrics.done_points
            capacity: int | None = points_capacity
        elif metric == "hours":
            committed, completed = metrics.total_hours, metrics.done_hours
            capacity = hours_capacity
        else:
            committed, completed = float(metrics.total_tasks), float(metrics.done_tasks)
            capacity = None
        sort_source = (
            lifecycle.actual_end
            or lifecycle.computed_end
            or lifecycle.actual_start
            or now
        )
        entries.append(
            (
                sort_source,
                record.id,
                {
                    "sprint_id": record.id,
                    "label": record.sprint.label,
                    "display_name": record.display_name,
                    "state": lifecycle.state.label,
                    "actual_start": _fmt(lifecycle.actual_start),
                    "actual_end": _fmt(lifecycle.actual_end),
                    "committed": committed,
                    "completed": completed,
                    "completion_ratio": ratio(completed, committed),
                    "capacity": capacity,
                    "capacity_commitment_ratio": ratio(committed, capacity)
                    if capacity
                    else None,
                    "capacity_consumed_ratio": ratio(completed, capacity)
                    if capacity
                    else None,
                },
            )
        )

    entries.sort(key=lambda item: (item[0], item[1]), reverse=True)
    payloads = [payload for _, _, payload in entries]
    truncated = bool(limit) and len(payloads) > limit
    if truncated:
        payloads = payloads[:limit]

    count = len(payloads)
    return {
        "status": "ok",
        "metric": metric,
        "count": count,
        "truncated": truncated,
        "include_active": include_active,
        "skipped_incomplete": skipped_incomplete,
        "average_velocity": round(sum(p["completed"] for p in payloads) / count, 4)
        if count
        else None,
        "average_completion_ratio": round(
            sum(p["completion_ratio"] for p in payloads) / count, 4
        )
        if count
        else None,
        "entries": payloads,
    }
