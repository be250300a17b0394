"""Lifecycle status derivation.

``derive_status`` is the single place that turns a sprint's optional plan
and actual timestamps into a lifecycle state. It is pure: the same sprint
and reference instant always produce the same status, and it never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from .sprint_model import Sprint
from .timeutil import parse_duration, parse_human_datetime, to_rfc3339


class SprintLifecycleState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"
    COMPLETE = "complete"

    @property
    def label(self) -> str:
        return self.value

    @property
    def is_running(self) -> bool:
        return self in (SprintLifecycleState.ACTIVE, SprintLifecycleState.OVERDUE)


@dataclass(frozen=True)
class StatusWarning:
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class SprintLifecycleStatus:
    """Derived, never persisted view of a sprint's timeline."""

    state: SprintLifecycleState
    planned_start: datetime | None = None
    planned_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    computed_end: datetime | None = None
    warnings: tuple[StatusWarning, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        def fmt(value: datetime | None) -> str | None:
            return to_rfc3339(value) if value else None

        return {
            "state": self.state.label,
            "planned_start": fmt(self.planned_start),
            "planned_end": fmt(self.planned_end),
            "actual_start": fmt(self.actual_start),
            "actual_end": fmt(self.actual_end),
            "computed_end": fmt(self.computed_end),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _timestamp(
    value: str | None, field_name: str, warnings: list[StatusWarning]
) -> datetime | None:
    if not value or not value.strip():
        return None
    try:
        return parse_human_datetime(value)
    except ValueError:
        warnings.append(
            StatusWarning(
                "unparseable_timestamp",
                f"{field_name} has an invalid timestamp ('{value}').",
            )
        )
        return None


def _duration(
    value: str | None, field_name: str, warnings: list[StatusWarning]
) -> timedelta | None:
    if not value or not value.strip():
        return None
    parsed = parse_duration(value)
    if parsed is None:
        warnings.append(
            StatusWarning(
                "unparseable_length",
                f"{field_name} has an invalid duration ('{value}').",
            )
        )
    return parsed


def derive_status(sprint: Sprint, reference_time: datetime) -> SprintLifecycleStatus:
    """Derive the lifecycle state of a sprint at ``reference_time``.

    Rules:
        - ``actual.closed_at`` set: Complete, whatever else is recorded.
        - ``actual.started_at`` set: Overdue when the reference time is
          strictly after the computed end (plus any ``plan.overdue_after``
          grace), otherwise Active. The end instant itself is Active.
        - Otherwise Pending. Planned dates are reported but never change
          the state.

    Fields that cannot be parsed are ignored and reported as warnings.
    """
    warnings: list[StatusWarning] = []
    plan = sprint.plan
    actual = sprint.actual

    planned_start = _timestamp(plan.starts_at if plan else None, "plan.starts_at", warnings)
    absolute_end = _timestamp(plan.ends_at if plan else None, "plan.ends_at", warnings)
    length = _duration(plan.length if plan else None, "plan.length", warnings)
    grace = _duration(
        plan.overdue_after if plan else None, "plan.overdue_after", warnings
    )
    actual_start = _timestamp(
        actual.started_at if actual else None, "actual.started_at", warnings
    )
    actual_end = _timestamp(
        actual.closed_at if actual else None, "actual.closed_at", warnings
    )

    planned_end = absolute_end
    if planned_end is None and planned_start is not None and length is not None:
        planned_end = planned_start + length

    if absolute_end is not None:
        computed_end = absolute_end
    elif length is not None and (actual_start or planned_start) is not None:
        computed_end = (actual_start or planned_start) + length  # type: ignore[operator]
    else:
        computed_end = None

    if actual_end is not None:
        state = SprintLifecycleState.COMPLETE
        computed_end = actual_end
    elif actual_start is not None:
        deadline = computed_end + grace if computed_end and grace else computed_end
        if deadline is not None and reference_time > deadline:
            state = SprintLifecycleState.OVERDUE
        else:
            state = SprintLifecycleState.ACTIVE
    else:
        state = SprintLifecycleState.PENDING

    if (
        state is SprintLifecycleState.PENDING
        and planned_start is not None
        and planned_start < reference_time
    ):
        warnings.append(
            StatusWarning(
                "past_due_to_start",
                f"Sprint was scheduled to start at {to_rfc3339(planned_start)} "
                "but has not started.",
            )
        )
    if state is SprintLifecycleState.OVERDUE and computed_end is not None:
        warnings.append(
            StatusWarning(
                "past_due_to_close",
                f"Sprint was scheduled to end at {to_rfc3339(computed_end)} "
                "but is still open.",
            )
        )

    return SprintLifecycleStatus(
        state=state,
        planned_start=planned_start,
        planned_end=planned_end,
        actual_start=actual_start,
        actual_end=actual_end,
        computed_end=computed_end,
        warnings=tuple(warnings),
    )
