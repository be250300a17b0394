"""Sprint start and close transitions.

Each transition runs in a fixed order: resolve the timestamp and target,
check guards against the pre-mutation lifecycle status, write the updated
sprint, then compute warnings about other sprints from the post-mutation
record set. Warnings are returned to the caller, never printed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from .config import TrackerConfig
from .errors import AmbiguousDefaultError, GuardViolationError, InvalidReferenceError
from .lifecycle import SprintLifecycleState, derive_status
from .metrics import compute_sprint_review
from .sprint_model import CanonicalizationWarning, SprintActual, SprintRecord
from .sprint_store import SprintStore
from .task_store import TaskStore
from .timeutil import parse_human_datetime, to_rfc3339, utc_now

logger = logging.getLogger(__name__)

FUTURE_START_THRESHOLD = timedelta(hours=12)


@dataclass(frozen=True)
class TransitionWarning:
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class TransitionOutcome:
    action: str  # "start" or "close"
    record: SprintRecord
    auto_selected: bool = False
    warnings: list[TransitionWarning] = field(default_factory=list)
    canonical_warnings: list[CanonicalizationWarning] = field(default_factory=list)
    review: dict | None = None

    def to_dict(self) -> dict:
        result = {
            "status": "ok",
            "action": self.action,
            "sprint_id": self.record.id,
            "sprint_label": self.record.sprint.label,
            "sprint_display_name": self.record.display_name,
            "started_at": self.record.sprint.started_at,
            "closed_at": self.record.sprint.closed_at,
            "auto_selected": self.auto_selected,
            "warnings": [w.to_dict() for w in self.warnings],
            "canonical_warnings": [w.to_dict() for w in self.canonical_warnings],
        }
        if self.review is not None:
            result["review"] = self.review
        return result


def _resolve_instant(value: str | datetime | None, now: datetime, what: str) -> datetime:
    if value is None:
        return now
    if isinstance(value, datetime):
        return value
    try:
        return parse_human_datetime(value, now)
    except ValueError as e:
        msg = f"Invalid {what} time '{value}': {e}"
        raise InvalidReferenceError(msg) from e


def select_sprint_to_start(records: list[SprintRecord], now: datetime) -> SprintRecord:
    """Pick the sprint ``start`` uses when none is given.

    The earliest Pending sprint whose planned start has arrived (ties by id),
    else the lowest-id Pending sprint with no planned start.

    Raises:
        AmbiguousDefaultError: If no Pending sprint qualifies.
    """
    scheduled: list[tuple[datetime, int, SprintRecord]] = []
    unscheduled: list[SprintRecord] = []
    for record in records:
        status = derive_status(record.sprint, now)
        if status.state is not SprintLifecycleState.PENDING:
            continue
        if status.planned_start is None:
            unscheduled.append(record)
        elif status.planned_start <= now:
            scheduled.append((status.planned_start, record.id, record))
    if scheduled:
        return min(scheduled, key=lambda item: (item[0], item[1]))[2]
    if unscheduled:
        return min(unscheduled, key=lambda record: record.id)
    msg = "No pending sprints ready to start."
    raise AmbiguousDefaultError(msg)


def select_sprint_to_close(records: list[SprintRecord], now: datetime) -> SprintRecord:
    """Pick the sprint ``close`` uses when none is given.

    The highest-id running (Active or Overdue) sprint, else the highest-id
    sprint that is not yet Complete.

    Raises:
        AmbiguousDefaultError: If every sprint is already closed.
    """
    running = []
    still_open = []
    for record in records:
        state = derive_status(record.sprint, now).state
        if state.is_running:
            running.append(record)
        if state is not SprintLifecycleState.COMPLETE:
            still_open.append(record)
    candidates = running or still_open
    if not candidates:
        msg = "No active sprints ready to close."
        raise AmbiguousDefaultError(msg)
    return max(candidates, key=lambda record: record.id)


def _parallel_warning(
    records: list[SprintRecord],
    exclude: int,
    now: datetime,
    prefix: str,
    guidance: str = "",
) -> TransitionWarning | None:
    """One joined warning listing every other running sprint, or None."""
    running = []
    for record in records:
        if record.id == exclude:
            continue
        state = derive_status(record.sprint, now).state
        if state.is_running:
            running.append(f"#{record.id} ({record.display_name}) is {state.label}")
    if not running:
        return None
    listed = "; ".join(running)
    return TransitionWarning("parallel_active", f"{prefix}: {listed}.{guidance}")


def start_sprint(
    store: SprintStore,
    sprint_id: int | None = None,
    *,
    at: str | datetime | None = None,
    force: bool = False,
    now: datetime | None = None,
    notifications: bool = True,
) -> TransitionOutcome:
    """Record ``actual.started_at`` on a sprint.

    Args:
        store: Sprint store.
        sprint_id: Sprint to start (None = auto-select).
        at: Start time, human-readable or datetime (default: now).
        force: Override the already-started and already-closed guards.
            Only the start time is rewritten; a recorded close time stays.
        now: Current instant (default: wall clock).
        notifications: Emit advisory warnings.

    Returns:
        TransitionOutcome with ``action="start"``.

    Raises:
        NotFoundError: Explicit sprint id does not exist.
        AmbiguousDefaultError: Nothing to auto-select.
        GuardViolationError: Already closed or already started without force.
        InvalidReferenceError: Unparseable ``at``.
    """
    now = now or utc_now()
    start_at = _resolve_instant(at, now, "start")
    records = store.list()

    auto_selected = sprint_id is None
    if sprint_id is None:
        record = select_sprint_to_start(records, now)
    else:
        record = store.get(sprint_id)

    status = derive_status(record.sprint, start_at)
    if status.state is SprintLifecycleState.COMPLETE and not force:
        msg = "Sprint is already closed. Clear actual.closed_at or pass --force to restart."
        raise GuardViolationError(msg)
    if record.sprint.started_at and not force:
        msg = (
            "Sprint already has actual.started_at; use --force to override the "
            "recorded start time."
        )
        raise GuardViolationError(msg)

    warnings: list[TransitionWarning] = []
    if start_at - now > FUTURE_START_THRESHOLD and not force:
        warnings.append(
            TransitionWarning(
                "future_start",
                f"The requested start time {to_rfc3339(start_at)} is more than 12 "
                "hours in the future; pass --force to proceed.",
            )
        )
    if (
        status.actual_start is None
        and status.planned_start is not None
        and now > status.planned_start
    ):
        warnings.append(
            TransitionWarning(
                "overdue_start",
                f"Sprint #{record.id} ({record.display_name}) was scheduled to start "
                f"at {to_rfc3339(status.planned_start)} and is now overdue to begin.",
            )
        )

    actual = replace(
        record.sprint.actual or SprintActual(), started_at=to_rfc3339(start_at)
    )
    result = store.update(record.id, replace(record.sprint, actual=actual), now=now)
    logger.info("Started sprint #%d at %s", record.id, to_rfc3339(start_at))

    after = [result.record if r.id == record.id else r for r in records]
    parallel = _parallel_warning(
        after,
        record.id,
        now,
        "Another sprint is still running",
        " Close it before starting another sprint or pass --force if you "
        "intend to overlap.",
    )
    if parallel is not None:
        warnings.append(parallel)

    return TransitionOutcome(
        action="start",
        record=result.record,
        auto_selected=auto_selected,
        warnings=warnings if notifications else [],
        canonical_warnings=result.warnings,
    )


def close_sprint(
    store: SprintStore,
    sprint_id: int | None = None,
    *,
    at: str | datetime | None = None,
    force: bool = False,
    now: datetime | None = None,
    notifications: bool = True,
    review: bool = False,
    task_store: TaskStore | None = None,
    config: TrackerConfig | None = None,
) -> TransitionOutcome:
    """Record ``actual.closed_at`` on a sprint.

    Args:
        store: Sprint store.
        sprint_id: Sprint to close (None = auto-select).
        at: Close time, human-readable or datetime (default: now).
        force: Override the already-closed and never-started guards.
        now: Current instant (default: wall clock).
        notifications: Emit advisory warnings.
        review: Attach a review report (needs ``task_store``).
        task_store: Task store for the review report.
        config: Workspace config for done/blocked statuses.

    Returns:
        TransitionOutcome with ``action="close"``.

    Raises:
        NotFoundError: Explicit sprint id does not exist.
        AmbiguousDefaultError: Nothing to auto-select.
        GuardViolationError: Already closed or never started without force.
        InvalidReferenceError: Unparseable ``at``.
    """
    now = now or utc_now()
    close_at = _resolve_instant(at, now, "close")
    records = store.list()

    auto_selected = sprint_id is None
    if sprint_id is None:
        record = select_sprint_to_close(records, now)
    else:
        record = store.get(sprint_id)

    status = derive_status(record.sprint, close_at)
    if record.sprint.closed_at and not force:
        msg = (
            "Sprint already has actual.closed_at; use --force to override the "
            "recorded close time."
        )
        raise GuardViolationError(msg)
    if not record.sprint.started_at and not force:
        msg = "Sprint has not been started yet; use --force to close without a recorded start."
        raise GuardViolationError(msg)

    warnings: list[TransitionWarning] = []
    if (
        status.state is not SprintLifecycleState.COMPLETE
        and status.computed_end is not None
        and close_at > status.computed_end
    ):
        warnings.append(
            TransitionWarning(
                "overdue_close",
                f"Sprint #{record.id} ({record.display_name}) was scheduled to end "
                f"by {to_rfc3339(status.computed_end)} and is overdue to close.",
            )
        )

    actual = replace(
        record.sprint.actual or SprintActual(), closed_at=to_rfc3339(close_at)
    )
    result = store.update(record.id, replace(record.sprint, actual=actual), now=now)
    logger.info("Closed sprint #%d at %s", record.id, to_rfc3339(close_at))

    after = [result.record if r.id == record.id else r for r in records]
    parallel = _parallel_warning(
        after, record.id, now, "Additional sprints remain active"
    )
    if parallel is not None:
        warnings.append(parallel)

    outcome = TransitionOutcome(
        action="close",
        record=result.record,
        auto_selected=auto_selected,
        warnings=warnings if notifications else [],
        canonical_warnings=result.warnings,
    )
    if review and task_store is not None:
        outcome.review = compute_sprint_review(
            result.record, task_store, config=config, now=now
        )
    return outcome
