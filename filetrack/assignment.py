"""Task-to-sprint membership: reference resolution, add, move, and remove.

A batch resolves every sprint reference and task identifier before anything
changes. Membership edits then happen on in-memory sprint values, and only
the sprints that actually changed are written back through the store.
Batches are all-or-nothing: an unresolvable identifier aborts before any
write.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .errors import (
    AmbiguousDefaultError,
    EmptyInputError,
    GuardViolationError,
    InvalidReferenceError,
    NotFoundError,
)
from .integrity import AssignmentIntegrity, reconcile_missing
from .lifecycle import SprintLifecycleState, derive_status
from .sprint_model import (
    Sprint,
    SprintRecord,
    contains_task,
    sprint_display_name,
    with_task_added,
    with_task_removed,
)
from .sprint_store import SprintStore
from .task_store import TaskStore, split_task_id
from .timeutil import utc_now

logger = logging.getLogger(__name__)

_EXPLICIT_RE = re.compile(r"^#?(\d+)$")


class ReferenceKind(Enum):
    EXPLICIT = "explicit"
    NEXT = "next"
    PREVIOUS = "previous"
    ACTIVE = "active"
    DEFAULT = "default"


@dataclass(frozen=True)
class SprintReference:
    """A parsed sprint reference, resolved to an id by ``resolve_sprint_id``."""

    kind: ReferenceKind
    sprint_id: int | None = None

    @classmethod
    def explicit(cls, sprint_id: int) -> SprintReference:
        return cls(ReferenceKind.EXPLICIT, sprint_id)

    @classmethod
    def default(cls) -> SprintReference:
        return cls(ReferenceKind.DEFAULT)


_KEYWORDS = {
    "active": ReferenceKind.ACTIVE,
    "current": ReferenceKind.ACTIVE,
    "next": ReferenceKind.NEXT,
    "previous": ReferenceKind.PREVIOUS,
    "prev": ReferenceKind.PREVIOUS,
}


def parse_sprint_reference(value: str | int | SprintReference | None) -> SprintReference:
    """Parse user input into a SprintReference.

    Blank or None means "the default sprint". Accepts ``#7``, ``7``,
    ``active``, ``next``, ``previous`` and ``prev``.

    Raises:
        InvalidReferenceError: For anything else.
    """
    if isinstance(value, SprintReference):
        return value
    if value is None:
        return SprintReference.default()
    if isinstance(value, int):
        return SprintReference.explicit(value)
    token = value.strip()
    if not token:
        return SprintReference.default()
    keyword = _KEYWORDS.get(token.lower())
    if keyword is not None:
        return SprintReference(keyword)
    match = _EXPLICIT_RE.match(token)
    if match:
        return SprintReference.explicit(int(match.group(1)))
    msg = (
        f"Invalid sprint reference '{token}'. Expected a numeric identifier "
        "or keyword (next/previous)."
    )
    raise InvalidReferenceError(msg)


def likely_sprint_reference(
    task_store: TaskStore, records: list[SprintRecord], token: str
) -> bool:
    """True when a positional argument reads as a sprint rather than a task.

    Keywords always name a sprint. A number names a sprint only when no
    task carries that numeric id and a sprint with that id exists.
    """
    text = token.strip().lower()
    if not text:
        return False
    if text in _KEYWORDS:
        return True
    match = _EXPLICIT_RE.match(text)
    if not match:
        return False
    if task_store.find_by_numeric_id(match.group(1)):
        return False
    sprint_id = int(match.group(1))
    return any(record.id == sprint_id for record in records)


def resolve_default_sprint_id(records: list[SprintRecord], now: datetime) -> int:
    """Id of the single Active or Overdue sprint.

    Raises:
        AmbiguousDefaultError: If no sprint, or more than one, is running.
    """
    running = [
        record.id
        for record in records
        if derive_status(record.sprint, now).state.is_running
    ]
    if not running:
        msg = (
            "No active sprint found. Specify a sprint identifier or start a "
            "sprint first."
        )
        raise AmbiguousDefaultError(msg)
    if len(running) > 1:
        listed = ", ".join(f"#{sprint_id}" for sprint_id in running)
        msg = f"Multiple active sprints detected ({listed}). Specify a sprint identifier."
        raise AmbiguousDefaultError(msg)
    return running[0]


def resolve_sprint_id(
    records: list[SprintRecord],
    reference: str | int | SprintReference | None,
    now: datetime | None = None,
) -> int:
    """Resolve a sprint reference to a concrete sprint id.

    Args:
        records: All sprint records.
        reference: Raw input or a parsed SprintReference.
        now: Reference instant for lifecycle state (default: current time).

    Raises:
        NotFoundError: Explicit id missing, or no next/previous sprint.
        AmbiguousDefaultError: The default rule matched zero or many sprints.
        InvalidReferenceError: Malformed reference text.
    """
    ref = parse_sprint_reference(reference)
    now = now or utc_now()
    ids = sorted(record.id for record in records)
    if not ids:
        msg = "No sprints found."
        raise NotFoundError(msg)

    if ref.kind is ReferenceKind.EXPLICIT:
        if ref.sprint_id not in ids:
            msg = f"Sprint #{ref.sprint_id} not found."
            raise NotFoundError(msg)
        return ref.sprint_id  # type: ignore[return-value]

    base = resolve_default_sprint_id(records, now)
    if ref.kind is ReferenceKind.NEXT:
        later = [sprint_id for sprint_id in ids if sprint_id > base]
        if not later:
            msg = f"Sprint #{base} is already the latest sprint."
            raise NotFoundError(msg)
        return later[0]
    if ref.kind is ReferenceKind.PREVIOUS:
        earlier = [sprint_id for sprint_id in ids if sprint_id < base]
        if not earlier:
            msg = f"Sprint #{base} is the earliest sprint."
            raise NotFoundError(msg)
        return earlier[-1]
    return base


def ensure_sprint_is_open(record: SprintRecord, now: datetime | None = None) -> None:
    """Raise GuardViolationError if the sprint is Complete."""
    status = derive_status(record.sprint, now or utc_now())
    if status.state is SprintLifecycleState.COMPLETE:
        msg = (
            f"Sprint #{record.id} ({sprint_display_name(record)}) is closed. "
            "Pass --allow-closed to override."
        )
        raise GuardViolationError(msg)


def resolve_task_identifier(task_store: TaskStore, raw: str) -> str:
    """Resolve user input to a fully-qualified task id.

    ``PROJ-12`` must exist as given. A bare number is matched against the
    numeric suffix of tasks in every project and must match exactly one.

    Raises:
        InvalidReferenceError: Empty, malformed, or ambiguous identifiers.
        NotFoundError: No matching task.
    """
    token = (raw or "").strip()
    if not token:
        msg = "Task identifier cannot be empty."
        raise InvalidReferenceError(msg)
    if "-" in token:
        if not task_store.exists(token):
            msg = f"Task {token} not found."
            raise NotFoundError(msg)
        project, number = split_task_id(token)
        return f"{project}-{number}"
    if token.isdigit():
        matches = task_store.find_by_numeric_id(token)
        if not matches:
            msg = (
                f"Task {token} not found. Use the fully-qualified identifier "
                "(e.g. TEST-123)."
            )
            raise NotFoundError(msg)
        if len(matches) > 1:
            msg = (
                f"Task {token} is ambiguous ({', '.join(matches)}). "
                "Use the fully-qualified identifier."
            )
            raise InvalidReferenceError(msg)
        return matches[0]
    msg = f"Invalid task identifier '{token}'."
    raise InvalidReferenceError(msg)


def build_membership_index(records: list[SprintRecord]) -> dict[str, set[int]]:
    """Map each task id to the ids of every sprint that lists it."""
    index: dict[str, set[int]] = {}
    for record in records:
        for task_id in record.sprint.task_ids:
            index.setdefault(task_id, set()).add(record.id)
    return index


# --- Outcomes ---


@dataclass(frozen=True)
class SprintReassignmentInfo:
    task_id: str
    previous: list[int]

    def describe(self) -> str:
        sprints = ", ".join(f"#{sprint_id}" for sprint_id in self.previous)
        return f"{self.task_id} moved from sprint(s) {sprints}"

    def to_dict(self) -> dict:
        return {"task_id": self.task_id, "previous": list(self.previous)}


@dataclass(frozen=True)
class SprintAssignmentOutcome:
    action: str  # "add" or "remove"
    sprint_id: int
    sprint_label: str | None
    sprint_display_name: str
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    replaced: list[SprintReassignmentInfo] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    integrity: AssignmentIntegrity | None = None

    def to_dict(self) -> dict:
        result = {
            "action": self.action,
            "sprint_id": self.sprint_id,
            "sprint_label": self.sprint_label,
            "sprint_display_name": self.sprint_display_name,
            "modified": list(self.modified),
            "unchanged": list(self.unchanged),
            "replaced": [info.to_dict() for info in self.replaced],
            "warnings": list(self.warnings),
        }
        if self.integrity is not None and not self.integrity.is_clean:
            result["integrity"] = self.integrity.to_dict()
        return result


# --- Batch operations ---


def _resolve_batch(task_store: TaskStore, tasks: list[str]) -> list[str]:
    """Resolve and de-duplicate identifiers, keeping first-seen order."""
    resolved: list[str] = []
    for raw in tasks:
        if not raw or not raw.strip():
            continue
        task_id = resolve_task_identifier(task_store, raw)
        if task_id not in resolved:
            resolved.append(task_id)
    return resolved


def _load_target(
    store: SprintStore,
    sprint_ref: str | int | SprintReference | None,
    now: datetime,
) -> tuple[list[SprintRecord], SprintRecord]:
    records = store.list()
    if not records:
        msg = "No sprints found. Create a sprint before assigning tasks."
        raise NotFoundError(msg)
    sprint_id = resolve_sprint_id(records, sprint_ref, now)
    target = next(record for record in records if record.id == sprint_id)
    return records, target


def _persist(
    store: SprintStore,
    working: dict[int, Sprint],
    dirty: set[int],
    now: datetime,
) -> tuple[dict[int, SprintRecord], list[str]]:
    written: dict[int, SprintRecord] = {}
    warnings: list[str] = []
    for sprint_id in sorted(dirty):
        outcome = store.update(sprint_id, working[sprint_id], now=now)
        written[sprint_id] = outcome.record
        warnings.extend(w.message for w in outcome.warnings)
    if dirty:
        logger.debug("Persisted sprints %s", sorted(dirty))
    return written, warnings


def assign_tasks(
    store: SprintStore,
    task_store: TaskStore,
    tasks: list[str],
    sprint_ref: str | int | SprintReference | None = None,
    *,
    allow_closed: bool = False,
    force_single: bool = False,
    cleanup_missing: bool = False,
    now: datetime | None = None,
) -> SprintAssignmentOutcome:
    """Add tasks to a sprint.

    Args:
        store: Sprint store.
        task_store: Task store used to resolve identifiers.
        tasks: Raw task identifiers (``PROJ-1`` or bare numbers).
        sprint_ref: Sprint reference (None = the single running sprint).
        allow_closed: Permit adding to a Complete sprint.
        force_single: Remove each task from every other sprint first.
        cleanup_missing: Drop task references to deleted sprints before
            assigning; otherwise they are only reported.
        now: Reference instant (default: current time).

    Returns:
        SprintAssignmentOutcome with ``action="add"``.

    Raises:
        EmptyInputError: No task identifiers supplied.
        NotFoundError: Sprint or task could not be found.
        AmbiguousDefaultError: No unique default sprint.
        InvalidReferenceError: Malformed sprint or task reference.
        GuardViolationError: Target sprint is closed and allow_closed is off.
    """
    now = now or utc_now()
    if not [t for t in tasks if t and t.strip()]:
        msg = "Provide at least one task identifier to assign."
        raise EmptyInputError(msg)
    records, target = _load_target(store, sprint_ref, now)
    if not allow_closed:
        ensure_sprint_is_open(target, now)
    resolved = _resolve_batch(task_store, tasks)
    integrity = reconcile_missing(task_store, records, cleanup=cleanup_missing)

    working = {record.id: record.sprint for record in records}
    index = build_membership_index(records)
    dirty: set[int] = set()
    modified: list[str] = []
    unchanged: list[str] = []
    replaced: list[SprintReassignmentInfo] = []

    for task_id in resolved:
        current = index.get(task_id, set())
        removed: list[int] = []
        if force_single:
            for other in sorted(current - {target.id}):
                working[other] = with_task_removed(working[other], task_id)
                dirty.add(other)
                removed.append(other)
        added = target.id not in current
        if added:
            working[target.id] = with_task_added(working[target.id], task_id)
            dirty.add(target.id)
        index[task_id] = (current - set(removed)) | {target.id}

        if added or removed:
            modified.append(task_id)
        else:
            unchanged.append(task_id)
        if removed:
            replaced.append(SprintReassignmentInfo(task_id=task_id, previous=removed))

    written, warnings = _persist(store, working, dirty, now)
    final = written.get(target.id, target)
    logger.info(
        "Assigned %d task(s) to sprint #%d (%d unchanged)",
        len(modified),
        target.id,
        len(unchanged),
    )
    return SprintAssignmentOutcome(
        action="add",
        sprint_id=target.id,
        sprint_label=final.sprint.label,
        sprint_display_name=sprint_display_name(final),
        modified=modified,
        unchanged=unchanged,
        replaced=replaced,
        warnings=warnings,
        integrity=integrity,
    )


def remove_tasks(
    store: SprintStore,
    task_store: TaskStore,
    tasks: list[str],
    sprint_ref: str | int | SprintReference | None = None,
    *,
    cleanup_missing: bool = False,
    now: datetime | None = None,
) -> SprintAssignmentOutcome:
    """Remove tasks from one sprint. No other sprint is touched.

    Returns:
        SprintAssignmentOutcome with ``action="remove"``.
    """
    now = now or utc_now()
    if not [t for t in tasks if t and t.strip()]:
        msg = "Provide at least one task identifier to update."
        raise EmptyInputError(msg)
    records, target = _load_target(store, sprint_ref, now)
    resolved = _resolve_batch(task_store, tasks)
    integrity = reconcile_missing(task_store, records, cleanup=cleanup_missing)

    sprint = target.sprint
    modified: list[str] = []
    unchanged: list[str] = []
    for task_id in resolved:
        if contains_task(sprint, task_id):
            sprint = with_task_removed(sprint, task_id)
            modified.append(task_id)
        else:
            unchanged.append(task_id)

    dirty = {target.id} if modified else set()
    written, warnings = _persist(store, {target.id: sprint}, dirty, now)
    final = written.get(target.id, target)
    logger.info(
        "Removed %d task(s) from sprint #%d (%d unchanged)",
        len(modified),
        target.id,
        len(unchanged),
    )
    return SprintAssignmentOutcome(
        action="remove",
        sprint_id=target.id,
        sprint_label=final.sprint.label,
        sprint_display_name=sprint_display_name(final),
        modified=modified,
        unchanged=unchanged,
        warnings=warnings,
        integrity=integrity,
    )
