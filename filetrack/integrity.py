"""Detection and cleanup of task references to sprints that no longer exist.

Tasks may carry a ``sprints`` list of sprint ids. Deleting a sprint file
leaves those ids dangling; this module reports them and rewrites the
affected tasks to drop them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from .sprint_model import SprintRecord, contains_task, with_task_removed
from .sprint_store import SprintStore
from .task_store import TaskRecord, TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SprintMissingReference:
    sprint_id: int
    count: int

    def to_dict(self) -> dict:
        return {"sprint_id": self.sprint_id, "count": self.count}


@dataclass(frozen=True)
class MissingSprintReport:
    scanned_tasks: int = 0
    tasks_with_missing: int = 0
    missing_sprints: list[int] = field(default_factory=list)
    reference_counts: list[SprintMissingReference] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scanned_tasks": self.scanned_tasks,
            "tasks_with_missing": self.tasks_with_missing,
            "missing_sprints": list(self.missing_sprints),
            "reference_counts": [ref.to_dict() for ref in self.reference_counts],
        }


@dataclass(frozen=True)
class SprintCleanupOutcome:
    scanned_tasks: int
    updated_tasks: int
    removed_references: int
    removed_by_sprint: list[SprintMissingReference]
    missing_sprints: list[int]
    targeted: int | None
    remaining_missing: list[int]

    def to_dict(self) -> dict:
        return {
            "scanned_tasks": self.scanned_tasks,
            "updated_tasks": self.updated_tasks,
            "removed_references": self.removed_references,
            "removed_by_sprint": [ref.to_dict() for ref in self.removed_by_sprint],
            "missing_sprints": list(self.missing_sprints),
            "targeted": self.targeted,
            "remaining_missing": list(self.remaining_missing),
        }


def _counts(counter: dict[int, int]) -> list[SprintMissingReference]:
    return [
        SprintMissingReference(sprint_id=sprint_id, count=count)
        for sprint_id, count in sorted(counter.items())
    ]


def build_missing_report(
    tasks: list[TaskRecord], existing_ids: set[int]
) -> MissingSprintReport:
    counts: dict[int, int] = {}
    tasks_with_missing = 0
    for task in tasks:
        missing = [sprint_id for sprint_id in task.sprints if sprint_id not in existing_ids]
        for sprint_id in missing:
            counts[sprint_id] = counts.get(sprint_id, 0) + 1
        if missing:
            tasks_with_missing += 1
    return MissingSprintReport(
        scanned_tasks=len(tasks),
        tasks_with_missing=tasks_with_missing,
        missing_sprints=sorted(counts),
        reference_counts=_counts(counts),
    )


def detect_missing_sprints(
    task_store: TaskStore, records: list[SprintRecord]
) -> MissingSprintReport:
    """Report sprint ids referenced by tasks but absent from ``records``."""
    existing_ids = {record.id for record in records}
    return build_missing_report(task_store.search(), existing_ids)


def cleanup_missing_sprint_refs(
    task_store: TaskStore,
    records: list[SprintRecord],
    target: int | None = None,
    *,
    sprint_store: SprintStore | None = None,
) -> SprintCleanupOutcome:
    """Drop dangling sprint references from tasks.

    Args:
        task_store: Task store to scan and rewrite.
        records: Current sprint records.
        target: Also drop references to this sprint id even if it exists.
        sprint_store: When given with ``target``, the targeted sprint's own
            membership list is cleared of those tasks as well.

    Returns:
        SprintCleanupOutcome. Running it again without intervening changes
        removes nothing and reports no missing ids.
    """
    existing_ids = {record.id for record in records}
    tasks = task_store.search()
    report = build_missing_report(tasks, existing_ids)

    removed_by_sprint: dict[int, int] = {}
    removed_references = 0
    updated_tasks = 0
    detached: list[str] = []

    for task in tasks:
        keep: list[int] = []
        dropped: list[int] = []
        for sprint_id in task.sprints:
            if sprint_id == target or sprint_id not in existing_ids:
                dropped.append(sprint_id)
            elif sprint_id not in keep:
                keep.append(sprint_id)
        if not dropped:
            continue
        for sprint_id in dropped:
            removed_by_sprint[sprint_id] = removed_by_sprint.get(sprint_id, 0) + 1
        removed_references += len(dropped)
        task_store.edit(replace(task, sprints=tuple(keep)))
        updated_tasks += 1
        if target in dropped:
            detached.append(task.id)

    if sprint_store is not None and target in existing_ids and detached:
        _detach_from_sprint(sprint_store, records, target, detached)  # type: ignore[arg-type]

    remaining = build_missing_report(task_store.search(), existing_ids)
    logger.info(
        "Sprint reference cleanup: %d reference(s) removed from %d task(s)",
        removed_references,
        updated_tasks,
    )
    return SprintCleanupOutcome(
        scanned_tasks=report.scanned_tasks,
        updated_tasks=updated_tasks,
        removed_references=removed_references,
        removed_by_sprint=_counts(removed_by_sprint),
        missing_sprints=report.missing_sprints,
        targeted=target,
        remaining_missing=remaining.missing_sprints,
    )


def _detach_from_sprint(
    sprint_store: SprintStore,
    records: list[SprintRecord],
    sprint_id: int,
    task_ids: list[str],
) -> None:
    record = next(r for r in records if r.id == sprint_id)
    sprint = record.sprint
    for task_id in task_ids:
        if contains_task(sprint, task_id):
            sprint = with_task_removed(sprint, task_id)
    if sprint != record.sprint:
        sprint_store.update(sprint_id, sprint)


@dataclass(frozen=True)
class AssignmentIntegrity:
    """Dangling-reference state observed around a membership change."""

    baseline: MissingSprintReport
    current: MissingSprintReport
    cleanup: SprintCleanupOutcome | None = None

    @property
    def tasks_with_missing(self) -> int:
        return max(self.baseline.tasks_with_missing, self.current.tasks_with_missing)

    @property
    def is_clean(self) -> bool:
        cleaned_nothing = self.cleanup is None or (
            self.cleanup.removed_references == 0
            and not self.cleanup.remaining_missing
        )
        return (
            not self.current.missing_sprints
            and self.tasks_with_missing == 0
            and cleaned_nothing
        )

    def to_dict(self) -> dict:
        return {
            "missing_sprints": list(self.current.missing_sprints),
            "tasks_with_missing": self.tasks_with_missing or None,
            "auto_cleanup": self.cleanup.to_dict() if self.cleanup else None,
        }


def reconcile_missing(
    task_store: TaskStore, records: list[SprintRecord], *, cleanup: bool = False
) -> AssignmentIntegrity:
    """Check for dangling sprint references ahead of a membership change.

    With ``cleanup`` the dangling references are removed from tasks first;
    otherwise they are only reported.
    """
    baseline = detect_missing_sprints(task_store, records)
    if not baseline.missing_sprints:
        return AssignmentIntegrity(baseline=baseline, current=baseline)
    if not cleanup:
        logger.info(
            "%d task(s) reference missing sprints %s",
            baseline.tasks_with_missing,
            baseline.missing_sprints,
        )
        return AssignmentIntegrity(baseline=baseline, current=baseline)
    outcome = cleanup_missing_sprint_refs(task_store, records)
    current = detect_missing_sprints(task_store, records)
    return AssignmentIntegrity(baseline=baseline, current=current, cleanup=outcome)
