"""Sprint data store backed by one YAML file per sprint."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

from .config import SprintDefaults
from .errors import NotFoundError, PersistenceError
from .sprint_model import (
    CanonicalizationWarning,
    Sprint,
    SprintCapacity,
    SprintPlan,
    SprintRecord,
    canonicalize,
    dump_sprint_yaml,
    load_sprint_yaml,
)
from .storage import (
    RECORD_SUFFIX,
    MigrationResult,
    migrate_legacy_layout,
    numeric_stems,
    read_text,
    write_text_atomic,
)
from .timeutil import to_rfc3339, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SprintOperationOutcome:
    """Result of a write: the stored record plus canonicalization notes."""

    record: SprintRecord
    warnings: list[CanonicalizationWarning] = field(default_factory=list)
    applied_defaults: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SprintNormalizeWarning:
    sprint_id: int
    warning: CanonicalizationWarning

    def to_dict(self) -> dict:
        return {"sprint_id": self.sprint_id, **self.warning.to_dict()}


@dataclass
class SprintNormalizeReport:
    mode: str  # "check" or "write"
    processed: int = 0
    updated_ids: list[int] = field(default_factory=list)
    changes_required: list[int] = field(default_factory=list)
    warnings: list[SprintNormalizeWarning] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "needs_normalization" if self.changes_required else "ok"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "mode": self.mode,
            "processed": self.processed,
            "updated": len(self.updated_ids),
            "updated_ids": list(self.updated_ids),
            "changes_required": list(self.changes_required),
            "warnings": [w.to_dict() for w in self.warnings],
        }


class SprintStore:
    """Workspace-scoped sprint CRUD operations.

    All writes go through ``update`` (or ``create`` for new ids): callers
    read a record, build a modified copy, and write the whole sprint back.
    Writes to the same sprint id are serialized within the process; there
    is no cross-process locking, the last writer wins.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.migration: MigrationResult = migrate_legacy_layout(self.root)
        self.sprints_dir = self.migration.sprints_dir
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, sprint_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(sprint_id, threading.Lock())

    def _path(self, sprint_id: int) -> Path:
        return self.sprints_dir / f"{sprint_id}{RECORD_SUFFIX}"

    def _parse(self, sprint_id: int, path: Path, text: str) -> Sprint:
        try:
            return load_sprint_yaml(text)
        except ValueError as e:
            msg = f"Failed to parse sprint #{sprint_id} ({path}): {e}"
            raise PersistenceError(msg) from e

    def _load(self, sprint_id: int, path: Path) -> SprintRecord:
        sprint = self._parse(sprint_id, path, read_text(path))
        canonical, _ = canonicalize(sprint)
        return SprintRecord(id=sprint_id, sprint=canonical)

    def _write(self, sprint_id: int, sprint: Sprint) -> None:
        write_text_atomic(self._path(sprint_id), dump_sprint_yaml(sprint))
        logger.debug("Wrote sprint #%d", sprint_id)

    # --- Reads ---

    def exists(self, sprint_id: int) -> bool:
        return self._path(sprint_id).is_file()

    def get(self, sprint_id: int) -> SprintRecord:
        """Get a sprint by id.

        Raises:
            NotFoundError: If no sprint file exists for the id.
            PersistenceError: If the file cannot be read or parsed.
        """
        path = self._path(sprint_id)
        if not path.is_file():
            msg = f"Sprint #{sprint_id} not found."
            raise NotFoundError(msg)
        return self._load(sprint_id, path)

    def list(self) -> list[SprintRecord]:
        """List all sprints.

        Returns:
            Canonical sprint records ordered by id ascending.
        """
        records = [
            self._load(sprint_id, self._path(sprint_id))
            for sprint_id in numeric_stems(self.sprints_dir)
        ]
        logger.debug("Loaded %d sprints from %s", len(records), self.sprints_dir)
        return records

    def next_id(self) -> int:
        ids = numeric_stems(self.sprints_dir)
        return (ids[-1] + 1) if ids else 1

    # --- Writes ---

    def update(
        self, sprint_id: int, sprint: Sprint, *, now: datetime | None = None
    ) -> SprintOperationOutcome:
        """Canonicalize and persist a full sprint.

        Sets ``modified`` to now, and ``created`` when it is missing.

        Args:
            sprint_id: Existing sprint id.
            sprint: Complete replacement sprint.
            now: Timestamp for bookkeeping fields (default: current time).

        Returns:
            The stored record and any canonicalization warnings.

        Raises:
            NotFoundError: If the sprint does not exist.
            PersistenceError: If the file cannot be written.
        """
        with self._lock_for(sprint_id):
            if not self.exists(sprint_id):
                msg = f"Sprint #{sprint_id} not found."
                raise NotFoundError(msg)
            canonical, warnings = canonicalize(sprint)
            stamp = to_rfc3339(now or utc_now())
            canonical = replace(
                canonical, modified=stamp, created=canonical.created or stamp
            )
            self._write(sprint_id, canonical)
        return SprintOperationOutcome(
            record=SprintRecord(id=sprint_id, sprint=canonical), warnings=warnings
        )

    def create(
        self,
        sprint: Sprint,
        *,
        defaults: SprintDefaults | None = None,
        now: datetime | None = None,
    ) -> SprintOperationOutcome:
        """Create a new sprint with the next free id.

        Configured defaults fill plan fields the sprint leaves unset. Length
        is not defaulted when the plan already has an absolute end.

        Returns:
            The stored record, canonicalization warnings, and the names of
            the defaults that were applied.
        """
        sprint, applied = apply_sprint_defaults(sprint, defaults)
        canonical, warnings = canonicalize(sprint)
        stamp = to_rfc3339(now or utc_now())
        canonical = replace(canonical, created=stamp, modified=stamp)
        with self._locks_guard:
            sprint_id = self.next_id()
            self._write(sprint_id, canonical)
        logger.info("Created sprint #%d", sprint_id)
        return SprintOperationOutcome(
            record=SprintRecord(id=sprint_id, sprint=canonical),
            warnings=warnings,
            applied_defaults=applied,
        )

    def delete(self, sprint_id: int) -> bool:
        """Delete a sprint file.

        Tasks that still reference the id are left alone; the integrity
        reconciler finds and cleans those references.

        Returns:
            True if a file was removed, False if it did not exist.
        """
        path = self._path(sprint_id)
        with self._lock_for(sprint_id):
            if not path.is_file():
                return False
            try:
                path.unlink()
            except OSError as e:
                msg = f"Failed to delete sprint #{sprint_id}: {e}"
                raise PersistenceError(msg) from e
        logger.info("Deleted sprint #%d", sprint_id)
        return True

    def normalize(
        self, sprint_id: int | None = None, *, write: bool = False
    ) -> SprintNormalizeReport:
        """Bring stored sprint files into canonical form.

        In check mode (the default) files are only compared with their
        canonical rendering. With ``write`` the differing files are rewritten;
        bookkeeping timestamps are left as recorded.

        Args:
            sprint_id: Limit the pass to one sprint (default: all).
            write: Rewrite files instead of reporting them.

        Raises:
            NotFoundError: If ``sprint_id`` is given and does not exist.
            PersistenceError: If a file cannot be read, parsed, or written.
        """
        if sprint_id is not None and not self.exists(sprint_id):
            msg = f"Sprint #{sprint_id} not found."
            raise NotFoundError(msg)
        ids = [sprint_id] if sprint_id is not None else numeric_stems(self.sprints_dir)
        report = SprintNormalizeReport(mode="write" if write else "check")
        for current in ids:
            path = self._path(current)
            with self._lock_for(current):
                original = read_text(path)
                canonical, warnings = canonicalize(
                    self._parse(current, path, original)
                )
                text = dump_sprint_yaml(canonical)
                if text != original:
                    if write:
                        write_text_atomic(path, text)
                        report.updated_ids.append(current)
                    else:
                        report.changes_required.append(current)
            report.warnings.extend(
                SprintNormalizeWarning(sprint_id=current, warning=w) for w in warnings
            )
            report.processed += 1
        logger.info(
            "Normalize (%s): %d processed, %d updated, %d need changes",
            report.mode,
            report.processed,
            len(report.updated_ids),
            len(report.changes_required),
        )
        return report


def apply_sprint_defaults(
    sprint: Sprint, defaults: SprintDefaults | None
) -> tuple[Sprint, list[str]]:
    """Fill unset plan fields from configured defaults."""
    if defaults is None or defaults.is_empty:
        return sprint, []
    plan = sprint.plan or SprintPlan()
    capacity = plan.capacity or SprintCapacity()
    applied: list[str] = []
    if not capacity.points and defaults.capacity_points:
        capacity = replace(capacity, points=defaults.capacity_points)
        applied.append("capacity_points")
    if not capacity.hours and defaults.capacity_hours:
        capacity = replace(capacity, hours=defaults.capacity_hours)
        applied.append("capacity_hours")
    plan = replace(plan, capacity=capacity)
    if not plan.length and not plan.ends_at and defaults.length:
        plan = replace(plan, length=defaults.length)
        applied.append("length")
    if not plan.overdue_after and defaults.overdue_after:
        plan = replace(plan, overdue_after=defaults.overdue_after)
        applied.append("overdue_after")
    return replace(sprint, plan=plan), applied
