"""Migration script: bring an older tasks root up to the current layout.

Usage:
    ft-migrate [--root PATH] [--no-sync]

Step 1 renames the legacy ``sprints/`` directory to ``@sprints/``.
Step 2 copies sprint membership recorded on tasks (their ``sprints`` list)
into the sprint files, for sprints that exist and tasks that are not yet
listed there.

Idempotent: re-running adds nothing that is already present, so it is safe.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import resolve_tasks_root
from .errors import SprintError
from .integrity import build_missing_report
from .sprint_model import contains_task, with_task_added
from .sprint_store import SprintStore
from .task_store import TaskStore, task_sort_key

logger = logging.getLogger(__name__)


def migrate(root: str | Path | None = None, *, sync_memberships: bool = True) -> dict:
    """Migrate the tasks root layout and task-recorded memberships.

    Args:
        root: Tasks root (None = env/default).
        sync_memberships: Also copy task ``sprints`` lists into sprint files.

    Returns:
        Summary dict with what changed.
    """
    resolved = resolve_tasks_root(root)
    store = SprintStore(resolved)
    summary = {
        "root": str(resolved),
        "sprints_dir": str(store.sprints_dir),
        "layout_migrated": store.migration.migrated,
        "legacy_in_use": store.migration.legacy_in_use,
        "sprints_updated": 0,
        "memberships_added": 0,
        "memberships_skipped": 0,
        "missing_references": 0,
    }
    if not sync_memberships:
        return summary

    records = {record.id: record for record in store.list()}
    tasks = TaskStore(resolved).search()
    report = build_missing_report(tasks, set(records))
    summary["missing_references"] = sum(ref.count for ref in report.reference_counts)

    pending: dict[int, list[str]] = {}
    for task in sorted(tasks, key=lambda t: task_sort_key(t.id)):
        for sprint_id in task.sprints:
            record = records.get(sprint_id)
            if record is None:
                continue
            if contains_task(record.sprint, task.id) or task.id in pending.get(
                sprint_id, []
            ):
                summary["memberships_skipped"] += 1
                continue
            pending.setdefault(sprint_id, []).append(task.id)

    for sprint_id, task_ids in sorted(pending.items()):
        sprint = records[sprint_id].sprint
        for task_id in task_ids:
            sprint = with_task_added(sprint, task_id)
        store.update(sprint_id, sprint)
        summary["sprints_updated"] += 1
        summary["memberships_added"] += len(task_ids)
        logger.info("Sprint #%d: added %d task(s)", sprint_id, len(task_ids))

    return summary


def main() -> None:
    """CLI entry point for migration."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(
        description="Migrate a filetrack tasks root to the current layout"
    )
    parser.add_argument("--root", help="Tasks root (default: env/default)")
    parser.add_argument(
        "--no-sync",
        action="store_true",
        help="Only migrate the directory layout, skip membership sync",
    )
    args = parser.parse_args()

    try:
        summary = migrate(args.root, sync_memberships=not args.no_sync)
    except SprintError as e:
        logger.error("Migration failed: %s", e)
        sys.exit(1)

    logger.info("Migration complete:")
    logger.info("  Sprints dir:         %s", summary["sprints_dir"])
    logger.info("  Layout migrated:     %s", summary["layout_migrated"])
    logger.info("  Sprints updated:     %d", summary["sprints_updated"])
    logger.info("  Memberships added:   %d", summary["memberships_added"])
    logger.info("  Memberships skipped: %d", summary["memberships_skipped"])
    logger.info("  Missing references:  %d", summary["missing_references"])
    if summary["legacy_in_use"]:
        logger.warning("Legacy sprint directory is still in use")


if __name__ == "__main__":
    main()
