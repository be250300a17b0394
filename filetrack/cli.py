"""ft-cli: Sprint lifecycle and membership CLI for a filetrack workspace.

Usage:
    ft-cli [--json] [--root PATH] [--verbose] sprint COMMAND

Commands:
    sprint list                         List sprints with lifecycle state
    sprint show [REF]                   Show sprint details and lifecycle
    sprint create [opts]                Create a sprint (next free id)
    sprint delete ID                    Delete a sprint file
    sprint start [ID] [--at T]          Record the start of a sprint
    sprint close [ID] [--at T]          Record the close of a sprint
    sprint add [REF] TASK...            Add tasks to a sprint
    sprint move [REF] TASK...           Move tasks into a sprint, out of all others
    sprint remove [REF] TASK...         Remove tasks from a sprint
    sprint backlog [filters]            Tasks that belong to no sprint
    sprint stats|summary|review [REF]   Sprint metrics
    sprint burndown [REF]               Daily remaining-work series
    sprint velocity [opts]              Completed work per sprint
    sprint check-refs                   Report tasks pointing at missing sprints
    sprint cleanup-refs [ID]            Drop dangling sprint references
    sprint normalize [ID] [--write]     Check or rewrite sprint files canonically
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass

from .assignment import (
    assign_tasks,
    likely_sprint_reference,
    parse_sprint_reference,
    remove_tasks,
    resolve_sprint_id,
)
from .backlog import DEFAULT_BACKLOG_LIMIT, SprintBacklogOptions, fetch_backlog
from .config import TrackerConfig, load_config, resolve_tasks_root
from .errors import SprintError
from .integrity import (
    AssignmentIntegrity,
    cleanup_missing_sprint_refs,
    detect_missing_sprints,
)
from .lifecycle import derive_status
from .metrics import (
    DEFAULT_VELOCITY_WINDOW,
    METRICS,
    compute_sprint_burndown,
    compute_sprint_review,
    compute_sprint_stats,
    compute_sprint_summary,
    compute_velocity,
    sprint_detail,
)
from .sprint_model import Sprint, SprintCapacity, SprintPlan, SprintRecord
from .sprint_store import SprintStore
from .task_store import TaskStore
from .timeutil import utc_now
from .transitions import close_sprint, start_sprint


@dataclass
class Workspace:
    config: TrackerConfig
    store: SprintStore
    tasks: TaskStore


def _get_workspace(args: argparse.Namespace) -> Workspace:
    """Open the stores for the tasks root from CLI args or env."""
    root = resolve_tasks_root(args.root)
    config = load_config(root)
    store = SprintStore(root)
    if store.migration.migrated and not args.json:
        print(
            f"Migrated legacy sprint directory to {store.sprints_dir}", file=sys.stderr
        )
    return Workspace(config=config, store=store, tasks=TaskStore(root))


def _output(data: object, *, json_mode: bool) -> None:
    """Print output as JSON or human-readable text."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                _print_row(item)
            else:
                print(item)
    elif isinstance(data, dict):
        _print_row(data)
    else:
        print(data)


def _print_row(d: dict) -> None:
    """Print a dict as a compact key=value line."""
    parts = [f"{k}={v}" for k, v in d.items() if v is not None and v != []]
    print("  ".join(parts))


def _warn(messages: list[str]) -> None:
    for message in messages:
        print(f"Warning: {message}", file=sys.stderr)


def _resolve_record(ws: Workspace, ref: str | None) -> SprintRecord:
    records = ws.store.list()
    sprint_id = resolve_sprint_id(records, ref)
    return next(record for record in records if record.id == sprint_id)


# --- Sprint commands ---


def cmd_sprint_list(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    now = utc_now()
    rows = []
    for record in ws.store.list():
        status = derive_status(record.sprint, now)
        rows.append(
            {
                "id": record.id,
                "label": record.sprint.label,
                "display_name": record.display_name,
                "state": status.state.label,
                "starts_at": record.sprint.plan.starts_at if record.sprint.plan else None,
                "ends_at": record.sprint.plan.ends_at if record.sprint.plan else None,
                "task_count": len(record.sprint.tasks),
            }
        )
    if args.json:
        _output(rows, json_mode=True)
        return
    if not rows:
        print("No sprints found.")
        return
    print(f"{'#':<6} {'State':<10} {'Tasks':<6} {'Start':<26} {'Name'}")
    print("-" * 70)
    for row in rows:
        print(
            f"{row['id']:<6} {row['state']:<10} {row['task_count']:<6} "
            f"{row['starts_at'] or '-':<26} {row['display_name']}"
        )


def cmd_sprint_show(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    record = _resolve_record(ws, args.sprint)
    status = derive_status(record.sprint, utc_now())
    detail = sprint_detail(record)
    detail["lifecycle"] = status.to_dict()
    if args.json:
        _output(detail, json_mode=True)
        return
    print(f"Sprint {record.id}: {record.display_name}  [{status.state.label}]")
    if detail["goal"]:
        print(f"Goal: {detail['goal']}")
    lifecycle = detail["lifecycle"]
    print(
        f"Planned: {lifecycle['planned_start'] or '-'} -> {lifecycle['planned_end'] or '-'}"
    )
    print(f"Actual:  {lifecycle['actual_start'] or '-'} -> {lifecycle['actual_end'] or '-'}")
    tasks = detail["tasks"]
    print(f"Tasks ({len(tasks)}): {', '.join(tasks) or 'none'}")
    _warn([w.message for w in status.warnings])


def cmd_sprint_create(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    capacity = None
    if args.capacity_points or args.capacity_hours:
        capacity = SprintCapacity(points=args.capacity_points, hours=args.capacity_hours)
    sprint = Sprint(
        plan=SprintPlan(
            label=args.label,
            goal=args.goal,
            length=args.length,
            starts_at=args.starts_at,
            ends_at=args.ends_at,
            capacity=capacity,
            overdue_after=args.overdue_after,
            notes=args.notes,
        )
    )
    defaults = None if args.no_defaults else ws.config.sprint_defaults
    outcome = ws.store.create(sprint, defaults=defaults)
    result = sprint_detail(outcome.record)
    result["applied_defaults"] = outcome.applied_defaults
    result["warnings"] = [w.message for w in outcome.warnings]
    if args.json:
        _output(result, json_mode=True)
        return
    print(f"Created sprint #{outcome.record.id} ({outcome.record.display_name})")
    if outcome.applied_defaults:
        print(f"Applied defaults: {', '.join(outcome.applied_defaults)}")
    _warn(result["warnings"])


def cmd_sprint_delete(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    if not ws.store.delete(args.id):
        print(f"Sprint #{args.id} not found.", file=sys.stderr)
        sys.exit(1)
    _output({"deleted": True, "sprint_id": args.id}, json_mode=args.json)


def _print_transition(outcome: dict, verb: str) -> None:
    print(
        f"{verb} sprint #{outcome['sprint_id']} ({outcome['sprint_display_name']})"
    )
    _warn([w["message"] for w in outcome["warnings"]])
    _warn([w["message"] for w in outcome["canonical_warnings"]])


def cmd_sprint_start(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    outcome = start_sprint(
        ws.store,
        args.id,
        at=args.at,
        force=args.force,
        notifications=ws.config.notifications_enabled and not args.no_warn,
    )
    result = outcome.to_dict()
    if args.json:
        _output(result, json_mode=True)
        return
    _print_transition(result, "Started")


def cmd_sprint_close(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    outcome = close_sprint(
        ws.store,
        args.id,
        at=args.at,
        force=args.force,
        notifications=ws.config.notifications_enabled and not args.no_warn,
        review=args.review,
        task_store=ws.tasks,
        config=ws.config,
    )
    result = outcome.to_dict()
    if args.json:
        _output(result, json_mode=True)
        return
    _print_transition(result, "Closed")
    if outcome.review:
        metrics = outcome.review["metrics"]
        print(
            f"Review: {metrics['done_tasks']}/{metrics['total_tasks']} done, "
            f"{metrics['remaining_tasks']} remaining"
        )


def _split_sprint_and_tasks(
    args: argparse.Namespace, ws: Workspace
) -> tuple[str | None, list[str]]:
    """Accept ``sprint add 3 T-1`` as well as ``sprint add --sprint 3 T-1``."""
    items = list(args.items)
    if (
        args.sprint is None
        and len(items) > 1
        and likely_sprint_reference(ws.tasks, ws.store.list(), items[0])
    ):
        return items[0], items[1:]
    return args.sprint, items


def _report_integrity(integrity: AssignmentIntegrity | None) -> None:
    """Tell the user about dangling sprint references found before a change."""
    if integrity is None or integrity.is_clean:
        return
    cleanup = integrity.cleanup
    if cleanup is not None:
        print(
            f"Removed {cleanup.removed_references} stale sprint reference(s) from "
            f"{cleanup.updated_tasks} task(s)."
        )
        if integrity.current.missing_sprints:
            missing = ", ".join(f"#{i}" for i in integrity.current.missing_sprints)
            _warn([f"Still missing: {missing}"])
        return
    missing = ", ".join(f"#{i}" for i in integrity.current.missing_sprints)
    _warn(
        [
            f"{integrity.tasks_with_missing} task(s) currently reference missing "
            f"sprints ({missing}). Re-run with --cleanup-missing to remove stale "
            "sprint memberships automatically."
        ]
    )


def _run_assign(args: argparse.Namespace, *, force_single: bool, verb: str) -> None:
    ws = _get_workspace(args)
    sprint_ref, tasks = _split_sprint_and_tasks(args, ws)
    outcome = assign_tasks(
        ws.store,
        ws.tasks,
        tasks,
        parse_sprint_reference(sprint_ref),
        allow_closed=args.allow_closed,
        force_single=force_single,
        cleanup_missing=args.cleanup_missing,
    )
    if args.json:
        _output(outcome.to_dict(), json_mode=True)
        return
    _report_integrity(outcome.integrity)
    target = f"sprint #{outcome.sprint_id} ({outcome.sprint_display_name})"
    if outcome.modified:
        print(f"{verb} to {target}: {', '.join(outcome.modified)}")
    if outcome.unchanged:
        print(f"Already in {target}: {', '.join(outcome.unchanged)}")
    for info in outcome.replaced:
        print(info.describe())
    _warn(outcome.warnings)


def cmd_sprint_add(args: argparse.Namespace) -> None:
    _run_assign(args, force_single=args.force_single, verb="Added")


def cmd_sprint_move(args: argparse.Namespace) -> None:
    _run_assign(args, force_single=True, verb="Moved")


def cmd_sprint_remove(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    sprint_ref, tasks = _split_sprint_and_tasks(args, ws)
    outcome = remove_tasks(
        ws.store,
        ws.tasks,
        tasks,
        parse_sprint_reference(sprint_ref),
        cleanup_missing=args.cleanup_missing,
    )
    if args.json:
        _output(outcome.to_dict(), json_mode=True)
        return
    _report_integrity(outcome.integrity)
    target = f"sprint #{outcome.sprint_id} ({outcome.sprint_display_name})"
    if outcome.modified:
        print(f"Removed from {target}: {', '.join(outcome.modified)}")
    if outcome.unchanged:
        print(f"Not in {target}: {', '.join(outcome.unchanged)}")
    _warn(outcome.warnings)


def cmd_sprint_backlog(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    result = fetch_backlog(
        ws.tasks,
        ws.store.list(),
        SprintBacklogOptions(
            project=args.project,
            tags=tuple(args.tag or ()),
            statuses=tuple(args.status or ()),
            assignee=args.assignee,
            limit=args.limit,
        ),
    )
    if args.json:
        _output(result.to_dict(), json_mode=True)
        return
    if not result.entries:
        print("Backlog is empty.")
        return
    for entry in result.entries:
        print(
            f"{entry.id:<12} {entry.status:<14} {entry.assignee or '-':<16} {entry.title}"
        )
    if result.truncated:
        print(f"(showing first {len(result.entries)}; use --limit 0 for all)")


def _metric_command(args: argparse.Namespace, compute) -> dict:  # noqa: ANN001
    ws = _get_workspace(args)
    record = _resolve_record(ws, args.sprint)
    return compute(record, ws.tasks, config=ws.config)


def cmd_sprint_stats(args: argparse.Namespace) -> None:
    result = _metric_command(args, compute_sprint_stats)
    if args.json:
        _output(result, json_mode=True)
        return
    tasks = result["metrics"]["tasks"]
    print(f"Sprint {result['sprint']['id']}: {result['sprint']['display_name']}")
    print(
        f"Tasks: {tasks['done']}/{tasks['committed']} done "
        f"({tasks['completion_ratio']:.0%})"
    )
    for name in ("points", "hours"):
        effort = result["metrics"][name]
        if effort:
            line = f"{name.title()}: {effort['done']:g}/{effort['committed']:g}"
            if effort["capacity"]:
                line += f" (capacity {effort['capacity']})"
            print(line)
    timeline = result["timeline"]
    if timeline["remaining"]:
        print(f"Remaining: {timeline['remaining']}")
    if timeline["overdue"]:
        print(f"Overdue by: {timeline['overdue']}")


def cmd_sprint_summary(args: argparse.Namespace) -> None:
    result = _metric_command(args, compute_sprint_summary)
    if args.json:
        _output(result, json_mode=True)
        return
    tasks = result["metrics"]["tasks"]
    print(
        f"Sprint {result['sprint']['id']} [{result['lifecycle']['state']}]: "
        f"{tasks['done']}/{tasks['committed']} done, "
        f"{result['metrics']['blocked']} blocked"
    )
    for task in result["blocked_tasks"]:
        print(f"  blocked: {task['id']} {task['title']}")


def cmd_sprint_review(args: argparse.Namespace) -> None:
    result = _metric_command(args, compute_sprint_review)
    if args.json:
        _output(result, json_mode=True)
        return
    metrics = result["metrics"]
    print(
        f"Sprint {result['sprint']['id']} review: {metrics['done_tasks']}/"
        f"{metrics['total_tasks']} done"
    )
    for entry in metrics["status_breakdown"]:
        print(f"  {entry['status']}: {entry['count']}")
    for task in result["remaining_tasks"]:
        print(f"  remaining: {task['id']} [{task['status']}] {task['title']}")


def cmd_sprint_burndown(args: argparse.Namespace) -> None:
    result = _metric_command(args, compute_sprint_burndown)
    if args.json:
        _output(result, json_mode=True)
        return
    print(f"{'Date':<12} {'Remaining':<10} {'Ideal'}")
    for point in result["series"]:
        print(f"{point['date']:<12} {point['remaining_tasks']:<10} {point['ideal_tasks']}")


def cmd_sprint_velocity(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    result = compute_velocity(
        ws.store.list(),
        ws.tasks,
        config=ws.config,
        limit=args.limit,
        include_active=args.include_active,
        metric=args.metric,
    )
    if args.json:
        _output(result, json_mode=True)
        return
    if not result["entries"]:
        print("No completed sprints to measure.")
        return
    for entry in result["entries"]:
        print(
            f"#{entry['sprint_id']:<5} {entry['completed']:g}/{entry['committed']:g} "
            f"{args.metric} ({entry['completion_ratio']:.0%})  {entry['display_name']}"
        )
    print(f"Average velocity: {result['average_velocity']:g} {args.metric}")


def cmd_sprint_check_refs(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    report = detect_missing_sprints(ws.tasks, ws.store.list())
    if args.json:
        _output(report.to_dict(), json_mode=True)
        return
    if not report.missing_sprints:
        print(f"No missing sprint references ({report.scanned_tasks} tasks scanned).")
        return
    print(
        f"{report.tasks_with_missing} task(s) reference missing sprints: "
        + ", ".join(f"#{ref.sprint_id} ({ref.count})" for ref in report.reference_counts)
    )


def cmd_sprint_cleanup_refs(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    records = ws.store.list()
    if args.id is not None and any(record.id == args.id for record in records):
        if not args.json:
            _warn([f"Sprint #{args.id} still exists; removing references per request."])
    outcome = cleanup_missing_sprint_refs(
        ws.tasks, records, args.id, sprint_store=ws.store
    )
    if args.json:
        _output(outcome.to_dict(), json_mode=True)
        return
    if not outcome.removed_references:
        print("No sprint references removed.")
        return
    print(
        f"Removed {outcome.removed_references} reference(s) from "
        f"{outcome.updated_tasks} task(s)."
    )
    if outcome.remaining_missing:
        _warn(
            [
                "Still missing: "
                + ", ".join(f"#{sprint_id}" for sprint_id in outcome.remaining_missing)
            ]
        )


def cmd_sprint_normalize(args: argparse.Namespace) -> None:
    ws = _get_workspace(args)
    report = ws.store.normalize(args.id, write=args.write)
    pending = ", ".join(f"#{sprint_id}" for sprint_id in report.changes_required)
    if args.json:
        _output(report.to_dict(), json_mode=True)
        if pending:
            sys.exit(1)
        return
    if not report.processed:
        print("No sprints found. Nothing to normalize.")
        return
    for sprint_id in report.updated_ids:
        print(f"Normalized sprint #{sprint_id}.")
    for sprint_id in report.changes_required:
        _warn(
            [
                f"Sprint #{sprint_id} requires normalization "
                "(run with --write to update)."
            ]
        )
    _warn(
        [
            f"Sprint #{w.sprint_id} canonicalization notice: {w.warning.message}"
            for w in report.warnings
        ]
    )
    if report.mode == "write":
        print(
            f"Normalization complete ({report.processed} sprint(s) processed, "
            f"{len(report.updated_ids)} updated)."
        )
    elif pending:
        print(
            f"Error: Sprint normalization required for: {pending}. "
            "Run with --write to update.",
            file=sys.stderr,
        )
        sys.exit(1)
    else:
        print(f"All {report.processed} sprint(s) already canonical.")


# --- Parser ---


def _add_sprint_ref(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "sprint",
        nargs="?",
        help="Sprint id (#N or N) or keyword: active, next, previous (default: active)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ft-cli",
        description="Sprint lifecycle and membership for filetrack workspaces",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument(
        "--root", help="Tasks root directory (default: $FILETRACK_ROOT or ./.tasks)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", help="Command group")

    sprint_parser = sub.add_parser("sprint", help="Sprint management")
    sprint_sub = sprint_parser.add_subparsers(dest="sprint_command")

    # sprint list
    sp_list = sprint_sub.add_parser("list", help="List sprints")
    sp_list.set_defaults(func=cmd_sprint_list)

    # sprint show
    sp_show = sprint_sub.add_parser("show", help="Show sprint details")
    _add_sprint_ref(sp_show)
    sp_show.set_defaults(func=cmd_sprint_show)

    # sprint create
    sp_create = sprint_sub.add_parser("create", help="Create a sprint")
    sp_create.add_argument("--label", help="Sprint label")
    sp_create.add_argument("--goal", help="Sprint goal")
    sp_create.add_argument("--length", help="Planned length, e.g. 2w or 10d")
    sp_create.add_argument("--starts-at", dest="starts_at", help="Planned start")
    sp_create.add_argument("--ends-at", dest="ends_at", help="Planned end")
    sp_create.add_argument("--capacity-points", type=int, help="Capacity in points")
    sp_create.add_argument("--capacity-hours", type=int, help="Capacity in hours")
    sp_create.add_argument("--overdue-after", help="Grace period before overdue")
    sp_create.add_argument("--notes", help="Free-form notes")
    sp_create.add_argument(
        "--no-defaults", action="store_true", help="Skip configured sprint defaults"
    )
    sp_create.set_defaults(func=cmd_sprint_create)

    # sprint delete
    sp_delete = sprint_sub.add_parser("delete", help="Delete a sprint")
    sp_delete.add_argument("id", type=int)
    sp_delete.set_defaults(func=cmd_sprint_delete)

    # sprint start / close
    for name, func, help_text in (
        ("start", cmd_sprint_start, "Start a sprint"),
        ("close", cmd_sprint_close, "Close a sprint"),
    ):
        sp = sprint_sub.add_parser(name, help=help_text)
        sp.add_argument("id", type=int, nargs="?", help="Sprint id (default: auto)")
        sp.add_argument("--at", help="Timestamp (default: now)")
        sp.add_argument("--force", action="store_true", help="Override guards")
        sp.add_argument("--no-warn", action="store_true", help="Suppress warnings")
        if name == "close":
            sp.add_argument(
                "--review", action="store_true", help="Print a review after closing"
            )
        sp.set_defaults(func=func)

    # sprint add / move / remove
    for name, func, help_text in (
        ("add", cmd_sprint_add, "Add tasks to a sprint"),
        ("move", cmd_sprint_move, "Move tasks into a sprint, out of all others"),
        ("remove", cmd_sprint_remove, "Remove tasks from a sprint"),
    ):
        sp = sprint_sub.add_parser(name, help=help_text)
        sp.add_argument("items", nargs="+", help="[SPRINT] TASK...")
        sp.add_argument("--sprint", help="Sprint reference (default: active)")
        sp.add_argument(
            "--cleanup-missing",
            action="store_true",
            help="Drop task references to deleted sprints first",
        )
        if name != "remove":
            sp.add_argument(
                "--allow-closed",
                action="store_true",
                help="Allow assigning to a closed sprint",
            )
        if name == "add":
            sp.add_argument(
                "--force-single",
                action="store_true",
                help="Remove tasks from any other sprint first",
            )
        sp.set_defaults(func=func)

    # sprint backlog
    sp_backlog = sprint_sub.add_parser("backlog", help="Tasks in no sprint")
    sp_backlog.add_argument("--project", help="Project prefix")
    sp_backlog.add_argument("--tag", action="append", help="Tag (repeatable)")
    sp_backlog.add_argument("--status", action="append", help="Status (repeatable)")
    sp_backlog.add_argument("--assignee", help="Assignee or @me")
    sp_backlog.add_argument(
        "--limit", type=int, default=DEFAULT_BACKLOG_LIMIT, help="0 = unlimited"
    )
    sp_backlog.set_defaults(func=cmd_sprint_backlog)

    # sprint metrics
    for name, func, help_text in (
        ("stats", cmd_sprint_stats, "Completion and capacity figures"),
        ("summary", cmd_sprint_summary, "Headline numbers and blocked tasks"),
        ("review", cmd_sprint_review, "Done vs remaining review"),
        ("burndown", cmd_sprint_burndown, "Daily burndown series"),
    ):
        sp = sprint_sub.add_parser(name, help=help_text)
        _add_sprint_ref(sp)
        sp.set_defaults(func=func)

    # sprint velocity
    sp_velocity = sprint_sub.add_parser("velocity", help="Velocity across sprints")
    sp_velocity.add_argument("--limit", type=int, default=DEFAULT_VELOCITY_WINDOW)
    sp_velocity.add_argument("--include-active", action="store_true")
    sp_velocity.add_argument("--metric", choices=METRICS, default="tasks")
    sp_velocity.set_defaults(func=cmd_sprint_velocity)

    # sprint check-refs / cleanup-refs
    sp_check = sprint_sub.add_parser(
        "check-refs", help="Report task references to missing sprints"
    )
    sp_check.set_defaults(func=cmd_sprint_check_refs)

    sp_cleanup = sprint_sub.add_parser(
        "cleanup-refs", help="Remove task references to missing sprints"
    )
    sp_cleanup.add_argument(
        "id", type=int, nargs="?", help="Also remove references to this sprint"
    )
    sp_cleanup.set_defaults(func=cmd_sprint_cleanup_refs)

    # sprint normalize
    sp_normalize = sprint_sub.add_parser(
        "normalize", help="Check or rewrite sprint files in canonical form"
    )
    sp_normalize.add_argument(
        "id", type=int, nargs="?", help="Sprint id (default: all sprints)"
    )
    mode = sp_normalize.add_mutually_exclusive_group()
    mode.add_argument(
        "--check", action="store_true", help="Report files that need changes (default)"
    )
    mode.add_argument("--write", action="store_true", help="Rewrite files in place")
    sp_normalize.set_defaults(func=cmd_sprint_normalize)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "sprint" and not getattr(args, "sprint_command", None):
        parser.parse_args([args.command, "--help"])

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (SprintError, ValueError) as e:
        if args.json:
            code = getattr(e, "code", "invalid_input")
            print(json.dumps({"status": "error", "error": str(e), "code": code}))
        else:
            print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
