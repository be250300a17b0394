"""JSON API v1 endpoints for sprint lifecycle and membership.

All endpoints live under /api/v1/ and return JSON. The tasks root comes
from FILETRACK_ROOT (or ./.tasks). Used by FiletrackClient and any future
integrations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, field_validator

from .assignment import assign_tasks, remove_tasks, resolve_sprint_id
from .backlog import DEFAULT_BACKLOG_LIMIT, SprintBacklogOptions, fetch_backlog
from .config import TrackerConfig, load_config, resolve_tasks_root
from .errors import (
    AmbiguousDefaultError,
    ConfigError,
    NotFoundError,
    PersistenceError,
    SprintError,
)
from .integrity import cleanup_missing_sprint_refs, detect_missing_sprints
from .lifecycle import derive_status
from .metrics import (
    DEFAULT_VELOCITY_WINDOW,
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
from .timeutil import parse_duration, utc_now
from .transitions import close_sprint, start_sprint

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def _validate_duration_str(v: str | None) -> str | None:
    """Validate a duration string such as ``2w`` or ``10d``."""
    if v is None:
        return v
    if parse_duration(v) is None:
        msg = f"Invalid duration: '{v}' (expected e.g. 2w, 10d, 36h)"
        raise ValueError(msg)
    return v


# --- Pydantic request models ---


class SprintCreate(BaseModel):
    label: str | None = None
    goal: str | None = None
    length: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None
    capacity_points: int | None = Field(None, gt=0)
    capacity_hours: int | None = Field(None, gt=0)
    overdue_after: str | None = None
    notes: str | None = None
    apply_defaults: bool = True

    @field_validator("length", "overdue_after")
    @classmethod
    def check_duration(cls, v: str | None) -> str | None:
        return _validate_duration_str(v)


class SprintTransition(BaseModel):
    at: str | None = None
    force: bool = False
    review: bool = False


class TaskBatch(BaseModel):
    tasks: list[str] = Field(default_factory=list)
    allow_closed: bool = False
    force_single: bool = False
    cleanup_missing: bool = False


class RefCleanup(BaseModel):
    target: int | None = Field(None, gt=0)


class NormalizeRequest(BaseModel):
    sprint_id: int | None = Field(None, gt=0)
    write: bool = False


# --- Helpers ---


@dataclass
class _Workspace:
    config: TrackerConfig
    store: SprintStore
    tasks: TaskStore


def _get_workspace() -> _Workspace:
    root = resolve_tasks_root()
    return _Workspace(
        config=load_config(root), store=SprintStore(root), tasks=TaskStore(root)
    )


def _record(ws: _Workspace, ref: str | None) -> SprintRecord:
    records = ws.store.list()
    sprint_id = resolve_sprint_id(records, ref)
    return next(record for record in records if record.id == sprint_id)


def _error(message: str, code: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status)


def _handle_exception(e: Exception) -> JSONResponse:
    """Map engine exceptions to JSON error responses."""
    msg = str(e)
    if isinstance(e, NotFoundError):
        return _error(msg, e.code, 404)
    if isinstance(e, AmbiguousDefaultError):
        return _error(msg, e.code, 409)
    if isinstance(e, PersistenceError | ConfigError):
        logger.error("Storage error in API v1: %s", e)
        return _error(msg, e.code, 500)
    if isinstance(e, SprintError):
        return _error(msg, e.code, 400)
    if isinstance(e, ValueError):
        return _error(msg, "invalid_input", 400)
    logger.exception("Unhandled error in API v1")
    return _error("Internal server error", "internal_error", 500)


# --- Sprint routes ---


@router.get("/sprints")
async def list_sprints(state: str | None = None):
    try:
        ws = _get_workspace()
        now = utc_now()
        result = []
        for record in ws.store.list():
            lifecycle = derive_status(record.sprint, now)
            if state and lifecycle.state.label != state.lower():
                continue
            detail = sprint_detail(record)
            detail["state"] = lifecycle.state.label
            result.append(detail)
    except Exception as e:
        return _handle_exception(e)
    return result


@router.post("/sprints", status_code=201)
async def create_sprint(body: SprintCreate):
    try:
        ws = _get_workspace()
        capacity = None
        if body.capacity_points or body.capacity_hours:
            capacity = SprintCapacity(
                points=body.capacity_points, hours=body.capacity_hours
            )
        sprint = Sprint(
            plan=SprintPlan(
                label=body.label,
                goal=body.goal,
                length=body.length,
                starts_at=body.starts_at,
                ends_at=body.ends_at,
                capacity=capacity,
                overdue_after=body.overdue_after,
                notes=body.notes,
            )
        )
        defaults = ws.config.sprint_defaults if body.apply_defaults else None
        outcome = ws.store.create(sprint, defaults=defaults)
    except Exception as e:
        return _handle_exception(e)
    result = sprint_detail(outcome.record)
    result["applied_defaults"] = outcome.applied_defaults
    result["warnings"] = [w.to_dict() for w in outcome.warnings]
    return result


@router.post("/sprints/start")
async def start_default_sprint(body: SprintTransition):
    return _start(None, body)


@router.post("/sprints/close")
async def close_default_sprint(body: SprintTransition):
    return _close(None, body)


@router.post("/sprints/normalize")
async def normalize_sprints(body: NormalizeRequest):
    try:
        ws = _get_workspace()
        report = ws.store.normalize(body.sprint_id, write=body.write)
    except Exception as e:
        return _handle_exception(e)
    return report.to_dict()


@router.get("/sprints/{ref}")
async def get_sprint(ref: str):
    try:
        ws = _get_workspace()
        record = _record(ws, ref)
    except Exception as e:
        return _handle_exception(e)
    result = sprint_detail(record)
    result["lifecycle"] = derive_status(record.sprint, utc_now()).to_dict()
    return result


@router.delete("/sprints/{n}")
async def delete_sprint(n: int):
    try:
        ws = _get_workspace()
        deleted = ws.store.delete(n)
    except Exception as e:
        return _handle_exception(e)
    if not deleted:
        return _error(f"Sprint #{n} not found.", "not_found", 404)
    return Response(status_code=204)


def _start(n: int | None, body: SprintTransition) -> dict | JSONResponse:
    try:
        ws = _get_workspace()
        outcome = start_sprint(
            ws.store,
            n,
            at=body.at,
            force=body.force,
            notifications=ws.config.notifications_enabled,
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


def _close(n: int | None, body: SprintTransition) -> dict | JSONResponse:
    try:
        ws = _get_workspace()
        outcome = close_sprint(
            ws.store,
            n,
            at=body.at,
            force=body.force,
            notifications=ws.config.notifications_enabled,
            review=body.review,
            task_store=ws.tasks,
            config=ws.config,
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


@router.post("/sprints/{n}/start")
async def start_sprint_route(n: int, body: SprintTransition):
    return _start(n, body)


@router.post("/sprints/{n}/close")
async def close_sprint_route(n: int, body: SprintTransition):
    return _close(n, body)


# --- Membership routes ---


@router.post("/sprints/{ref}/tasks")
async def add_tasks(ref: str, body: TaskBatch):
    try:
        ws = _get_workspace()
        outcome = assign_tasks(
            ws.store,
            ws.tasks,
            body.tasks,
            ref,
            allow_closed=body.allow_closed,
            force_single=body.force_single,
            cleanup_missing=body.cleanup_missing,
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


@router.post("/sprints/{ref}/tasks/move")
async def move_tasks(ref: str, body: TaskBatch):
    try:
        ws = _get_workspace()
        outcome = assign_tasks(
            ws.store,
            ws.tasks,
            body.tasks,
            ref,
            allow_closed=body.allow_closed,
            force_single=True,
            cleanup_missing=body.cleanup_missing,
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


@router.post("/sprints/{ref}/tasks/remove")
async def remove_tasks_route(ref: str, body: TaskBatch):
    try:
        ws = _get_workspace()
        outcome = remove_tasks(
            ws.store, ws.tasks, body.tasks, ref, cleanup_missing=body.cleanup_missing
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


@router.get("/backlog")
async def backlog(
    project: str | None = None,
    tag: list[str] = Query(default=[]),
    status: list[str] = Query(default=[]),
    assignee: str | None = None,
    limit: int = Query(default=DEFAULT_BACKLOG_LIMIT, ge=0),
):
    try:
        ws = _get_workspace()
        result = fetch_backlog(
            ws.tasks,
            ws.store.list(),
            SprintBacklogOptions(
                project=project,
                tags=tuple(tag),
                statuses=tuple(status),
                assignee=assignee,
                limit=limit,
            ),
        )
    except Exception as e:
        return _handle_exception(e)
    return result.to_dict()


# --- Integrity routes ---


@router.get("/integrity/missing")
async def missing_refs():
    try:
        ws = _get_workspace()
        report = detect_missing_sprints(ws.tasks, ws.store.list())
    except Exception as e:
        return _handle_exception(e)
    return report.to_dict()


@router.post("/integrity/cleanup")
async def cleanup_refs(body: RefCleanup):
    try:
        ws = _get_workspace()
        outcome = cleanup_missing_sprint_refs(
            ws.tasks, ws.store.list(), body.target, sprint_store=ws.store
        )
    except Exception as e:
        return _handle_exception(e)
    return outcome.to_dict()


# --- Metrics routes ---


_REPORTS = {
    "stats": compute_sprint_stats,
    "summary": compute_sprint_summary,
    "review": compute_sprint_review,
    "burndown": compute_sprint_burndown,
}


@router.get("/sprints/{ref}/{report}")
async def sprint_report(ref: str, report: str):
    compute = _REPORTS.get(report)
    if compute is None:
        return _error(f"Unknown report '{report}'", "not_found", 404)
    try:
        ws = _get_workspace()
        record = _record(ws, ref)
        result = compute(record, ws.tasks, config=ws.config)
    except Exception as e:
        return _handle_exception(e)
    return result


@router.get("/velocity")
async def velocity(
    limit: int = Query(default=DEFAULT_VELOCITY_WINDOW, ge=0),
    include_active: bool = False,
    metric: str = "tasks",
):
    try:
        ws = _get_workspace()
        result = compute_velocity(
            ws.store.list(),
            ws.tasks,
            config=ws.config,
            limit=limit,
            include_active=include_active,
            metric=metric,
        )
    except Exception as e:
        return _handle_exception(e)
    return result
