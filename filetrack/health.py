"""Health check endpoint for Docker HEALTHCHECK and deploy verification."""

import logging
import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .config import resolve_tasks_root
from .storage import sprints_dir

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health() -> JSONResponse:
    """Return health status and deployed git SHA.

    Returns 200 when the tasks root is readable, 503 otherwise.
    """
    storage_status = "ok"
    try:
        root = resolve_tasks_root()
        if not root.is_dir():
            msg = f"Tasks root {root} does not exist"
            raise FileNotFoundError(msg)
        directory = sprints_dir(root)
        if directory.exists():
            next(directory.iterdir(), None)
    except OSError:
        logger.exception("Storage health check failed")
        storage_status = "error"

    overall = "ok" if storage_status == "ok" else "degraded"
    status_code = 200 if storage_status == "ok" else 503
    return JSONResponse(
        content={
            "status": overall,
            "git_sha": os.getenv("GIT_SHA", "dev"),
            "storage": storage_status,
        },
        status_code=status_code,
    )
