"""HTTP client for the filetrack JSON API v1.

Lets scripts and remote front ends drive a running filetrack server over
HTTP instead of touching the tasks root directly.
"""

from __future__ import annotations

import os
from typing import Any

import httpx


class FiletrackError(Exception):
    """Error from the filetrack API."""

    def __init__(self, message: str, code: str = "", status: int = 0):
        super().__init__(message)
        self.code = code
        self.status = status


class FiletrackClient:
    """Synchronous HTTP client for filetrack API v1.

    Method names follow the engine operations so callers can switch between
    local and remote use with little change.
    """

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        base_url = base_url or os.getenv("FILETRACK_URL", "http://localhost:8000")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=f"{self.base_url}/api/v1",
            timeout=30.0,
            **kwargs,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | list | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        """Make a request and handle errors.

        Wraps httpx transport errors (connection refused, timeout, DNS failure)
        as FiletrackError so callers only need to catch one exception type.
        """
        try:
            resp = self._client.request(method, path, json=json, params=params)
        except httpx.RequestError as exc:
            raise FiletrackError(
                f"Connection error: {exc}", code="connection_error", status=0
            ) from exc
        if resp.status_code == 204:
            return resp
        if resp.status_code >= 400:
            try:
                body = resp.json()
                msg = body.get("error", resp.text)
                code = body.get("code", "")
            except ValueError:
                msg = resp.text
                code = ""
            raise FiletrackError(msg, code=code, status=resp.status_code)
        return resp

    # --- Sprint operations ---

    def list_sprints(self, *, state: str | None = None) -> list[dict]:
        params = {}
        if state:
            params["state"] = state
        resp = self._request("GET", "/sprints", params=params)
        result: list[dict] = resp.json()
        return result

    def get_sprint(self, ref: int | str) -> dict | None:
        try:
            resp = self._request("GET", f"/sprints/{ref}")
        except FiletrackError as e:
            if e.status == 404:
                return None
            raise
        result: dict = resp.json()
        return result

    def create_sprint(self, *, apply_defaults: bool = True, **fields: Any) -> dict:
        body = {k: v for k, v in fields.items() if v is not None}
        body["apply_defaults"] = apply_defaults
        resp = self._request("POST", "/sprints", json=body)
        result: dict = resp.json()
        return result

    def delete_sprint(self, number: int) -> bool:
        try:
            self._request("DELETE", f"/sprints/{number}")
        except FiletrackError as e:
            if e.status == 404:
                return False
            raise
        return True

    def start_sprint(
        self, number: int | None = None, *, at: str | None = None, force: bool = False
    ) -> dict:
        body: dict = {"force": force}
        if at:
            body["at"] = at
        path = f"/sprints/{number}/start" if number is not None else "/sprints/start"
        resp = self._request("POST", path, json=body)
        result: dict = resp.json()
        return result

    def close_sprint(
        self,
        number: int | None = None,
        *,
        at: str | None = None,
        force: bool = False,
        review: bool = False,
    ) -> dict:
        body: dict = {"force": force, "review": review}
        if at:
            body["at"] = at
        path = f"/sprints/{number}/close" if number is not None else "/sprints/close"
        resp = self._request("POST", path, json=body)
        result: dict = resp.json()
        return result

    def normalize(self, number: int | None = None, *, write: bool = False) -> dict:
        resp = self._request(
            "POST", "/sprints/normalize", json={"sprint_id": number, "write": write}
        )
        result: dict = resp.json()
        return result

    # --- Membership operations ---

    def add_tasks(
        self,
        tasks: list[str],
        sprint: int | str = "active",
        *,
        allow_closed: bool = False,
        force_single: bool = False,
        cleanup_missing: bool = False,
    ) -> dict:
        resp = self._request(
            "POST",
            f"/sprints/{sprint}/tasks",
            json={
                "tasks": tasks,
                "allow_closed": allow_closed,
                "force_single": force_single,
                "cleanup_missing": cleanup_missing,
            },
        )
        result: dict = resp.json()
        return result

    def move_tasks(
        self,
        tasks: list[str],
        sprint: int | str = "active",
        *,
        allow_closed: bool = False,
        cleanup_missing: bool = False,
    ) -> dict:
        resp = self._request(
            "POST",
            f"/sprints/{sprint}/tasks/move",
            json={
                "tasks": tasks,
                "allow_closed": allow_closed,
                "cleanup_missing": cleanup_missing,
            },
        )
        result: dict = resp.json()
        return result

    def remove_tasks(
        self,
        tasks: list[str],
        sprint: int | str = "active",
        *,
        cleanup_missing: bool = False,
    ) -> dict:
        resp = self._request(
            "POST",
            f"/sprints/{sprint}/tasks/remove",
            json={"tasks": tasks, "cleanup_missing": cleanup_missing},
        )
        result: dict = resp.json()
        return result

    def backlog(
        self,
        *,
        project: str | None = None,
        tags: list[str] | None = None,
        statuses: list[str] | None = None,
        assignee: str | None = None,
        limit: int | None = None,
    ) -> dict:
        params: dict = {}
        if project:
            params["project"] = project
        if tags:
            params["tag"] = tags
        if statuses:
            params["status"] = statuses
        if assignee:
            params["assignee"] = assignee
        if limit is not None:
            params["limit"] = limit
        resp = self._request("GET", "/backlog", params=params)
        result: dict = resp.json()
        return result

    # --- Integrity ---

    def missing_refs(self) -> dict:
        resp = self._request("GET", "/integrity/missing")
        result: dict = resp.json()
        return result

    def cleanup_refs(self, target: int | None = None) -> dict:
        body: dict = {}
        if target is not None:
            body["target"] = target
        resp = self._request("POST", "/integrity/cleanup", json=body)
        result: dict = resp.json()
        return result

    # --- Metrics ---

    def report(self, sprint: int | str, kind: str = "stats") -> dict:
        """Fetch a stats, summary, review, or burndown report."""
        resp = self._request("GET", f"/sprints/{sprint}/{kind}")
        result: dict = resp.json()
        return result

    def velocity(
        self,
        *,
        limit: int | None = None,
        include_active: bool = False,
        metric: str = "tasks",
    ) -> dict:
        params: dict = {"metric": metric}
        if include_active:
            params["include_active"] = "true"
        if limit is not None:
            params["limit"] = limit
        resp = self._request("GET", "/velocity", params=params)
        result: dict = resp.json()
        return result

    def close(self) -> None:
        self._client.close()
