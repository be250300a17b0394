"""Shared fixtures: an isolated tasks root with sprint and task stores."""

from datetime import UTC, datetime

import pytest

from filetrack.identity import invalidate_identity_cache
from filetrack.sprint_model import Sprint, SprintActual, SprintPlan
from filetrack.sprint_store import SprintStore
from filetrack.task_store import TaskStore

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of every test."""
    for var in (
        "FILETRACK_ROOT",
        "FILETRACK_IDENTITY",
        "FILETRACK_DEFAULT_REPORTER",
        "FILETRACK_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    invalidate_identity_cache()
    yield
    invalidate_identity_cache()


@pytest.fixture()
def root(tmp_path):
    path = tmp_path / ".tasks"
    path.mkdir()
    return path


@pytest.fixture()
def store(root):
    return SprintStore(root)


@pytest.fixture()
def tasks(root):
    return TaskStore(root)


def make_sprint(
    label: str | None = None,
    *,
    starts_at: str | None = None,
    ends_at: str | None = None,
    length: str | None = None,
    started_at: str | None = None,
    closed_at: str | None = None,
    overdue_after: str | None = None,
) -> Sprint:
    """Build a Sprint value from the fields tests usually care about."""
    actual = None
    if started_at or closed_at:
        actual = SprintActual(started_at=started_at, closed_at=closed_at)
    return Sprint(
        plan=SprintPlan(
            label=label,
            starts_at=starts_at,
            ends_at=ends_at,
            length=length,
            overdue_after=overdue_after,
        ),
        actual=actual,
    )
