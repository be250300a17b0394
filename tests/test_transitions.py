"""Tests for sprint start and close transitions."""

from datetime import timedelta

import pytest
from conftest import NOW, make_sprint

from filetrack.errors import (
    AmbiguousDefaultError,
    GuardViolationError,
    InvalidReferenceError,
    NotFoundError,
)
from filetrack.lifecycle import SprintLifecycleState, derive_status
from filetrack.sprint_model import with_task_added
from filetrack.transitions import (
    close_sprint,
    select_sprint_to_close,
    select_sprint_to_start,
    start_sprint,
)

NOW_TEXT = "2025-03-10T12:00:00+00:00"


def _create(store, label, **fields):
    return store.create(make_sprint(label, **fields), now=NOW).record.id


def _codes(outcome):
    return [w.code for w in outcome.warnings]


class TestSelectSprintToStart:
    def test_earliest_scheduled_pending(self, store):
        _create(store, "later", starts_at="2025-03-05")
        _create(store, "earlier", starts_at="2025-03-01")
        _create(store, "future", starts_at="2025-04-01")
        assert select_sprint_to_start(store.list(), NOW).id == 2

    def test_falls_back_to_unscheduled(self, store):
        _create(store, "future", starts_at="2025-04-01")
        _create(store, "unscheduled")
        assert select_sprint_to_start(store.list(), NOW).id == 2

    def test_nothing_pending(self, store):
        _create(store, "running", started_at="2025-03-01")
        with pytest.raises(AmbiguousDefaultError, match="No pending sprints"):
            select_sprint_to_start(store.list(), NOW)


class TestStartSprint:
    def test_auto_selects_past_due_sprint(self, store):
        _create(store, "one", starts_at="2025-03-01")
        outcome = start_sprint(store, now=NOW)
        assert outcome.record.id == 1
        assert outcome.auto_selected is True
        assert outcome.record.sprint.started_at == NOW_TEXT
        assert store.get(1).sprint.started_at == NOW_TEXT
        assert "overdue_start" in _codes(outcome)
        state = derive_status(store.get(1).sprint, NOW).state
        assert state is SprintLifecycleState.ACTIVE

    def test_explicit_time(self, store):
        _create(store, "one")
        outcome = start_sprint(store, 1, at="2025-03-09", now=NOW)
        assert outcome.record.sprint.started_at == "2025-03-09T00:00:00+00:00"
        assert _codes(outcome) == []

    def test_bad_time(self, store):
        _create(store, "one")
        with pytest.raises(InvalidReferenceError, match="Invalid start time"):
            start_sprint(store, 1, at="whenever", now=NOW)

    def test_missing_sprint(self, store):
        with pytest.raises(NotFoundError):
            start_sprint(store, 3, now=NOW)

    def test_already_started_guard(self, store):
        _create(store, "one", started_at="2025-03-01T00:00:00Z")
        with pytest.raises(GuardViolationError, match="already has actual.started_at"):
            start_sprint(store, 1, now=NOW)
        outcome = start_sprint(store, 1, force=True, now=NOW)
        assert outcome.record.sprint.started_at == NOW_TEXT

    def test_closed_guard_and_forced_restart(self, store):
        _create(store, "one", started_at="2025-03-01", closed_at="2025-03-05")
        with pytest.raises(GuardViolationError, match="already closed"):
            start_sprint(store, 1, now=NOW)
        outcome = start_sprint(store, 1, force=True, now=NOW)
        assert outcome.record.sprint.started_at == NOW_TEXT
        assert outcome.record.sprint.closed_at == "2025-03-05"
        assert store.get(1).sprint.closed_at == "2025-03-05"

    def test_future_start_warning(self, store):
        _create(store, "one")
        at = (NOW + timedelta(days=2)).isoformat()
        outcome = start_sprint(store, 1, at=at, now=NOW)
        assert _codes(outcome) == ["future_start"]

    def test_parallel_active_warning_excludes_self(self, store):
        _create(store, "running", started_at="2025-03-01")
        _create(store, "next")
        outcome = start_sprint(store, 2, now=NOW)
        assert _codes(outcome) == ["parallel_active"]
        assert "#1 (running)" in outcome.warnings[0].message

    def test_force_still_warns_about_parallel_sprints(self, store):
        _create(store, "running", started_at="2025-03-01")
        _create(store, "next")
        assert _codes(start_sprint(store, 2, force=True, now=NOW)) == ["parallel_active"]

    def test_parallel_warning_joins_running_sprints(self, store):
        _create(store, "a", started_at="2025-03-01")
        _create(store, "b", started_at="2025-03-01", length="3d")
        _create(store, "c")
        outcome = start_sprint(store, 3, now=NOW)
        assert _codes(outcome) == ["parallel_active"]
        assert outcome.warnings[0].message == (
            "Another sprint is still running: #1 (a) is active; #2 (b) is overdue. "
            "Close it before starting another sprint or pass --force if you "
            "intend to overlap."
        )

    def test_overdue_start_compares_plan_with_now(self, store):
        _create(store, "one", starts_at="2025-03-09")
        outcome = start_sprint(store, 1, at="2025-03-08", now=NOW)
        assert _codes(outcome) == ["overdue_start"]

    def test_forced_restart_skips_overdue_start(self, store):
        _create(store, "one", starts_at="2025-03-01", started_at="2025-03-02")
        outcome = start_sprint(store, 1, force=True, now=NOW)
        assert _codes(outcome) == []

    def test_notifications_off(self, store):
        _create(store, "running", started_at="2025-03-01")
        _create(store, "next")
        assert start_sprint(store, 2, notifications=False, now=NOW).warnings == []

    def test_stale_length_dropped_on_load(self, store):
        _create(store, "one", ends_at="2025-03-20")
        sprint_file = store.sprints_dir / "1.yml"
        sprint_file.write_text(
            "plan:\n  label: one\n  ends_at: '2025-03-20'\n  length: 2w\n",
            encoding="utf-8",
        )
        outcome = start_sprint(store, 1, now=NOW)
        assert outcome.canonical_warnings == []
        assert store.get(1).sprint.plan.length is None


class TestSelectSprintToClose:
    def test_latest_running(self, store):
        _create(store, "a", started_at="2025-03-01")
        _create(store, "b", started_at="2025-03-02")
        _create(store, "c")
        assert select_sprint_to_close(store.list(), NOW).id == 2

    def test_falls_back_to_open(self, store):
        _create(store, "a", started_at="2025-03-01", closed_at="2025-03-02")
        _create(store, "b")
        assert select_sprint_to_close(store.list(), NOW).id == 2

    def test_nothing_open(self, store):
        _create(store, "a", started_at="2025-03-01", closed_at="2025-03-02")
        with pytest.raises(AmbiguousDefaultError, match="No active sprints"):
            select_sprint_to_close(store.list(), NOW)


class TestCloseSprint:
    def test_close_active(self, store):
        _create(store, "one", started_at="2025-03-01", length="2w")
        outcome = close_sprint(store, now=NOW)
        assert outcome.record.id == 1
        assert outcome.record.sprint.closed_at == NOW_TEXT
        assert _codes(outcome) == []
        assert derive_status(store.get(1).sprint, NOW).state is (
            SprintLifecycleState.COMPLETE
        )

    def test_overdue_close_warning(self, store):
        _create(store, "one", started_at="2025-03-01", length="5d")
        outcome = close_sprint(store, 1, now=NOW)
        assert _codes(outcome) == ["overdue_close"]

    def test_already_closed_guard(self, store):
        _create(store, "one", started_at="2025-03-01", closed_at="2025-03-05")
        with pytest.raises(GuardViolationError, match="already has actual.closed_at"):
            close_sprint(store, 1, now=NOW)
        outcome = close_sprint(store, 1, force=True, now=NOW)
        assert outcome.record.sprint.closed_at == NOW_TEXT

    def test_never_started_guard(self, store):
        _create(store, "one")
        with pytest.raises(GuardViolationError, match="has not been started"):
            close_sprint(store, 1, now=NOW)
        outcome = close_sprint(store, 1, force=True, now=NOW)
        assert outcome.record.sprint.started_at is None
        assert outcome.record.sprint.closed_at == NOW_TEXT

    def test_remaining_active_warning(self, store):
        _create(store, "a", started_at="2025-03-01")
        _create(store, "b", started_at="2025-03-02")
        outcome = close_sprint(store, 2, now=NOW)
        assert _codes(outcome) == ["parallel_active"]
        assert outcome.warnings[0].message == (
            "Additional sprints remain active: #1 (a) is active."
        )

    def test_review_attached(self, store, tasks):
        tasks.create("T", "done", status="done")
        tasks.create("T", "open")
        record = store.create(make_sprint("one", started_at="2025-03-01")).record
        sprint = with_task_added(with_task_added(record.sprint, "T-1"), "T-2")
        store.update(1, sprint)
        outcome = close_sprint(store, 1, review=True, task_store=tasks, now=NOW)
        assert outcome.review["metrics"]["done_tasks"] == 1
        assert outcome.to_dict()["review"]["remaining_tasks"][0]["id"] == "T-2"
