"""Tests for sprint metrics payloads."""

from dataclasses import replace

import pytest
from conftest import NOW, make_sprint

from filetrack.config import load_config
from filetrack.metrics import (
    compute_sprint_burndown,
    compute_sprint_review,
    compute_sprint_stats,
    compute_sprint_summary,
    compute_velocity,
    ratio,
    task_done_at,
)
from filetrack.sprint_model import SprintCapacity, with_task_added

CONFIG_YAML = """\
issue_states: [todo, in_progress, blocked, done]
"""


def _sprint_with(store, sprint, task_ids):
    record = store.create(sprint, now=NOW).record
    updated = record.sprint
    for task_id in task_ids:
        updated = with_task_added(updated, task_id)
    return store.update(record.id, updated, now=NOW).record


@pytest.fixture()
def config(root):
    (root / "config.yml").write_text(CONFIG_YAML, encoding="utf-8")
    return load_config(root)


@pytest.fixture()
def active(store, tasks, config):
    tasks.create("T", "Shipped", status="done", effort="3pt")
    tasks.create("T", "Building", status="in_progress", effort="5pt")
    tasks.create("T", "Waiting", status="blocked")
    sprint = make_sprint("March", started_at="2025-03-03", length="2w")
    plan = replace(sprint.plan, capacity=SprintCapacity(points=10))
    return _sprint_with(store, replace(sprint, plan=plan), ["T-1", "T-2", "T-3"])


class TestRatio:
    def test_zero_denominator(self):
        assert ratio(3, 0) == 0.0

    def test_rounded(self):
        assert ratio(1, 3) == 0.3333


class TestStats:
    def test_task_counts(self, active, tasks, config):
        stats = compute_sprint_stats(active, tasks, config=config, now=NOW)
        assert stats["metrics"]["tasks"] == {
            "committed": 3,
            "done": 1,
            "remaining": 2,
            "completion_ratio": 0.3333,
        }

    def test_points_against_capacity(self, active, tasks, config):
        points = compute_sprint_stats(active, tasks, config=config, now=NOW)[
            "metrics"
        ]["points"]
        assert points["committed"] == 8.0
        assert points["done"] == 3.0
        assert points["remaining"] == 5.0
        assert points["capacity"] == 10
        assert points["capacity_commitment_ratio"] == 0.8
        assert points["capacity_consumed_ratio"] == 0.3

    def test_hours_absent_without_estimates(self, active, tasks, config):
        stats = compute_sprint_stats(active, tasks, config=config, now=NOW)
        assert stats["metrics"]["hours"] is None

    def test_status_breakdown(self, active, tasks, config):
        breakdown = compute_sprint_stats(active, tasks, config=config, now=NOW)[
            "metrics"
        ]["status_breakdown"]
        assert [(m["status"], m["done"]) for m in breakdown] == [
            ("blocked", False),
            ("done", True),
            ("in_progress", False),
        ]

    def test_timeline(self, active, tasks, config):
        timeline = compute_sprint_stats(active, tasks, config=config, now=NOW)[
            "timeline"
        ]
        assert timeline["computed_end"] == "2025-03-17T00:00:00+00:00"
        assert timeline["elapsed_days"] == 7.5
        assert timeline["remaining"] == "6d 12h"
        assert timeline["overdue"] is None

    def test_missing_member_skipped(self, store, tasks, config):
        record = _sprint_with(store, make_sprint("gone"), ["T-404"])
        stats = compute_sprint_stats(record, tasks, config=config, now=NOW)
        assert stats["metrics"]["tasks"]["committed"] == 0
        assert stats["metrics"]["tasks"]["completion_ratio"] == 0.0


class TestReviewAndSummary:
    def test_review_lists_remaining(self, active, tasks, config):
        review = compute_sprint_review(active, tasks, config=config, now=NOW)
        assert review["metrics"]["total_tasks"] == 3
        assert review["metrics"]["remaining_tasks"] == 2
        assert [t["id"] for t in review["remaining_tasks"]] == ["T-3", "T-2"]

    def test_summary_blocked(self, active, tasks, config):
        summary = compute_sprint_summary(active, tasks, config=config, now=NOW)
        assert summary["metrics"]["blocked"] == 1
        assert summary["blocked_tasks"][0]["id"] == "T-3"
        assert summary["lifecycle"]["state"] == "active"


class TestBurndown:
    @pytest.fixture()
    def sprint(self, store, tasks, config):
        tasks.create(
            "T",
            "Early",
            status="done",
            history=[
                {
                    "at": "2025-03-05T10:00:00Z",
                    "changes": [{"field": "status", "old": "todo", "new": "done"}],
                }
            ],
        )
        tasks.create("T", "Late")
        return _sprint_with(
            store, make_sprint("Week", started_at="2025-03-03", length="1w"), ["T-1", "T-2"]
        )

    def test_series_spans_window(self, sprint, tasks, config):
        result = compute_sprint_burndown(sprint, tasks, config=config, now=NOW)
        dates = [point["date"] for point in result["series"]]
        assert dates[0] == "2025-03-03"
        assert dates[-1] == "2025-03-10"
        assert len(dates) == 8

    def test_remaining_drops_after_done(self, sprint, tasks, config):
        series = compute_sprint_burndown(sprint, tasks, config=config, now=NOW)[
            "series"
        ]
        assert [point["remaining_tasks"] for point in series[:3]] == [2, 2, 1]
        assert series[-1]["remaining_tasks"] == 1

    def test_ideal_line(self, sprint, tasks, config):
        result = compute_sprint_burndown(sprint, tasks, config=config, now=NOW)
        assert result["series"][0]["ideal_tasks"] == 2.0
        assert result["series"][-1]["ideal_tasks"] == 0.0
        assert result["totals"] == {"tasks": 2, "points": None, "hours": None}
        assert "remaining_points" not in result["series"][0]

    def test_done_at_from_history(self, sprint, tasks, config):
        done_at = task_done_at(tasks.get("T-1"), config)
        assert done_at.isoformat() == "2025-03-05T10:00:00+00:00"
        assert task_done_at(tasks.get("T-2"), config) is None


class TestVelocity:
    @pytest.fixture()
    def records(self, store, tasks, config):
        tasks.create("T", "a", status="done", effort="2pt")
        tasks.create("T", "b", effort="3pt")
        tasks.create("T", "c", status="done", effort="1pt")
        tasks.create("T", "d", status="done")
        _sprint_with(
            store,
            make_sprint("Feb A", started_at="2025-02-01", closed_at="2025-02-14"),
            ["T-1", "T-2"],
        )
        _sprint_with(
            store,
            make_sprint("Feb B", started_at="2025-02-15", closed_at="2025-02-28"),
            ["T-3"],
        )
        _sprint_with(store, make_sprint("March", started_at="2025-03-01"), ["T-4"])
        _sprint_with(store, make_sprint("April"), [])
        return store.list()

    def test_completed_sprints_newest_first(self, records, tasks, config):
        result = compute_velocity(records, tasks, config=config, now=NOW)
        assert [e["sprint_id"] for e in result["entries"]] == [2, 1]
        assert result["average_velocity"] == 1.0
        assert result["average_completion_ratio"] == 0.75
        assert result["skipped_incomplete"] is True

    def test_include_active(self, records, tasks, config):
        result = compute_velocity(
            records, tasks, config=config, include_active=True, now=NOW
        )
        assert [e["sprint_id"] for e in result["entries"]] == [3, 2, 1]

    def test_limit_truncates(self, records, tasks, config):
        result = compute_velocity(records, tasks, config=config, limit=1, now=NOW)
        assert result["count"] == 1
        assert result["truncated"] is True
        assert result["entries"][0]["display_name"] == "Feb B"

    def test_points_metric(self, records, tasks, config):
        result = compute_velocity(records, tasks, config=config, metric="points", now=NOW)
        first_sprint = result["entries"][-1]
        assert first_sprint["committed"] == 5.0
        assert first_sprint["completed"] == 2.0

    def test_unknown_metric(self, records, tasks, config):
        with pytest.raises(ValueError, match="Unknown velocity metric"):
            compute_velocity(records, tasks, config=config, metric="stars")

    def test_no_sprints(self, tasks, config):
        result = compute_velocity([], tasks, config=config, now=NOW)
        assert result["count"] == 0
        assert result["average_velocity"] is None
