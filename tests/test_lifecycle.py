"""Tests for lifecycle status derivation."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_sprint

from filetrack.lifecycle import SprintLifecycleState, derive_status
from filetrack.sprint_model import Sprint

REF = datetime(2025, 1, 10, 12, 0, tzinfo=UTC)


class TestStates:
    def test_empty_sprint_is_pending(self):
        status = derive_status(Sprint(), REF)
        assert status.state is SprintLifecycleState.PENDING
        assert status.warnings == []

    def test_planned_dates_do_not_change_pending(self):
        sprint = make_sprint(starts_at="2025-01-01", ends_at="2025-01-05")
        status = derive_status(sprint, REF)
        assert status.state is SprintLifecycleState.PENDING
        assert [w.code for w in status.warnings] == ["past_due_to_start"]

    def test_started_is_active(self):
        sprint = make_sprint(started_at="2025-01-06T00:00:00Z", length="2w")
        status = derive_status(sprint, REF)
        assert status.state is SprintLifecycleState.ACTIVE
        assert status.computed_end == datetime(2025, 1, 20, tzinfo=UTC)

    def test_started_without_end_stays_active(self):
        status = derive_status(make_sprint(started_at="2024-01-01"), REF)
        assert status.state is SprintLifecycleState.ACTIVE
        assert status.computed_end is None

    def test_overdue_after_computed_end(self):
        sprint = make_sprint(started_at="2025-01-01", length="5d")
        status = derive_status(sprint, REF)
        assert status.state is SprintLifecycleState.OVERDUE
        assert [w.code for w in status.warnings] == ["past_due_to_close"]

    def test_end_instant_is_still_active(self):
        sprint = make_sprint(started_at="2025-01-01", ends_at="2025-01-10T12:00:00Z")
        assert derive_status(sprint, REF).state is SprintLifecycleState.ACTIVE
        later = REF + timedelta(seconds=1)
        assert derive_status(sprint, later).state is SprintLifecycleState.OVERDUE

    def test_grace_period_delays_overdue(self):
        sprint = make_sprint(
            started_at="2025-01-01", ends_at="2025-01-09", overdue_after="2d"
        )
        assert derive_status(sprint, REF).state is SprintLifecycleState.ACTIVE

    def test_closed_is_complete_whatever_else(self):
        sprint = make_sprint(
            starts_at="2030-01-01", closed_at="2025-01-05T00:00:00Z"
        )
        status = derive_status(sprint, REF)
        assert status.state is SprintLifecycleState.COMPLETE
        assert status.computed_end == datetime(2025, 1, 5, tzinfo=UTC)

    def test_length_counts_from_actual_start(self):
        sprint = make_sprint(
            starts_at="2025-01-01", started_at="2025-01-03", length="1w"
        )
        status = derive_status(sprint, REF)
        assert status.planned_end == datetime(2025, 1, 8, tzinfo=UTC)
        assert status.computed_end == datetime(2025, 1, 10, tzinfo=UTC)
        assert status.state is SprintLifecycleState.OVERDUE


class TestWarnings:
    def test_unparseable_fields_are_reported_not_raised(self):
        sprint = make_sprint(starts_at="someday", length="forever", started_at="2025-01-09")
        status = derive_status(sprint, REF)
        assert status.state is SprintLifecycleState.ACTIVE
        codes = sorted(w.code for w in status.warnings)
        assert codes == ["unparseable_length", "unparseable_timestamp"]
        assert status.planned_start is None

    def test_to_dict(self):
        sprint = make_sprint(started_at="2025-01-06", length="2w")
        data = derive_status(sprint, REF).to_dict()
        assert data["state"] == "active"
        assert data["actual_start"] == "2025-01-06T00:00:00+00:00"
        assert data["computed_end"] == "2025-01-20T00:00:00+00:00"
        assert data["actual_end"] is None


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"starts_at": "2025-01-01"},
        {"ends_at": "bad"},
        {"started_at": "2025-01-01", "length": "3d"},
        {"started_at": "nope", "closed_at": "2025-01-02"},
        {"closed_at": "2025-01-02"},
    ],
)
def test_every_sprint_has_exactly_one_state(fields):
    status = derive_status(make_sprint(**fields), REF)
    assert status.state in set(SprintLifecycleState)
