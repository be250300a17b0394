"""Tests for sprint reference resolution and task membership batches."""

from dataclasses import replace

import pytest
from conftest import NOW, make_sprint

from filetrack.assignment import (
    ReferenceKind,
    SprintReference,
    assign_tasks,
    build_membership_index,
    likely_sprint_reference,
    parse_sprint_reference,
    remove_tasks,
    resolve_sprint_id,
    resolve_task_identifier,
)
from filetrack.errors import (
    AmbiguousDefaultError,
    EmptyInputError,
    GuardViolationError,
    InvalidReferenceError,
    NotFoundError,
)
from filetrack.sprint_model import Sprint, SprintRecord, with_task_added

ACTIVE = {"started_at": "2025-03-01T00:00:00Z"}
CLOSED = {"started_at": "2025-02-01T00:00:00Z", "closed_at": "2025-02-14T00:00:00Z"}


@pytest.fixture()
def seeded_tasks(tasks):
    for title in ("one", "two", "three", "four", "five"):
        tasks.create("T", title)
    tasks.create("OPS", "ops one")
    return tasks


def _create(store, label, **fields):
    return store.create(make_sprint(label, **fields), now=NOW).record.id


def _seed_members(store, sprint_id, *task_ids):
    sprint = store.get(sprint_id).sprint
    for task_id in task_ids:
        sprint = with_task_added(sprint, task_id)
    store.update(sprint_id, sprint, now=NOW)


class TestParseSprintReference:
    @pytest.mark.parametrize(
        ("value", "kind", "sprint_id"),
        [
            (None, ReferenceKind.DEFAULT, None),
            ("", ReferenceKind.DEFAULT, None),
            ("7", ReferenceKind.EXPLICIT, 7),
            ("#7", ReferenceKind.EXPLICIT, 7),
            (7, ReferenceKind.EXPLICIT, 7),
            ("Active", ReferenceKind.ACTIVE, None),
            ("next", ReferenceKind.NEXT, None),
            ("prev", ReferenceKind.PREVIOUS, None),
        ],
    )
    def test_valid(self, value, kind, sprint_id):
        assert parse_sprint_reference(value) == SprintReference(kind, sprint_id)

    @pytest.mark.parametrize("value", ["latest", "#x", "1.5", "-2"])
    def test_invalid(self, value):
        with pytest.raises(InvalidReferenceError, match="Invalid sprint reference"):
            parse_sprint_reference(value)


class TestLikelySprintReference:
    def test_keywords(self, seeded_tasks):
        assert likely_sprint_reference(seeded_tasks, [], "next")
        assert likely_sprint_reference(seeded_tasks, [], " Active ")

    def test_number_matching_a_task_reads_as_task(self, seeded_tasks):
        records = [SprintRecord(id=2, sprint=Sprint())]
        assert not likely_sprint_reference(seeded_tasks, records, "2")
        assert not likely_sprint_reference(seeded_tasks, records, "#2")

    def test_number_naming_an_existing_sprint(self, seeded_tasks):
        records = [SprintRecord(id=7, sprint=Sprint())]
        assert likely_sprint_reference(seeded_tasks, records, "7")
        assert likely_sprint_reference(seeded_tasks, records, "#7")
        assert not likely_sprint_reference(seeded_tasks, records, "8")

    @pytest.mark.parametrize("token", ["", "  ", "T-7", "sprint"])
    def test_other_tokens(self, seeded_tasks, token):
        records = [SprintRecord(id=7, sprint=Sprint())]
        assert not likely_sprint_reference(seeded_tasks, records, token)


class TestResolveSprintId:
    def test_no_sprints(self, store):
        with pytest.raises(NotFoundError, match="No sprints found"):
            resolve_sprint_id(store.list(), None, NOW)

    def test_default_is_the_running_sprint(self, store):
        _create(store, "one", **ACTIVE)
        _create(store, "two")
        assert resolve_sprint_id(store.list(), None, NOW) == 1
        assert resolve_sprint_id(store.list(), "active", NOW) == 1

    def test_multiple_active_is_ambiguous(self, store):
        _create(store, "one", **ACTIVE)
        _create(store, "two", **ACTIVE)
        with pytest.raises(AmbiguousDefaultError, match=r"Multiple active sprints detected \(#1, #2\)"):
            resolve_sprint_id(store.list(), None, NOW)

    def test_overdue_counts_as_running(self, store):
        _create(store, "one", started_at="2025-01-01", length="1w")
        assert resolve_sprint_id(store.list(), None, NOW) == 1

    def test_no_active(self, store):
        _create(store, "one")
        with pytest.raises(AmbiguousDefaultError, match="No active sprint found"):
            resolve_sprint_id(store.list(), None, NOW)

    def test_explicit(self, store):
        _create(store, "one")
        _create(store, "two")
        assert resolve_sprint_id(store.list(), "#2", NOW) == 2
        with pytest.raises(NotFoundError, match=r"Sprint #5 not found\."):
            resolve_sprint_id(store.list(), 5, NOW)

    def test_next_and_previous(self, store):
        _create(store, "one", **CLOSED)
        _create(store, "two", **ACTIVE)
        _create(store, "three")
        records = store.list()
        assert resolve_sprint_id(records, "next", NOW) == 3
        assert resolve_sprint_id(records, "previous", NOW) == 1

    def test_next_past_the_end(self, store):
        _create(store, "one", **ACTIVE)
        with pytest.raises(NotFoundError, match="already the latest"):
            resolve_sprint_id(store.list(), "next", NOW)
        with pytest.raises(NotFoundError, match="earliest"):
            resolve_sprint_id(store.list(), "previous", NOW)


class TestResolveTaskIdentifier:
    def test_qualified(self, seeded_tasks):
        assert resolve_task_identifier(seeded_tasks, "t-2") == "T-2"

    def test_qualified_missing(self, seeded_tasks):
        with pytest.raises(NotFoundError, match=r"Task T-99 not found\."):
            resolve_task_identifier(seeded_tasks, "T-99")

    def test_bare_number_unique(self, seeded_tasks):
        assert resolve_task_identifier(seeded_tasks, "3") == "T-3"

    def test_bare_number_ambiguous(self, seeded_tasks):
        with pytest.raises(InvalidReferenceError, match="ambiguous"):
            resolve_task_identifier(seeded_tasks, "1")

    def test_bare_number_missing(self, seeded_tasks):
        with pytest.raises(NotFoundError, match="fully-qualified"):
            resolve_task_identifier(seeded_tasks, "42")

    @pytest.mark.parametrize("raw", ["", "  ", "abc"])
    def test_invalid(self, seeded_tasks, raw):
        with pytest.raises(InvalidReferenceError):
            resolve_task_identifier(seeded_tasks, raw)


class TestAssign:
    def test_adds_to_default_sprint(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        outcome = assign_tasks(store, seeded_tasks, ["T-5"], now=NOW)
        assert outcome.sprint_id == 1
        assert outcome.modified == ["T-5"]
        assert outcome.unchanged == []
        assert store.get(1).sprint.task_ids == ["T-5"]

    def test_already_member_is_unchanged_and_not_rewritten(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        _seed_members(store, 1, "T-1")
        before = (store.sprints_dir / "1.yml").read_text(encoding="utf-8")

        outcome = assign_tasks(store, seeded_tasks, ["T-1"], 1, now=NOW)
        assert outcome.unchanged == ["T-1"]
        assert outcome.modified == []
        assert (store.sprints_dir / "1.yml").read_text(encoding="utf-8") == before

    def test_batch_deduplicated(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        outcome = assign_tasks(store, seeded_tasks, ["T-2", "t-2", "2"], 1, now=NOW)
        assert outcome.modified == ["T-2"]
        assert store.get(1).sprint.task_ids == ["T-2"]

    def test_without_force_task_stays_in_both(self, store, seeded_tasks):
        _create(store, "a")
        _create(store, "b")
        _seed_members(store, 1, "T-1")
        outcome = assign_tasks(store, seeded_tasks, ["T-1"], 2, now=NOW)
        assert outcome.replaced == []
        assert store.get(1).sprint.task_ids == ["T-1"]
        assert store.get(2).sprint.task_ids == ["T-1"]

    def test_force_single_moves_task(self, store, seeded_tasks):
        _create(store, "a")
        _create(store, "b")
        _seed_members(store, 1, "T-1", "T-2")
        outcome = assign_tasks(
            store, seeded_tasks, ["T-1"], 2, force_single=True, now=NOW
        )
        assert "T-1" in store.get(2).sprint.task_ids
        assert store.get(1).sprint.task_ids == ["T-2"]
        assert outcome.modified == ["T-1"]
        assert [(r.task_id, r.previous) for r in outcome.replaced] == [("T-1", [1])]
        assert outcome.replaced[0].describe() == "T-1 moved from sprint(s) #1"

    def test_force_single_when_already_in_target_cleans_others(self, store, seeded_tasks):
        _create(store, "a")
        _create(store, "b")
        _seed_members(store, 1, "T-1")
        _seed_members(store, 2, "T-1")
        outcome = assign_tasks(
            store, seeded_tasks, ["T-1"], 2, force_single=True, now=NOW
        )
        assert outcome.modified == ["T-1"]
        assert store.get(1).sprint.task_ids == []
        index = build_membership_index(store.list())
        assert index["T-1"] == {2}

    def test_closed_sprint_guard(self, store, seeded_tasks):
        _create(store, "done", **CLOSED)
        with pytest.raises(GuardViolationError, match="is closed"):
            assign_tasks(store, seeded_tasks, ["T-1"], 1, now=NOW)
        outcome = assign_tasks(
            store, seeded_tasks, ["T-1"], 1, allow_closed=True, now=NOW
        )
        assert outcome.modified == ["T-1"]

    def test_empty_input(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        with pytest.raises(EmptyInputError):
            assign_tasks(store, seeded_tasks, [], now=NOW)
        with pytest.raises(EmptyInputError):
            assign_tasks(store, seeded_tasks, ["  "], now=NOW)

    def test_unresolved_task_aborts_whole_batch(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        with pytest.raises(NotFoundError):
            assign_tasks(store, seeded_tasks, ["T-1", "T-404"], now=NOW)
        assert store.get(1).sprint.task_ids == []

    def test_no_sprints(self, store, seeded_tasks):
        with pytest.raises(NotFoundError, match="Create a sprint"):
            assign_tasks(store, seeded_tasks, ["T-1"], now=NOW)

    def test_membership_stays_unique(self, store, seeded_tasks):
        _create(store, "a", **ACTIVE)
        _create(store, "b")
        for task_ids, ref, force in (
            (["T-1", "T-2"], 1, False),
            (["T-2", "T-3"], 2, True),
            (["T-1"], 2, False),
            (["T-3", "T-1"], 1, True),
        ):
            assign_tasks(store, seeded_tasks, task_ids, ref, force_single=force, now=NOW)
        for record in store.list():
            assert len(record.sprint.task_ids) == len(set(record.sprint.task_ids))
        index = build_membership_index(store.list())
        assert index["T-1"] == {1}
        assert index["T-2"] == {2}
        assert index["T-3"] == {1}


class TestRemove:
    def test_remove(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        _seed_members(store, 1, "T-1", "T-2")
        outcome = remove_tasks(store, seeded_tasks, ["T-1", "T-3"], now=NOW)
        assert outcome.action == "remove"
        assert outcome.modified == ["T-1"]
        assert outcome.unchanged == ["T-3"]
        assert store.get(1).sprint.task_ids == ["T-2"]

    def test_other_sprints_untouched(self, store, seeded_tasks):
        _create(store, "a")
        _create(store, "b")
        _seed_members(store, 1, "T-1")
        _seed_members(store, 2, "T-1")
        remove_tasks(store, seeded_tasks, ["T-1"], 2, now=NOW)
        assert store.get(1).sprint.task_ids == ["T-1"]
        assert store.get(2).sprint.task_ids == []

    def test_closed_sprint_allowed(self, store, seeded_tasks):
        _create(store, "done", **CLOSED)
        _seed_members(store, 1, "T-1")
        outcome = remove_tasks(store, seeded_tasks, ["T-1"], 1, now=NOW)
        assert outcome.modified == ["T-1"]

    def test_empty_input(self, store, seeded_tasks):
        with pytest.raises(EmptyInputError, match="to update"):
            remove_tasks(store, seeded_tasks, [], 1, now=NOW)


class TestMissingSprintReferences:
    @pytest.fixture()
    def dangling(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        seeded_tasks.edit(replace(seeded_tasks.get("T-2"), sprints=(9,)))
        return seeded_tasks

    def test_clean_workspace_has_no_payload(self, store, seeded_tasks):
        _create(store, "one", **ACTIVE)
        outcome = assign_tasks(store, seeded_tasks, ["T-1"], now=NOW)
        assert outcome.integrity.is_clean
        assert "integrity" not in outcome.to_dict()

    def test_reported_without_cleanup(self, store, dangling):
        outcome = assign_tasks(store, dangling, ["T-1"], now=NOW)
        assert outcome.to_dict()["integrity"] == {
            "missing_sprints": [9],
            "tasks_with_missing": 1,
            "auto_cleanup": None,
        }
        assert dangling.get("T-2").sprints == (9,)
        assert store.get(1).sprint.task_ids == ["T-1"]

    def test_cleaned_before_assigning(self, store, dangling):
        outcome = assign_tasks(store, dangling, ["T-1"], cleanup_missing=True, now=NOW)
        payload = outcome.to_dict()["integrity"]
        assert payload["missing_sprints"] == []
        assert payload["tasks_with_missing"] == 1
        assert payload["auto_cleanup"]["removed_references"] == 1
        assert dangling.get("T-2").sprints == ()
        assert store.get(1).sprint.task_ids == ["T-1"]

    def test_failed_batch_cleans_nothing(self, store, dangling):
        with pytest.raises(NotFoundError):
            assign_tasks(store, dangling, ["T-1", "T-99"], cleanup_missing=True, now=NOW)
        assert dangling.get("T-2").sprints == (9,)

    def test_remove_cleans_too(self, store, dangling):
        _seed_members(store, 1, "T-1")
        outcome = remove_tasks(store, dangling, ["T-1"], cleanup_missing=True, now=NOW)
        assert outcome.modified == ["T-1"]
        assert outcome.integrity.cleanup.updated_tasks == 1
        assert dangling.get("T-2").sprints == ()
