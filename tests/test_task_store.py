"""Tests for TaskStore lookup, search, and write-back."""

from dataclasses import replace

import pytest
import yaml

from filetrack.errors import NotFoundError
from filetrack.task_store import TaskFilter, split_task_id, task_sort_key


@pytest.fixture()
def seeded(tasks):
    tasks.create("PROJ", "First", status="todo", tags=["api"])
    tasks.create("PROJ", "Second", status="Done", tags=["ui"])
    tasks.create("OPS", "Third", status="in_progress", sprints=[3])
    return tasks


class TestIds:
    def test_split(self):
        assert split_task_id("proj-12") == ("PROJ", 12)

    @pytest.mark.parametrize("value", ["PROJ", "12", "PROJ-x", "-3"])
    def test_split_invalid(self, value):
        with pytest.raises(ValueError):
            split_task_id(value)

    def test_sort_key_is_numeric(self):
        ids = ["A-10", "A-2", "B-1"]
        assert sorted(ids, key=task_sort_key) == ["A-2", "A-10", "B-1"]


class TestTaskStore:
    def test_create_numbers_per_project(self, seeded):
        assert seeded.exists("PROJ-2")
        assert seeded.exists("OPS-1")
        assert not seeded.exists("OPS-2")
        assert not seeded.exists("garbage")

    def test_get_case_insensitive_project(self, seeded):
        task = seeded.get("proj-1")
        assert task.id == "PROJ-1"
        assert task.title == "First"

    def test_get_missing(self, seeded):
        with pytest.raises(NotFoundError, match=r"Task PROJ-9 not found\."):
            seeded.get("PROJ-9")

    def test_search_all_sorted(self, seeded):
        assert [t.id for t in seeded.search()] == ["OPS-1", "PROJ-1", "PROJ-2"]

    def test_search_filters(self, seeded):
        assert [t.id for t in seeded.search(TaskFilter(project="proj"))] == [
            "PROJ-1",
            "PROJ-2",
        ]
        assert [t.id for t in seeded.search(TaskFilter(statuses=("done",)))] == [
            "PROJ-2"
        ]
        assert [t.id for t in seeded.search(TaskFilter(tags=("API", "x")))] == [
            "PROJ-1"
        ]

    def test_find_by_numeric_id(self, seeded):
        assert seeded.find_by_numeric_id("1") == ["OPS-1", "PROJ-1"]
        assert seeded.find_by_numeric_id("2") == ["PROJ-2"]

    def test_edit_preserves_unknown_fields(self, seeded, root):
        path = root / "OPS" / "1.yml"
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        data["custom"] = {"keep": True}
        path.write_text(yaml.safe_dump(data), encoding="utf-8")

        task = seeded.get("OPS-1")
        seeded.edit(replace(task, sprints=()))
        saved = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert saved["custom"] == {"keep": True}
        assert "sprints" not in saved
        assert seeded.get("OPS-1").sprints == ()

    def test_unreadable_task_skipped(self, seeded, root):
        (root / "PROJ" / "3.yml").write_text("title: [broken\n", encoding="utf-8")
        assert [t.id for t in seeded.search(TaskFilter(project="PROJ"))] == [
            "PROJ-1",
            "PROJ-2",
        ]

    def test_sprint_directories_are_not_projects(self, seeded, root, store):
        (root / "sprints").mkdir()
        assert "sprints" not in seeded.projects()
        assert "@sprints" not in seeded.projects()
