"""Tests for the in-memory and JSON task stores."""

import json
from datetime import timedelta
from unittest.mock import patch

import pytest

from comedia.common.errors import PersistenceError
from comedia.common.schemas import Task, TaskStatus
from comedia.common.task_store import InMemoryTaskStore, JsonTaskStore


class TestInMemoryTaskStore:
    def test_upsert_and_get(self):
        store = InMemoryTaskStore()
        task = Task(title="Send deck")
        stored = store.upsert(task)

        assert stored == task
        assert store.get(task.id) == task
        assert store.get("missing") is None

    def test_returned_tasks_are_copies(self):
        store = InMemoryTaskStore()
        task = store.upsert(Task(title="Send deck"))
        task.title = "mutated"
        assert store.get(task.id).title == "Send deck"

    def test_upsert_replaces_by_id(self):
        store = InMemoryTaskStore()
        task = store.upsert(Task(title="Send deck"))
        task.status = TaskStatus.TODO
        store.upsert(task)

        assert len(store.list()) == 1
        assert store.get(task.id).status == TaskStatus.TODO

    def test_timestamps_never_regress(self):
        store = InMemoryTaskStore()
        task = store.upsert(Task(title="Send deck"))
        stale = task.model_copy()
        stale.created_at = task.created_at + timedelta(days=1)
        stale.updated_at = task.updated_at - timedelta(days=1)

        stored = store.upsert(stale)

        assert stored.created_at == task.created_at
        assert stored.updated_at == task.updated_at

    def test_list_newest_first(self):
        first = Task(title="first")
        second = Task(title="second", created_at=first.created_at + timedelta(seconds=1))
        store = InMemoryTaskStore([first, second])
        assert [t.title for t in store.list()] == ["second", "first"]

    def test_delete(self):
        store = InMemoryTaskStore()
        task = store.upsert(Task(title="x"))
        assert store.delete(task.id) is True
        assert store.delete(task.id) is False
        assert store.list() == []


class TestJsonTaskStore:
    def test_missing_file_starts_empty(self, tmp_path):
        store = JsonTaskStore(tmp_path / "tasks.json")
        assert store.list() == []

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "tasks.json"
        task = JsonTaskStore(path).upsert(Task(title="Review contract", confidence_score=82))

        reloaded = JsonTaskStore(path)
        assert reloaded.get(task.id) == task
        rows = json.loads(path.read_text())
        assert rows[0]["title"] == "Review contract"

    def test_delete_persists(self, tmp_path):
        path = tmp_path / "tasks.json"
        store = JsonTaskStore(path)
        task = store.upsert(Task(title="x"))
        store.delete(task.id)
        assert JsonTaskStore(path).list() == []

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text("{broken")
        with pytest.raises(PersistenceError):
            JsonTaskStore(path)

    def test_failed_write_rolls_back(self, tmp_path):
        store = JsonTaskStore(tmp_path / "tasks.json")
        task = Task(title="x")

        with patch.object(store, "_save", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError) as exc_info:
                store.upsert(task)

        assert exc_info.value.task_id == task.id
        assert store.get(task.id) is None

    def test_failed_update_keeps_previous_row(self, tmp_path):
        store = JsonTaskStore(tmp_path / "tasks.json")
        task = store.upsert(Task(title="x"))
        changed = task.model_copy(update={"status": TaskStatus.DONE})

        with patch.object(store, "_save", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                store.upsert(changed)

        assert store.get(task.id).status == TaskStatus.INCOMING

    def test_default_path(self, tmp_path):
        with patch("comedia.common.task_store.TASKS_PATH", tmp_path / "default.json"):
            store = JsonTaskStore()
        assert store.path == tmp_path / "default.json"
