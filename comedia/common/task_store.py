"""
Task Store

The only shared mutable resource of the pipeline. Treated as a simple
key/row store with upsert-by-id semantics: last writer wins, no concurrency
tokens, no multi-task transactions.

Implementations:
- InMemoryTaskStore: process-local, used by tests and ephemeral servers
- JsonTaskStore: rows persisted to ~/.comedia/tasks.json
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .config import TASKS_PATH
from .errors import PersistenceError
from .schemas import Task

logger = logging.getLogger("comedia.common.task_store")


class TaskStore(ABC):
    """
    Abstract task store.

    Each store must implement:
    - upsert: insert or replace a task by id, returning the stored copy
    - list: every visible task, newest first
    - delete: remove by id
    """

    @abstractmethod
    def upsert(self, task: Task) -> Task:
        pass

    @abstractmethod
    def list(self) -> List[Task]:
        pass

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        pass

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.list():
            if task.id == task_id:
                return task
        return None

    @staticmethod
    def _merge_timestamps(incoming: Task, existing: Optional[Task]) -> Task:
        """Keep created_at/updated_at non-decreasing across writes"""
        if existing is None:
            return incoming
        merged = incoming.model_copy()
        merged.created_at = min(existing.created_at, incoming.created_at)
        merged.touch(existing.updated_at)
        return merged


class InMemoryTaskStore(TaskStore):
    """Dict-backed store; rows are copied in and out so callers never alias."""

    def __init__(self, tasks: Optional[List[Task]] = None):
        self._rows: Dict[str, dict] = {}
        for task in tasks or []:
            self._rows[task.id] = task.to_row()

    def upsert(self, task: Task) -> Task:
        existing = self._rows.get(task.id)
        stored = self._merge_timestamps(task, Task.from_row(existing) if existing else None)
        self._rows[stored.id] = stored.to_row()
        return Task.from_row(self._rows[stored.id])

    def list(self) -> List[Task]:
        tasks = [Task.from_row(row) for row in self._rows.values()]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def delete(self, task_id: str) -> bool:
        return self._rows.pop(task_id, None) is not None


class JsonTaskStore(TaskStore):
    """
    File-backed store.

    The whole table is loaded at startup and written through on every
    mutation. A file that cannot be parsed raises PersistenceError rather
    than being silently replaced.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            path: Path to the tasks file (default: ~/.comedia/tasks.json)
        """
        self._path = Path(path) if path else TASKS_PATH
        self._rows: Dict[str, dict] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        """Load rows from disk"""
        if not self._path.exists():
            self._rows = {}
            return

        try:
            with open(self._path) as f:
                data = json.load(f)
            self._rows = {row["id"]: row for row in data}
        except (json.JSONDecodeError, OSError, KeyError, TypeError) as e:
            raise PersistenceError(f"Failed to load task store {self._path}: {e}") from e

        logger.info("Loaded %d tasks from %s", len(self._rows), self._path)

    def _save(self) -> None:
        """Write all rows to disk"""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(list(self._rows.values()), f, indent=2, default=str)
            tmp_path.replace(self._path)
        except OSError as e:
            raise PersistenceError(f"Failed to write task store {self._path}: {e}") from e

    def upsert(self, task: Task) -> Task:
        existing = self._rows.get(task.id)
        stored = self._merge_timestamps(task, Task.from_row(existing) if existing else None)

        previous = existing
        self._rows[stored.id] = stored.to_row()
        try:
            self._save()
        except PersistenceError as e:
            # Keep memory consistent with disk
            if previous is None:
                self._rows.pop(stored.id, None)
            else:
                self._rows[stored.id] = previous
            e.task_id = stored.id
            raise

        return Task.from_row(self._rows[stored.id])

    def list(self) -> List[Task]:
        tasks = [Task.from_row(row) for row in self._rows.values()]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def delete(self, task_id: str) -> bool:
        previous = self._rows.pop(task_id, None)
        if previous is None:
            return False
        try:
            self._save()
        except PersistenceError:
            self._rows[task_id] = previous
            raise
        return True
