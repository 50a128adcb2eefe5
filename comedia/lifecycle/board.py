"""
Task Board

Status and edit operations on tasks, with an optimistic local view.

Updates are two-phase: the change is applied to the local copy first and
then written to the store. If the write fails the caller decides, per call,
whether the local view rolls back or keeps the optimistic value. The error
is raised either way.
"""

import logging
from typing import Dict, List, Optional

from ..common.errors import PersistenceError, ValidationError
from ..common.schemas import Task, TaskSource, TaskStatus
from ..common.task_store import TaskStore
from .recurrence import apply_status_change

logger = logging.getLogger("comedia.lifecycle.board")


class TaskBoard:
    def __init__(self, store: TaskStore):
        self._store = store
        self._tasks: Dict[str, Task] = {}

    def refresh(self) -> List[Task]:
        """Reload the local view from the store"""
        tasks = self._store.list()
        self._tasks = {t.id: t for t in tasks}
        return tasks

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def by_status(self, status: TaskStatus) -> List[Task]:
        return [t for t in self._tasks.values() if t.status == status]

    def add_task(
        self,
        title: str,
        description: str = "",
        status: TaskStatus = TaskStatus.INCOMING,
    ) -> Task:
        """Create a human-authored task (no confidence score)"""
        if not title or not title.strip():
            raise ValidationError("Task title must not be empty")
        task = Task(
            title=title.strip(),
            description=description,
            status=status,
            source=TaskSource.MANUAL,
        )
        stored = self._store.upsert(task)
        self._tasks[stored.id] = stored
        return stored

    def move(self, task_id: str, status: TaskStatus, rollback: bool = True) -> Task:
        """
        Move a task to a new column.

        Raises:
            KeyError: unknown task
            PersistenceError: the store rejected the write
        """
        current = self._store.get(task_id) or self._tasks.get(task_id)
        if current is None:
            raise KeyError(task_id)

        updated = apply_status_change(current, status)
        self._tasks[task_id] = updated

        try:
            stored = self._store.upsert(updated)
        except PersistenceError:
            if rollback:
                self._tasks[task_id] = current
            logger.warning(
                "Failed to persist move of %s to %s (rollback=%s)",
                task_id, status.value, rollback,
            )
            raise

        self._tasks[task_id] = stored
        return stored

    def delete(self, task_id: str) -> bool:
        deleted = self._store.delete(task_id)
        self._tasks.pop(task_id, None)
        return deleted
