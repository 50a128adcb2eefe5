"""
Recurrence Engine

Done tasks with recurrence enabled come back to the incoming column once
``recurrence_days`` days of elapsed time have passed since completion.

The status rule lives here too, since recurrence depends on it:
moving to done stamps completed_date, moving away from done clears it.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..common.errors import PersistenceError
from ..common.schemas import Task, TaskStatus, utc_now
from ..common.task_store import TaskStore

logger = logging.getLogger("comedia.lifecycle.recurrence")

DEFAULT_SCAN_INTERVAL = 60.0


def apply_status_change(task: Task, new_status: TaskStatus, now: Optional[datetime] = None) -> Task:
    """Return a copy of the task moved to new_status"""
    now = now or utc_now()
    updated = task.model_copy(deep=True)

    if new_status != task.status:
        if new_status == TaskStatus.DONE:
            updated.completed_date = now
        elif task.status == TaskStatus.DONE:
            updated.completed_date = None
        updated.status = new_status

    updated.touch(now)
    return updated


def is_due(task: Task, now: Optional[datetime] = None) -> bool:
    if task.status != TaskStatus.DONE:
        return False
    if not task.recurrence_enabled or task.completed_date is None:
        return False
    now = now or utc_now()
    return now - task.completed_date >= timedelta(days=task.recurrence_days)


def process_recurring_tasks(
    tasks: List[Task],
    now: Optional[datetime] = None,
) -> Tuple[List[Task], List[Task]]:
    """
    Pure pass over a task list.

    Returns:
        (all tasks with due ones reactivated, the reactivated tasks only)
    """
    now = now or utc_now()
    result = []
    reactivated = []
    for task in tasks:
        if is_due(task, now):
            task = task.model_copy(update={
                "status": TaskStatus.INCOMING,
                "completed_date": None,
            })
            task.touch(now)
            reactivated.append(task)
        result.append(task)
    return result, reactivated


@dataclass
class ScanReport:
    scanned: int = 0
    reactivated: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RecurrenceEngine:
    """
    Periodically reactivates due tasks in a TaskStore.

    Usage:
        engine = RecurrenceEngine(store, interval=60)
        engine.start()
        ...
        await engine.stop()
    """

    def __init__(self, store: TaskStore, interval: float = DEFAULT_SCAN_INTERVAL):
        self._store = store
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def scan_once(self, now: Optional[datetime] = None) -> ScanReport:
        """Reactivate every due task. Safe to call repeatedly."""
        tasks = self._store.list()
        _, due = process_recurring_tasks(tasks, now)

        report = ScanReport(scanned=len(tasks))
        for task in due:
            try:
                self._store.upsert(task)
            except PersistenceError as e:
                logger.error("Failed to reactivate task %s: %s", task.id, e)
                report.errors += 1
                continue
            report.reactivated += 1
            logger.info("Reactivated recurring task %s (%r)", task.id, task.title)

        return report

    async def run(self) -> None:
        """Scan every interval until stop() is called"""
        if self._stopping is None:
            self._stopping = asyncio.Event()
        logger.info("Recurrence engine started (interval=%ss)", self._interval)
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                try:
                    self.scan_once()
                except Exception:
                    # Keep scanning; the next pass retries the whole store
                    logger.exception("Recurrence scan failed")
        logger.info("Recurrence engine stopped")

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
