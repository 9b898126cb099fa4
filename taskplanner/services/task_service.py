from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from taskplanner.domain.dates import get_today_date_only_local, local_now
from taskplanner.domain.entities import TaskEntity
from taskplanner.domain.enums import TaskStatus
from taskplanner.domain.errors import StorageError, ValidationError
from taskplanner.domain.ports import TaskStorage
from taskplanner.domain.preferences import PlanningPreferences
from taskplanner.infra.logging import redact_task

from .planner import DayPlanner, PlanResult
from .recurrence import RecurrenceService

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(
        self,
        repo: TaskStorage,
        recurrence: RecurrenceService,
        planner: DayPlanner,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._repo = repo
        self._recurrence = recurrence
        self._planner = planner
        self._clock = clock

    def list_tasks(self) -> list[TaskEntity]:
        try:
            return self._repo.list_tasks()
        except StorageError:
            return []

    def get_task(self, task_id: str) -> TaskEntity | None:
        try:
            return self._repo.get_task(task_id)
        except StorageError:
            return None

    def create_task(self, data: Mapping[str, Any]) -> TaskEntity | None:
        try:
            task = TaskEntity.from_record(data)
            task.validate()
            if not self._repo.insert_task(task):
                return None
        except ValidationError as exc:
            logger.error("Task validation failed: %s", exc)
            return None
        except StorageError:
            return None
        logger.info("Task created: %s", redact_task(task))
        return task

    def update_task(self, task_id: str, data: Mapping[str, Any]) -> TaskEntity | None:
        """Apply ``data`` to a task; completing it triggers its recurrence rule."""
        try:
            existing = self._repo.get_task(task_id)
            if not existing:
                logger.error("Task %s not found", task_id)
                return None
            task = existing.update(data)
            task.validate()
            if not self._repo.update_task(task):
                return None
        except ValidationError as exc:
            logger.error("Task validation failed for %s: %s", task_id, exc)
            return None
        except StorageError:
            return None

        if existing.status != TaskStatus.DONE and task.status == TaskStatus.DONE:
            self._recurrence.process_task_completion(task.id)
        return task

    def delete_task(self, task_id: str) -> bool:
        try:
            return self._repo.delete_task(task_id)
        except StorageError:
            return False

    def mark_done(self, task_id: str) -> TaskEntity | None:
        return self.update_task(task_id, {"status": TaskStatus.DONE.value})

    def plan_my_day(self, preferences: PlanningPreferences | None = None) -> PlanResult:
        return self._planner.plan_day(preferences)

    def reschedule_overdue_to_today(self) -> int:
        today = get_today_date_only_local(self._clock())
        try:
            overdue = self._repo.list_overdue_tasks(today)
        except StorageError:
            return 0

        rescheduled = 0
        for task in overdue:
            if task.status == TaskStatus.DONE:
                continue
            try:
                updated = self._repo.update_task(task.update({"due_date": today}))
            except StorageError as exc:
                logger.warning("Failed to reschedule task %s: %s", task.id, exc)
                continue
            if updated:
                rescheduled += 1
            else:
                logger.warning("Failed to reschedule task %s: task not found", task.id)
        logger.info("Rescheduled %d overdue tasks to %s", rescheduled, today)
        return rescheduled
