from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable

from taskplanner.config import SETTINGS
from taskplanner.domain.dates import (
    at_local_time,
    get_today_date_only_local,
    local_now,
    to_local,
)
from taskplanner.domain.entities import TaskEntity
from taskplanner.domain.enums import TaskPriority, TaskStatus
from taskplanner.domain.errors import StorageError, ValidationError
from taskplanner.domain.ports import TaskStorage
from taskplanner.domain.preferences import PlanningPreferences
from taskplanner.infra.logging import summarize_tasks

logger = logging.getLogger(__name__)

NO_TASKS_MESSAGE = "No tasks to plan for today."


@dataclass
class PlanResult:
    scheduled: list[TaskEntity] = field(default_factory=list)
    unscheduled: list[TaskEntity] = field(default_factory=list)
    message: str = ""
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scheduled": [task.to_record() for task in self.scheduled],
            "unscheduled": [task.to_record() for task in self.unscheduled],
            "message": self.message,
            "errors": list(self.errors),
        }


class DayPlanner:
    """Assigns start times to today's open tasks inside working hours.

    Tasks that already hold a plan later today (or are in progress) keep it
    and block their slot. Everything else is ordered by priority, highest
    first, keeping the incoming order for equal priorities, and placed one
    after another with ``buffer_time`` minutes in front of each task.
    """

    def __init__(
        self,
        tasks: TaskStorage,
        clock: Callable[[], datetime] = local_now,
        default_duration: int = SETTINGS.default_task_duration_min,
    ) -> None:
        self._tasks = tasks
        self._clock = clock
        self._default_duration = default_duration

    def plan_day(self, preferences: PlanningPreferences | None = None) -> PlanResult:
        try:
            now = self._clock()
            candidates = self._tasks.list_tasks_for_day(get_today_date_only_local(now))
            return self._plan(candidates, self._resolve(preferences), now)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error planning day")
            return PlanResult(message=f"Error planning day: {exc}")

    def plan_tasks(
        self,
        candidates: Iterable[TaskEntity],
        preferences: PlanningPreferences | None = None,
    ) -> PlanResult:
        try:
            return self._plan(list(candidates), self._resolve(preferences), self._clock())
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error planning day")
            return PlanResult(message=f"Error planning day: {exc}")

    @staticmethod
    def _resolve(preferences: PlanningPreferences | None) -> PlanningPreferences:
        return preferences or PlanningPreferences.from_settings(SETTINGS)

    def _plan(
        self,
        candidates: list[TaskEntity],
        preferences: PlanningPreferences,
        now: datetime,
    ) -> PlanResult:
        now_local = to_local(now)
        today = now_local.date()
        logger.debug(
            "Planning day %s with %s-%s, buffer %s min: %s",
            today,
            preferences.working_hours.start_time,
            preferences.working_hours.end_time,
            preferences.buffer_time,
            summarize_tasks(candidates),
        )

        planned, pending = self._partition(candidates, now_local)
        if not pending:
            return PlanResult(message=NO_TASKS_MESSAGE)

        ordered = sorted(pending, key=lambda task: -TaskPriority(task.priority).rank)
        busy_slots = sorted(
            (to_local(task.planned_time), to_local(task.planned_time) + self._duration(task))
            for task in planned
        )

        work_start = at_local_time(today, preferences.working_hours.start)
        work_end = at_local_time(today, preferences.working_hours.end)
        buffer = timedelta(minutes=preferences.buffer_time)
        cursor = max(now_local, work_start)

        result = PlanResult()
        for task in ordered:
            duration = self._duration(task)
            start = self._first_free_start(cursor, buffer, duration, busy_slots)
            if start >= work_end:
                result.unscheduled.append(task)
                continue

            scheduled_task = task.update({"planned_time": start})
            failure = self._persist(scheduled_task)
            if failure:
                result.errors.append(f"{task.id}: {failure}")
                result.unscheduled.append(task)
                continue

            result.scheduled.append(scheduled_task)
            cursor = start + duration

        result.message = self._summary_message(result, len(pending))
        logger.info(
            "Planned day %s: %d scheduled, %d unscheduled",
            today,
            len(result.scheduled),
            len(result.unscheduled),
        )
        return result

    @staticmethod
    def _partition(
        candidates: list[TaskEntity], now_local: datetime
    ) -> tuple[list[TaskEntity], list[TaskEntity]]:
        today = now_local.date()
        today_text = today.isoformat()
        planned: list[TaskEntity] = []
        pending: list[TaskEntity] = []
        for task in candidates:
            if task.status == TaskStatus.DONE:
                continue
            planned_at = to_local(task.planned_time) if task.planned_time else None
            planned_today = planned_at is not None and planned_at.date() == today
            if not planned_today and task.due_date != today_text:
                continue
            if planned_today and (planned_at > now_local or task.status == TaskStatus.DOING):
                planned.append(task)
            else:
                pending.append(task)
        return planned, pending

    def _duration(self, task: TaskEntity) -> timedelta:
        return timedelta(minutes=task.effective_duration(self._default_duration))

    @staticmethod
    def _first_free_start(
        cursor: datetime,
        buffer: timedelta,
        duration: timedelta,
        busy_slots: list[tuple[datetime, datetime]],
    ) -> datetime:
        while True:
            start = cursor + buffer
            end = start + duration
            blocking = next(
                (slot_end for slot_start, slot_end in busy_slots if start < slot_end and end > slot_start),
                None,
            )
            if blocking is None:
                return start
            cursor = blocking

    def _persist(self, task: TaskEntity) -> str | None:
        try:
            task.validate()
            if not self._tasks.update_task(task):
                logger.error("Failed to save planned time for task %s: task not found", task.id)
                return "task not found"
        except ValidationError as exc:
            logger.error("Refusing to save invalid plan for task %s: %s", task.id, exc)
            return str(exc)
        except StorageError as exc:
            logger.error("Failed to save planned time for task %s: %s", task.id, exc)
            return str(exc)
        return None

    @staticmethod
    def _summary_message(result: PlanResult, total: int) -> str:
        if result.scheduled:
            message = f"{len(result.scheduled)} of {total} tasks scheduled."
            if result.unscheduled:
                message += f" {len(result.unscheduled)} tasks could not fit in your schedule."
        else:
            message = "No tasks could be scheduled. Your day is already full."
        if result.errors:
            message += f" {len(result.errors)} tasks could not be saved."
        return message
