from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterator, Mapping, Optional

from taskplanner.domain.dates import get_today_date_only_local, local_now, utc_now
from taskplanner.domain.entities import RecurrenceRuleEntity, TaskEntity, new_id
from taskplanner.domain.enums import Frequency, TaskStatus
from taskplanner.domain.errors import StorageError, ValidationError
from taskplanner.domain.ports import RuleStorage, TaskStorage
from taskplanner.infra.logging import redact_task

logger = logging.getLogger(__name__)


class RecurrenceService:
    """Regenerates recurring tasks when an occurrence is completed.

    A rule belongs to exactly one task at a time. Completing that task either
    clones it for the next occurrence and moves the rule onto the clone, or
    ends the series by deleting the rule.
    """

    def __init__(
        self,
        tasks: TaskStorage,
        rules: RuleStorage,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._tasks = tasks
        self._rules = rules
        self._clock = clock
        # per-task locks, dropped once no caller holds or waits on them
        self._locks: dict[str, threading.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._locks_guard = threading.Lock()

    # Rule CRUD

    def add_rule(self, data: Mapping[str, Any]) -> Optional[RecurrenceRuleEntity]:
        try:
            rule = RecurrenceRuleEntity.from_record(data)
            rule.validate()
            if self._rules.get_rule_by_task_id(rule.task_id):
                logger.error("Task %s already has a recurrence rule", rule.task_id)
                return None
            if not self._rules.insert_rule(rule):
                return None
        except ValidationError as exc:
            logger.error("Invalid recurrence rule data: %s", exc)
            return None
        except StorageError as exc:
            logger.error("Error adding recurrence rule: %s", exc)
            return None
        logger.info("Recurrence rule %s added for task %s", rule.id, rule.task_id)
        return rule

    def get_rule(self, rule_id: str) -> Optional[RecurrenceRuleEntity]:
        try:
            return self._rules.get_rule(rule_id)
        except StorageError as exc:
            logger.error("Error getting recurrence rule %s: %s", rule_id, exc)
            return None

    def get_rule_for_task(self, task_id: str) -> Optional[RecurrenceRuleEntity]:
        try:
            return self._rules.get_rule_by_task_id(task_id)
        except StorageError as exc:
            logger.error("Error getting recurrence rule for task %s: %s", task_id, exc)
            return None

    def update_rule(self, rule_id: str, data: Mapping[str, Any]) -> bool:
        try:
            existing = self._rules.get_rule(rule_id)
            if not existing:
                logger.error("Recurrence rule %s not found", rule_id)
                return False
            updated = existing.update(data)
            updated.validate()
            patch = {key: value for key, value in updated.to_record().items() if key in data}
            if not self._rules.update_rule(rule_id, patch):
                return False
        except ValidationError as exc:
            logger.error("Invalid recurrence rule data after update: %s", exc)
            return False
        except StorageError as exc:
            logger.error("Error updating recurrence rule %s: %s", rule_id, exc)
            return False
        logger.info("Recurrence rule %s updated", rule_id)
        return True

    def delete_rule(self, rule_id: str) -> bool:
        try:
            deleted = self._rules.delete_rule(rule_id)
        except StorageError as exc:
            logger.error("Error deleting recurrence rule %s: %s", rule_id, exc)
            return False
        if deleted:
            logger.info("Recurrence rule %s deleted", rule_id)
        return deleted

    def delete_rule_for_task(self, task_id: str) -> bool:
        try:
            deleted = self._rules.delete_rule_by_task_id(task_id)
        except StorageError as exc:
            logger.error("Error deleting recurrence rule for task %s: %s", task_id, exc)
            return False
        if deleted:
            logger.info("Recurrence rule for task %s deleted", task_id)
        return deleted

    def list_rules(self) -> list[RecurrenceRuleEntity]:
        try:
            return self._rules.list_rules()
        except StorageError as exc:
            logger.error("Error listing recurrence rules: %s", exc)
            return []

    # Occurrence computation

    @staticmethod
    def get_next_occurrence(
        rule: RecurrenceRuleEntity, from_date: str | date | datetime
    ) -> Optional[str]:
        return rule.next_occurrence(from_date)

    @staticmethod
    def should_continue_recurrence(rule: RecurrenceRuleEntity, next_occurrence: str) -> bool:
        if rule.end_date and next_occurrence > rule.end_date:
            logger.info("Recurrence ended by end date %s", rule.end_date)
            return False
        if rule.count is not None and rule.count <= 1:
            logger.info("Recurrence ended by count")
            return False
        return True

    def clone_task_for_recurrence(self, task: TaskEntity, next_due: str) -> TaskEntity:
        now = utc_now()
        clone = TaskEntity(
            id=new_id(),
            name=task.name,
            description=task.description or "",
            duration=task.duration,
            due_date=next_due,
            planned_time=None,
            project_id=task.project_id,
            dependencies=tuple(task.dependencies),
            status=TaskStatus.PLANNING,
            labels=tuple(task.labels),
            priority=task.priority,
            created_at=now,
            updated_at=now,
        )
        logger.info("Cloned task %s to %s due %s", task.id, clone.id, next_due)
        return clone

    # Completion flow

    def process_task_completion(self, task_id: str) -> Optional[dict]:
        """Create the next occurrence of a completed recurring task.

        Returns the new task's record, or None when the task has no rule,
        the series ended, or the new task could not be stored.
        """
        logger.info("Processing task completion for recurrence: %s", task_id)
        try:
            with self._lineage_lock(task_id):
                return self._process_completion(task_id)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing task completion for recurrence %s", task_id)
            return None

    def _process_completion(self, task_id: str) -> Optional[dict]:
        try:
            task = self._tasks.get_task(task_id)
        except StorageError as exc:
            logger.error("Error loading completed task %s: %s", task_id, exc)
            return None
        if not task:
            logger.error("Task %s not found", task_id)
            return None

        rule = self.get_rule_for_task(task_id)
        if not rule:
            logger.info("No recurrence rule found for task %s", task_id)
            return None

        if rule.count is not None and rule.count <= 1:
            logger.info("Recurrence rule %s reached its last occurrence", rule.id)
            self.delete_rule(rule.id)
            return None

        base_date = task.due_date or get_today_date_only_local(self._clock())
        next_due = self.get_next_occurrence(rule, base_date)
        if not next_due or not self.should_continue_recurrence(rule, next_due):
            logger.info("No next occurrence for task %s, ending series", task_id)
            self.delete_rule(rule.id)
            return None

        clone = self.clone_task_for_recurrence(task, next_due)
        if not self._insert_clone(clone):
            return None

        self._rotate_rule(rule, clone.id)
        logger.info("Created recurring task %s from completed task %s", clone.id, task_id)
        return clone.to_record()

    def _insert_clone(self, clone: TaskEntity) -> bool:
        try:
            if self._tasks.insert_task(clone):
                return True
            logger.error("Failed to insert new recurring task: %s", redact_task(clone))
        except StorageError as exc:
            logger.error("Failed to insert new recurring task %s: %s", clone.id, exc)
        return False

    def _rotate_rule(self, rule: RecurrenceRuleEntity, new_task_id: str) -> None:
        patch: dict[str, Any] = {"task_id": new_task_id}
        if rule.count is not None and rule.count > 0:
            patch["count"] = rule.count - 1
        try:
            updated = self._rules.update_rule(rule.id, patch)
        except StorageError as exc:
            logger.error("Failed to move recurrence rule %s to task %s: %s", rule.id, new_task_id, exc)
            return
        if not updated:
            logger.error("Failed to move recurrence rule %s to task %s", rule.id, new_task_id)

    @contextmanager
    def _lineage_lock(self, task_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(task_id, threading.Lock())
            self._lock_users[task_id] = self._lock_users.get(task_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                self._lock_users[task_id] -= 1
                if not self._lock_users[task_id]:
                    del self._lock_users[task_id]
                    del self._locks[task_id]

    # Maintenance

    def list_expired_rules(self) -> list[RecurrenceRuleEntity]:
        today = get_today_date_only_local(self._clock())
        return [rule for rule in self.list_rules() if rule.is_expired(today)]

    def cleanup_expired_rules(self) -> int:
        cleaned = 0
        for rule in self.list_expired_rules():
            if self.delete_rule(rule.id):
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d expired recurrence rules", cleaned)
        return cleaned

    def get_statistics(self) -> dict[str, Any]:
        rules = self.list_rules()
        today = get_today_date_only_local(self._clock())
        expired = sum(1 for rule in rules if rule.is_expired(today))
        by_frequency = {frequency.value: 0 for frequency in Frequency}
        for rule in rules:
            by_frequency[Frequency(rule.frequency).value] += 1
        return {
            "total": len(rules),
            "active": len(rules) - expired,
            "expired": expired,
            "by_frequency": by_frequency,
        }
