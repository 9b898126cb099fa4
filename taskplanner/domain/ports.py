"""Storage interfaces the planning services depend on.

Lookups return None (or False for writes with no effect) when a record does
not exist. Backend failures raise ``StorageError``.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from .entities import RecurrenceRuleEntity, TaskEntity


class TaskStorage(Protocol):
    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        ...

    def list_tasks(self) -> list[TaskEntity]:
        ...

    def list_tasks_for_day(self, day: str) -> list[TaskEntity]:
        """Undone tasks due on ``day`` or planned on that local day."""
        ...

    def list_overdue_tasks(self, day: str) -> list[TaskEntity]:
        """Undone tasks due before ``day``."""
        ...

    def insert_task(self, task: TaskEntity) -> bool:
        ...

    def update_task(self, task: TaskEntity) -> bool:
        ...

    def delete_task(self, task_id: str) -> bool:
        ...


class RuleStorage(Protocol):
    def get_rule(self, rule_id: str) -> Optional[RecurrenceRuleEntity]:
        ...

    def get_rule_by_task_id(self, task_id: str) -> Optional[RecurrenceRuleEntity]:
        ...

    def list_rules(self) -> list[RecurrenceRuleEntity]:
        ...

    def insert_rule(self, rule: RecurrenceRuleEntity) -> bool:
        ...

    def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> bool:
        ...

    def delete_rule(self, rule_id: str) -> bool:
        ...

    def delete_rule_by_task_id(self, task_id: str) -> bool:
        ...
