from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import pytest

from taskplanner.domain.dates import to_local
from taskplanner.domain.entities import RecurrenceRuleEntity, TaskEntity
from taskplanner.domain.enums import TaskStatus
from taskplanner.domain.errors import StorageError

CREATED_AT = datetime(2023, 12, 1, 12, 0, tzinfo=timezone.utc)


class FakeTaskStore:
    def __init__(self) -> None:
        self.tasks: dict[str, TaskEntity] = {}
        self.updates: list[TaskEntity] = []
        self.failing_updates: set[str] = set()
        self.fail_inserts = False

    def add(self, task: TaskEntity) -> TaskEntity:
        self.tasks[task.id] = task
        return task

    def get_task(self, task_id: str) -> TaskEntity | None:
        return self.tasks.get(task_id)

    def list_tasks(self) -> list[TaskEntity]:
        return list(self.tasks.values())

    def list_tasks_for_day(self, day: str) -> list[TaskEntity]:
        return [
            task
            for task in self.tasks.values()
            if task.status != TaskStatus.DONE
            and (
                task.due_date == day
                or (task.planned_time and to_local(task.planned_time).date().isoformat() == day)
            )
        ]

    def list_overdue_tasks(self, day: str) -> list[TaskEntity]:
        return [
            task
            for task in self.tasks.values()
            if task.due_date and task.due_date < day and task.status != TaskStatus.DONE
        ]

    def insert_task(self, task: TaskEntity) -> bool:
        if self.fail_inserts:
            raise StorageError("disk full")
        self.tasks[task.id] = task
        return True

    def update_task(self, task: TaskEntity) -> bool:
        if task.id in self.failing_updates:
            raise StorageError("database is locked")
        if task.id not in self.tasks:
            return False
        self.tasks[task.id] = task
        self.updates.append(task)
        return True

    def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None


class FakeRuleStore:
    def __init__(self) -> None:
        self.rules: dict[str, RecurrenceRuleEntity] = {}
        self.fail_updates = False

    def add(self, rule: RecurrenceRuleEntity) -> RecurrenceRuleEntity:
        self.rules[rule.id] = rule
        return rule

    def get_rule(self, rule_id: str) -> RecurrenceRuleEntity | None:
        return self.rules.get(rule_id)

    def get_rule_by_task_id(self, task_id: str) -> RecurrenceRuleEntity | None:
        return next((rule for rule in self.rules.values() if rule.task_id == task_id), None)

    def list_rules(self) -> list[RecurrenceRuleEntity]:
        return list(self.rules.values())

    def insert_rule(self, rule: RecurrenceRuleEntity) -> bool:
        self.rules[rule.id] = rule
        return True

    def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> bool:
        if self.fail_updates:
            raise StorageError("database is locked")
        rule = self.rules.get(rule_id)
        if not rule:
            return False
        self.rules[rule_id] = rule.update(patch)
        return True

    def delete_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    def delete_rule_by_task_id(self, task_id: str) -> bool:
        rule = self.get_rule_by_task_id(task_id)
        return bool(rule) and self.delete_rule(rule.id)


def make_task(name: str = "Task", **fields: Any) -> TaskEntity:
    fields.setdefault("project_id", "project-1")
    fields.setdefault("created_at", CREATED_AT)
    fields.setdefault("updated_at", CREATED_AT)
    return TaskEntity(name=name, **fields)


@pytest.fixture
def task_store() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture
def rule_store() -> FakeRuleStore:
    return FakeRuleStore()
