from __future__ import annotations

import json
import threading
from datetime import datetime

import pytest

from conftest import make_task
from taskplanner.domain.entities import RecurrenceRuleEntity, TaskEntity
from taskplanner.domain.enums import Frequency, TaskPriority, TaskStatus
from taskplanner.services.recurrence import RecurrenceService


@pytest.fixture
def service(task_store, rule_store) -> RecurrenceService:
    return RecurrenceService(
        task_store, rule_store, clock=lambda: datetime(2024, 3, 10, 9, 0).astimezone()
    )


def completed_task(task_store, **fields) -> TaskEntity:
    fields.setdefault("due_date", "2024-01-01")
    fields.setdefault("status", TaskStatus.DONE)
    return task_store.add(make_task("Water plants", **fields))


def attach_rule(rule_store, task: TaskEntity, **fields) -> RecurrenceRuleEntity:
    return rule_store.add(RecurrenceRuleEntity(task_id=task.id, **fields))


def test_daily_rule_creates_next_occurrence(service, task_store, rule_store) -> None:
    task = completed_task(
        task_store,
        duration=20,
        priority=TaskPriority.HIGH,
        labels=("home",),
        dependencies=("other-task",),
        planned_time=datetime(2024, 1, 1, 8, 0).astimezone(),
    )
    rule = attach_rule(rule_store, task, frequency=Frequency.DAILY, interval=2)

    record = service.process_task_completion(task.id)

    assert record is not None
    assert record["id"] != task.id
    assert record["due_date"] == "2024-01-03"
    assert record["status"] == "planning"
    assert record["planned_time"] is None
    assert record["priority"] == "high"
    assert record["duration"] == 20
    assert json.loads(record["labels"]) == ["home"]
    assert json.loads(record["dependencies"]) == ["other-task"]

    assert record["id"] in task_store.tasks
    rotated = rule_store.get_rule(rule.id)
    assert rotated.task_id == record["id"]
    assert rotated.count is None
    assert len(rule_store.rules) == 1


def test_last_occurrence_deletes_rule(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    rule = attach_rule(rule_store, task, count=1)

    assert service.process_task_completion(task.id) is None
    assert rule_store.get_rule(rule.id) is None
    assert list(task_store.tasks) == [task.id]


def test_zero_count_ends_series(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    rule = attach_rule(rule_store, task, count=0)

    assert service.process_task_completion(task.id) is None
    assert rule_store.get_rule(rule.id) is None


def test_count_is_decremented_on_rotation(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    rule = attach_rule(rule_store, task, frequency=Frequency.WEEKLY, count=3)

    record = service.process_task_completion(task.id)

    assert record["due_date"] == "2024-01-08"
    assert rule_store.get_rule(rule.id).count == 2


def test_series_runs_out_after_count_occurrences(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    attach_rule(rule_store, task, count=3)

    due_dates = []
    current_id = task.id
    while True:
        record = service.process_task_completion(current_id)
        if record is None:
            break
        due_dates.append(record["due_date"])
        current_id = record["id"]
        task_store.tasks[current_id] = task_store.tasks[current_id].update({"status": "done"})

    assert due_dates == ["2024-01-02", "2024-01-03"]
    assert rule_store.rules == {}


def test_end_date_exceeded_deletes_rule(service, task_store, rule_store) -> None:
    task = completed_task(task_store, due_date="2024-01-01")
    rule = attach_rule(
        rule_store, task, frequency=Frequency.WEEKLY, interval=2, end_date="2024-01-01"
    )

    assert service.process_task_completion(task.id) is None
    assert rule_store.get_rule(rule.id) is None
    assert len(task_store.tasks) == 1


def test_occurrence_on_end_date_is_still_created(service, task_store, rule_store) -> None:
    task = completed_task(task_store, due_date="2024-01-01")
    attach_rule(rule_store, task, frequency=Frequency.WEEKLY, end_date="2024-01-08")

    record = service.process_task_completion(task.id)

    assert record["due_date"] == "2024-01-08"


def test_missing_task_returns_none(service, rule_store) -> None:
    assert service.process_task_completion("nope") is None


def test_task_without_rule_returns_none(service, task_store) -> None:
    task = completed_task(task_store)

    assert service.process_task_completion(task.id) is None
    assert list(task_store.tasks) == [task.id]


def test_task_without_due_date_recurs_from_today(service, task_store, rule_store) -> None:
    task = completed_task(task_store, due_date=None)
    attach_rule(rule_store, task, frequency=Frequency.DAILY)

    record = service.process_task_completion(task.id)

    assert record["due_date"] == "2024-03-11"


def test_monthly_rule_rolls_past_short_month(service, task_store, rule_store) -> None:
    task = completed_task(task_store, due_date="2024-01-31")
    attach_rule(rule_store, task, frequency=Frequency.MONTHLY)

    assert service.process_task_completion(task.id)["due_date"] == "2024-03-02"


def test_insert_failure_leaves_rule_untouched(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    rule = attach_rule(rule_store, task, count=5)
    task_store.fail_inserts = True

    assert service.process_task_completion(task.id) is None
    assert rule_store.get_rule(rule.id) == rule


def test_rotation_failure_still_returns_new_task(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    rule = attach_rule(rule_store, task)
    rule_store.fail_updates = True

    record = service.process_task_completion(task.id)

    assert record is not None
    assert record["id"] in task_store.tasks
    assert rule_store.get_rule(rule.id).task_id == task.id


def test_second_completion_of_same_task_does_not_duplicate(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    attach_rule(rule_store, task)

    assert service.process_task_completion(task.id) is not None
    assert service.process_task_completion(task.id) is None
    assert len(task_store.tasks) == 2


def test_concurrent_completions_create_one_successor(service, task_store, rule_store) -> None:
    task = completed_task(task_store)
    attach_rule(rule_store, task)
    start = threading.Barrier(6)
    results = []

    def complete() -> None:
        start.wait()
        results.append(service.process_task_completion(task.id))

    workers = [threading.Thread(target=complete) for _ in range(6)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert sum(record is not None for record in results) == 1
    assert len(task_store.tasks) == 2
    assert service._locks == {}


def test_completion_locks_are_released(service, task_store, rule_store) -> None:
    for _ in range(3):
        task = completed_task(task_store)
        attach_rule(rule_store, task)
        service.process_task_completion(task.id)
    service.process_task_completion("missing")

    assert service._locks == {}
    assert service._lock_users == {}


def test_clone_survives_malformed_labels(service) -> None:
    task = TaskEntity.from_record({
        "id": "t1",
        "name": "Stretch",
        "project_id": "p1",
        "labels": "{not json",
        "dependencies": "[\"a\"",
    })

    clone = service.clone_task_for_recurrence(task, "2024-05-01")

    assert clone.labels == ()
    assert clone.dependencies == ()
    assert clone.to_record()["labels"] == "[]"


def test_clone_resets_occurrence_state(service) -> None:
    task = make_task(
        "Review",
        id="t1",
        description="weekly review",
        status=TaskStatus.DOING,
        planned_time=datetime(2024, 1, 1, 9).astimezone(),
        labels=("focus",),
    )

    clone = service.clone_task_for_recurrence(task, "2024-01-08")

    assert clone.id != task.id
    assert clone.status is TaskStatus.PLANNING
    assert clone.planned_time is None
    assert clone.due_date == "2024-01-08"
    assert clone.description == "weekly review"
    assert clone.labels == ("focus",)
    assert clone.created_at > task.created_at


def test_should_continue_recurrence() -> None:
    assert RecurrenceService.should_continue_recurrence(RecurrenceRuleEntity(task_id="t"), "2030-01-01")
    assert not RecurrenceService.should_continue_recurrence(
        RecurrenceRuleEntity(task_id="t", end_date="2024-01-01"), "2024-01-02"
    )
    assert not RecurrenceService.should_continue_recurrence(
        RecurrenceRuleEntity(task_id="t", count=1), "2024-01-02"
    )
    assert RecurrenceService.should_continue_recurrence(
        RecurrenceRuleEntity(task_id="t", count=2, end_date="2024-01-02"), "2024-01-02"
    )


def test_get_next_occurrence_is_pure(service) -> None:
    rule = RecurrenceRuleEntity(task_id="t", frequency=Frequency.YEARLY, interval=2)

    first = service.get_next_occurrence(rule, "2024-06-15")
    second = service.get_next_occurrence(rule, "2024-06-15")

    assert first == second == "2026-06-15"
    assert rule == RecurrenceRuleEntity(
        task_id="t", frequency=Frequency.YEARLY, interval=2, id=rule.id, created_at=rule.created_at
    )


def test_add_rule_validates_and_enforces_one_rule_per_task(service, rule_store) -> None:
    assert service.add_rule({"task_id": "t1", "frequency": "daily", "interval": 0}) is None
    assert service.add_rule({"task_id": "t1", "frequency": "hourly"}) is None

    rule = service.add_rule({"task_id": "t1", "frequency": "weekly", "end_date": "2024-6-1"})
    assert rule is not None
    assert rule.end_date == "2024-06-01"
    assert rule_store.get_rule_by_task_id("t1") == rule

    assert service.add_rule({"task_id": "t1", "frequency": "daily"}) is None
    assert len(rule_store.rules) == 1


def test_update_rule(service, rule_store) -> None:
    rule = rule_store.add(RecurrenceRuleEntity(task_id="t1", count=4))

    assert service.update_rule(rule.id, {"frequency": "monthly", "count": 2})
    updated = rule_store.get_rule(rule.id)
    assert updated.frequency is Frequency.MONTHLY
    assert updated.count == 2

    assert not service.update_rule(rule.id, {"interval": -1})
    assert rule_store.get_rule(rule.id).interval == 1
    assert not service.update_rule("missing", {"count": 3})


def test_delete_rule_for_task(service, rule_store) -> None:
    rule_store.add(RecurrenceRuleEntity(task_id="t1"))

    assert service.delete_rule_for_task("t1")
    assert not service.delete_rule_for_task("t1")


def test_cleanup_expired_rules(service, rule_store) -> None:
    rule_store.add(RecurrenceRuleEntity(task_id="ended", end_date="2024-03-09"))
    rule_store.add(RecurrenceRuleEntity(task_id="used up", count=0))
    active = rule_store.add(RecurrenceRuleEntity(task_id="active", end_date="2024-03-10"))

    assert service.cleanup_expired_rules() == 2
    assert list(rule_store.rules.values()) == [active]


def test_statistics(service, rule_store) -> None:
    rule_store.add(RecurrenceRuleEntity(task_id="a", frequency=Frequency.DAILY))
    rule_store.add(RecurrenceRuleEntity(task_id="b", frequency=Frequency.WEEKLY, count=0))
    rule_store.add(RecurrenceRuleEntity(task_id="c", frequency=Frequency.WEEKLY))

    assert service.get_statistics() == {
        "total": 3,
        "active": 2,
        "expired": 1,
        "by_frequency": {"daily": 1, "weekly": 2, "monthly": 0, "yearly": 0},
    }
