from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from taskplanner.domain.dates import (
    end_of_day_local_from_date_only,
    parse_date_only_local,
    to_utc,
)
from taskplanner.domain.entities import (
    RecurrenceRuleEntity,
    TaskEntity,
    dump_string_list,
    parse_string_list,
)
from taskplanner.domain.enums import Frequency, TaskPriority, TaskStatus
from taskplanner.domain.errors import StorageError

from .db import SessionLocal
from .models import RecurrenceRuleModel, TaskModel

logger = logging.getLogger(__name__)

STATUS_DONE = TaskStatus.DONE.value


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    return to_utc(value).replace(tzinfo=None) if value else None


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    return value.replace(tzinfo=timezone.utc) if value else None


def _to_db_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _to_task_entity(model: TaskModel) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        name=model.name,
        description=model.description or "",
        duration=model.duration,
        due_date=model.due_date.isoformat() if model.due_date else None,
        planned_time=_from_db_time(model.planned_time),
        project_id=model.project_id,
        dependencies=parse_string_list(model.dependencies),
        status=TaskStatus(model.status),
        labels=parse_string_list(model.labels),
        priority=TaskPriority(model.priority),
        created_at=_from_db_time(model.created_at),
        updated_at=_from_db_time(model.updated_at),
    )


def _task_columns(task: TaskEntity) -> dict[str, Any]:
    return {
        "name": task.name,
        "description": task.description,
        "duration": task.duration,
        "due_date": _to_db_date(task.due_date),
        "planned_time": _to_db_time(task.planned_time),
        "project_id": task.project_id,
        "dependencies": dump_string_list(task.dependencies),
        "status": TaskStatus(task.status).value,
        "labels": dump_string_list(task.labels),
        "priority": TaskPriority(task.priority).value,
        "created_at": _to_db_time(task.created_at),
        "updated_at": _to_db_time(task.updated_at),
    }


def _to_rule_entity(model: RecurrenceRuleModel) -> RecurrenceRuleEntity:
    return RecurrenceRuleEntity(
        id=model.id,
        task_id=model.task_id,
        frequency=Frequency(model.frequency),
        interval=model.interval,
        end_date=model.end_date.isoformat() if model.end_date else None,
        count=model.count,
        created_at=_from_db_time(model.created_at),
    )


def _rule_columns(data: Mapping[str, Any]) -> dict[str, Any]:
    columns = {}
    for key in ("task_id", "interval", "count"):
        if key in data:
            columns[key] = data[key]
    if "frequency" in data:
        columns["frequency"] = Frequency(data["frequency"]).value
    if "end_date" in data:
        columns["end_date"] = _to_db_date(data["end_date"])
    return columns


class _SqlRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Storage failure in %s: %s", type(self).__name__, exc)
            raise StorageError(str(exc)) from exc


class TaskRepository(_SqlRepository):
    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        with self._session() as session:
            task = session.get(TaskModel, task_id)
            return _to_task_entity(task) if task else None

    def list_tasks(self) -> list[TaskEntity]:
        with self._session() as session:
            stmt = select(TaskModel).order_by(
                TaskModel.due_date.is_(None),
                TaskModel.due_date.asc(),
                TaskModel.created_at.asc(),
            )
            return [_to_task_entity(task) for task in session.scalars(stmt)]

    def list_tasks_for_day(self, day: str) -> list[TaskEntity]:
        day_start = _to_db_time(parse_date_only_local(day))
        day_end = _to_db_time(end_of_day_local_from_date_only(day))
        with self._session() as session:
            stmt = (
                select(TaskModel)
                .where(
                    TaskModel.status != STATUS_DONE,
                    or_(
                        TaskModel.due_date == _to_db_date(day),
                        and_(
                            TaskModel.planned_time.is_not(None),
                            TaskModel.planned_time.between(day_start, day_end),
                        ),
                    ),
                )
                .order_by(
                    TaskModel.due_date.is_(None),
                    TaskModel.due_date.asc(),
                    TaskModel.created_at.asc(),
                )
            )
            return [_to_task_entity(task) for task in session.scalars(stmt)]

    def list_overdue_tasks(self, day: str) -> list[TaskEntity]:
        with self._session() as session:
            stmt = (
                select(TaskModel)
                .where(
                    TaskModel.due_date.is_not(None),
                    TaskModel.due_date < _to_db_date(day),
                    TaskModel.status != STATUS_DONE,
                )
                .order_by(TaskModel.due_date.asc(), TaskModel.created_at.asc())
            )
            return [_to_task_entity(task) for task in session.scalars(stmt)]

    def insert_task(self, task: TaskEntity) -> bool:
        with self._session() as session:
            session.add(TaskModel(id=task.id, **_task_columns(task)))
            session.commit()
            return True

    def update_task(self, task: TaskEntity) -> bool:
        with self._session() as session:
            model = session.get(TaskModel, task.id)
            if not model:
                return False
            for key, value in _task_columns(task).items():
                setattr(model, key, value)
            session.commit()
            return True

    def delete_task(self, task_id: str) -> bool:
        with self._session() as session:
            task = session.get(TaskModel, task_id)
            if not task:
                return False
            session.delete(task)
            session.commit()
            return True


class RecurrenceRuleRepository(_SqlRepository):
    def get_rule(self, rule_id: str) -> Optional[RecurrenceRuleEntity]:
        with self._session() as session:
            rule = session.get(RecurrenceRuleModel, rule_id)
            return _to_rule_entity(rule) if rule else None

    def get_rule_by_task_id(self, task_id: str) -> Optional[RecurrenceRuleEntity]:
        with self._session() as session:
            stmt = select(RecurrenceRuleModel).where(RecurrenceRuleModel.task_id == task_id)
            rule = session.scalars(stmt).first()
            return _to_rule_entity(rule) if rule else None

    def list_rules(self) -> list[RecurrenceRuleEntity]:
        with self._session() as session:
            stmt = select(RecurrenceRuleModel).order_by(RecurrenceRuleModel.created_at.desc())
            return [_to_rule_entity(rule) for rule in session.scalars(stmt)]

    def insert_rule(self, rule: RecurrenceRuleEntity) -> bool:
        with self._session() as session:
            session.add(
                RecurrenceRuleModel(
                    id=rule.id,
                    created_at=_to_db_time(rule.created_at),
                    **_rule_columns(rule.to_record()),
                )
            )
            session.commit()
            return True

    def update_rule(self, rule_id: str, patch: Mapping[str, Any]) -> bool:
        with self._session() as session:
            rule = session.get(RecurrenceRuleModel, rule_id)
            if not rule:
                return False
            for key, value in _rule_columns(patch).items():
                setattr(rule, key, value)
            session.commit()
            return True

    def delete_rule(self, rule_id: str) -> bool:
        with self._session() as session:
            rule = session.get(RecurrenceRuleModel, rule_id)
            if not rule:
                return False
            session.delete(rule)
            session.commit()
            return True

    def delete_rule_by_task_id(self, task_id: str) -> bool:
        with self._session() as session:
            stmt = select(RecurrenceRuleModel).where(RecurrenceRuleModel.task_id == task_id)
            rule = session.scalars(stmt).first()
            if not rule:
                return False
            session.delete(rule)
            session.commit()
            return True
