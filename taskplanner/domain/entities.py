from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any, Mapping, Optional
from uuid import uuid4

from .dates import (
    add_months,
    add_years,
    coerce_date_only,
    format_timestamp,
    parse_date_only,
    parse_timestamp,
    utc_now,
)
from .enums import Frequency, TaskPriority, TaskStatus
from .errors import ValidationError

MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 255


def new_id() -> str:
    return str(uuid4())


def parse_string_list(value: Any) -> tuple:
    """Labels/dependencies from a JSON text column or a native sequence.

    Malformed JSON and non-list payloads degrade to an empty tuple.
    """
    if not value:
        return ()
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return ()
        return tuple(parsed) if isinstance(parsed, list) else ()
    return ()


def dump_string_list(values: tuple | list) -> str:
    return json.dumps(list(values))


def _coerce_enum(enum_cls: type[StrEnum], value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"invalid {field_name} {value!r}") from exc


def _coerce_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid {field_name} {value!r}") from exc


def _coerce_due_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    coerced = coerce_date_only(value)
    if coerced is None:
        raise ValidationError(f"invalid due_date {value!r}")
    return coerced


@dataclass(frozen=True)
class TaskEntity:
    name: str
    project_id: str
    id: str = field(default_factory=new_id)
    description: str = ""
    duration: Optional[int] = None
    due_date: Optional[str] = None
    planned_time: Optional[datetime] = None
    status: TaskStatus = TaskStatus.PLANNING
    priority: TaskPriority = TaskPriority.MEDIUM
    labels: tuple = ()
    dependencies: tuple = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def validate(self) -> None:
        """Raise ValidationError describing the first broken rule."""
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("name is required")
        if len(self.name) > MAX_NAME_LENGTH:
            raise ValidationError(f"name must be at most {MAX_NAME_LENGTH} characters")
        if not isinstance(self.description, str) or len(self.description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"description must be a string of at most {MAX_DESCRIPTION_LENGTH} characters"
            )
        if not self.project_id:
            raise ValidationError("project_id is required")
        if self.status not in tuple(TaskStatus):
            raise ValidationError(f"invalid status {self.status!r}")
        if self.priority not in tuple(TaskPriority):
            raise ValidationError(f"invalid priority {self.priority!r}")

        if self.duration is not None:
            if isinstance(self.duration, bool) or not isinstance(self.duration, int):
                raise ValidationError(f"duration must be an integer, got {self.duration!r}")
            if self.duration <= 0:
                raise ValidationError(f"duration must be > 0, got {self.duration}")

        if not all(isinstance(label, str) for label in self.labels):
            raise ValidationError("labels must contain only strings")
        if not all(isinstance(dep, str) for dep in self.dependencies):
            raise ValidationError("dependencies must contain only task ids")

        if self.due_date is not None:
            try:
                due = parse_date_only(self.due_date)
            except ValueError as exc:
                raise ValidationError(f"due_date must be YYYY-MM-DD, got {self.due_date!r}") from exc
            if self.due_date != due.isoformat():
                raise ValidationError(f"due_date must be YYYY-MM-DD, got {self.due_date!r}")
            created_on = coerce_date_only(self.created_at)
            if created_on and self.due_date < created_on:
                raise ValidationError(
                    f"due_date {self.due_date} must not precede creation date {created_on}"
                )

        if self.planned_time is not None:
            if not isinstance(self.planned_time, datetime) or self.planned_time.tzinfo is None:
                raise ValidationError("planned_time must be an aware timestamp")
            if self.planned_time < self.created_at:
                raise ValidationError(
                    f"planned_time {format_timestamp(self.planned_time)} must not precede "
                    f"created_at {format_timestamp(self.created_at)}"
                )

    def effective_duration(self, default: int = 30) -> int:
        return self.duration if self.duration is not None else default

    def update(self, data: Mapping[str, Any]) -> TaskEntity:
        """Copy with the given record fields applied and a fresh ``updated_at``.

        ``due_date``/``planned_time`` set to None clear the value.
        """
        changes: dict[str, Any] = {}
        for key in ("name", "description", "duration", "project_id"):
            if key in data:
                changes[key] = data[key]
        if "due_date" in data:
            changes["due_date"] = _coerce_due_date(data["due_date"])
        if "planned_time" in data:
            changes["planned_time"] = _coerce_timestamp(data["planned_time"], "planned_time")
        if "status" in data:
            changes["status"] = _coerce_enum(TaskStatus, data["status"], "status")
        if "priority" in data:
            changes["priority"] = _coerce_enum(TaskPriority, data["priority"], "priority")
        if "labels" in data:
            changes["labels"] = parse_string_list(data["labels"])
        if "dependencies" in data:
            changes["dependencies"] = parse_string_list(data["dependencies"])
        changes["updated_at"] = utc_now()
        return replace(self, **changes)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "due_date": self.due_date,
            "planned_time": format_timestamp(self.planned_time) if self.planned_time else None,
            "project_id": self.project_id,
            "dependencies": dump_string_list(self.dependencies),
            "status": self.status.value,
            "labels": dump_string_list(self.labels),
            "priority": self.priority.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> TaskEntity:
        now = utc_now()
        return cls(
            id=record.get("id") or new_id(),
            name=record.get("name") or "",
            description=record.get("description") or "",
            duration=record.get("duration"),
            project_id=record.get("project_id") or "",
            due_date=_coerce_due_date(record.get("due_date")),
            planned_time=_coerce_timestamp(record.get("planned_time"), "planned_time"),
            status=_coerce_enum(TaskStatus, record.get("status") or TaskStatus.PLANNING, "status"),
            priority=_coerce_enum(
                TaskPriority, record.get("priority") or TaskPriority.MEDIUM, "priority"
            ),
            labels=parse_string_list(record.get("labels")),
            dependencies=parse_string_list(record.get("dependencies")),
            created_at=_coerce_timestamp(record.get("created_at"), "created_at") or now,
            updated_at=_coerce_timestamp(record.get("updated_at"), "updated_at") or now,
        )


@dataclass(frozen=True)
class RecurrenceRuleEntity:
    task_id: str
    frequency: Frequency = Frequency.DAILY
    interval: int = 1
    end_date: Optional[str] = None
    count: Optional[int] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def validate(self) -> None:
        if not self.task_id:
            raise ValidationError("task_id is required")
        if self.frequency not in tuple(Frequency):
            raise ValidationError(f"invalid frequency {self.frequency!r}")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval <= 0:
            raise ValidationError(f"interval must be a positive integer, got {self.interval!r}")
        # count is the number of remaining occurrences including the current task
        if self.count is not None:
            if isinstance(self.count, bool) or not isinstance(self.count, int) or self.count < 1:
                raise ValidationError(f"count must be a positive integer, got {self.count!r}")
        if self.end_date is not None and coerce_date_only(self.end_date) != self.end_date:
            raise ValidationError(f"end_date must be YYYY-MM-DD, got {self.end_date!r}")

    def next_occurrence(self, from_date: str | date | datetime) -> Optional[str]:
        """Calendar date one interval after ``from_date``, or None past ``end_date``."""
        base_text = coerce_date_only(from_date)
        if base_text is None:
            return None
        base = parse_date_only(base_text)
        end = parse_date_only(self.end_date) if self.end_date else None
        if end and base > end:
            return None

        if self.frequency == Frequency.DAILY:
            next_date = base + timedelta(days=self.interval)
        elif self.frequency == Frequency.WEEKLY:
            next_date = base + timedelta(weeks=self.interval)
        elif self.frequency == Frequency.MONTHLY:
            next_date = add_months(base, self.interval)
        elif self.frequency == Frequency.YEARLY:
            next_date = add_years(base, self.interval)
        else:
            return None

        if end and next_date > end:
            return None
        return next_date.isoformat()

    def is_expired(self, today: str) -> bool:
        if self.end_date and today > self.end_date:
            return True
        return self.count is not None and self.count <= 0

    def update(self, data: Mapping[str, Any]) -> RecurrenceRuleEntity:
        changes: dict[str, Any] = {}
        if "task_id" in data:
            changes["task_id"] = data["task_id"]
        if "frequency" in data:
            changes["frequency"] = _coerce_enum(Frequency, data["frequency"], "frequency")
        if "interval" in data:
            changes["interval"] = data["interval"]
        if "end_date" in data:
            changes["end_date"] = _coerce_rule_end_date(data["end_date"])
        if "count" in data:
            changes["count"] = data["count"]
        return replace(self, **changes)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "frequency": self.frequency.value,
            "interval": self.interval,
            "end_date": self.end_date,
            "count": self.count,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> RecurrenceRuleEntity:
        interval = record.get("interval")
        return cls(
            id=record.get("id") or new_id(),
            task_id=record.get("task_id") or "",
            frequency=_coerce_enum(Frequency, record.get("frequency") or Frequency.DAILY, "frequency"),
            interval=1 if interval is None else interval,
            end_date=_coerce_rule_end_date(record.get("end_date")),
            count=record.get("count"),
            created_at=_coerce_timestamp(record.get("created_at"), "created_at") or utc_now(),
        )


def _coerce_rule_end_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    coerced = coerce_date_only(value)
    if coerced is None:
        raise ValidationError(f"invalid end_date {value!r}")
    return coerced
