from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Any, Mapping

from .dates import parse_time_of_day
from .errors import ValidationError

MAX_BUFFER_TIME_MIN = 120


@dataclass(frozen=True)
class WorkingHours:
    start_time: str = "10:00"
    end_time: str = "19:00"

    def __post_init__(self) -> None:
        try:
            start, end = parse_time_of_day(self.start_time), parse_time_of_day(self.end_time)
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"invalid working hours: {exc}") from exc
        if start >= end:
            raise ValidationError(
                f"working hours must start before they end ({self.start_time}-{self.end_time})"
            )

    @property
    def start(self) -> time:
        return parse_time_of_day(self.start_time)

    @property
    def end(self) -> time:
        return parse_time_of_day(self.end_time)


@dataclass(frozen=True)
class PlanningPreferences:
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    buffer_time: int = 10

    def __post_init__(self) -> None:
        if (
            isinstance(self.buffer_time, bool)
            or not isinstance(self.buffer_time, int)
            or not 0 <= self.buffer_time <= MAX_BUFFER_TIME_MIN
        ):
            raise ValidationError(
                f"buffer_time must be between 0 and {MAX_BUFFER_TIME_MIN} minutes, "
                f"got {self.buffer_time!r}"
            )

    @classmethod
    def from_settings(cls, settings) -> PlanningPreferences:
        return cls(
            working_hours=WorkingHours(settings.work_start_time, settings.work_end_time),
            buffer_time=settings.buffer_time_min,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanningPreferences:
        hours = data.get("working_hours") or {}
        if not isinstance(hours, Mapping):
            raise ValidationError("working_hours must be a mapping")
        defaults = WorkingHours()
        return cls(
            working_hours=WorkingHours(
                start_time=hours.get("start_time", defaults.start_time),
                end_time=hours.get("end_time", defaults.end_time),
            ),
            buffer_time=data.get("buffer_time") or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "working_hours": {
                "start_time": self.working_hours.start_time,
                "end_time": self.working_hours.end_time,
            },
            "buffer_time": self.buffer_time,
        }
