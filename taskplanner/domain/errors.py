from __future__ import annotations


class TaskPlannerError(Exception):
    """Base error for the planning core."""


class ValidationError(TaskPlannerError):
    """A task, rule or preference failed validation."""


class StorageError(TaskPlannerError):
    """The storage layer failed to read or write a record."""
