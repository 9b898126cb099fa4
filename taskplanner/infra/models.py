from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(String(255), nullable=False, default="")
    duration = Column(Integer, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    planned_time = Column(DateTime, nullable=True)
    project_id = Column(String(36), nullable=False, index=True)
    dependencies = Column(Text, nullable=False, default="[]")
    status = Column(String(20), nullable=False, default="planning", index=True)
    labels = Column(Text, nullable=False, default="[]")
    priority = Column(String(20), nullable=False, default="medium")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class RecurrenceRuleModel(Base):
    __tablename__ = "recurrence_rules"

    id = Column(String(36), primary_key=True)
    task_id = Column(
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    frequency = Column(String(20), nullable=False)
    interval = Column(Integer, nullable=False, default=1)
    end_date = Column(Date, nullable=True)
    count = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
