from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import Iterable

from taskplanner.config import SETTINGS, PROJECT_ROOT

REDACTED = "[REDACTED]"


def setup_logging() -> None:
    log_dir = PROJECT_ROOT / SETTINGS.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskplanner.log"

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=3)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=SETTINGS.log_level.upper(),
        handlers=[file_handler, console_handler],
    )


def summarize_tasks(tasks: Iterable, sample_size: int = 5) -> dict:
    """Count and a few ids, for log lines that must not carry task contents."""
    items = list(tasks or [])
    return {
        "count": len(items),
        "sample_ids": [task.id for task in items[:sample_size] if getattr(task, "id", None)],
    }


def redact_task(task) -> dict:
    return {
        "id": task.id,
        "project_id": task.project_id,
        "status": str(task.status),
        "priority": str(task.priority),
        "due_date": REDACTED if task.due_date else None,
        "planned_time": REDACTED if task.planned_time else None,
    }
