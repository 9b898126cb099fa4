from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from taskplanner.infra.db import SessionLocal, create_schema, init_db
from taskplanner.infra.logging import setup_logging
from taskplanner.infra.repository import RecurrenceRuleRepository, TaskRepository
from taskplanner.services.planner import DayPlanner
from taskplanner.services.recurrence import RecurrenceService
from taskplanner.services.task_service import TaskService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    tasks: TaskService
    planner: DayPlanner
    recurrence: RecurrenceService


def build_services(session_factory: sessionmaker = SessionLocal) -> Services:
    task_repo = TaskRepository(session_factory)
    rule_repo = RecurrenceRuleRepository(session_factory)
    planner = DayPlanner(task_repo)
    recurrence = RecurrenceService(task_repo, rule_repo)
    return Services(
        tasks=TaskService(task_repo, recurrence, planner),
        planner=planner,
        recurrence=recurrence,
    )


def main() -> Services | None:
    setup_logging()
    try:
        init_db()
        create_schema()
    except Exception:  # noqa: BLE001
        logger.exception("Database is not available")
        return None

    services = build_services()
    cleaned = services.recurrence.cleanup_expired_rules()
    logger.info("Task planner ready (%d expired recurrence rules removed)", cleaned)
    return services


if __name__ == "__main__":
    main()
