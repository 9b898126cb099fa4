from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_env() -> None:
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str = "INFO"
    log_dir: str = "logs"
    work_start_time: str = "10:00"
    work_end_time: str = "19:00"
    buffer_time_min: int = 10
    default_task_duration_min: int = 30


load_env()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or f"sqlite:///{PROJECT_ROOT / 'taskplanner.db'}"

SETTINGS = Settings(
    database_url=DATABASE_URL,
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_dir=os.getenv("LOG_DIR", "logs"),
    work_start_time=os.getenv("WORK_START_TIME", "10:00").strip(),
    work_end_time=os.getenv("WORK_END_TIME", "19:00").strip(),
    buffer_time_min=int(os.getenv("BUFFER_TIME_MIN", "10")),
    default_task_duration_min=int(os.getenv("DEFAULT_TASK_DURATION_MIN", "30")),
)
