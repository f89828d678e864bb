"""
Background worker process entrypoint.

Runs execution log retention on a fixed interval. Schedule ticks run in
the API process (``ENABLE_SCHEDULE_RUNNER``) or here with
``WORKER_RUN_SCHEDULES=true`` when the API is scaled out.
"""

from __future__ import annotations

import datetime
import logging
import os
import time

from .core.config import settings
from .core.db import SessionLocal
from .core.logging_config import setup_logging
from .services.execution_log import prune_execution_logs
from .services.schedules import run_due_schedules


logger = logging.getLogger("worker")


def run_retention(now: datetime.datetime | None = None) -> int:
    with SessionLocal() as db:
        return prune_execution_logs(
            db,
            keep_per_rule=settings.execution_log_keep_per_rule,
            max_age_days=settings.execution_log_max_age_days,
            now=now,
        )


def main() -> int:
    setup_logging()
    logger.info("Worker booted (pid=%s)", os.getpid())
    interval = max(5, int(settings.schedule_poll_interval_sec))
    retention_interval = max(60, int(settings.retention_interval_sec))
    run_schedules = os.getenv("WORKER_RUN_SCHEDULES", "false").lower() in {"1", "true", "yes"}
    last_retention_at = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(seconds=retention_interval)
    logger.info("Worker started interval=%ss retention_interval=%ss schedules=%s", interval, retention_interval, run_schedules)

    while True:
        try:
            if run_schedules:
                with SessionLocal() as db:
                    run_due_schedules(db)
            now = datetime.datetime.now(datetime.timezone.utc)
            if (now - last_retention_at).total_seconds() >= retention_interval:
                try:
                    run_retention(now)
                    last_retention_at = now
                except Exception:
                    logger.exception("Execution log retention failed")
            time.sleep(interval)
        except KeyboardInterrupt:
            return 0
        except Exception:
            logger.exception("Worker loop error")
            time.sleep(interval)


if __name__ == "__main__":
    raise SystemExit(main())
