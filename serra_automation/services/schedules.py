"""
Schedule source: turns due schedule rows into scheduled ticks.

Schedules fire at ``time_of_day`` in the schedule's own timezone:
``once`` at the next occurrence after creation, ``daily`` every day,
``weekly`` on ``days_of_week`` (0=Sunday .. 6=Saturday) and ``cron`` on a
standard five-field crontab expression.
"""

from __future__ import annotations

import datetime
import logging
import re
import threading
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import SessionLocal
from ..core.errors import RuleConfigurationError, log_exception
from ..models.rule import AutomationRule, ScheduleRule, ScheduleType
from .rule_engine import EvaluationTrigger
from .rule_store import ensure_utc


logger = logging.getLogger("schedules")


_CRON_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _crontab_with_day_names(expression: str) -> str:
    """Rewrite numeric day-of-week values (0 or 7 = Sunday) as names; APScheduler counts from Monday."""
    fields = expression.split()
    if len(fields) != 5:
        return expression
    fields[4] = re.sub(r"(?<![\/\d])\d+", lambda m: _CRON_DAY_NAMES[int(m.group()) % 7], fields[4])
    return " ".join(fields)


def _parse_time(value: str) -> datetime.time:
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"invalid time_of_day {value!r}")


def _zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except Exception:
        logger.warning("Unknown schedule timezone %s; using UTC", name)
        return ZoneInfo("UTC")


def _next_fire(trigger: CronTrigger, after_local: datetime.datetime) -> Optional[datetime.datetime]:
    fire = trigger.get_next_fire_time(None, after_local.replace(microsecond=0) + datetime.timedelta(seconds=1))
    return ensure_utc(fire) if fire else None


def _at_time_trigger(at: datetime.time, tz: ZoneInfo, days: Optional[set[int]] = None) -> CronTrigger:
    day_of_week = ",".join(_CRON_DAY_NAMES[d] for d in sorted(days)) if days else "*"
    return CronTrigger(hour=at.hour, minute=at.minute, second=at.second, day_of_week=day_of_week, timezone=tz)


def compute_next_run(schedule: ScheduleRule, after: datetime.datetime) -> Optional[datetime.datetime]:
    """Next fire time strictly after ``after``, in UTC; None when the schedule is exhausted."""
    tz = _zone(schedule.timezone)
    after_local = ensure_utc(after).astimezone(tz)
    kind = ScheduleType(schedule.schedule_type)

    if kind == ScheduleType.CRON:
        if not schedule.cron_expression:
            raise RuleConfigurationError(schedule.automation_rule_id, "cron schedule without expression")
        trigger = CronTrigger.from_crontab(_crontab_with_day_names(schedule.cron_expression), timezone=tz)
        return _next_fire(trigger, after_local)

    at = _parse_time(schedule.time_of_day or "00:00")
    if kind == ScheduleType.ONCE and schedule.last_run_at is not None:
        return None
    days = None
    if kind == ScheduleType.WEEKLY:
        days = {int(d) % 7 for d in (schedule.days_of_week or [])}
        if not days:
            raise RuleConfigurationError(schedule.automation_rule_id, "weekly schedule without days_of_week")
    return _next_fire(_at_time_trigger(at, tz, days), after_local)


def run_due_schedules(db: Session, now: datetime.datetime | None = None, **trigger_kwargs) -> int:
    """Fire every active schedule whose ``next_run_at`` has passed. Returns the tick count."""
    now = ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
    due = (
        db.query(ScheduleRule)
        .join(AutomationRule, AutomationRule.id == ScheduleRule.automation_rule_id)
        .filter(
            AutomationRule.is_active.is_(True),
            ScheduleRule.next_run_at.isnot(None),
            ScheduleRule.next_run_at <= now,
        )
        .order_by(ScheduleRule.next_run_at.asc())
        .all()
    )
    fired = 0
    for schedule in due:
        rule_id = schedule.automation_rule_id
        try:
            trigger = EvaluationTrigger(db, **trigger_kwargs)
            trigger.on_scheduled_tick(rule_id, now)
            fired += 1
        except Exception as exc:
            log_exception(logger, "Scheduled tick failed", extra={"rule_id": rule_id}, exc=exc)
            db.rollback()
        schedule.last_run_at = now
        try:
            schedule.next_run_at = compute_next_run(schedule, now)
        except (RuleConfigurationError, ValueError) as exc:
            logger.warning("Disabling schedule rule_id=%s: %s", rule_id, exc)
            schedule.next_run_at = None
        db.add(schedule)
        db.commit()
    return fired


def run_schedule_runner(stop_event: threading.Event) -> None:
    interval_sec = max(5, int(settings.schedule_poll_interval_sec))
    logger.info("Schedule runner started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        try:
            with SessionLocal() as db:
                fired = run_due_schedules(db)
                if fired:
                    logger.info("Fired scheduled ticks count=%s", fired)
        except Exception as exc:
            logger.exception("Schedule runner cycle failed: %s", exc)
        stop_event.wait(interval_sec)
    logger.info("Schedule runner stopped")
