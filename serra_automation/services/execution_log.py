"""
Execution log writes, history queries and retention.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..models.execution_log import ExecutionStatus, RuleExecutionLog, SkipReason, TriggerSource
from .rule_store import ensure_utc


logger = logging.getLogger("execution_log")


def append_entry(
    db: Session,
    *,
    rule_id: str,
    status: ExecutionStatus,
    executed_at: datetime.datetime,
    trigger_source: TriggerSource,
    sensor_id: Optional[str] = None,
    sensor_value: Optional[float] = None,
    command_id: Optional[str] = None,
    skip_reason: Optional[SkipReason] = None,
    error_message: Optional[str] = None,
) -> RuleExecutionLog:
    entry = RuleExecutionLog(
        rule_id=rule_id,
        sensor_id=sensor_id,
        sensor_value=sensor_value,
        executed_at=ensure_utc(executed_at),
        command_id=command_id,
        execution_status=status.value,
        skip_reason=skip_reason.value if skip_reason else None,
        trigger_source=trigger_source.value,
        error_message=error_message,
    )
    db.add(entry)
    return entry


def list_entries(
    db: Session,
    rule_id: str,
    *,
    since: Optional[datetime.datetime] = None,
    until: Optional[datetime.datetime] = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[RuleExecutionLog], int]:
    """Newest first; returns the page and the total number of matching rows."""
    filters = [RuleExecutionLog.rule_id == rule_id]
    if since is not None:
        filters.append(RuleExecutionLog.executed_at >= ensure_utc(since))
    if until is not None:
        filters.append(RuleExecutionLog.executed_at <= ensure_utc(until))
    total = db.scalar(select(func.count()).select_from(RuleExecutionLog).where(*filters)) or 0
    rows = db.scalars(
        select(RuleExecutionLog)
        .where(*filters)
        .order_by(RuleExecutionLog.executed_at.desc(), RuleExecutionLog.id.desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return list(rows), int(total)


def prune_execution_logs(
    db: Session,
    *,
    keep_per_rule: int,
    max_age_days: int,
    now: Optional[datetime.datetime] = None,
) -> int:
    """
    Delete log rows older than ``max_age_days`` and all but the newest
    ``keep_per_rule`` rows of each rule. Returns the number of rows deleted.
    """
    now = ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
    deleted = 0
    if max_age_days > 0:
        cutoff = now - datetime.timedelta(days=max_age_days)
        result = db.execute(
            delete(RuleExecutionLog)
            .where(RuleExecutionLog.executed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        deleted += result.rowcount or 0

    if keep_per_rule > 0:
        ranked = select(
            RuleExecutionLog.id,
            func.row_number()
            .over(
                partition_by=RuleExecutionLog.rule_id,
                order_by=(RuleExecutionLog.executed_at.desc(), RuleExecutionLog.id.desc()),
            )
            .label("rn"),
        ).subquery()
        overflow = select(ranked.c.id).where(ranked.c.rn > keep_per_rule)
        result = db.execute(
            delete(RuleExecutionLog)
            .where(RuleExecutionLog.id.in_(overflow))
            .execution_options(synchronize_session=False)
        )
        deleted += result.rowcount or 0

    db.commit()
    if deleted:
        logger.info("Pruned execution logs deleted=%s keep_per_rule=%s max_age_days=%s", deleted, keep_per_rule, max_age_days)
    return deleted
