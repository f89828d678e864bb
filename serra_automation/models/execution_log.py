"""
Append-only audit trail of rule evaluation outcomes.

One row is written for every rule considered in an evaluation pass,
whether it fired, was skipped or failed to dispatch. Rows are never
updated; the retention job is the only deleter.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import String, DateTime, Float, Integer, Text, Index, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class ExecutionStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, enum.Enum):
    MISSING_DATA = "missing_data"
    CONDITIONS_NOT_MET = "conditions_not_met"
    COOLDOWN = "cooldown"
    NO_STATE_CHANGE = "no_state_change"
    SUPERSEDED = "superseded"
    INVALID_CONFIGURATION = "invalid_configuration"
    CONCURRENT_UPDATE = "concurrent_update"


class TriggerSource(str, enum.Enum):
    READING = "reading"
    SCHEDULE = "schedule"


class RuleExecutionLog(Base):
    __tablename__ = "rule_execution_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[str] = mapped_column(String(36), ForeignKey("automation_rules.id", ondelete="CASCADE"))
    sensor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sensor_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    command_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    execution_status: Mapped[str] = mapped_column(String(20), default=ExecutionStatus.SUCCESS.value)
    skip_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    trigger_source: Mapped[str] = mapped_column(String(16), default=TriggerSource.READING.value)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_rule_execution_logs_rule_time", "rule_id", "executed_at"),
        Index("ix_rule_execution_logs_time", "executed_at"),
    )
