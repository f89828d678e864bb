"""
Data models for automation rule definitions.

A rule owns ordered condition groups (OR-ed together) whose conditions
are AND-ed, a set of actuator actions, an optional schedule, and the
engine-owned hysteresis bookkeeping fields. Definitions are written by
the rule-authoring service; the engine only updates
``current_actuator_state``, ``last_state_change_at``, ``trigger_count``
and ``last_triggered_at``.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


class Operator(str, enum.Enum):
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    BETWEEN = "between"


class ActionKind(str, enum.Enum):
    ON = "on"
    OFF = "off"
    SET_VALUE = "set_value"


class ActuatorState(str, enum.Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"


class ScheduleType(str, enum.Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    CRON = "cron"


MIN_PRIORITY = 0
MAX_PRIORITY = 1000
DEFAULT_STATE_CHANGE_INTERVAL_SEC = 60
MIN_STATE_CHANGE_INTERVAL_SEC = 10


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Hysteresis support
    on_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    off_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_actuator_state: Mapped[str] = mapped_column(String(20), default=ActuatorState.UNKNOWN.value)
    last_state_change_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    min_state_change_interval_seconds: Mapped[int] = mapped_column(Integer, default=DEFAULT_STATE_CHANGE_INTERVAL_SEC)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
    trigger_count: Mapped[int] = mapped_column(Integer, default=0)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    condition_groups: Mapped[list[RuleConditionGroup]] = relationship(
        "RuleConditionGroup",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="RuleConditionGroup.group_order",
    )
    actions: Mapped[list[RuleAction]] = relationship(
        "RuleAction",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="RuleAction.action_order",
    )
    schedule: Mapped[ScheduleRule | None] = relationship(
        "ScheduleRule",
        back_populates="rule",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(f"priority >= {MIN_PRIORITY} AND priority <= {MAX_PRIORITY}", name="ck_automation_rules_priority"),
        CheckConstraint(
            "(on_threshold IS NULL AND off_threshold IS NULL) OR (on_threshold IS NOT NULL AND off_threshold IS NOT NULL)",
            name="ck_automation_rules_hysteresis_pair",
        ),
        CheckConstraint(
            "current_actuator_state IN ('on', 'off', 'unknown')",
            name="ck_automation_rules_actuator_state",
        ),
        Index("ix_automation_rules_owner_active_priority", "owner_id", "is_active", "priority"),
    )

    @property
    def has_hysteresis(self) -> bool:
        return self.on_threshold is not None or self.off_threshold is not None


class RuleConditionGroup(Base):
    __tablename__ = "rule_condition_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rule_id: Mapped[str] = mapped_column(String(36), ForeignKey("automation_rules.id", ondelete="CASCADE"), index=True)
    group_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    rule: Mapped[AutomationRule] = relationship("AutomationRule", back_populates="condition_groups")
    conditions: Mapped[list[RuleCondition]] = relationship(
        "RuleCondition",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="RuleCondition.condition_order",
    )

    __table_args__ = (UniqueConstraint("rule_id", "group_order", name="uq_rule_condition_groups_rule_order"),)


class RuleCondition(Base):
    __tablename__ = "rule_conditions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id: Mapped[str] = mapped_column(String(36), ForeignKey("rule_condition_groups.id", ondelete="CASCADE"), index=True)
    sensor_id: Mapped[str] = mapped_column(String(64), ForeignKey("sensors.id", ondelete="CASCADE"), index=True)
    operator: Mapped[str] = mapped_column(String(20))
    value: Mapped[float] = mapped_column(Float)
    value_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    condition_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    group: Mapped[RuleConditionGroup] = relationship("RuleConditionGroup", back_populates="conditions")

    __table_args__ = (
        UniqueConstraint("group_id", "condition_order", name="uq_rule_conditions_group_order"),
        CheckConstraint(
            "operator IN ('gt', 'lt', 'gte', 'lte', 'eq', 'neq', 'between')",
            name="ck_rule_conditions_operator",
        ),
        CheckConstraint(
            "(operator = 'between' AND value_max IS NOT NULL AND value_max > value) OR (operator != 'between')",
            name="ck_rule_conditions_between_requires_max",
        ),
    )


class RuleAction(Base):
    __tablename__ = "rule_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rule_id: Mapped[str] = mapped_column(String(36), ForeignKey("automation_rules.id", ondelete="CASCADE"), index=True)
    actuator_id: Mapped[str] = mapped_column(String(64), ForeignKey("actuators.id", ondelete="CASCADE"), index=True)
    action_type: Mapped[str] = mapped_column(String(20))
    action_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    rule: Mapped[AutomationRule] = relationship("AutomationRule", back_populates="actions")

    __table_args__ = (
        UniqueConstraint("rule_id", "actuator_id", name="uq_rule_actions_rule_actuator"),
        CheckConstraint("action_type IN ('on', 'off', 'set_value')", name="ck_rule_actions_type"),
        CheckConstraint(
            "(action_type = 'set_value' AND action_value IS NOT NULL) OR (action_type != 'set_value')",
            name="ck_rule_actions_set_value_requires_value",
        ),
        CheckConstraint(
            "action_value IS NULL OR (action_value >= 0 AND action_value <= 100)",
            name="ck_rule_actions_value_range",
        ),
    )


class ScheduleRule(Base):
    __tablename__ = "schedule_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    automation_rule_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("automation_rules.id", ondelete="CASCADE"),
        unique=True,
    )
    schedule_type: Mapped[str] = mapped_column(String(20))
    time_of_day: Mapped[str] = mapped_column(String(8))  # HH:MM or HH:MM:SS, local to ``timezone``
    days_of_week: Mapped[list | None] = mapped_column(JSON, nullable=True)  # 0=Sunday .. 6=Saturday
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    rule: Mapped[AutomationRule] = relationship("AutomationRule", back_populates="schedule")

    __table_args__ = (
        CheckConstraint(
            "schedule_type IN ('once', 'daily', 'weekly', 'cron')",
            name="ck_schedule_rules_type",
        ),
        CheckConstraint(
            "(schedule_type = 'cron' AND cron_expression IS NOT NULL) OR (schedule_type != 'cron')",
            name="ck_schedule_rules_cron_requires_expression",
        ),
    )
