"""
Pydantic schemas for automation rule definitions and execution history.

``RuleCreate`` is the write-time shape accepted from the rule-authoring
service. ``validate_rule_create`` enforces the cross-field invariants
(hysteresis pairs, ``between`` bounds, ``set_value`` payloads, unique
ordering) that the engine relies on at evaluation time.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.rule import (
    ActionKind,
    DEFAULT_STATE_CHANGE_INTERVAL_SEC,
    MAX_PRIORITY,
    MIN_PRIORITY,
    MIN_STATE_CHANGE_INTERVAL_SEC,
    Operator,
    ScheduleType,
)


class ConditionIn(BaseModel):
    sensor_id: str
    operator: Operator
    value: float
    value_max: Optional[float] = None
    condition_order: int = Field(default=0, ge=0)


class ConditionGroupIn(BaseModel):
    group_order: int = Field(default=0, ge=0)
    conditions: List[ConditionIn]


class ActionIn(BaseModel):
    actuator_id: str
    action_type: ActionKind
    action_value: Optional[int] = None
    action_order: int = Field(default=0, ge=0)


class ScheduleIn(BaseModel):
    schedule_type: ScheduleType
    time_of_day: str = "00:00"
    days_of_week: Optional[List[int]] = None
    cron_expression: Optional[str] = None
    timezone: str = "UTC"


class RuleCreate(BaseModel):
    owner_id: str
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: int = Field(default=0, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    is_active: bool = True

    on_threshold: Optional[float] = None
    off_threshold: Optional[float] = None
    min_state_change_interval_seconds: int = Field(
        default=DEFAULT_STATE_CHANGE_INTERVAL_SEC,
        ge=MIN_STATE_CHANGE_INTERVAL_SEC,
    )

    condition_groups: List[ConditionGroupIn] = Field(default_factory=list)
    actions: List[ActionIn]
    schedule: Optional[ScheduleIn] = None


class ExecutionLogOut(BaseModel):
    id: int
    rule_id: str
    sensor_id: Optional[str] = None
    sensor_value: Optional[float] = None
    executed_at: datetime
    command_id: Optional[str] = None
    execution_status: str
    skip_reason: Optional[str] = None
    trigger_source: str
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


def _validate_condition(condition: ConditionIn) -> list[str]:
    errors: list[str] = []
    if not condition.sensor_id:
        errors.append("Sensor is required")
    if condition.operator == Operator.BETWEEN:
        if condition.value_max is None:
            errors.append("Maximum value is required for BETWEEN operator")
        elif condition.value_max <= condition.value:
            errors.append("Maximum value must be greater than minimum value")
    elif condition.value_max is not None:
        errors.append(f"value_max is only allowed for BETWEEN (got {condition.operator.value})")
    return errors


def _validate_action(action: ActionIn) -> list[str]:
    errors: list[str] = []
    if not action.actuator_id:
        errors.append("Actuator is required")
    if action.action_type == ActionKind.SET_VALUE and action.action_value is None:
        errors.append("Value is required for Set Value action")
    if action.action_value is not None:
        if action.action_type != ActionKind.SET_VALUE:
            errors.append(f"action_value is only allowed for set_value (got {action.action_type.value})")
        elif action.action_value < 0 or action.action_value > 100:
            errors.append("Value must be between 0 and 100")
    return errors


def _validate_schedule(schedule: ScheduleIn) -> list[str]:
    errors: list[str] = []
    if schedule.schedule_type == ScheduleType.WEEKLY and not schedule.days_of_week:
        errors.append("At least one day of week is required for weekly schedule")
    if schedule.days_of_week and any(day < 0 or day > 6 for day in schedule.days_of_week):
        errors.append("Days of week must be between 0 (Sunday) and 6 (Saturday)")
    if schedule.schedule_type == ScheduleType.CRON and not (schedule.cron_expression or "").strip():
        errors.append("Cron expression is required for cron schedule")
    return errors


def validate_rule_create(payload: RuleCreate) -> list[str]:
    """Return human-readable invariant violations; empty when the rule is valid."""
    errors: list[str] = []

    if (payload.on_threshold is None) != (payload.off_threshold is None):
        errors.append("Hysteresis requires both on_threshold and off_threshold")
    elif payload.on_threshold is not None and payload.on_threshold == payload.off_threshold:
        errors.append("Hysteresis thresholds must be distinct")

    if not payload.condition_groups and payload.schedule is None:
        errors.append("A rule needs at least one condition group or a schedule")

    group_orders = [g.group_order for g in payload.condition_groups]
    if len(group_orders) != len(set(group_orders)):
        errors.append("Condition group order must be unique per rule")
    for group in payload.condition_groups:
        if not group.conditions:
            errors.append(f"Condition group {group.group_order} has no conditions")
        orders = [c.condition_order for c in group.conditions]
        if len(orders) != len(set(orders)):
            errors.append(f"Condition order must be unique in group {group.group_order}")
        for condition in group.conditions:
            errors.extend(_validate_condition(condition))

    if not payload.actions:
        errors.append("At least one action is required")
    actuators = [a.actuator_id for a in payload.actions]
    if len(actuators) != len(set(actuators)):
        errors.append("At most one action per actuator is allowed")
    for action in payload.actions:
        errors.extend(_validate_action(action))

    if payload.schedule is not None:
        errors.extend(_validate_schedule(payload.schedule))

    return errors


class RuleStateOut(BaseModel):
    id: str
    name: str
    priority: int
    is_active: bool
    on_threshold: Optional[float] = None
    off_threshold: Optional[float] = None
    current_actuator_state: str
    last_state_change_at: Optional[datetime] = None
    min_state_change_interval_seconds: int
    trigger_count: int
    last_triggered_at: Optional[datetime] = None

    class Config:
        from_attributes = True
