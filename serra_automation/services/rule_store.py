"""
Rule store: data access for rule definitions and engine-owned rule state.

Loads the active rules scoped to a reading's device, reads the latest
known sensor values, and applies the only writes the engine is allowed
to make on rules: the hysteresis compare-and-swap and the trigger
bookkeeping. Also persists validated definitions for the authoring
service and the demo seed.
"""

from __future__ import annotations

import datetime
import logging
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from ..core.errors import RuleConfigurationError
from ..models.device import Actuator, Device, Sensor, SensorReading
from ..models.rule import (
    AutomationRule,
    RuleAction,
    RuleCondition,
    RuleConditionGroup,
    ScheduleRule,
)
from ..schemas.rule import RuleCreate, validate_rule_create


logger = logging.getLogger("rule_store")


def ensure_utc(ts: datetime.datetime) -> datetime.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(datetime.timezone.utc)


def owner_for_device(db: Session, device_id: str) -> Optional[str]:
    device = db.get(Device, device_id)
    return device.owner_id if device else None


def device_sensor_ids(db: Session, device_id: str) -> set[str]:
    rows = db.execute(select(Sensor.id).where(Sensor.device_id == device_id)).all()
    return {row[0] for row in rows}


def _with_definition(query):
    return query.options(
        selectinload(AutomationRule.condition_groups).selectinload(RuleConditionGroup.conditions),
        selectinload(AutomationRule.actions),
    )


def load_active_rules(db: Session, owner_id: str, sensor_ids: Iterable[str]) -> list[AutomationRule]:
    """
    Active rules of ``owner_id`` whose conditions reference any of ``sensor_ids``.

    Rules are returned in a stable (priority, created_at, id) order so that
    log rows of one pass are written deterministically.
    """
    sensor_ids = list(sensor_ids)
    if not sensor_ids:
        return []
    referencing = (
        select(RuleConditionGroup.rule_id)
        .join(RuleCondition, RuleCondition.group_id == RuleConditionGroup.id)
        .where(RuleCondition.sensor_id.in_(sensor_ids))
    )
    query = _with_definition(
        select(AutomationRule)
        .where(
            AutomationRule.owner_id == owner_id,
            AutomationRule.is_active.is_(True),
            AutomationRule.id.in_(referencing),
        )
        .order_by(AutomationRule.priority.asc(), AutomationRule.created_at.asc(), AutomationRule.id.asc())
    )
    return list(db.scalars(query).all())


def get_rule(db: Session, rule_id: str) -> Optional[AutomationRule]:
    query = _with_definition(select(AutomationRule).where(AutomationRule.id == rule_id))
    return db.scalars(query).first()


def referenced_sensor_ids(rule: AutomationRule) -> list[str]:
    seen: list[str] = []
    for group in rule.condition_groups:
        for condition in group.conditions:
            if condition.sensor_id not in seen:
                seen.append(condition.sensor_id)
    return seen


def primary_sensor_id(rule: AutomationRule) -> Optional[str]:
    """The sensor hysteresis thresholds are measured against: first condition of the first group."""
    for group in rule.condition_groups:
        for condition in group.conditions:
            return condition.sensor_id
    return None


def lock_key_for_rule(db: Session, rule: AutomationRule) -> str:
    sensor_id = primary_sensor_id(rule)
    if sensor_id:
        sensor = db.get(Sensor, sensor_id)
        if sensor:
            return sensor.device_id
    for action in rule.actions:
        actuator = db.get(Actuator, action.actuator_id)
        if actuator:
            return actuator.device_id
    return f"rule:{rule.id}"


class DatabaseSensorValueStore:
    """Latest-value lookups over ``sensor_readings``."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def latest_value(self, sensor_id: str) -> Optional[float]:
        row = self.db.execute(
            select(SensorReading.value)
            .where(SensorReading.sensor_id == sensor_id)
            .order_by(SensorReading.timestamp.desc())
            .limit(1)
        ).first()
        return float(row[0]) if row else None


def compare_and_set_state(
    db: Session,
    rule_id: str,
    *,
    expected_change_at: Optional[datetime.datetime],
    new_state: str,
    changed_at: Optional[datetime.datetime],
) -> bool:
    """
    Swap the hysteresis state only if ``last_state_change_at`` still holds
    the value the admission decision was based on.
    """
    predicate = (
        AutomationRule.last_state_change_at.is_(None)
        if expected_change_at is None
        else AutomationRule.last_state_change_at == expected_change_at
    )
    result = db.execute(
        update(AutomationRule)
        .where(AutomationRule.id == rule_id, predicate)
        .values(current_actuator_state=new_state, last_state_change_at=changed_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def set_state(db: Session, rule_id: str, *, new_state: str, changed_at: Optional[datetime.datetime]) -> None:
    values: dict = {"current_actuator_state": new_state}
    if changed_at is not None:
        values["last_state_change_at"] = changed_at
    db.execute(
        update(AutomationRule)
        .where(AutomationRule.id == rule_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def restore_state(db: Session, rule_id: str, *, state: str, changed_at: Optional[datetime.datetime]) -> None:
    db.execute(
        update(AutomationRule)
        .where(AutomationRule.id == rule_id)
        .values(current_actuator_state=state, last_state_change_at=changed_at)
        .execution_options(synchronize_session=False)
    )


def record_trigger(db: Session, rule_id: str, triggered_at: datetime.datetime) -> None:
    db.execute(
        update(AutomationRule)
        .where(AutomationRule.id == rule_id)
        .values(trigger_count=AutomationRule.trigger_count + 1, last_triggered_at=triggered_at)
        .execution_options(synchronize_session=False)
    )


def create_rule(db: Session, payload: RuleCreate, *, now: Optional[datetime.datetime] = None) -> AutomationRule:
    """Validate and persist a full rule definition (authoring-side write)."""
    errors = validate_rule_create(payload)
    if errors:
        raise RuleConfigurationError(None, "; ".join(errors))

    now = ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
    rule = AutomationRule(
        owner_id=payload.owner_id,
        name=payload.name,
        description=payload.description,
        priority=payload.priority,
        is_active=payload.is_active,
        on_threshold=payload.on_threshold,
        off_threshold=payload.off_threshold,
        min_state_change_interval_seconds=payload.min_state_change_interval_seconds,
        created_at=now,
        updated_at=now,
    )
    for group_in in payload.condition_groups:
        group = RuleConditionGroup(group_order=group_in.group_order, created_at=now)
        for condition_in in group_in.conditions:
            group.conditions.append(
                RuleCondition(
                    sensor_id=condition_in.sensor_id,
                    operator=condition_in.operator.value,
                    value=condition_in.value,
                    value_max=condition_in.value_max,
                    condition_order=condition_in.condition_order,
                    created_at=now,
                )
            )
        rule.condition_groups.append(group)
    for action_in in payload.actions:
        rule.actions.append(
            RuleAction(
                actuator_id=action_in.actuator_id,
                action_type=action_in.action_type.value,
                action_value=action_in.action_value,
                action_order=action_in.action_order,
                created_at=now,
            )
        )
    if payload.schedule is not None:
        from .schedules import compute_next_run

        schedule = ScheduleRule(
            schedule_type=payload.schedule.schedule_type.value,
            time_of_day=payload.schedule.time_of_day,
            days_of_week=payload.schedule.days_of_week,
            cron_expression=payload.schedule.cron_expression,
            timezone=payload.schedule.timezone,
            created_at=now,
        )
        schedule.next_run_at = compute_next_run(schedule, now)
        rule.schedule = schedule

    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Created rule id=%s name=%s owner=%s priority=%s", rule.id, rule.name, rule.owner_id, rule.priority)
    return rule
