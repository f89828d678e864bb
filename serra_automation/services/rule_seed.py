"""
Auto-seed a demo greenhouse device and baseline rules for local use.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..models.device import Actuator, Device, Sensor
from ..models.rule import AutomationRule
from ..schemas.rule import ActionIn, ConditionGroupIn, ConditionIn, RuleCreate
from .rule_store import create_rule


logger = logging.getLogger("rule_seed")

DEMO_OWNER_ID = "00000000-0000-0000-0000-000000000001"
DEMO_DEVICE_ID = "greenhouse-1"


def _ensure_registry(db: Session) -> None:
    if db.get(Device, DEMO_DEVICE_ID) is None:
        db.add(Device(id=DEMO_DEVICE_ID, owner_id=DEMO_OWNER_ID, name="Demo greenhouse"))
    sensors = [
        ("greenhouse-1-temperature", "temperature", "C"),
        ("greenhouse-1-humidity", "humidity", "%"),
        ("greenhouse-1-soil", "soil_moisture", "%"),
    ]
    for sensor_id, sensor_type, unit in sensors:
        if db.get(Sensor, sensor_id) is None:
            db.add(Sensor(id=sensor_id, device_id=DEMO_DEVICE_ID, sensor_type=sensor_type, unit=unit))
    actuators = [("fan_1", "fan", "Ventilation fan"), ("pump_1", "pump", "Irrigation pump")]
    for actuator_id, actuator_type, name in actuators:
        if db.get(Actuator, actuator_id) is None:
            db.add(Actuator(id=actuator_id, device_id=DEMO_DEVICE_ID, actuator_type=actuator_type, name=name))
    db.commit()


def _demo_rules() -> list[RuleCreate]:
    return [
        RuleCreate(
            owner_id=DEMO_OWNER_ID,
            name="Ventilation",
            description="Run the fan when the greenhouse gets hot.",
            priority=10,
            condition_groups=[
                ConditionGroupIn(
                    group_order=0,
                    conditions=[ConditionIn(sensor_id="greenhouse-1-temperature", operator="gt", value=30)],
                )
            ],
            actions=[ActionIn(actuator_id="fan_1", action_type="on")],
        ),
        RuleCreate(
            owner_id=DEMO_OWNER_ID,
            name="Irrigation",
            description="Water below 30% soil moisture, stop at 45%.",
            priority=20,
            on_threshold=30,
            off_threshold=45,
            min_state_change_interval_seconds=120,
            condition_groups=[
                ConditionGroupIn(
                    group_order=0,
                    conditions=[ConditionIn(sensor_id="greenhouse-1-soil", operator="lte", value=30)],
                )
            ],
            actions=[ActionIn(actuator_id="pump_1", action_type="on")],
        ),
    ]


def seed_demo_rules(db: Session) -> int:
    _ensure_registry(db)
    created = 0
    for payload in _demo_rules():
        exists = (
            db.query(AutomationRule)
            .filter(AutomationRule.owner_id == payload.owner_id, AutomationRule.name == payload.name)
            .first()
        )
        if exists:
            continue
        create_rule(db, payload)
        created += 1
    if created:
        logger.info("Seeded demo rules: %s", created)
    return created
