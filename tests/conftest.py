import datetime
import os
import tempfile

# Lightweight DB setup and disable background components before the app modules import settings
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{tempfile.gettempdir()}/serra_automation_test_{os.getpid()}.db",
)
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("AUTO_SEED_RULES", "false")
os.environ.setdefault("ENABLE_MQTT_CONSUMER", "false")
os.environ.setdefault("ENABLE_SCHEDULE_RUNNER", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from serra_automation.models import Base
from serra_automation.models.device import Actuator, Device, Sensor, SensorReading
from serra_automation.schemas.rule import ActionIn, ConditionGroupIn, ConditionIn, RuleCreate, ScheduleIn
from serra_automation.services import rule_engine
from serra_automation.services.rule_store import create_rule


T0 = datetime.datetime(2026, 10, 19, 12, 0, 0, tzinfo=datetime.timezone.utc)
OWNER = "owner-1"


def _make_session(url: str = "sqlite+pysqlite:///:memory:"):
    engine = create_engine(url, future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def seed_registry(db) -> None:
    db.add(Device(id="dev-1", owner_id=OWNER, name="Greenhouse"))
    db.add(Device(id="dev-2", owner_id=OWNER, name="Nursery"))
    db.add(Device(id="dev-3", owner_id="owner-2", name="Neighbour"))
    db.flush()
    for sensor_id, device_id, sensor_type in [
        ("temp-1", "dev-1", "temperature"),
        ("hum-1", "dev-1", "humidity"),
        ("soil-1", "dev-1", "soil_moisture"),
        ("temp-2", "dev-2", "temperature"),
        ("temp-3", "dev-3", "temperature"),
    ]:
        db.add(Sensor(id=sensor_id, device_id=device_id, sensor_type=sensor_type))
    for actuator_id, device_id, actuator_type in [
        ("fan_1", "dev-1", "fan"),
        ("pump_1", "dev-1", "pump"),
        ("heater_1", "dev-1", "heater"),
        ("fan_2", "dev-2", "fan"),
    ]:
        db.add(Actuator(id=actuator_id, device_id=device_id, actuator_type=actuator_type))
    db.commit()


def add_reading(db, sensor_id: str, value: float, timestamp: datetime.datetime, device_id: str = "dev-1") -> None:
    db.add(SensorReading(device_id=device_id, sensor_id=sensor_id, value=value, timestamp=timestamp))
    db.commit()


def make_rule(
    db,
    name: str,
    *,
    groups=None,
    actions=None,
    owner_id: str = OWNER,
    created_at: datetime.datetime | None = None,
    schedule: dict | None = None,
    **fields,
):
    """Create a rule; ``groups`` is a list of condition lists as (sensor, operator, value[, value_max]) tuples."""
    condition_groups = []
    for group_order, conditions in enumerate(groups or []):
        condition_groups.append(
            ConditionGroupIn(
                group_order=group_order,
                conditions=[
                    ConditionIn(
                        sensor_id=c[0],
                        operator=c[1],
                        value=c[2],
                        value_max=c[3] if len(c) > 3 else None,
                        condition_order=i,
                    )
                    for i, c in enumerate(conditions)
                ],
            )
        )
    action_models = [
        ActionIn(actuator_id=a[0], action_type=a[1], action_value=a[2] if len(a) > 2 else None, action_order=i)
        for i, a in enumerate(actions or [("fan_1", "on")])
    ]
    payload = RuleCreate(
        owner_id=owner_id,
        name=name,
        condition_groups=condition_groups,
        actions=action_models,
        schedule=ScheduleIn(**schedule) if schedule else None,
        **fields,
    )
    return create_rule(db, payload, now=created_at or T0 - datetime.timedelta(days=1))


@pytest.fixture(autouse=True)
def server_clock(monkeypatch):
    """Keep the server clock ahead of the fixed reading timestamps used in tests."""
    monkeypatch.setattr(rule_engine, "_utcnow", lambda: T0 + datetime.timedelta(days=365))


@pytest.fixture
def db():
    session = _make_session()
    seed_registry(session)
    try:
        yield session
    finally:
        session.close()
