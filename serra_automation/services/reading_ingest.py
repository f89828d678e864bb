"""
Reading ingestion service.

Validates an incoming measurement against the sensor registry, stores it
once per ``(sensor_id, timestamp)`` and invokes the evaluation trigger.
Readings are delivered at least once; a redelivered reading is
acknowledged without running a second evaluation pass.
"""

from __future__ import annotations

import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import ReadingRejected
from ..models.device import Sensor, SensorReading
from ..schemas.reading import PassSummaryOut, ReadingIn
from .rule_engine import EvaluationTrigger
from .rule_store import ensure_utc


logger = logging.getLogger("reading_ingest")


def _find_reading(db: Session, sensor_id: str, timestamp: datetime.datetime) -> SensorReading | None:
    return (
        db.query(SensorReading)
        .filter(SensorReading.sensor_id == sensor_id, SensorReading.timestamp == timestamp)
        .first()
    )


def handle_incoming_reading(reading_in: ReadingIn, db: Session, **trigger_kwargs) -> PassSummaryOut:
    """
    Persist ``reading_in`` and run the evaluation pass for it.

    Raises ``ReadingRejected`` when the sensor is unknown or not attached
    to the reported device.
    """
    sensor = db.get(Sensor, reading_in.sensor_id)
    if sensor is None:
        raise ReadingRejected(f"unknown sensor {reading_in.sensor_id}", not_found=True)
    if sensor.device_id != reading_in.device_id:
        raise ReadingRejected(f"sensor {reading_in.sensor_id} is not attached to device {reading_in.device_id}")

    timestamp = ensure_utc(reading_in.timestamp_utc)
    existing = _find_reading(db, reading_in.sensor_id, timestamp)
    if existing:
        logger.info("Duplicate reading sensor_id=%s timestamp=%s ignored", reading_in.sensor_id, timestamp.isoformat())
        return PassSummaryOut(reading_id=existing.id, duplicate=True)

    reading = SensorReading(
        device_id=reading_in.device_id,
        sensor_id=reading_in.sensor_id,
        value=reading_in.value,
        timestamp=timestamp,
    )
    db.add(reading)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # Only a concurrent delivery of the same reading counts as a duplicate.
        winner = _find_reading(db, reading_in.sensor_id, timestamp)
        if winner is None:
            raise
        logger.info("Duplicate reading sensor_id=%s timestamp=%s lost insert race", reading_in.sensor_id, timestamp.isoformat())
        return PassSummaryOut(reading_id=winner.id, duplicate=True)
    db.refresh(reading)

    result = EvaluationTrigger(db, **trigger_kwargs).on_reading(
        reading_in.device_id,
        reading_in.sensor_id,
        reading_in.value,
        timestamp,
    )
    return PassSummaryOut(
        reading_id=reading.id,
        rules_considered=len(result.outcomes),
        outcomes=result.counts(),
        commands=result.command_ids,
    )
