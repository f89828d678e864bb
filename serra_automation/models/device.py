"""
ORM models for the device registry and raw sensor readings.

Devices, sensors and actuators are created by the provisioning and
registry services; the automation engine only reads them to scope rules
to a reading's owner and to resolve which device an actuator lives on.
``SensorReading`` doubles as the sensor value store for multi-sensor
conditions.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Float, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    sensors: Mapped[list[Sensor]] = relationship("Sensor", back_populates="device", cascade="all, delete-orphan")
    actuators: Mapped[list[Actuator]] = relationship("Actuator", back_populates="device", cascade="all, delete-orphan")


class Sensor(Base):
    __tablename__ = "sensors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    device_id: Mapped[str] = mapped_column(String(64), ForeignKey("devices.id", ondelete="CASCADE"), index=True)
    sensor_type: Mapped[str] = mapped_column(String(32))  # e.g. temperature, humidity, soil_moisture
    unit: Mapped[str | None] = mapped_column(String(16), nullable=True)

    device: Mapped[Device] = relationship("Device", back_populates="sensors")


class Actuator(Base):
    __tablename__ = "actuators"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    device_id: Mapped[str] = mapped_column(String(64), ForeignKey("devices.id", ondelete="CASCADE"), index=True)
    actuator_type: Mapped[str] = mapped_column(String(32))  # e.g. fan, pump, light
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    device: Mapped[Device] = relationship("Device", back_populates="actuators")


class SensorReading(Base):
    __tablename__ = "sensor_readings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    device_id: Mapped[str] = mapped_column(String(64), ForeignKey("devices.id", ondelete="CASCADE"), index=True)
    sensor_id: Mapped[str] = mapped_column(String(64), ForeignKey("sensors.id", ondelete="CASCADE"))
    value: Mapped[float] = mapped_column(Float)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("sensor_id", "timestamp", name="uq_sensor_readings_sensor_timestamp"),
        Index("ix_sensor_readings_sensor_time", "sensor_id", "timestamp"),
    )
