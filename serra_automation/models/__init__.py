"""
SQLAlchemy model base class for the Serra automation backend.

This package defines ORM models for the device registry, automation rules,
the actuator command queue and the rule execution log. All models should
inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .device import Device, Sensor, Actuator, SensorReading  # noqa: E402,F401
from .rule import AutomationRule, RuleConditionGroup, RuleCondition, RuleAction, ScheduleRule  # noqa: E402,F401
from .command import ActuatorCommand  # noqa: E402,F401
from .execution_log import RuleExecutionLog  # noqa: E402,F401

__all__ = [
    "Base",

    # Registry
    "Device",
    "Sensor",
    "Actuator",
    "SensorReading",

    # Rules
    "AutomationRule",
    "RuleConditionGroup",
    "RuleCondition",
    "RuleAction",
    "ScheduleRule",

    # Commands / audit
    "ActuatorCommand",
    "RuleExecutionLog",
]
