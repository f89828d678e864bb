"""
Service layer for the Serra automation backend.

Contains reading ingestion and the rule evaluation pipeline that turns
sensor readings and schedule ticks into actuator commands.
"""

from .reading_ingest import handle_incoming_reading
from .rule_engine import on_reading, on_scheduled_tick
