"""
Pydantic schemas for sensor readings.

``ReadingIn`` describes a measurement received from a device via MQTT or
HTTP. ``PassSummaryOut`` reports what the evaluation pass did with it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ReadingIn(BaseModel):
    device_id: str
    sensor_id: str
    value: float = Field(allow_inf_nan=False)
    timestamp_utc: datetime


class PassSummaryOut(BaseModel):
    reading_id: Optional[str] = None
    duplicate: bool = False
    rules_considered: int = 0
    outcomes: Dict[str, int] = {}
    commands: list[str] = []
