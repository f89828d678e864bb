"""
Actuator command queue for device polling and audit.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Float, Index, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class ActuatorCommand(Base):
    __tablename__ = "actuator_commands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actuator_id: Mapped[str] = mapped_column(String(64), ForeignKey("actuators.id", ondelete="CASCADE"), index=True)
    command_type: Mapped[str] = mapped_column(String(20))  # on | off | set_value
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | delivered | executed | failed
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_actuator_commands_status_created", "status", "created_at"),
    )
