"""
Health endpoint: database reachability and background component status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.config import settings


router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except Exception:
        database_ok = False
    consumer = getattr(request.app.state, "mqtt_consumer", None)
    runner = getattr(request.app.state, "schedule_runner_thread", None)
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "mqtt_connected": consumer.is_connected() if consumer else None,
        "schedule_runner_alive": runner.is_alive() if runner else None,
        "command_queue_backend": settings.command_queue_backend,
    }
