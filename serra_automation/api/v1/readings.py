"""
Reading ingestion endpoint for devices that post over HTTP instead of MQTT.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import ReadingRejected
from ...schemas.reading import PassSummaryOut, ReadingIn
from ...services.reading_ingest import handle_incoming_reading


router = APIRouter(prefix="/api/v1/readings", tags=["readings"])


@router.post("", response_model=PassSummaryOut)
def ingest_reading(payload: ReadingIn, db: Session = Depends(get_db)) -> PassSummaryOut:
    try:
        return handle_incoming_reading(payload, db)
    except ReadingRejected as exc:
        raise HTTPException(status_code=404 if exc.not_found else 422, detail=exc.detail)
