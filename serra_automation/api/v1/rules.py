"""
Read-only rule endpoints: engine-owned state and execution history.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.pagination import clamp_page_size, set_pagination_headers
from ...models.rule import AutomationRule
from ...schemas.rule import ExecutionLogOut, RuleStateOut
from ...services.execution_log import list_entries


router = APIRouter(prefix="/api/v1/rules", tags=["rules"])


def _get_rule(db: Session, rule_id: str) -> AutomationRule:
    rule = db.get(AutomationRule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("/{rule_id}/state", response_model=RuleStateOut)
def get_rule_state(rule_id: str, db: Session = Depends(get_db)) -> RuleStateOut:
    return RuleStateOut.model_validate(_get_rule(db, rule_id))


@router.get("/{rule_id}/executions", response_model=dict)
def list_rule_executions(
    rule_id: str,
    response: Response,
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    db: Session = Depends(get_db),
) -> dict:
    _get_rule(db, rule_id)
    if since and until and since > until:
        raise HTTPException(status_code=422, detail="since must not be after until")
    page_size = clamp_page_size(page_size)
    rows, total = list_entries(
        db,
        rule_id,
        since=since,
        until=until,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return {
        "items": [ExecutionLogOut.model_validate(row).model_dump(mode="json") for row in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
