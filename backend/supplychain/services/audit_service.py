# Overview: Append-only workflow audit trail.

from __future__ import annotations

import json
from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import WorkflowEvent
from supplychain.time_utils import utcnow
"""
Audit trail invariants

- Append-only: no updates or deletes of existing events.
- No domain logic here; callers decide what to record.
- Events are written inside the same DB transaction as the transition they record.
- occurred_at defaults to server "now" (UTC-naive).
"""


def append_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    company_id: int | None = None,
    order_id: int | None = None,
    document_id: int | None = None,
    transfer_id: int | None = None,
    actor_user_id: int | None = None,
    actor_org_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> WorkflowEvent:
    ev = WorkflowEvent(
        company_id=company_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        order_id=order_id,
        document_id=document_id,
        transfer_id=transfer_id,
        actor_user_id=actor_user_id,
        actor_org_id=actor_org_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True) if payload else None,
    )
    db.session.add(ev)
    db.session.flush()  # assigns ev.id without committing
    return ev


def list_events(
    *,
    company_id: int | None = None,
    order_id: int | None = None,
    entity_type: str | None = None,
    limit: int = 200,
) -> list[WorkflowEvent]:
    q = db.session.query(WorkflowEvent)
    if company_id is not None:
        q = q.filter(WorkflowEvent.company_id == company_id)
    if order_id is not None:
        q = q.filter(WorkflowEvent.order_id == order_id)
    if entity_type is not None:
        q = q.filter(WorkflowEvent.entity_type == entity_type)
    return q.order_by(WorkflowEvent.occurred_at.desc(), WorkflowEvent.id.desc()).limit(limit).all()
