# Overview: Append-only audit trail for workflow and financial actions.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit Trail Invariants (authoritative)

- Append-only log of who did what to which transfer/distribution.
- No domain/business logic here.
- Events are written inside the same DB transaction as the action they record,
  so a rolled-back action leaves no event behind.
"""


def record_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    branch_id: int | None = None,
    transfer_id: int | None = None,
    distribution_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[str] = None,
) -> AuditEvent:
    """
    Append one audit event.

    - No deletes/updates of existing events.
    - occurred_at defaults to now.
    """
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        branch_id=branch_id,
        transfer_id=transfer_id,
        distribution_id=distribution_id,
        occurred_at=occurred_at,  # if None, column default applies
        note=note[:255] if note else note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    return q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
