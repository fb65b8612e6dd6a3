# Overview: Append and query helpers for the audit event spine.

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import MasterLedgerEvent
"""
Audit spine rules

- One row per register or stock event that a supervisor may need to trace
  (session open/close, line removal with approver, postings, stocktakes).
- Rows are written by the service that performs the change, in its
  transaction, and are never edited afterwards.
- occurred_at is when it happened at the till; created_at is the insert time.
"""


def append_ledger_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    approver_user_id: int | None = None,
    register_session_id: int | None = None,
    invoice_id: int | None = None,
    request_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> MasterLedgerEvent:
    """
    Add an audit row to the current transaction. Flushes so the id is
    available; the caller commits.
    """
    ev = MasterLedgerEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        approver_user_id=approver_user_id,
        register_session_id=register_session_id,
        invoice_id=invoice_id,
        request_id=request_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=(note[:255] if note else None),
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_ledger_events(
    *,
    event_category: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    register_session_id: int | None = None,
    limit: int = 100,
) -> list[MasterLedgerEvent]:
    q = db.session.query(MasterLedgerEvent)
    if event_category:
        q = q.filter(MasterLedgerEvent.event_category == event_category)
    if entity_type:
        q = q.filter(MasterLedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(MasterLedgerEvent.entity_id == entity_id)
    if register_session_id is not None:
        q = q.filter(MasterLedgerEvent.register_session_id == register_session_id)
    return q.order_by(MasterLedgerEvent.id.desc()).limit(limit).all()
