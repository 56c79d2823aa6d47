# Overview: Default consumer of ledger domain events; appends them to ledger_audit_events.

from __future__ import annotations

from typing import Iterable

from ..events import DomainEvent
from ..extensions import db
from ..logging_config import get_logger
from ..models import LedgerAuditEvent
from .concurrency import run_atomic

logger = get_logger("services.audit")


def record_events(events: Iterable[DomainEvent]) -> list[LedgerAuditEvent]:
    """
    Persist domain events as audit rows (append-only).

    Runs in its own unit of work, after the ledger operation that produced
    the events has committed.
    """
    events = list(events)
    if not events:
        return []

    def _op():
        rows = [
            LedgerAuditEvent(
                event_name=ev.name,
                entity_type=ev.entity_type,
                entity_id=ev.entity_id,
                actor_id=ev.actor_id,
                occurred_at=ev.occurred_at,
                payload=ev.payload or None,
            )
            for ev in events
        ]
        db.session.add_all(rows)
        db.session.flush()
        return rows

    rows = run_atomic(_op)
    logger.debug("audit events recorded", extra={"count": len(rows)})
    return rows


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_name: str | None = None,
    limit: int = 100,
) -> list[LedgerAuditEvent]:
    q = db.session.query(LedgerAuditEvent)
    if entity_type is not None:
        q = q.filter(LedgerAuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(LedgerAuditEvent.entity_id == entity_id)
    if event_name is not None:
        q = q.filter(LedgerAuditEvent.event_name == event_name)
    return q.order_by(LedgerAuditEvent.occurred_at.asc(), LedgerAuditEvent.id.asc()).limit(limit).all()
