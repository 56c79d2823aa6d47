from __future__ import annotations

from ..extensions import db
from cashledger.time_utils import to_utc_z


class LedgerAuditEvent(db.Model):
    """
    Append-only audit trail fed from the domain events that ledger
    operations return. Written by audit_service, never by the core.
    """
    __tablename__ = "ledger_audit_events"
    __table_args__ = (
        db.Index("ix_ledger_audit_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. transaction.approved, transfer.created
    event_name = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True, index=True)

    # Business time of the event vs row creation time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_name": self.event_name,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "payload": self.payload,
        }
