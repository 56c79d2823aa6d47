# Overview: Domain events returned by ledger operations for an external audit consumer.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

from .time_utils import utcnow

T = TypeVar("T")


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class DomainEvent:
    name: str
    entity_type: str
    entity_id: int
    actor_id: int | None
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class Outcome(Generic[T]):
    """Mutated entity plus the events the mutation produced, in order."""
    entity: T
    events: list[DomainEvent] = field(default_factory=list)

    def event_names(self) -> list[str]:
        return [ev.name for ev in self.events]


def make_event(
    name: str,
    entity_type: str,
    entity_id: int,
    *,
    actor_id: int | None,
    occurred_at: datetime | None = None,
    **payload: Any,
) -> DomainEvent:
    return DomainEvent(
        name=name,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        occurred_at=occurred_at or utcnow(),
        payload={key: _plain(value) for key, value in payload.items()},
    )
