# Overview: Actor identity handed in by the caller and the approval capability check.

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import Unauthorized


APPROVE_TRANSACTION = "approve-transaction"


@dataclass(frozen=True)
class Actor:
    """
    Already-authenticated identity supplied by the surrounding application.

    The core never looks users up; it only stamps ``id`` on rows and checks
    ``permissions`` for capabilities.
    """
    id: int | None
    name: str = "System"
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has(self, permission: str) -> bool:
        return permission in self.permissions


SYSTEM_ACTOR = Actor(id=None, name="System")


def can_approve(actor: Actor) -> bool:
    return actor.has(APPROVE_TRANSACTION)


def ensure_can_approve(actor: Actor, checker=None) -> None:
    """Raise Unauthorized unless ``checker`` (default can_approve) grants the actor."""
    allowed = (checker or can_approve)(actor)
    if not allowed:
        raise Unauthorized(actor_id=actor.id)
