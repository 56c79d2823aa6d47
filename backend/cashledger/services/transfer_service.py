# Overview: Inter-branch transfers; a parent row plus an OUT/IN transaction pair that move together.

"""
Transfer Service

A BranchTransfer always owns two Transaction legs:
    OUT at from_branch, IN at to_branch
sharing branch_transfer_id, currency, date and amount. Create, update and
delete touch the parent and both legs in one unit of work. Approval and
rejection go through approval_service, which settles the pair atomically.
"""

from __future__ import annotations

from ..entries import TransferLeg, entry_kind
from ..events import Outcome, make_event
from ..exceptions import ImmutableTransaction, NotFound, PartialApprovalConflict, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Branch, BranchTransfer, Transaction
from ..models.ledger import STATUS_PENDING, TYPE_IN, TYPE_OUT, VALID_STATUSES
from ..money import to_amount
from ..permissions import SYSTEM_ACTOR, Actor
from ..time_utils import utcnow
from . import approval_service
from .concurrency import lock_for_update, run_atomic
from .ledger_service import (
    add_entry,
    apply_entry_changes,
    delete_transfer_rows,
    load_branch_currency,
    require_date,
    validate_text,
    write_unit,
)
from .period_service import PeriodLookup, ensure_period_open

logger = get_logger("services.transfer")

TRANSFER_FIELDS = {"from_branch_id", "to_branch_id", "currency_id", "transfer_date", "amount", "description"}


def _ensure_distinct(from_branch_id: int, to_branch_id: int) -> None:
    if from_branch_id == to_branch_id:
        raise ValidationFailed(
            "The from branch and to branch must be different.",
            field="to_branch_id",
        )


def _load_to_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound("Branch", branch_id)
    if not branch.is_active:
        raise ValidationFailed(f"Branch {branch.code} is inactive.", field="to_branch_id")
    return branch


def create_transfer(
    from_branch_id: int,
    to_branch_id: int,
    currency_id: int,
    transfer_date,
    amount,
    description: str | None = None,
    *,
    out_description: str | None = None,
    in_description: str | None = None,
    out_actor_name: str | None = None,
    in_actor_name: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[BranchTransfer]:
    """
    Create a PENDING transfer with its OUT and IN legs.

    Leg descriptions default to "Transfer to <code>" / "Transfer from <code>".
    """
    _ensure_distinct(from_branch_id, to_branch_id)
    tx_date = require_date(transfer_date, "transfer_date")
    description = validate_text(description, "description")
    out_description = validate_text(out_description, "out_description")
    in_description = validate_text(in_description, "in_description")
    out_actor_name = validate_text(out_actor_name, "out_actor_name")
    in_actor_name = validate_text(in_actor_name, "in_actor_name")

    def _op():
        from_branch, currency = load_branch_currency(from_branch_id, currency_id)
        to_branch = _load_to_branch(to_branch_id)
        parsed_amount = to_amount(amount, precision=currency.precision)
        ensure_period_open(tx_date, period_lookup)

        transfer = BranchTransfer(
            from_branch_id=from_branch.id,
            to_branch_id=to_branch.id,
            currency_id=currency.id,
            transfer_date=tx_date,
            amount=parsed_amount,
            description=description,
            status=STATUS_PENDING,
            created_by=actor.id,
        )
        db.session.add(transfer)
        db.session.flush()

        out_leg = add_entry(
            branch=from_branch,
            currency=currency,
            transaction_date=tx_date,
            tx_type=TYPE_OUT,
            amount=parsed_amount,
            description=out_description or f"Transfer to {to_branch.code}",
            actor_name=out_actor_name,
            actor=actor,
            branch_transfer_id=transfer.id,
        )
        in_leg = add_entry(
            branch=to_branch,
            currency=currency,
            transaction_date=tx_date,
            tx_type=TYPE_IN,
            amount=parsed_amount,
            description=in_description or f"Transfer from {from_branch.code}",
            actor_name=in_actor_name,
            actor=actor,
            branch_transfer_id=transfer.id,
        )

        now = utcnow()
        events = [
            make_event(
                "transfer.created",
                "branch_transfer",
                transfer.id,
                actor_id=actor.id,
                occurred_at=now,
                amount=parsed_amount,
                transfer_date=tx_date,
                legs=[out_leg.id, in_leg.id],
            )
        ]
        for leg in (out_leg, in_leg):
            events.append(
                make_event(
                    "transaction.created",
                    "transaction",
                    leg.id,
                    actor_id=actor.id,
                    occurred_at=now,
                    reference=leg.reference,
                    type=leg.type,
                    amount=leg.amount,
                    branch_transfer_id=transfer.id,
                )
            )
        return Outcome(transfer, events)

    outcome = write_unit(_op)
    logger.info("transfer_created", extra={"transfer_id": outcome.entity.id})
    return outcome


def _lock_transfer(transfer_id: int) -> tuple[BranchTransfer, list[Transaction]]:
    transfer = lock_for_update(db.session.query(BranchTransfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFound("BranchTransfer", transfer_id)
    legs = lock_for_update(
        db.session.query(Transaction)
        .filter(Transaction.branch_transfer_id == transfer_id)
        .order_by(Transaction.id.asc())
    ).all()
    return transfer, legs


def _split_legs(transfer: BranchTransfer, legs: list[Transaction]) -> tuple[Transaction, Transaction]:
    sides = {}
    for leg in legs:
        kind = entry_kind(leg)
        if isinstance(kind, TransferLeg):
            sides[kind.side] = leg
    if len(legs) != 2 or set(sides) != {TYPE_OUT, TYPE_IN}:
        raise PartialApprovalConflict(transfer.id, {leg.id: leg.status for leg in legs})
    return sides[TYPE_OUT], sides[TYPE_IN]


def update_transfer(
    transfer_id: int,
    changes: dict,
    *,
    actor: Actor = SYSTEM_ACTOR,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[BranchTransfer]:
    """
    Edit a PENDING transfer and carry branch/currency/date/amount to both legs.

    Leg references are regenerated under the same rules as a single
    transaction edit.
    """
    unknown = set(changes) - TRANSFER_FIELDS
    if unknown:
        raise ValidationFailed(f"Unknown transfer field(s): {', '.join(sorted(unknown))}")

    def _op():
        transfer, legs = _lock_transfer(transfer_id)
        if transfer.status != STATUS_PENDING:
            raise ImmutableTransaction(transfer.id, transfer.status, "Only pending transfers can be updated.")
        if any(leg.status != STATUS_PENDING for leg in legs):
            raise PartialApprovalConflict(transfer.id, {leg.id: leg.status for leg in legs})
        out_leg, in_leg = _split_legs(transfer, legs)

        from_branch_id = changes.get("from_branch_id", transfer.from_branch_id)
        to_branch_id = changes.get("to_branch_id", transfer.to_branch_id)
        _ensure_distinct(from_branch_id, to_branch_id)

        ensure_period_open(transfer.transfer_date, period_lookup)
        new_date = (
            require_date(changes["transfer_date"], "transfer_date")
            if "transfer_date" in changes
            else transfer.transfer_date
        )
        if new_date != transfer.transfer_date:
            ensure_period_open(new_date, period_lookup)

        from_branch, currency = load_branch_currency(from_branch_id, changes.get("currency_id", transfer.currency_id))
        to_branch = _load_to_branch(to_branch_id)
        new_amount = to_amount(changes.get("amount", transfer.amount), precision=currency.precision)

        changed = []
        for attr, value in (
            ("from_branch_id", from_branch.id),
            ("to_branch_id", to_branch.id),
            ("currency_id", currency.id),
            ("transfer_date", new_date),
            ("amount", new_amount),
        ):
            if getattr(transfer, attr) != value:
                setattr(transfer, attr, value)
                changed.append(attr)
        if "description" in changes:
            value = validate_text(changes["description"], "description")
            if value != transfer.description:
                transfer.description = value
                changed.append("description")
        transfer.updated_by = actor.id

        now = utcnow()
        events = [
            make_event(
                "transfer.updated",
                "branch_transfer",
                transfer.id,
                actor_id=actor.id,
                occurred_at=now,
                changed=changed,
            )
        ]
        for leg, branch in ((out_leg, from_branch), (in_leg, to_branch)):
            old_reference = leg.reference
            leg_changed = apply_entry_changes(
                leg,
                branch=branch,
                currency=currency,
                transaction_date=new_date,
                tx_type=leg.type,
                amount=new_amount,
                actor=actor,
            )
            if leg_changed:
                payload = {"changed": leg_changed, "reference": leg.reference}
                if leg.reference != old_reference:
                    payload["previous_reference"] = old_reference
                events.append(
                    make_event("transaction.updated", "transaction", leg.id, actor_id=actor.id, occurred_at=now, **payload)
                )

        db.session.flush()
        return Outcome(transfer, events)

    outcome = write_unit(_op)
    logger.info(
        "transfer_updated",
        extra={"transfer_id": outcome.entity.id, "changed": outcome.events[0].payload["changed"]},
    )
    return outcome


def delete_transfer(transfer_id: int, *, actor: Actor = SYSTEM_ACTOR) -> Outcome[None]:
    """Delete both legs and then the parent, only while PENDING."""
    def _op():
        return Outcome(None, delete_transfer_rows(transfer_id, actor=actor, occurred_at=utcnow()))

    outcome = run_atomic(_op)
    logger.info("transfer_deleted", extra={"transfer_id": transfer_id})
    return outcome


def approve_transfer(
    transfer_id: int,
    *,
    actor: Actor,
    can_approve=None,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[BranchTransfer]:
    """Approve the pair through one of its legs; both legs and the parent settle together."""
    leg = _first_leg(transfer_id)
    outcome = approval_service.approve_transaction(
        leg.id,
        actor=actor,
        can_approve=can_approve,
        period_lookup=period_lookup,
    )
    return Outcome(outcome.entity.branch_transfer, outcome.events)


def reject_transfer(transfer_id: int, *, actor: Actor, can_approve=None) -> Outcome[BranchTransfer]:
    leg = _first_leg(transfer_id)
    outcome = approval_service.reject_transaction(leg.id, actor=actor, can_approve=can_approve)
    return Outcome(outcome.entity.branch_transfer, outcome.events)


def _first_leg(transfer_id: int) -> Transaction:
    leg = (
        db.session.query(Transaction)
        .filter(Transaction.branch_transfer_id == transfer_id)
        .order_by(Transaction.id.asc())
        .first()
    )
    if leg is None:
        raise NotFound("BranchTransfer", transfer_id)
    return leg


def get_transfer(transfer_id: int) -> BranchTransfer:
    transfer = db.session.get(BranchTransfer, transfer_id)
    if transfer is None:
        raise NotFound("BranchTransfer", transfer_id)
    return transfer


def get_transfer_summary(transfer_id: int) -> dict:
    """Transfer detail with branch/currency codes and both legs."""
    transfer = get_transfer(transfer_id)
    summary = transfer.to_dict()
    summary["from_branch_code"] = transfer.from_branch.code
    summary["to_branch_code"] = transfer.to_branch.code
    summary["currency_code"] = transfer.currency.code
    summary["transactions"] = [leg.to_dict() for leg in transfer.transactions]
    return summary


def list_transfers(status: str | None = None, limit: int = 200) -> list[BranchTransfer]:
    q = db.session.query(BranchTransfer)
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationFailed(f"Invalid status '{status}'.", field="status")
        q = q.filter(BranchTransfer.status == status)
    return (
        q.order_by(BranchTransfer.transfer_date.desc(), BranchTransfer.id.desc())
        .limit(limit)
        .all()
    )
