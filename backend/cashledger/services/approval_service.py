# Overview: pending -> approved | rejected transitions, transfer pairs settled all-or-nothing.

"""
Approval Service

STATE MACHINE:
    pending -> approved
    pending -> rejected
Both targets are terminal.

APPROVE ORDER OF CHECKS:
    1. capability (Unauthorized)
    2. accounting period of the transaction date (PeriodClosed)
    3. current status (AlreadyProcessed)
    4. transfer legs: lock every sibling; any non-pending sibling aborts the
       unit with PartialApprovalConflict, otherwise all siblings and the
       parent get the same timestamp and approver.
    5. every row moves with UPDATE ... WHERE status = pending; a unit that
       loses that race gets AlreadyProcessed.

Rejection follows the same steps without the period check.

Opening seeds never enter this workflow.
"""

from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy import update

from ..entries import OpeningSeed, TransferLeg, entry_kind
from ..events import DomainEvent, Outcome, make_event
from ..exceptions import AlreadyProcessed, LedgerError, NotFound, PartialApprovalConflict, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Branch, BranchTransfer, Currency, Transaction
from ..models.ledger import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from ..permissions import Actor, ensure_can_approve
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_atomic
from .period_service import PeriodLookup, ensure_period_open

logger = get_logger("services.approval")

_SCAN_NOISE = re.compile(r"\s+")


def _claim(row, status: str, actor: Actor, now: datetime) -> bool:
    """
    Move one PENDING row to ``status`` with a conditional UPDATE.

    Returns False when another unit decided the row first. Either way
    ``row`` is refreshed from the database afterwards.
    """
    model = type(row)
    values = {"status": status, "updated_by": actor.id}
    if status == STATUS_APPROVED:
        values.update(approved_at=now, approved_by=actor.id, rejected_at=None, rejected_by=None)
    else:
        values.update(rejected_at=now, rejected_by=actor.id, approved_at=None, approved_by=None)

    result = db.session.execute(
        update(model)
        .where(model.id == row.id, model.status == STATUS_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(row)
    return result.rowcount == 1


def _load_for_decision(transaction_id: int) -> Transaction:
    tx = lock_for_update(
        db.session.query(Transaction).filter(
            Transaction.id == transaction_id,
            Transaction.deleted_at.is_(None),
        )
    ).first()
    if tx is None:
        raise NotFound("Transaction", transaction_id)
    if isinstance(entry_kind(tx), OpeningSeed):
        raise ValidationFailed("Opening balance rows are not part of the approval workflow.")
    return tx


def _settle_transfer(transfer_id: int, status: str, actor: Actor, now: datetime) -> list[DomainEvent]:
    """
    Move both legs and the parent to ``status`` as one step.

    Every sibling is locked first. A pair already settled as a whole is
    AlreadyProcessed; a mixed pair (or one without exactly two legs)
    aborts the decision with PartialApprovalConflict.
    """
    transfer = lock_for_update(db.session.query(BranchTransfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFound("BranchTransfer", transfer_id)

    legs = lock_for_update(
        db.session.query(Transaction)
        .filter(Transaction.branch_transfer_id == transfer_id)
        .order_by(Transaction.id.asc())
    ).all()

    statuses = {leg.id: leg.status for leg in legs}
    if (
        len(legs) == 2
        and transfer.status != STATUS_PENDING
        and all(leg.status == transfer.status for leg in legs)
    ):
        raise AlreadyProcessed(transfer_id, transfer.status, entity="transfer")
    if (
        len(legs) != 2
        or transfer.status != STATUS_PENDING
        or any(leg.status != STATUS_PENDING for leg in legs)
    ):
        raise PartialApprovalConflict(transfer_id, statuses)

    # The parent is claimed first; whoever wins it settles the legs
    if not _claim(transfer, status, actor, now):
        raise AlreadyProcessed(transfer_id, transfer.status, entity="transfer")

    verb = "approved" if status == STATUS_APPROVED else "rejected"
    events = []
    for leg in legs:
        if not _claim(leg, status, actor, now):
            raise PartialApprovalConflict(transfer_id, {row.id: row.status for row in legs})
        events.append(
            make_event(
                f"transaction.{verb}",
                "transaction",
                leg.id,
                actor_id=actor.id,
                occurred_at=now,
                reference=leg.reference,
                branch_transfer_id=transfer_id,
            )
        )
    events.append(
        make_event(f"transfer.{verb}", "branch_transfer", transfer_id, actor_id=actor.id, occurred_at=now)
    )
    return events


def _decide(tx: Transaction, status: str, actor: Actor) -> Outcome[Transaction]:
    now = utcnow()
    kind = entry_kind(tx)
    if isinstance(kind, TransferLeg):
        events = _settle_transfer(kind.parent_id, status, actor, now)
    else:
        if not _claim(tx, status, actor, now):
            raise AlreadyProcessed(tx.id, tx.status)
        verb = "approved" if status == STATUS_APPROVED else "rejected"
        events = [
            make_event(
                f"transaction.{verb}",
                "transaction",
                tx.id,
                actor_id=actor.id,
                occurred_at=now,
                reference=tx.reference,
            )
        ]
    db.session.flush()
    return Outcome(tx, events)


def approve_transaction(
    transaction_id: int,
    *,
    actor: Actor,
    can_approve=None,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[Transaction]:
    """
    Approve a pending transaction; a transfer leg approves its whole pair.

    Raises:
        Unauthorized, PeriodClosed, AlreadyProcessed, PartialApprovalConflict, NotFound
    """
    def _op():
        ensure_can_approve(actor, can_approve)
        tx = _load_for_decision(transaction_id)
        ensure_period_open(tx.transaction_date, period_lookup)
        if tx.status != STATUS_PENDING:
            raise AlreadyProcessed(tx.id, tx.status)
        return _decide(tx, STATUS_APPROVED, actor)

    try:
        outcome = run_atomic(_op)
    except LedgerError as exc:
        logger.warning("approval_refused", extra={"transaction_id": transaction_id, "code": exc.code})
        raise

    logger.info(
        "transaction_approved",
        extra={"transaction_id": transaction_id, "rows": len(outcome.events)},
    )
    return outcome


def reject_transaction(
    transaction_id: int,
    *,
    actor: Actor,
    can_approve=None,
) -> Outcome[Transaction]:
    """Reject a pending transaction; a transfer leg rejects its whole pair."""
    def _op():
        ensure_can_approve(actor, can_approve)
        tx = _load_for_decision(transaction_id)
        if tx.status != STATUS_PENDING:
            raise AlreadyProcessed(tx.id, tx.status)
        return _decide(tx, STATUS_REJECTED, actor)

    try:
        outcome = run_atomic(_op)
    except LedgerError as exc:
        logger.warning("rejection_refused", extra={"transaction_id": transaction_id, "code": exc.code})
        raise

    logger.info(
        "transaction_rejected",
        extra={"transaction_id": transaction_id, "rows": len(outcome.events)},
    )
    return outcome


def normalize_scan(scanned_code: str | None) -> str:
    """Strip whitespace, CR, LF and TAB that barcode scanners append."""
    return _SCAN_NOISE.sub("", scanned_code or "")


def find_by_full_reference(full_reference: str) -> Transaction | None:
    return (
        db.session.query(Transaction)
        .join(Branch, Branch.id == Transaction.branch_id)
        .join(Currency, Currency.id == Transaction.currency_id)
        .filter(
            Transaction.deleted_at.is_(None),
            Transaction.is_opening.is_(False),
            (Currency.code + Branch.code + Transaction.reference) == full_reference,
        )
        .first()
    )


def scan_and_approve(
    scanned_code: str,
    *,
    actor: Actor,
    can_approve=None,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[Transaction]:
    """
    Approve the transaction whose full reference equals the scanned text.

    The scanned text must match currency code + branch code + reference
    exactly once scanner noise is stripped.
    """
    code = normalize_scan(scanned_code)
    if not code:
        raise ValidationFailed("The scanned code is empty.", field="code")

    tx = find_by_full_reference(code)
    if tx is None:
        logger.warning("scan_not_found", extra={"scanned": code})
        raise NotFound("Transaction", code)
    if tx.status != STATUS_PENDING:
        raise AlreadyProcessed(tx.id, tx.status)

    return approve_transaction(tx.id, actor=actor, can_approve=can_approve, period_lookup=period_lookup)


def pending_queue(
    branch_id: int | None = None,
    currency_id: int | None = None,
    type: str | None = None,
) -> list[Transaction]:
    """Pending rows awaiting a decision, oldest first. Opening seeds never appear."""
    q = db.session.query(Transaction).filter(
        Transaction.status == STATUS_PENDING,
        Transaction.is_opening.is_(False),
        Transaction.deleted_at.is_(None),
    )
    if branch_id is not None:
        q = q.filter(Transaction.branch_id == branch_id)
    if currency_id is not None:
        q = q.filter(Transaction.currency_id == currency_id)
    if type is not None:
        q = q.filter(Transaction.type == type)
    return q.order_by(Transaction.transaction_date.asc(), Transaction.id.asc()).all()
