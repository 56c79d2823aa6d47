# Overview: Transaction ledger writes (create/update/delete), slip projection and lookups.

"""
Ledger Service

Owns every write to the transactions table except status transitions,
which belong to approval_service.

RULES:
- New rows start PENDING with a freshly allocated reference.
- Only PENDING rows may be edited or deleted (ImmutableTransaction otherwise).
- Rows dated inside a CLOSED accounting period cannot be created or edited.
- Branch change, or a date/type change that moves the row to another
  reference group, regenerates the reference. A currency-only change keeps
  it: the full reference (currency + branch + reference) picks up the new
  currency code while the sequence number stays put.
- Transfer legs move only with their transfer; here they accept
  description/actor_name edits, and deleting one deletes the whole transfer.
- Opening seeds are owned by opening_balance_service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import or_

from ..amount_words import amount_in_words
from ..entries import OpeningSeed, TransferLeg, entry_kind
from ..events import DomainEvent, Outcome, make_event
from ..exceptions import ImmutableTransaction, NotFound, PartialApprovalConflict, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Branch, BranchOpeningBalance, BranchTransfer, Currency, Transaction
from ..models.ledger import STATUS_PENDING, VALID_STATUSES, VALID_TYPES
from ..money import to_amount
from ..permissions import SYSTEM_ACTOR, Actor
from ..time_utils import parse_iso_date, utcnow
from .concurrency import lock_for_update, run_atomic
from .period_service import PeriodLookup, ensure_period_open
from .reference_data_service import require_active
from .reference_service import allocate_with_retry, generate, reference_matches_group

logger = get_logger("services.ledger")

EDITABLE_FIELDS = {
    "branch_id",
    "currency_id",
    "transaction_date",
    "type",
    "amount",
    "description",
    "actor_name",
}
# Fields a transfer leg shares with its sibling and parent
TRANSFER_BOUND_FIELDS = {"branch_id", "currency_id", "transaction_date", "type", "amount"}

MAX_TEXT = 255


@dataclass(frozen=True)
class SlipData:
    """Minimal fields for a printed deposit/withdrawal slip."""
    transaction_id: int
    full_reference: str
    reference: str
    branch_code: str
    branch_name: str
    currency_code: str
    amount: Decimal
    amount_in_words: str
    actor_name: str | None
    description: str | None
    transaction_date: date
    type: str


def write_unit(func):
    """Run a reference-allocating unit of work with the bounded reference retry."""
    return allocate_with_retry(lambda: run_atomic(func))


def validate_type(tx_type: str) -> str:
    if tx_type not in VALID_TYPES:
        raise ValidationFailed("The type must be in or out.", field="type")
    return tx_type


def validate_text(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"The {field} must be a string.", field=field)
    value = value.strip()
    if len(value) > MAX_TEXT:
        raise ValidationFailed(f"The {field} must not exceed {MAX_TEXT} characters.", field=field)
    return value or None


def require_date(value, field: str = "transaction_date") -> date:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"The {field} is not a valid date.", field=field)
    if parsed is None:
        raise ValidationFailed(f"The {field} field is required.", field=field)
    return parsed


def load_branch_currency(branch_id: int, currency_id: int) -> tuple[Branch, Currency]:
    branch = db.session.get(Branch, branch_id)
    currency = db.session.get(Currency, currency_id)
    require_active(branch, currency, branch_key=branch_id, currency_key=currency_id)
    return branch, currency


def lock_opening_balance(branch_id: int, currency_id: int) -> None:
    """
    Lock the pair's opening balance row, if any.

    Regular writes take this lock so they serialize with
    update_opening_balance on the same pair.
    """
    lock_for_update(
        db.session.query(BranchOpeningBalance).filter_by(branch_id=branch_id, currency_id=currency_id)
    ).first()


def add_entry(
    *,
    branch: Branch,
    currency: Currency,
    transaction_date: date,
    tx_type: str,
    amount: Decimal,
    description: str | None,
    actor_name: str | None,
    actor: Actor,
    is_opening: bool = False,
    branch_transfer_id: int | None = None,
    status: str = STATUS_PENDING,
) -> Transaction:
    """
    Insert one ledger row with a freshly allocated reference.

    Must be called inside a unit built by write_unit(); the reference locks
    and the insert share that unit.
    """
    if not is_opening:
        lock_opening_balance(branch.id, currency.id)
    reference = generate(branch.code, currency.code, transaction_date, tx_type)
    tx = Transaction(
        reference=reference,
        branch_id=branch.id,
        currency_id=currency.id,
        transaction_date=transaction_date,
        type=tx_type,
        amount=amount,
        description=description,
        actor_name=actor_name,
        status=status,
        is_opening=is_opening,
        branch_transfer_id=branch_transfer_id,
        created_by=actor.id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def apply_entry_changes(
    tx: Transaction,
    *,
    branch: Branch,
    currency: Currency,
    transaction_date: date,
    tx_type: str,
    amount: Decimal,
    actor: Actor,
) -> list[str]:
    """
    Move a pending row to new branch/currency/date/type/amount values.

    Returns the names of the fields that changed. The reference is
    regenerated when the branch changes or the row leaves its reference
    group; a currency-only change keeps it.
    """
    changed = []
    branch_changed = branch.id != tx.branch_id
    if not tx.is_opening and (branch_changed or currency.id != tx.currency_id):
        lock_opening_balance(branch.id, currency.id)
    for attr, value in (
        ("branch_id", branch.id),
        ("currency_id", currency.id),
        ("transaction_date", transaction_date),
        ("type", tx_type),
        ("amount", amount),
    ):
        if getattr(tx, attr) != value:
            setattr(tx, attr, value)
            changed.append(attr)

    if branch_changed or not reference_matches_group(tx.reference, transaction_date, tx_type):
        old_reference = tx.reference
        tx.reference = generate(branch.code, currency.code, transaction_date, tx_type, exclude_id=tx.id)
        if tx.reference != old_reference:
            changed.append("reference")

    tx.updated_by = actor.id
    return changed


def create_transaction(
    branch_id: int,
    currency_id: int,
    transaction_date,
    type: str,
    amount,
    description: str | None = None,
    actor_name: str | None = None,
    *,
    actor: Actor = SYSTEM_ACTOR,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[Transaction]:
    """
    Record a deposit (in) or withdrawal (out) as a PENDING row.

    Raises:
        ValidationFailed: bad type/amount/text, inactive branch or currency
        NotFound: unknown branch or currency
        PeriodClosed: the date falls in a closed accounting period
        ReferenceGenerationFailed: reference retry budget exhausted
    """
    tx_type = validate_type(type)
    tx_date = require_date(transaction_date)
    description = validate_text(description, "description")
    actor_name = validate_text(actor_name, "actor_name")

    def _op():
        branch, currency = load_branch_currency(branch_id, currency_id)
        parsed_amount = to_amount(amount, precision=currency.precision)
        ensure_period_open(tx_date, period_lookup)

        tx = add_entry(
            branch=branch,
            currency=currency,
            transaction_date=tx_date,
            tx_type=tx_type,
            amount=parsed_amount,
            description=description,
            actor_name=actor_name,
            actor=actor,
        )
        events = [
            make_event(
                "transaction.created",
                "transaction",
                tx.id,
                actor_id=actor.id,
                reference=tx.reference,
                full_reference=tx.full_reference,
                type=tx.type,
                amount=tx.amount,
                transaction_date=tx.transaction_date,
            )
        ]
        return Outcome(tx, events)

    outcome = write_unit(_op)
    logger.info(
        "transaction_created",
        extra={"transaction_id": outcome.entity.id, "reference": outcome.entity.reference},
    )
    return outcome


def _get_locked(transaction_id: int) -> Transaction:
    tx = lock_for_update(
        db.session.query(Transaction).filter(
            Transaction.id == transaction_id,
            Transaction.deleted_at.is_(None),
        )
    ).first()
    if tx is None:
        raise NotFound("Transaction", transaction_id)
    return tx


def update_transaction(
    transaction_id: int,
    changes: dict,
    *,
    actor: Actor = SYSTEM_ACTOR,
    period_lookup: PeriodLookup | None = None,
) -> Outcome[Transaction]:
    """
    Edit a PENDING transaction.

    Raises:
        ImmutableTransaction: the row is approved or rejected
        PeriodClosed: the current or the new date is in a closed period
        ValidationFailed: bad values, or a transfer-bound field on a leg
    """
    def _op():
        tx = _get_locked(transaction_id)
        if tx.status != STATUS_PENDING:
            raise ImmutableTransaction(tx.id, tx.status, "Approved transaction cannot be edited." if tx.status == "approved" else None)

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"Unknown transaction field(s): {', '.join(sorted(unknown))}")

        kind = entry_kind(tx)
        if isinstance(kind, OpeningSeed):
            raise ValidationFailed("Opening balance rows are edited through the opening balance.")
        if isinstance(kind, TransferLeg):
            bound = sorted(TRANSFER_BOUND_FIELDS & set(changes))
            if bound:
                raise ValidationFailed(
                    f"Transfer legs change together; update transfer {kind.parent_id} instead "
                    f"({', '.join(bound)})."
                )

        ensure_period_open(tx.transaction_date, period_lookup)
        new_date = require_date(changes["transaction_date"]) if "transaction_date" in changes else tx.transaction_date
        if new_date != tx.transaction_date:
            ensure_period_open(new_date, period_lookup)

        branch, currency = load_branch_currency(
            changes.get("branch_id", tx.branch_id),
            changes.get("currency_id", tx.currency_id),
        )
        new_type = validate_type(changes["type"]) if "type" in changes else tx.type
        new_amount = (
            to_amount(changes["amount"], precision=currency.precision)
            if "amount" in changes
            else to_amount(tx.amount, precision=currency.precision)
        )
        old_reference = tx.reference

        changed = apply_entry_changes(
            tx,
            branch=branch,
            currency=currency,
            transaction_date=new_date,
            tx_type=new_type,
            amount=new_amount,
            actor=actor,
        )
        for field in ("description", "actor_name"):
            if field in changes:
                value = validate_text(changes[field], field)
                if getattr(tx, field) != value:
                    setattr(tx, field, value)
                    changed.append(field)

        db.session.flush()
        payload = {"changed": changed, "reference": tx.reference}
        if tx.reference != old_reference:
            payload["previous_reference"] = old_reference
        events = [make_event("transaction.updated", "transaction", tx.id, actor_id=actor.id, **payload)]
        return Outcome(tx, events)

    outcome = write_unit(_op)
    logger.info(
        "transaction_updated",
        extra={"transaction_id": outcome.entity.id, "changed": outcome.events[0].payload["changed"]},
    )
    return outcome


def delete_transaction(transaction_id: int, *, actor: Actor = SYSTEM_ACTOR) -> Outcome[None]:
    """
    Hard-delete a PENDING transaction.

    A transfer leg takes its sibling and the parent transfer with it, in the
    same unit of work.
    """
    def _op():
        tx = _get_locked(transaction_id)
        if tx.status != STATUS_PENDING:
            raise ImmutableTransaction(tx.id, tx.status, "Approved transaction cannot be deleted." if tx.status == "approved" else None)

        kind = entry_kind(tx)
        if isinstance(kind, OpeningSeed):
            raise ValidationFailed("Opening balance rows cannot be deleted.")

        now = utcnow()
        if isinstance(kind, TransferLeg):
            return Outcome(None, delete_transfer_rows(kind.parent_id, actor=actor, occurred_at=now))

        events = [_deleted_event(tx, actor, now)]
        db.session.delete(tx)
        return Outcome(None, events)

    outcome = run_atomic(_op)
    logger.info("transaction_deleted", extra={"transaction_id": transaction_id, "rows": len(outcome.events)})
    return outcome


def _deleted_event(tx: Transaction, actor: Actor, occurred_at) -> DomainEvent:
    return make_event(
        "transaction.deleted",
        "transaction",
        tx.id,
        actor_id=actor.id,
        occurred_at=occurred_at,
        reference=tx.reference,
        branch_transfer_id=tx.branch_transfer_id,
    )


def delete_transfer_rows(transfer_id: int, *, actor: Actor, occurred_at) -> list[DomainEvent]:
    """
    Delete every leg of a transfer and then the transfer itself.

    Runs inside the caller's unit. Any leg that is no longer PENDING aborts
    the unit: the pair has already left the editable state.
    """
    transfer = lock_for_update(db.session.query(BranchTransfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFound("BranchTransfer", transfer_id)

    legs = lock_for_update(
        db.session.query(Transaction).filter(Transaction.branch_transfer_id == transfer_id)
    ).all()
    if transfer.status != STATUS_PENDING:
        raise ImmutableTransaction(transfer.id, transfer.status, "Only pending transfers can be deleted.")
    if any(leg.status != STATUS_PENDING for leg in legs):
        raise PartialApprovalConflict(transfer_id, {leg.id: leg.status for leg in legs})

    events = [_deleted_event(leg, actor, occurred_at) for leg in legs]
    for leg in legs:
        db.session.delete(leg)
    db.session.flush()
    db.session.delete(transfer)
    events.append(make_event("transfer.deleted", "branch_transfer", transfer_id, actor_id=actor.id, occurred_at=occurred_at))
    return events


def get_transaction(transaction_id: int) -> Transaction:
    tx = db.session.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.deleted_at.is_(None),
    ).first()
    if tx is None:
        raise NotFound("Transaction", transaction_id)
    return tx


def list_transactions(
    *,
    type: str | None = None,
    branch_id: int | None = None,
    currency_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    include_opening: bool = False,
    limit: int = 200,
) -> list[Transaction]:
    """Newest-first listing with the filters the cash-in/cash-out screens use."""
    q = db.session.query(Transaction).filter(Transaction.deleted_at.is_(None))

    if not include_opening:
        q = q.filter(Transaction.is_opening.is_(False))
    if type is not None:
        q = q.filter(Transaction.type == validate_type(type))
    if branch_id is not None:
        q = q.filter(Transaction.branch_id == branch_id)
    if currency_id is not None:
        q = q.filter(Transaction.currency_id == currency_id)
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationFailed(f"Invalid status '{status}'.", field="status")
        q = q.filter(Transaction.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Transaction.reference.like(pattern),
                Transaction.actor_name.like(pattern),
                Transaction.description.like(pattern),
            )
        )

    return (
        q.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )


def print_slips(transaction_ids: list[int]) -> list[SlipData]:
    """Read-only slip projection, ordered by transaction date."""
    ids = list(dict.fromkeys(transaction_ids or []))
    if not ids:
        raise ValidationFailed("At least one transaction id is required.", field="id")

    rows = (
        db.session.query(Transaction)
        .filter(Transaction.id.in_(ids), Transaction.deleted_at.is_(None))
        .order_by(Transaction.transaction_date.asc(), Transaction.id.asc())
        .all()
    )
    if not rows:
        raise NotFound("Transaction", ids)

    return [
        SlipData(
            transaction_id=tx.id,
            full_reference=tx.full_reference,
            reference=tx.reference,
            branch_code=tx.branch.code,
            branch_name=tx.branch.name,
            currency_code=tx.currency.code,
            amount=tx.amount,
            amount_in_words=amount_in_words(tx.amount, tx.currency.code),
            actor_name=tx.actor_name,
            description=tx.description,
            transaction_date=tx.transaction_date,
            type=tx.type,
        )
        for tx in rows
    ]
