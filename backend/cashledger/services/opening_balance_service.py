# Overview: Opening balance per (branch, currency) and its mirrored opening seed transaction.

"""
Opening Balance Service

An opening balance is stored twice:
    - BranchOpeningBalance: the zero-point used by the reports
    - an opening seed Transaction (type in, is_opening=True, approved)
      that gives the pair a visible first row with a reference

Both are written in one unit. Once any regular transaction exists for the
pair, the opening balance is locked (OpeningBalanceLocked).
"""

from __future__ import annotations

from ..events import Outcome, make_event
from ..exceptions import NotFound, OpeningBalanceLocked, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import BranchOpeningBalance, Transaction
from ..models.ledger import STATUS_APPROVED, TYPE_IN
from ..money import to_amount
from ..permissions import SYSTEM_ACTOR, Actor
from ..time_utils import utcnow
from .concurrency import lock_for_update
from .ledger_service import add_entry, apply_entry_changes, load_branch_currency, require_date, write_unit

logger = get_logger("services.opening_balance")

OPENING_DESCRIPTION = "Opening balance"


def _has_regular_transactions(branch_id: int, currency_id: int) -> bool:
    return (
        db.session.query(Transaction.id)
        .filter(
            Transaction.branch_id == branch_id,
            Transaction.currency_id == currency_id,
            Transaction.is_opening.is_(False),
            Transaction.deleted_at.is_(None),
        )
        .first()
        is not None
    )


def _seed_for(branch_id: int, currency_id: int) -> Transaction | None:
    return lock_for_update(
        db.session.query(Transaction).filter(
            Transaction.branch_id == branch_id,
            Transaction.currency_id == currency_id,
            Transaction.is_opening.is_(True),
            Transaction.deleted_at.is_(None),
        )
    ).first()


def create_opening_balance(
    branch_id: int,
    currency_id: int,
    amount,
    opening_date,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> Outcome[BranchOpeningBalance]:
    """
    Record the opening balance of a pair together with its opening seed.

    Raises:
        ValidationFailed: negative amount, or the pair already has one
    """
    open_date = require_date(opening_date, "opening_date")

    def _op():
        branch, currency = load_branch_currency(branch_id, currency_id)
        parsed = to_amount(amount, precision=currency.precision, allow_zero=True, field="opening_balance")

        existing = (
            db.session.query(BranchOpeningBalance)
            .filter_by(branch_id=branch.id, currency_id=currency.id)
            .first()
        )
        if existing is not None:
            raise ValidationFailed(
                f"Opening balance for {branch.code}/{currency.code} already exists.",
                field="currency_id",
            )

        record = BranchOpeningBalance(
            branch_id=branch.id,
            currency_id=currency.id,
            opening_balance=parsed,
            opening_date=open_date,
            created_by=actor.id,
        )
        db.session.add(record)

        now = utcnow()
        seed = add_entry(
            branch=branch,
            currency=currency,
            transaction_date=open_date,
            tx_type=TYPE_IN,
            amount=parsed,
            description=OPENING_DESCRIPTION,
            actor_name=None,
            actor=actor,
            is_opening=True,
            status=STATUS_APPROVED,
        )
        seed.approved_at = now
        seed.approved_by = actor.id

        events = [
            make_event(
                "opening_balance.created",
                "branch_opening_balance",
                record.id,
                actor_id=actor.id,
                occurred_at=now,
                branch_id=branch.id,
                currency_id=currency.id,
                opening_balance=parsed,
                opening_date=open_date,
                seed_transaction_id=seed.id,
            )
        ]
        return Outcome(record, events)

    outcome = write_unit(_op)
    logger.info(
        "opening_balance_created",
        extra={"branch_id": branch_id, "currency_id": currency_id, "opening_balance_id": outcome.entity.id},
    )
    return outcome


def update_opening_balance(
    opening_balance_id: int,
    amount,
    opening_date=None,
    *,
    actor: Actor = SYSTEM_ACTOR,
) -> Outcome[BranchOpeningBalance]:
    """
    Change the amount/date of an opening balance and its seed together.

    Raises:
        OpeningBalanceLocked: a regular transaction exists for the pair
    """
    def _op():
        record = lock_for_update(
            db.session.query(BranchOpeningBalance).filter_by(id=opening_balance_id)
        ).first()
        if record is None:
            raise NotFound("BranchOpeningBalance", opening_balance_id)

        branch, currency = record.branch, record.currency
        parsed = to_amount(amount, precision=currency.precision, allow_zero=True, field="opening_balance")
        new_date = require_date(opening_date, "opening_date") if opening_date is not None else record.opening_date

        record.opening_balance = parsed
        record.opening_date = new_date
        record.updated_by = actor.id
        db.session.flush()

        # After our own write, so a regular row committed in between is still seen
        if _has_regular_transactions(record.branch_id, record.currency_id):
            logger.warning(
                "opening_balance_locked",
                extra={"branch_id": record.branch_id, "currency_id": record.currency_id},
            )
            raise OpeningBalanceLocked(record.branch_id, record.currency_id)

        seed = _seed_for(record.branch_id, record.currency_id)
        if seed is None:
            seed = add_entry(
                branch=branch,
                currency=currency,
                transaction_date=new_date,
                tx_type=TYPE_IN,
                amount=parsed,
                description=OPENING_DESCRIPTION,
                actor_name=None,
                actor=actor,
                is_opening=True,
                status=STATUS_APPROVED,
            )
            seed.approved_at = utcnow()
            seed.approved_by = actor.id
        else:
            apply_entry_changes(
                seed,
                branch=branch,
                currency=currency,
                transaction_date=new_date,
                tx_type=TYPE_IN,
                amount=parsed,
                actor=actor,
            )

        db.session.flush()
        events = [
            make_event(
                "opening_balance.updated",
                "branch_opening_balance",
                record.id,
                actor_id=actor.id,
                opening_balance=parsed,
                opening_date=new_date,
                seed_transaction_id=seed.id,
            )
        ]
        return Outcome(record, events)

    outcome = write_unit(_op)
    logger.info("opening_balance_updated", extra={"opening_balance_id": opening_balance_id})
    return outcome


def get_opening_balance(branch_id: int, currency_id: int) -> BranchOpeningBalance | None:
    return (
        db.session.query(BranchOpeningBalance)
        .filter_by(branch_id=branch_id, currency_id=currency_id)
        .first()
    )


def is_locked(branch_id: int, currency_id: int) -> bool:
    return _has_regular_transactions(branch_id, currency_id)
