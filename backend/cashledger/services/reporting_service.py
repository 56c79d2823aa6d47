# Overview: Read-only balance queries and the balance-summary / daily reports built on them.

"""
Reporting Service

All figures are derived from persisted state; nothing here writes.

    opening_balance = sum(BranchOpeningBalance.opening_balance)
    net_movement    = sum(+amount for in, -amount for out) over non-deleted,
                      non-opening transactions in the status/date window
    balance_as_of   = opening_balance + net_movement(..., date_to=cutoff)

Opening seeds are left out of net_movement: the BranchOpeningBalance row
already is the zero-point, counting the seed too would double it.

Balance summary per (branch, currency) over [start, end]:
    begin  = balance_as_of(start - 1 day)
    period = net_movement(start..end)
    ending = balance_as_of(end)
and ending == begin + period always holds exactly (Decimal arithmetic).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import case, func

from ..exceptions import NotFound, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Branch, BranchOpeningBalance, Currency, Transaction
from ..models.ledger import STATUS_APPROVED, TYPE_IN, VALID_STATUSES
from ..money import as_decimal, signed_amount
from ..time_utils import day_before, parse_iso_date

logger = get_logger("services.reporting")


@dataclass(frozen=True)
class BalanceRow:
    branch_id: int
    branch_code: str
    branch_name: str
    currency_id: int
    currency_code: str
    begin: Decimal
    period: Decimal
    ending: Decimal

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "branch_code": self.branch_code,
            "branch": self.branch_name,
            "currency_id": self.currency_id,
            "currency": self.currency_code,
            "begin_balance": str(self.begin),
            "transaction_balance": str(self.period),
            "ending_balance": str(self.ending),
        }


@dataclass(frozen=True)
class DailyLine:
    transaction_id: int
    approved_at: datetime | None
    transaction_date: date
    branch_code: str
    branch_name: str
    actor_name: str | None
    description: str | None
    full_reference: str
    type: str
    amount: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class DailyReport:
    currency_code: str
    branch_code: str | None
    date_from: date
    date_to: date
    begin_balance: Decimal
    ending_balance: Decimal
    lines: list[DailyLine] = field(default_factory=list)


def _signed_sum():
    return func.sum(
        case(
            (Transaction.type == TYPE_IN, Transaction.amount),
            else_=-Transaction.amount,
        )
    )


def _precision_for(currency_id: int) -> int:
    currency = db.session.get(Currency, currency_id)
    if currency is None:
        raise NotFound("Currency", currency_id)
    return currency.precision


def opening_balance(currency_id: int, branch_id: int | None = None) -> Decimal:
    """Sum of opening balances for the currency, optionally for one branch."""
    q = db.session.query(func.sum(BranchOpeningBalance.opening_balance)).filter(
        BranchOpeningBalance.currency_id == currency_id
    )
    if branch_id is not None:
        q = q.filter(BranchOpeningBalance.branch_id == branch_id)
    return as_decimal(q.scalar(), _precision_for(currency_id))


def net_movement(
    currency_id: int,
    branch_id: int | None = None,
    *,
    status: str | None = STATUS_APPROVED,
    date_from: date | None = None,
    date_to: date | None = None,
) -> Decimal:
    """
    Signed sum of ledger rows (in positive, out negative).

    ``status=None`` counts every status. Both date bounds are inclusive.
    """
    if status is not None and status not in VALID_STATUSES:
        raise ValidationFailed(f"Invalid status '{status}'.", field="status")

    q = db.session.query(_signed_sum()).filter(
        Transaction.currency_id == currency_id,
        Transaction.deleted_at.is_(None),
        Transaction.is_opening.is_(False),
    )
    if branch_id is not None:
        q = q.filter(Transaction.branch_id == branch_id)
    if status is not None:
        q = q.filter(Transaction.status == status)
    if date_from is not None:
        q = q.filter(Transaction.transaction_date >= date_from)
    if date_to is not None:
        q = q.filter(Transaction.transaction_date <= date_to)
    return as_decimal(q.scalar(), _precision_for(currency_id))


def balance_as_of(currency_id: int, cutoff: date, branch_id: int | None = None) -> Decimal:
    """Opening balance plus approved movement up to and including ``cutoff``."""
    return opening_balance(currency_id, branch_id) + net_movement(
        currency_id, branch_id, date_to=cutoff
    )


def _parse_date(value, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"The {field} date is not a valid date.", field=field)


def _require_range(date_from, date_to) -> tuple[date, date]:
    start = _parse_date(date_from, "from")
    end = _parse_date(date_to, "to")
    if start is None or end is None:
        raise ValidationFailed("Both from and to dates are required.")
    if end < start:
        raise ValidationFailed("The to date must be after or equal to the from date.", field="to")
    return start, end


def balance_summary(period_start, period_end) -> list[BalanceRow]:
    """
    Begin/period/ending balance for every branch x currency pair.

    Ordered by branch code, then currency code. Pairs without any activity
    still appear, with zeros.
    """
    start, end = _require_range(period_start, period_end)
    before = day_before(start)

    branches = db.session.query(Branch).order_by(Branch.code.asc()).all()
    currencies = db.session.query(Currency).order_by(Currency.code.asc()).all()

    openings = {
        (row.branch_id, row.currency_id): row.total
        for row in db.session.query(
            BranchOpeningBalance.branch_id,
            BranchOpeningBalance.currency_id,
            func.sum(BranchOpeningBalance.opening_balance).label("total"),
        )
        .group_by(BranchOpeningBalance.branch_id, BranchOpeningBalance.currency_id)
        .all()
    }

    def _movement(date_from: date | None, date_to: date) -> dict:
        q = db.session.query(
            Transaction.branch_id,
            Transaction.currency_id,
            _signed_sum().label("total"),
        ).filter(
            Transaction.status == STATUS_APPROVED,
            Transaction.deleted_at.is_(None),
            Transaction.is_opening.is_(False),
            Transaction.transaction_date <= date_to,
        )
        if date_from is not None:
            q = q.filter(Transaction.transaction_date >= date_from)
        rows = q.group_by(Transaction.branch_id, Transaction.currency_id).all()
        return {(row.branch_id, row.currency_id): row.total for row in rows}

    prior = _movement(None, before)
    within = _movement(start, end)

    result = []
    for branch in branches:
        for currency in currencies:
            key = (branch.id, currency.id)
            precision = currency.precision
            begin = as_decimal(openings.get(key), precision) + as_decimal(prior.get(key), precision)
            period = as_decimal(within.get(key), precision)
            result.append(
                BalanceRow(
                    branch_id=branch.id,
                    branch_code=branch.code,
                    branch_name=branch.name,
                    currency_id=currency.id,
                    currency_code=currency.code,
                    begin=begin,
                    period=period,
                    ending=begin + period,
                )
            )

    logger.debug("balance summary built", extra={"rows": len(result), "from": start, "to": end})
    return result


def daily_report(
    currency_id: int,
    date_from,
    date_to=None,
    branch_id: int | None = None,
) -> DailyReport:
    """
    Begin balance, approved rows of the window in approval order, ending balance.

    Each line carries the running balance after that row. ``date_to``
    defaults to ``date_from`` (single-day report).
    """
    start, end = _require_range(date_from, date_to if date_to is not None else date_from)

    currency = db.session.get(Currency, currency_id)
    if currency is None:
        raise NotFound("Currency", currency_id)
    branch = None
    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFound("Branch", branch_id)

    begin = balance_as_of(currency_id, day_before(start), branch_id)

    q = db.session.query(Transaction).filter(
        Transaction.currency_id == currency_id,
        Transaction.status == STATUS_APPROVED,
        Transaction.deleted_at.is_(None),
        Transaction.is_opening.is_(False),
        Transaction.transaction_date >= start,
        Transaction.transaction_date <= end,
    )
    if branch_id is not None:
        q = q.filter(Transaction.branch_id == branch_id)
    rows = q.order_by(Transaction.approved_at.asc(), Transaction.id.asc()).all()

    running = begin
    lines = []
    for tx in rows:
        running = running + signed_amount(tx.type, as_decimal(tx.amount, currency.precision))
        lines.append(
            DailyLine(
                transaction_id=tx.id,
                approved_at=tx.approved_at,
                transaction_date=tx.transaction_date,
                branch_code=tx.branch.code,
                branch_name=tx.branch.name,
                actor_name=tx.actor_name,
                description=tx.description,
                full_reference=tx.full_reference,
                type=tx.type,
                amount=as_decimal(tx.amount, currency.precision),
                running_balance=running,
            )
        )

    return DailyReport(
        currency_code=currency.code,
        branch_code=branch.code if branch is not None else None,
        date_from=start,
        date_to=end,
        begin_balance=begin,
        ending_balance=running,
        lines=lines,
    )
