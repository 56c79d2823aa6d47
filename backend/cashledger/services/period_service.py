# Overview: Accounting periods and the period-status lookup used to gate ledger writes.

from __future__ import annotations

from datetime import date
from typing import Callable, Literal

from ..exceptions import NotFound, PeriodClosed, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import AccountingPeriod
from ..time_utils import parse_iso_date
from .concurrency import run_atomic

logger = get_logger("services.period")

PERIOD_OPEN = "open"
PERIOD_CLOSED = "closed"
PERIOD_NONE = "none"

PeriodStatus = Literal["none", "open", "closed"]
PeriodLookup = Callable[[date], str]


def period_status_for(on_date: date) -> PeriodStatus:
    """
    Status of the accounting period containing ``on_date``.

    Returns "none" when no period covers the date. Periods never overlap,
    so at most one row matches.
    """
    period = (
        db.session.query(AccountingPeriod)
        .filter(
            AccountingPeriod.start_date <= on_date,
            AccountingPeriod.end_date >= on_date,
        )
        .first()
    )
    if period is None:
        return PERIOD_NONE
    return PERIOD_CLOSED if period.status == PERIOD_CLOSED else PERIOD_OPEN


def ensure_period_open(on_date: date, lookup: PeriodLookup | None = None) -> None:
    """Raise PeriodClosed if ``on_date`` falls in a closed period."""
    status = (lookup or period_status_for)(on_date)
    if status == PERIOD_CLOSED:
        raise PeriodClosed(on_date)


def _parse_date(value, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"The {field} is not a valid date.", field=field)


def _validate_range(start: date | None, end: date | None) -> tuple[date, date]:
    if start is None or end is None:
        raise ValidationFailed("start_date and end_date are required.")
    if end < start:
        raise ValidationFailed("The end date must be after or equal to the start date.", field="end_date")
    return start, end


def _ensure_no_overlap(start: date, end: date, ignore_id: int | None = None) -> None:
    q = db.session.query(AccountingPeriod).filter(
        AccountingPeriod.start_date <= end,
        AccountingPeriod.end_date >= start,
    )
    if ignore_id is not None:
        q = q.filter(AccountingPeriod.id != ignore_id)
    if q.first() is not None:
        raise ValidationFailed(
            "The selected date range overlaps with an existing period.",
            field="start_date",
        )


def _ensure_single_open(status: str, ignore_id: int | None = None) -> None:
    if status != PERIOD_OPEN:
        return
    q = db.session.query(AccountingPeriod).filter(AccountingPeriod.status == PERIOD_OPEN)
    if ignore_id is not None:
        q = q.filter(AccountingPeriod.id != ignore_id)
    if q.first() is not None:
        raise ValidationFailed("Only one account period can be open at a time.", field="status")


def _validate_status(status: str) -> None:
    if status not in (PERIOD_OPEN, PERIOD_CLOSED):
        raise ValidationFailed("The status must be open or closed.", field="status")


def create_period(name: str, start_date, end_date, status: str = PERIOD_OPEN) -> AccountingPeriod:
    start, end = _validate_range(_parse_date(start_date, "start_date"), _parse_date(end_date, "end_date"))
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("The name field is required.", field="name")
    _validate_status(status)

    def _op():
        if db.session.query(AccountingPeriod).filter_by(name=name).first():
            raise ValidationFailed("The name has already been taken.", field="name")
        _ensure_no_overlap(start, end)
        _ensure_single_open(status)

        period = AccountingPeriod(name=name, start_date=start, end_date=end, status=status)
        db.session.add(period)
        db.session.flush()
        return period

    period = run_atomic(_op)
    logger.info("period_created", extra={"period_id": period.id, "status": period.status})
    return period


def update_period(
    period_id: int,
    *,
    name: str | None = None,
    start_date=None,
    end_date=None,
    status: str | None = None,
) -> AccountingPeriod:
    def _op():
        period = db.session.get(AccountingPeriod, period_id)
        if period is None:
            raise NotFound("AccountingPeriod", period_id)

        new_start = _parse_date(start_date, "start_date") or period.start_date
        new_end = _parse_date(end_date, "end_date") or period.end_date
        new_status = status or period.status
        _validate_range(new_start, new_end)
        _validate_status(new_status)

        if name is not None and name != period.name:
            if db.session.query(AccountingPeriod).filter(
                AccountingPeriod.name == name,
                AccountingPeriod.id != period.id,
            ).first():
                raise ValidationFailed("The name has already been taken.", field="name")
            period.name = name

        _ensure_no_overlap(new_start, new_end, ignore_id=period.id)

        # A closed period cannot be reopened once a later period exists
        if period.status == PERIOD_CLOSED and new_status == PERIOD_OPEN:
            newer = db.session.query(AccountingPeriod).filter(
                AccountingPeriod.start_date > period.end_date
            ).first()
            if newer is not None:
                raise ValidationFailed(
                    "Cannot reopen this period because a newer period exists.",
                    field="status",
                )
        _ensure_single_open(new_status, ignore_id=period.id)

        period.start_date = new_start
        period.end_date = new_end
        period.status = new_status
        db.session.flush()
        return period

    period = run_atomic(_op)
    logger.info("period_updated", extra={"period_id": period.id, "status": period.status})
    return period


def close_period(period_id: int) -> AccountingPeriod:
    return update_period(period_id, status=PERIOD_CLOSED)


def delete_period(period_id: int) -> None:
    def _op():
        period = db.session.get(AccountingPeriod, period_id)
        if period is None:
            raise NotFound("AccountingPeriod", period_id)
        db.session.delete(period)

    run_atomic(_op)
    logger.info("period_deleted", extra={"period_id": period_id})


def list_periods() -> list[AccountingPeriod]:
    return (
        db.session.query(AccountingPeriod)
        .order_by(AccountingPeriod.start_date.desc())
        .all()
    )
