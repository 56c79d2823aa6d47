# Overview: Reference number allocation for ledger transactions.

"""
Reference Service

FORMAT:
    reference      = YY MM F SEQ        e.g. 2501 1 001 -> "25011001"
    full reference = CUR BRANCH reference  e.g. "IDRB0125011001"

    F   is 1 for inbound (in) and 0 for outbound (out).
    SEQ is zero-padded to 3 digits and grows past 999 without a bound
        ("25011999" -> "250111000").

The prefix deliberately leaves out branch and currency so one month/flow
group shares a single dense sequence. Branch and currency only appear in
the display projection (full_reference).

CONCURRENCY:
    Allocation happens inside the same unit of work that inserts the row:
    lock every row of the prefix group (SELECT ... FOR UPDATE), take
    max(suffix) + 1, insert. The unique constraint on transactions.reference
    backs this up; a conflict at flush re-runs the whole unit, at most
    LEDGER_REFERENCE_ATTEMPTS times. No in-process counter is kept: several
    stateless workers may allocate against the same database.
"""

from __future__ import annotations

from datetime import date

from flask import current_app, g
from sqlalchemy.exc import IntegrityError

from ..exceptions import ReferenceGenerationFailed, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Transaction
from ..models.ledger import TYPE_IN, TYPE_OUT
from .concurrency import lock_for_update

logger = get_logger("services.reference")

PREFIX_LENGTH = 5
SEQUENCE_PAD = 3


def flow_flag(flow: str) -> str:
    if flow == TYPE_IN:
        return "1"
    if flow == TYPE_OUT:
        return "0"
    raise ValidationFailed(f"Unknown transaction type '{flow}'.", field="type")


def reference_prefix(transaction_date: date, flow: str) -> str:
    return f"{transaction_date:%y%m}{flow_flag(flow)}"


def format_sequence(sequence: int) -> str:
    """Zero-pad to 3 digits; larger numbers keep their natural width."""
    return str(sequence).zfill(SEQUENCE_PAD)


def parse_sequence(reference: str, prefix: str) -> int | None:
    """Numeric suffix after ``prefix``, or None for rows that do not follow the format."""
    if not reference.startswith(prefix):
        return None
    suffix = reference[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def full_reference(currency_code: str, branch_code: str, reference: str) -> str:
    return f"{currency_code}{branch_code}{reference}"


def reference_matches_group(reference: str | None, transaction_date: date, flow: str) -> bool:
    """True when ``reference`` already sits in the prefix group of (date, flow)."""
    if not reference:
        return False
    return parse_sequence(reference, reference_prefix(transaction_date, flow)) is not None


def next_reference(
    transaction_date: date,
    flow: str,
    *,
    exclude_id: int | None = None,
) -> str:
    """
    Allocate the next reference in the (month, flow) group.

    Must run inside the caller's unit of work; the row locks taken here are
    held until that unit commits or rolls back.
    """
    prefix = reference_prefix(transaction_date, flow)

    q = db.session.query(Transaction.id, Transaction.reference).filter(
        Transaction.reference.like(f"{prefix}%")
    )
    if exclude_id is not None:
        q = q.filter(Transaction.id != exclude_id)

    rows = lock_for_update(q).all()

    highest = 0
    for row in rows:
        seq = parse_sequence(row.reference, prefix)
        if seq is not None and seq > highest:
            highest = seq

    reference = prefix + format_sequence(highest + 1)
    g.ledger_reference_prefix = prefix
    logger.debug(
        "reference allocated",
        extra={"prefix": prefix, "sequence": highest + 1, "locked_rows": len(rows)},
    )
    return reference


def generate(
    branch_code: str,
    currency_code: str,
    transaction_date: date,
    flow: str,
    exclude_id: int | None = None,
) -> str:
    """
    Allocate a reference for a row of ``branch_code``/``currency_code``.

    Branch and currency are not part of the locking key; they are only
    used for the full reference that gets logged.
    """
    reference = next_reference(transaction_date, flow, exclude_id=exclude_id)
    logger.debug(
        "full reference assigned",
        extra={"full_reference": full_reference(currency_code, branch_code, reference)},
    )
    return reference


# SQLite names the column, PostgreSQL and MySQL name the constraint
REFERENCE_CONFLICT_MARKERS = ("transactions.reference", "uq_transactions_reference")


def is_reference_conflict(exc: IntegrityError) -> bool:
    """True only for a violation of the unique reference constraint."""
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in REFERENCE_CONFLICT_MARKERS)


def allocate_with_retry(func, *, attempts: int | None = None, prefix: str | None = None):
    """
    Re-run a whole lock-scan-insert unit when the reference constraint still trips.

    ``func`` must be restartable (it re-reads everything it needs), which
    holds for the run_atomic units the ledger services build.
    Without an explicit ``prefix`` the last prefix allocated in this app
    context is reported.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_REFERENCE_ATTEMPTS", 5)

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except IntegrityError as exc:
            db.session.rollback()
            if not is_reference_conflict(exc):
                raise
            if prefix is None:
                prefix = g.get("ledger_reference_prefix")
            logger.warning(
                "reference conflict, retrying",
                extra={"attempt": attempt, "attempts": attempts, "prefix": prefix},
            )

    logger.error("reference allocation exhausted", extra={"attempts": attempts, "prefix": prefix})
    raise ReferenceGenerationFailed(prefix, attempts)
