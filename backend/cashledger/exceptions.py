# Overview: Typed ledger errors; every business-rule violation surfaces as one of these.

"""
Ledger error hierarchy.

Every error carries a stable ``code`` so callers (HTTP layer, CLI, audit log)
can branch on type instead of parsing messages. Messages are written to be
shown to the end user verbatim.

    LedgerError
    +-- ValidationFailed
    +-- Unauthorized
    +-- PeriodClosed
    +-- ImmutableTransaction
    +-- AlreadyProcessed
    +-- PartialApprovalConflict
    +-- ReferenceGenerationFailed
    +-- NotFound
    +-- OpeningBalanceLocked
"""

from __future__ import annotations

from datetime import date


class LedgerError(Exception):
    """Base class for all ledger business errors."""

    code: str = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class ValidationFailed(LedgerError):
    """Bad input shape or range."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class Unauthorized(LedgerError):
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "You are not allowed to approve transactions.", *, actor_id: int | None = None):
        super().__init__(message)
        self.actor_id = actor_id


class PeriodClosed(LedgerError):
    code = "PERIOD_CLOSED"

    def __init__(self, transaction_date: date, message: str | None = None):
        super().__init__(
            message
            or f"{transaction_date.isoformat()} belongs to a CLOSED accounting period."
        )
        self.transaction_date = transaction_date


class ImmutableTransaction(LedgerError):
    code = "IMMUTABLE_TRANSACTION"

    def __init__(self, transaction_id: int, status: str, message: str | None = None):
        super().__init__(
            message
            or f"Transaction {transaction_id} is {status} and can no longer be changed."
        )
        self.transaction_id = transaction_id
        self.status = status


class AlreadyProcessed(LedgerError):
    code = "ALREADY_PROCESSED"

    def __init__(self, entity_id: int, status: str, *, entity: str = "transaction"):
        super().__init__(f"The {entity} {entity_id} was already processed ({status}).")
        self.entity = entity
        self.entity_id = entity_id
        self.status = status


class PartialApprovalConflict(LedgerError):
    """
    Sibling legs of a transfer disagree on status.

    Never resolved automatically: it means an earlier write broke the
    pair invariant, or two approvers raced past the sibling lock.
    """

    code = "PARTIAL_APPROVAL_CONFLICT"

    def __init__(self, branch_transfer_id: int, statuses: dict[int, str]):
        super().__init__(
            f"One or more transactions in transfer {branch_transfer_id} were already processed."
        )
        self.branch_transfer_id = branch_transfer_id
        self.statuses = statuses


class ReferenceGenerationFailed(LedgerError):
    code = "REFERENCE_GENERATION_FAILED"

    def __init__(self, prefix: str | None, attempts: int):
        target = f"prefix {prefix}" if prefix else "this transaction"
        super().__init__(
            f"Could not allocate a unique reference for {target} after {attempts} attempts."
        )
        self.prefix = prefix
        self.attempts = attempts


class NotFound(LedgerError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, key):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class OpeningBalanceLocked(LedgerError):
    code = "OPENING_BALANCE_LOCKED"

    def __init__(self, branch_id: int, currency_id: int):
        super().__init__("Opening balance is locked because transactions already exist.")
        self.branch_id = branch_id
        self.currency_id = currency_id
