# Overview: Currency and branch registries (static reference data for the ledger).

from __future__ import annotations

from flask import current_app

from ..exceptions import NotFound, ValidationFailed
from ..extensions import db
from ..logging_config import get_logger
from ..models import Branch, BranchOpeningBalance, Currency, Transaction
from .concurrency import run_atomic

logger = get_logger("services.reference_data")

# Amount columns are Numeric(18, 2)
MAX_PRECISION = 2


def normalize_code(value: str | None) -> str:
    """Normalize to uppercase, no spaces."""
    return (value or "").upper().strip().replace(" ", "")


def _currency_in_use(currency_id: int) -> bool:
    return (
        db.session.query(Transaction.id).filter(Transaction.currency_id == currency_id).first() is not None
        or db.session.query(BranchOpeningBalance.id).filter(BranchOpeningBalance.currency_id == currency_id).first()
        is not None
    )


def _branch_in_use(branch_id: int) -> bool:
    return db.session.query(Transaction.id).filter(Transaction.branch_id == branch_id).first() is not None


def _validate_precision(precision) -> int:
    if not isinstance(precision, int) or isinstance(precision, bool) or not 0 <= precision <= MAX_PRECISION:
        raise ValidationFailed(
            f"The precision must be an integer between 0 and {MAX_PRECISION}.",
            field="precision",
        )
    return precision


# =============================================================================
# Currencies
# =============================================================================

def create_currency(
    code: str,
    name: str,
    symbol: str | None = None,
    precision: int | None = None,
    is_active: bool = True,
) -> Currency:
    code = normalize_code(code)
    if not code or len(code) > 3:
        raise ValidationFailed("The currency code must be 1 to 3 characters.", field="code")
    if not (name or "").strip():
        raise ValidationFailed("The name field is required.", field="name")
    if precision is None:
        precision = current_app.config.get("LEDGER_DEFAULT_PRECISION", 2)
    precision = _validate_precision(precision)

    def _op():
        if db.session.query(Currency).filter_by(code=code).first():
            raise ValidationFailed(f"Currency '{code}' already exists.", field="code")
        currency = Currency(
            code=code,
            name=name.strip(),
            symbol=symbol,
            precision=precision,
            is_active=is_active,
        )
        db.session.add(currency)
        db.session.flush()
        return currency

    currency = run_atomic(_op)
    logger.info("currency_created", extra={"currency_id": currency.id, "code": currency.code})
    return currency


def update_currency(currency_id: int, **changes) -> Currency:
    """
    Update a currency.

    name, symbol and is_active are always editable. code and precision are
    frozen once any transaction or opening balance uses the currency.
    """
    allowed = {"code", "name", "symbol", "precision", "is_active"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationFailed(f"Unknown currency field(s): {', '.join(sorted(unknown))}")

    def _op():
        currency = db.session.get(Currency, currency_id)
        if currency is None:
            raise NotFound("Currency", currency_id)

        if "code" in changes:
            new_code = normalize_code(changes["code"])
            if new_code != currency.code:
                if not new_code or len(new_code) > 3:
                    raise ValidationFailed("The currency code must be 1 to 3 characters.", field="code")
                if _currency_in_use(currency.id):
                    raise ValidationFailed("Currency code cannot change once transactions exist.", field="code")
                if db.session.query(Currency).filter(Currency.code == new_code, Currency.id != currency.id).first():
                    raise ValidationFailed(f"Currency '{new_code}' already exists.", field="code")
                currency.code = new_code

        if "precision" in changes:
            new_precision = _validate_precision(changes["precision"])
            if new_precision != currency.precision:
                if _currency_in_use(currency.id):
                    raise ValidationFailed(
                        "Currency precision cannot change once transactions exist.",
                        field="precision",
                    )
                currency.precision = new_precision

        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise ValidationFailed("The name field is required.", field="name")
            currency.name = changes["name"].strip()
        if "symbol" in changes:
            currency.symbol = changes["symbol"]
        if "is_active" in changes:
            currency.is_active = bool(changes["is_active"])

        db.session.flush()
        return currency

    return run_atomic(_op)


def get_currency(currency_id: int) -> Currency:
    currency = db.session.get(Currency, currency_id)
    if currency is None:
        raise NotFound("Currency", currency_id)
    return currency


def get_currency_by_code(code: str) -> Currency:
    currency = db.session.query(Currency).filter_by(code=normalize_code(code)).first()
    if currency is None:
        raise NotFound("Currency", code)
    return currency


def list_currencies(active_only: bool = False) -> list[Currency]:
    q = db.session.query(Currency)
    if active_only:
        q = q.filter(Currency.is_active.is_(True))
    return q.order_by(Currency.code.asc()).all()


# =============================================================================
# Branches
# =============================================================================

def create_branch(code: str, name: str, is_active: bool = True, *, created_by: int | None = None) -> Branch:
    code = normalize_code(code)
    if not code or len(code) > 10:
        raise ValidationFailed("The branch code must be 1 to 10 characters.", field="code")
    if not (name or "").strip():
        raise ValidationFailed("The name field is required.", field="name")

    def _op():
        if db.session.query(Branch).filter_by(code=code).first():
            raise ValidationFailed(f"Branch '{code}' already exists.", field="code")
        branch = Branch(code=code, name=name.strip(), is_active=is_active, created_by=created_by)
        db.session.add(branch)
        db.session.flush()
        return branch

    branch = run_atomic(_op)
    logger.info("branch_created", extra={"branch_id": branch.id, "code": branch.code})
    return branch


def update_branch(branch_id: int, *, updated_by: int | None = None, **changes) -> Branch:
    """Update a branch. The code is frozen once any transaction references the branch."""
    allowed = {"code", "name", "is_active"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationFailed(f"Unknown branch field(s): {', '.join(sorted(unknown))}")

    def _op():
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFound("Branch", branch_id)

        if "code" in changes:
            new_code = normalize_code(changes["code"])
            if new_code != branch.code:
                if not new_code or len(new_code) > 10:
                    raise ValidationFailed("The branch code must be 1 to 10 characters.", field="code")
                if _branch_in_use(branch.id):
                    raise ValidationFailed("Branch code cannot change once transactions exist.", field="code")
                if db.session.query(Branch).filter(Branch.code == new_code, Branch.id != branch.id).first():
                    raise ValidationFailed(f"Branch '{new_code}' already exists.", field="code")
                branch.code = new_code

        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise ValidationFailed("The name field is required.", field="name")
            branch.name = changes["name"].strip()
        if "is_active" in changes:
            branch.is_active = bool(changes["is_active"])

        branch.updated_by = updated_by
        db.session.flush()
        return branch

    return run_atomic(_op)


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFound("Branch", branch_id)
    return branch


def get_branch_by_code(code: str) -> Branch:
    branch = db.session.query(Branch).filter_by(code=normalize_code(code)).first()
    if branch is None:
        raise NotFound("Branch", code)
    return branch


def list_branches(active_only: bool = False) -> list[Branch]:
    q = db.session.query(Branch)
    if active_only:
        q = q.filter(Branch.is_active.is_(True))
    return q.order_by(Branch.code.asc()).all()


def require_active(branch: Branch | None, currency: Currency | None, *, branch_key=None, currency_key=None) -> None:
    """Shared guard for ledger writes: both must exist and be active."""
    if branch is None:
        raise NotFound("Branch", branch_key)
    if currency is None:
        raise NotFound("Currency", currency_key)
    if not branch.is_active:
        raise ValidationFailed(f"Branch {branch.code} is inactive.", field="branch_id")
    if not currency.is_active:
        raise ValidationFailed(f"Currency {currency.code} is inactive.", field="currency_id")
