# Overview: Decimal amount parsing and signing for ledger rows.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .exceptions import ValidationFailed
from .models.ledger import TYPE_IN, TYPE_OUT

ZERO = Decimal("0")


def to_amount(value, *, precision: int = 2, allow_zero: bool = False, field: str = "amount") -> Decimal:
    """
    Parse a caller-supplied amount into a Decimal at the currency precision.

    Floats go through str() so 0.1 stays 0.1. Negative values, zero (unless
    allow_zero) and more decimal places than the currency carries are
    rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationFailed(f"The {field} field is required.", field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"The {field} must be a number.", field=field)

    if not amount.is_finite():
        raise ValidationFailed(f"The {field} must be a number.", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        minimum = "0" if allow_zero else "greater than 0"
        raise ValidationFailed(f"The {field} must be {minimum}.", field=field)

    quantum = Decimal(1).scaleb(-precision)
    if amount != amount.quantize(quantum):
        raise ValidationFailed(
            f"The {field} must not have more than {precision} decimal places.",
            field=field,
        )
    return amount.quantize(quantum)


def signed_amount(tx_type: str, amount: Decimal) -> Decimal:
    if tx_type == TYPE_IN:
        return amount
    if tx_type == TYPE_OUT:
        return -amount
    raise ValidationFailed(f"Unknown transaction type '{tx_type}'.", field="type")


def as_decimal(value, precision: int = 2) -> Decimal:
    """Normalize a DB aggregate (None, int, float, Decimal) to a quantized Decimal."""
    if value is None:
        return ZERO.quantize(Decimal(1).scaleb(-precision))
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal(1).scaleb(-precision))
