# Overview: Indonesian number-to-words for printed slips (terbilang).

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR

_UNITS = [
    "", "satu", "dua", "tiga", "empat",
    "lima", "enam", "tujuh", "delapan", "sembilan",
]

_SCALES = [
    (1_000_000_000_000, "triliun"),
    (1_000_000_000, "miliar"),
    (1_000_000, "juta"),
    (1_000, "ribu"),
    (100, "ratus"),
]

CURRENCY_WORDS = {
    "IDR": "rupiah",
    "USD": "dolar",
    "SGD": "dolar singapura",
    "EUR": "euro",
}


def number_to_words(number: int) -> str:
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "nol"

    parts: list[str] = []
    for value, label in _SCALES:
        if number >= value:
            count, number = divmod(number, value)
            if value == 100 and count == 1:
                parts.append("seratus")
            elif value == 1000 and count == 1:
                parts.append("seribu")
            else:
                parts.append(f"{number_to_words(count)} {label}")

    if number > 0:
        if number < 10:
            parts.append(_UNITS[number])
        elif number == 10:
            parts.append("sepuluh")
        elif number == 11:
            parts.append("sebelas")
        elif number < 20:
            parts.append(f"{_UNITS[number - 10]} belas")
        else:
            tens, ones = divmod(number, 10)
            parts.append(f"{_UNITS[tens]} puluh" + (f" {_UNITS[ones]}" if ones else ""))

    return " ".join(parts)


def amount_in_words(amount: Decimal | int, currency_code: str | None = None) -> str:
    """Words for the whole-unit part of ``amount``, followed by the currency word if known."""
    whole = int(Decimal(amount).to_integral_value(rounding=ROUND_FLOOR))
    words = number_to_words(whole)
    currency_word = CURRENCY_WORDS.get((currency_code or "").upper(), "")
    return f"{words} {currency_word}".strip()
