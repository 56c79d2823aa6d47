"""Indonesian amount-in-words used on printed slips."""

from decimal import Decimal

import pytest

from cashledger.amount_words import amount_in_words, number_to_words


@pytest.mark.parametrize(
    "number,words",
    [
        (0, "nol"),
        (7, "tujuh"),
        (10, "sepuluh"),
        (11, "sebelas"),
        (15, "lima belas"),
        (20, "dua puluh"),
        (99, "sembilan puluh sembilan"),
        (100, "seratus"),
        (115, "seratus lima belas"),
        (250, "dua ratus lima puluh"),
        (1000, "seribu"),
        (1001, "seribu satu"),
        (2500, "dua ribu lima ratus"),
        (150000, "seratus lima puluh ribu"),
        (1_000_000, "satu juta"),
        (1_250_000, "satu juta dua ratus lima puluh ribu"),
        (3_000_000_000, "tiga miliar"),
        (2_000_000_000_000, "dua triliun"),
    ],
)
def test_number_to_words(number, words):
    assert number_to_words(number) == words


def test_negative_rejected():
    with pytest.raises(ValueError):
        number_to_words(-1)


def test_amount_in_words_with_currency():
    assert amount_in_words(Decimal("1050000.00"), "IDR") == "satu juta lima puluh ribu rupiah"
    assert amount_in_words(Decimal("12.75"), "usd") == "dua belas dolar"
    assert amount_in_words(Decimal("5"), "SGD") == "lima dolar singapura"


def test_unknown_currency_has_no_suffix():
    assert amount_in_words(Decimal("3"), "JPY") == "tiga"
    assert amount_in_words(21) == "dua puluh satu"
