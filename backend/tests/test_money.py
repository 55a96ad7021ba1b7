from decimal import Decimal

import pytest

from backend.app.money import (
    LineResult,
    aggregate_totals,
    calculate_line,
    currency_places,
    to_amount,
)


def _amounts(r: LineResult):
    return (r.gross_amount, r.discount_amount, r.net_amount, r.tax_amount, r.total_amount)


def test_line_with_percent_discount_and_tax():
    r = calculate_line(2, 50, 5, 10)
    assert _amounts(r) == (Decimal("100"), Decimal("5"), Decimal("95"), Decimal("9.5"), Decimal("104.5"))


def test_line_with_fractional_discount():
    r = calculate_line(3, 75, 15, 20)
    assert _amounts(r) == (Decimal("225"), Decimal("33.75"), Decimal("191.25"), Decimal("38.25"), Decimal("229.5"))


def test_aggregate_sums_each_rounded_field():
    lines = [calculate_line(2, 50, 5, 10), calculate_line(3, 75, 15, 20), calculate_line(1, 200, 0, 0)]
    t = aggregate_totals(lines)
    assert t.gross_subtotal == Decimal("525")
    assert t.total_discount == Decimal("38.75")
    assert t.subtotal == Decimal("486.25")
    assert t.total_tax == Decimal("47.75")
    assert t.total_amount == Decimal("534")


def test_aggregate_is_order_independent():
    lines = [calculate_line("1.333", "7.77", 3, 10), calculate_line(5, "0.99", 0, 5), calculate_line(2, 12, 50, 0)]
    assert aggregate_totals(lines) == aggregate_totals(list(reversed(lines)))


def test_explicit_discount_amount_wins_over_percent():
    r = calculate_line(1, 100, 50, 0, explicit_discount_amount="10")
    assert r.discount_amount == Decimal("10.00")
    assert r.net_amount == Decimal("90.00")


def test_discount_is_capped_below_gross():
    r = calculate_line(1, 100, 0, 0, explicit_discount_amount=1000)
    assert r.discount_amount == Decimal("99.90")
    assert r.net_amount == Decimal("0.10")

    r = calculate_line(1, 100, 100, 0)
    assert r.discount_amount == Decimal("99.90")


def test_discount_percent_is_clamped_to_100():
    assert calculate_line(1, 100, 250, 0) == calculate_line(1, 100, 100, 0)


def test_net_never_drops_below_one_minor_unit():
    r = calculate_line(1, "0.01", 100, 0)
    assert r.discount_amount == Decimal("0.00")
    assert r.net_amount == Decimal("0.01")

    r = calculate_line(0, 10, 0, 10)
    assert r.gross_amount == Decimal("0.00")
    assert r.net_amount == Decimal("0.01")
    assert r.total_amount == Decimal("0.01")


@pytest.mark.parametrize(
    "qty,price,disc,tax",
    [
        ("1", "0.005", "0", "10"),
        ("3", "33.335", "12.5", "5"),
        ("7", "19.99", "99.95", "20"),
        ("0.5", "1234.567", "33.333", "15"),
        ("12", "0.07", "10", "0"),
    ],
)
def test_line_invariants(qty, price, disc, tax):
    r = calculate_line(qty, price, disc, tax)
    assert r.gross_amount == (Decimal(qty) * Decimal(price)).quantize(Decimal("0.01"), rounding="ROUND_HALF_UP")
    assert r.discount_amount <= r.gross_amount * Decimal("0.999")
    assert r.net_amount >= Decimal("0.01")
    assert r.total_amount == r.net_amount + r.tax_amount
    assert min(_amounts(r)) >= 0


def test_bad_numeric_input_is_coerced_to_zero():
    r = calculate_line(-2, "abc", None, float("nan"))
    assert r.gross_amount == Decimal("0")
    assert r.tax_amount == Decimal("0")
    assert r.net_amount == Decimal("0.01")
    assert to_amount(True) == 0
    assert to_amount("inf") == 0
    assert to_amount(" 2.50 ") == Decimal("2.50")


def test_bhd_amounts_use_three_decimals():
    places = currency_places("bhd")
    assert places == 3
    assert currency_places("USD") == 2
    r = calculate_line(1, "1.2345", 0, 10, places=places)
    assert r.gross_amount == Decimal("1.235")
    assert r.tax_amount == Decimal("0.124")
    assert r.total_amount == Decimal("1.359")


def test_flat_line_has_no_discount_or_tax():
    r = LineResult.flat(Decimal("12.30"))
    assert r.net_amount == r.total_amount == Decimal("12.30")
    assert r.discount_amount == r.tax_amount == 0
