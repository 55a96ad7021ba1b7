from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
# A discount may never consume the whole line.
MAX_DISCOUNT_RATIO = Decimal("0.999")

# Currencies whose minor unit is a fils (1/1000).
THREE_DECIMAL_CURRENCIES = {"BHD"}


def currency_places(currency: Optional[str]) -> int:
    return 3 if (currency or "").strip().upper() in THREE_DECIMAL_CURRENCIES else 2


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def q(v: Decimal, places: int = 2) -> Decimal:
    return (v or ZERO).quantize(_quantum(places), rounding=ROUND_HALF_UP)


def q_down(v: Decimal, places: int = 2) -> Decimal:
    return (v or ZERO).quantize(_quantum(places), rounding=ROUND_DOWN)


def to_amount(v: Any) -> Decimal:
    """
    Coerce a loosely-typed numeric value (Decimal, float, str, None) to a
    non-negative finite Decimal. Anything else becomes 0.
    """
    if v is None or isinstance(v, bool):
        return ZERO
    try:
        d = v if isinstance(v, Decimal) else Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not d.is_finite() or d < 0:
        return ZERO
    return d


@dataclass(frozen=True)
class LineResult:
    gross_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    @classmethod
    def flat(cls, amount: Decimal) -> "LineResult":
        # Carry-over line: no discount, no tax.
        return cls(amount, ZERO, amount, ZERO, amount)


@dataclass(frozen=True)
class DocumentTotals:
    gross_subtotal: Decimal
    total_discount: Decimal
    subtotal: Decimal
    total_tax: Decimal
    total_amount: Decimal


def calculate_line(
    quantity: Any,
    unit_price: Any,
    discount_percent: Any = 0,
    tax_percent: Any = 0,
    explicit_discount_amount: Any = None,
    *,
    places: int = 2,
) -> LineResult:
    """
    Per-line amounts, each rounded half-up to `places` decimals.

    - An explicit discount amount (> 0) wins over the percent.
    - Discounts are capped at 99.9% of gross (rounded down so the cap holds after rounding).
    - Net is floored at one minor unit so a line never goes to zero.
    - Tax is computed on net.
    """
    qty = to_amount(quantity)
    price = to_amount(unit_price)
    disc_pct = min(to_amount(discount_percent), HUNDRED)
    tax_pct = to_amount(tax_percent)
    explicit = to_amount(explicit_discount_amount)

    gross = q(qty * price, places)
    if explicit > 0:
        discount = q(explicit, places)
    else:
        discount = q(gross * disc_pct / HUNDRED, places)

    cap = gross * MAX_DISCOUNT_RATIO
    if discount > cap:
        discount = q_down(cap, places)

    minor_unit = _quantum(places)
    net = max(minor_unit, q(gross - discount, places))
    tax = q(net * tax_pct / HUNDRED, places)
    total = q(net + tax, places)
    return LineResult(
        gross_amount=gross,
        discount_amount=discount,
        net_amount=net,
        tax_amount=tax,
        total_amount=total,
    )


def aggregate_totals(lines: Iterable[LineResult], *, places: int = 2) -> DocumentTotals:
    # Lines are already rounded; each field is summed and rounded on its own.
    gross = discount = net = tax = total = ZERO
    for ln in lines:
        gross += ln.gross_amount
        discount += ln.discount_amount
        net += ln.net_amount
        tax += ln.tax_amount
        total += ln.total_amount
    return DocumentTotals(
        gross_subtotal=q(gross, places),
        total_discount=q(discount, places),
        subtotal=q(net, places),
        total_tax=q(tax, places),
        total_amount=q(total, places),
    )
