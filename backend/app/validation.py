from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_title_str(v):
    if v is None:
        return v
    return str(v).strip().title()


CurrencyCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$"),
]

# Document statuses are stored capitalized ("Draft", "Approved", ...).
DocStatus = Annotated[
    Literal["Draft", "Pending", "Approved", "Sent", "Confirmed", "Received", "Paid", "Cancelled"],
    BeforeValidator(_to_title_str),
]
GoodsReceiptStatus = Annotated[
    Literal["Draft", "Pending", "Approved", "Rejected", "Completed"],
    BeforeValidator(_to_title_str),
]
InvoiceType = Annotated[Literal["Final", "Proforma", "Partial", "Advance"], BeforeValidator(_to_title_str)]

# "supplier" merges sources sharing a supplier into one LPO; anything else keeps them apart.
GroupBy = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]
