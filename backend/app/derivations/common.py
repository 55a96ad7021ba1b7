from __future__ import annotations

from typing import Any, Iterable, Optional

from ..errors import ConstraintViolation
from ..logs import json_log

# Foreign keys a derived header may carry, with the message the caller sees when one dangles.
_HEADER_FK_MESSAGES = {
    "customer_id": "Invalid customer ID: {value}. Customer not found. Please ensure the sales order has a valid customer assigned.",
    "sales_order_id": "Invalid sales order ID: {value}. Sales order not found. Please ensure the delivery is properly linked to a valid sales order.",
    "delivery_id": "Invalid delivery ID: {value}. Delivery not found.",
    "supplier_id": "Invalid supplier ID: {value}. Supplier not found.",
    "goods_receipt_id": "Invalid goods receipt ID: {value}. Goods receipt not found.",
    "lpo_id": "Invalid supplier LPO ID: {value}. Supplier LPO not found.",
}


def first_present(*values: Any) -> Any:
    """First value that is not None (0 and "" count as present)."""
    for v in values:
        if v is not None:
            return v
    return None


def first_truthy(*values: Any) -> Any:
    for v in values:
        if v:
            return v
    return None


def describe_violation(exc: ConstraintViolation, row: dict, *, label: str, number_field: Optional[str] = None) -> ConstraintViolation:
    col = exc.column
    if exc.is_unique:
        if number_field and (col is None or col == number_field):
            msg = f"{label} number {row.get(number_field)} already exists. Please try again."
        else:
            msg = f"{label} {col} {row.get(col)} already exists."
    elif col in _HEADER_FK_MESSAGES:
        msg = _HEADER_FK_MESSAGES[col].format(value=row.get(col))
    else:
        msg = f"Database constraint violation: {exc.message}"
    return ConstraintViolation(msg, kind=exc.kind, table=exc.table, column=col, constraint=exc.constraint)


def insert_header(store, table: str, row: dict, *, label: str, number_field: str) -> dict:
    """
    Insert a derived document header.
    A dangling creator reference (e.g. a system user missing from `users`) is dropped and the
    insert retried once; every other violation is re-raised with a descriptive message.
    """
    try:
        return store.insert(table, row)
    except ConstraintViolation as exc:
        if exc.is_foreign_key and exc.column == "created_by" and row.get("created_by") is not None:
            json_log("warn", "derivation.header.creator_dropped", table=table, created_by=row.get("created_by"))
            try:
                return store.insert(table, {**row, "created_by": None})
            except ConstraintViolation as retry_exc:
                raise describe_violation(retry_exc, row, label=label, number_field=number_field) from retry_exc
        raise describe_violation(exc, row, label=label, number_field=number_field) from exc


def insert_lines(store, table: str, parent_field: str, parent_id: Any, lines: Iterable[dict], *, label: str) -> list[dict]:
    out: list[dict] = []
    for ln in lines:
        row = {**ln, parent_field: parent_id}
        try:
            out.append(store.insert(table, row))
        except ConstraintViolation as exc:
            if exc.is_foreign_key and exc.column == "item_id":
                msg = f"Invalid item ID in {label} items. One or more items not found."
            elif exc.is_foreign_key and exc.column == parent_field:
                msg = f"Invalid {label} ID for items. The {label} may not have been created properly."
            else:
                msg = f"Database constraint violation in {label} items: {exc.message}"
            raise ConstraintViolation(msg, kind=exc.kind, table=table, column=exc.column, constraint=exc.constraint) from exc
    return out
