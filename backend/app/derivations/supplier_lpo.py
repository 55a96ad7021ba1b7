from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from ..catalog import IdentifierResolver, is_well_formed_id
from ..config import settings
from ..doc_numbers import generate_document_number
from ..documents import SupplierLpo
from ..errors import DerivationError
from ..logs import json_log
from ..money import ZERO, currency_places, q, to_amount
from .common import first_truthy, insert_header, insert_lines

GROUP_BY_SUPPLIER = "supplier"
DEFAULT_SUPPLIER_CODE = "GEN-SUP"


@dataclass
class LpoBatch:
    lpos: list[SupplierLpo] = field(default_factory=list)
    # {"source_id": ..., "reason": ...} for every source or group left out.
    skipped: list[dict] = field(default_factory=list)

    def skip(self, source_id, reason: str, **fields) -> None:
        self.skipped.append({"source_id": str(source_id), "reason": reason})
        json_log("warn", "supplier_lpo.source_skipped", source_id=source_id, reason=reason, **fields)


def _ensure_supplier(store, supplier_id=None) -> str:
    if supplier_id:
        return supplier_id
    row = store.find_one("suppliers", order_by=["created_at"])
    if row:
        return row["id"]
    row = store.insert("suppliers", {"name": "Auto Supplier", "contact_person": "System"})
    json_log("warn", "supplier_lpo.supplier_created", supplier_id=row["id"])
    return row["id"]


def _fallback_line(resolver: IdentifierResolver, *, description: str, amount: Decimal, notes: str) -> dict:
    generic_id = resolver.generic_item_id()
    generic = resolver.cache.by_id.get(generic_id or "") or {}
    return {
        "line_number": 1,
        "item_id": generic_id,
        "supplier_code": generic.get("supplier_code") or DEFAULT_SUPPLIER_CODE,
        "barcode": generic.get("barcode"),
        "item_description": description,
        "quantity": Decimal("1"),
        "received_quantity": ZERO,
        "pending_quantity": Decimal("1"),
        "unit_cost": amount,
        "total_cost": amount,
        "delivery_status": "Pending",
        "special_instructions": notes,
    }


def _create_lpo(store, header: dict, lines: list[dict]) -> SupplierLpo:
    header = {**header, "lpo_number": generate_document_number(store, "supplier_lpos", "lpo_number", "LPO")}
    row = insert_header(store, "supplier_lpos", header, label="LPO", number_field="lpo_number")
    saved = insert_lines(store, "supplier_lpo_items", "supplier_lpo_id", row["id"], lines, label="LPO")
    return SupplierLpo.model_validate({**row, "items": saved})


def _sales_order_lines(resolver: IdentifierResolver, so_items: list[dict], start: int) -> list[dict]:
    lines = []
    for offset, soi in enumerate(so_items):
        item_id = soi.get("item_id") if is_well_formed_id(soi.get("item_id")) else resolver.generic_item_id()
        item = resolver.get_item(item_id) if item_id else None
        qty = to_amount(soi.get("quantity"))
        lines.append(
            {
                "line_number": start + offset,
                "item_id": item_id,
                "sales_order_item_id": soi["id"],
                "supplier_code": first_truthy(soi.get("supplier_code"), (item or {}).get("supplier_code"), DEFAULT_SUPPLIER_CODE),
                "barcode": first_truthy(soi.get("barcode"), (item or {}).get("barcode")),
                "item_description": soi.get("description") or "Auto-generated from Sales Order",
                "quantity": qty,
                "received_quantity": ZERO,
                "pending_quantity": qty,
                "unit_cost": to_amount(soi.get("unit_price")),
                "total_cost": to_amount(soi.get("total_price")),
                "discount_percent": to_amount(first_truthy(soi.get("discount_percent"), soi.get("discount_percentage"))),
                "discount_amount": to_amount(soi.get("discount_amount")),
                "delivery_status": "Pending",
            }
        )
    return lines


def create_lpos_from_sales_orders(
    store,
    sales_order_ids: Iterable,
    group_by: str,
    *,
    user_id=None,
    supplier_id=None,
    auto_create: Optional[bool] = None,
) -> LpoBatch:
    """
    One LPO per sales order, or one per supplier when `group_by == "supplier"`.
    Under supplier grouping, orders without a supplier (and no `supplier_id` override) still get their own LPO.
    Line quantities, costs and discounts are carried over as-is.
    """
    batch = LpoBatch()
    ids = [str(x) for x in (sales_order_ids or []) if x]
    json_log("info", "supplier_lpo.from_sales_orders.start", sources=len(ids), group_by=group_by, user_id=user_id)

    groups: "OrderedDict[str, list[tuple[dict, list[dict]]]]" = OrderedDict()
    for so_id in ids:
        if not is_well_formed_id(so_id):
            batch.skip(so_id, "invalid sales order id")
            continue
        so = store.get("sales_orders", so_id)
        if not so:
            batch.skip(so_id, "sales order not found")
            continue
        so_items = store.find("sales_order_items", {"sales_order_id": so_id}, order_by=["line_number"])
        if not so_items:
            batch.skip(so_id, "sales order has no items")
            continue
        # Orders with no known supplier never share a group.
        so_supplier = supplier_id or so.get("supplier_id")
        key = str(so_supplier) if group_by == GROUP_BY_SUPPLIER and so_supplier else so_id
        groups.setdefault(key, []).append((so, so_items))

    for key, members in groups.items():
        so_ids = [str(so["id"]) for so, _ in members]
        try:
            with store.atomic():
                resolver = IdentifierResolver(store, auto_create=auto_create)
                lines: list[dict] = []
                for _, so_items in members:
                    lines.extend(_sales_order_lines(resolver, so_items, len(lines) + 1))
                currency = (first_truthy(*(so.get("currency") for so, _ in members)) or settings.default_currency).upper()
                subtotal = q(sum((ln["total_cost"] for ln in lines), ZERO), currency_places(currency))
                header = {
                    "supplier_id": _ensure_supplier(store, supplier_id or members[0][0].get("supplier_id")),
                    "status": "Draft",
                    "source_type": "Auto",
                    "grouping_criteria": group_by,
                    "subtotal": subtotal,
                    "tax_amount": ZERO,
                    "total_amount": subtotal,
                    "currency": currency,
                    "requires_approval": False,
                    "approval_status": "Not Required",
                    "source_sales_order_ids": so_ids,
                    "created_by": user_id,
                }
                lpo = _create_lpo(store, header, lines)
        except Exception as exc:
            reason = exc.message if isinstance(exc, DerivationError) else str(exc)
            for so_id in so_ids:
                batch.skip(so_id, reason, group=key, error_type=type(exc).__name__)
            continue
        json_log("info", "supplier_lpo.created", lpo_id=lpo.id, lpo_number=lpo.lpo_number, items=len(lpo.items), sources=so_ids)
        batch.lpos.append(lpo)

    json_log("info", "supplier_lpo.from_sales_orders.done", created=len(batch.lpos), skipped=len(batch.skipped))
    return batch


def _quote_item_instructions(item: dict) -> str:
    parts = [
        item.get("specification"),
        f"Brand: {item['brand']}" if item.get("brand") else None,
        f"Model: {item['model']}" if item.get("model") else None,
        f"Warranty: {item['warranty']}" if item.get("warranty") else None,
        f"Lead Time: {item['lead_time']}" if item.get("lead_time") else None,
        item.get("notes"),
    ]
    return " | ".join(p for p in parts if p)


def _quote_lines(store, quote: dict, start: int) -> list[dict]:
    rows = store.find("supplier_quote_items", {"supplier_quote_id": quote["id"]}, order_by=["created_at"])
    lines = []
    for it in rows:
        qty = to_amount(it.get("quantity"))
        lines.append(
            {
                "line_number": start + len(lines),
                "quotation_item_id": it["id"],
                "item_id": it.get("item_id") if is_well_formed_id(it.get("item_id")) else None,
                "supplier_code": it.get("supplier_code") or DEFAULT_SUPPLIER_CODE,
                "barcode": it.get("barcode") or f"QUOTE-{it['id']}",
                "item_description": it.get("item_description") or f"Item from quote {quote.get('quote_number') or quote['id']}",
                "quantity": qty,
                "received_quantity": ZERO,
                "pending_quantity": qty,
                "unit_cost": to_amount(it.get("unit_price")),
                "total_cost": to_amount(it.get("line_total")),
                "delivery_status": "Pending",
                "urgency": "Normal",
                "special_instructions": _quote_item_instructions(it) or None,
            }
        )
    return lines


def create_lpos_from_supplier_quotes(
    store,
    quote_ids: Iterable,
    group_by: str,
    *,
    user_id=None,
    auto_create: Optional[bool] = None,
) -> LpoBatch:
    """One LPO per supplier when `group_by == "supplier"`, otherwise a single LPO for all quotes."""
    batch = LpoBatch()
    ids = [str(x).strip() for x in (quote_ids or []) if x is not None]
    json_log("info", "supplier_lpo.from_quotes.start", sources=len(ids), group_by=group_by, user_id=user_id)

    quotes: list[dict] = []
    for quote_id in ids:
        if not quote_id or not is_well_formed_id(quote_id):
            batch.skip(quote_id, "invalid quote id")
            continue
        quote = store.get("supplier_quotes", quote_id)
        if not quote:
            batch.skip(quote_id, "quote not found")
            continue
        if not quote.get("supplier_id"):
            batch.skip(quote_id, "quote has no supplier")
            continue
        quotes.append(quote)

    groups: "OrderedDict[str, list[dict]]" = OrderedDict()
    for quote in quotes:
        key = str(quote["supplier_id"]) if group_by == GROUP_BY_SUPPLIER else "single"
        groups.setdefault(key, []).append(quote)

    for key, members in groups.items():
        quote_ids_in_group = [str(qt["id"]) for qt in members]
        first = members[0]
        try:
            with store.atomic():
                lines: list[dict] = []
                for quote in members:
                    lines.extend(_quote_lines(store, quote, len(lines) + 1))
                if not lines:
                    json_log("warn", "supplier_lpo.fallback_line", quotes=quote_ids_in_group)
                    resolver = IdentifierResolver(store, auto_create=auto_create)
                    lines.append(
                        _fallback_line(
                            resolver,
                            description=f"Quote items from {first.get('quote_number') or first['id']}",
                            amount=to_amount(first.get("total_amount")),
                            notes="Fallback item - quote items not found",
                        )
                    )
                header = {
                    "supplier_id": _ensure_supplier(store, first["supplier_id"]),
                    "status": "Draft",
                    "source_type": "SupplierQuote",
                    "grouping_criteria": group_by,
                    "subtotal": sum((to_amount(qt.get("subtotal")) for qt in members), ZERO),
                    "tax_amount": sum((to_amount(qt.get("tax_amount")) for qt in members), ZERO),
                    "total_amount": sum((to_amount(qt.get("total_amount")) for qt in members), ZERO),
                    "currency": (first.get("currency") or settings.default_currency).upper(),
                    "requires_approval": False,
                    "approval_status": "Not Required",
                    "source_quotation_ids": quote_ids_in_group,
                    "expected_delivery_date": first.get("valid_until"),
                    "payment_terms": first.get("payment_terms") or "30 Days",
                    "delivery_terms": first.get("delivery_terms") or "Standard",
                    "terms_and_conditions": first.get("terms"),
                    "special_instructions": first.get("notes"),
                    "created_by": user_id,
                }
                lpo = _create_lpo(store, header, lines)
        except Exception as exc:
            reason = exc.message if isinstance(exc, DerivationError) else str(exc)
            for quote_id in quote_ids_in_group:
                batch.skip(quote_id, reason, group=key, error_type=type(exc).__name__)
            continue
        json_log("info", "supplier_lpo.created", lpo_id=lpo.id, lpo_number=lpo.lpo_number, items=len(lpo.items), sources=quote_ids_in_group)
        batch.lpos.append(lpo)

    json_log("info", "supplier_lpo.from_quotes.done", created=len(batch.lpos), skipped=len(batch.skipped))
    return batch
