from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from ..catalog import IdentifierResolver, ItemCandidate, is_well_formed_id
from ..config import settings
from ..doc_numbers import generate_document_number
from ..documents import PurchaseInvoice
from ..errors import ConstraintViolation, DerivationError, ReferentialError
from ..logs import json_log
from ..money import ZERO, LineResult, aggregate_totals, currency_places, q, to_amount
from .common import insert_header, insert_lines

APPROVED = "Approved"


@dataclass
class ReceiptApproval:
    receipt: dict
    purchase_invoice: Optional[PurchaseInvoice] = None
    invoice_error: Optional[str] = None


def receipt_quantity(item: dict) -> Decimal:
    # Short deliveries are still invoiced at the expected quantity.
    return max(to_amount(item.get("quantity_received")), to_amount(item.get("quantity_expected")))


def _receipt_currency(store, receipt: dict) -> str:
    lpo = store.get("supplier_lpos", receipt.get("supplier_lpo_id")) if receipt.get("supplier_lpo_id") else None
    return ((lpo or {}).get("currency") or settings.default_currency).upper()


def derive_purchase_invoice_from_receipt(store, receipt: dict, *, auto_create: Optional[bool] = None) -> Optional[PurchaseInvoice]:
    """
    Draft purchase invoice for an approved goods receipt.

    Each receipt line is carried flat (no discount, no tax) at max(received, expected) x unit cost.
    Returns None when the receipt has no lines or was already invoiced.
    """
    receipt_id = receipt["id"]
    existing = store.find_one("purchase_invoices", {"goods_receipt_id": receipt_id})
    if existing:
        json_log("info", "purchase_invoice.exists", goods_receipt_id=receipt_id, purchase_invoice_id=existing["id"])
        return None

    items = store.find("goods_receipt_items", {"receipt_header_id": receipt_id}, order_by=["created_at"])
    if not items:
        json_log("info", "purchase_invoice.no_items", goods_receipt_id=receipt_id)
        return None

    currency = _receipt_currency(store, receipt)
    places = currency_places(currency)
    resolver = IdentifierResolver(store, supplier_id=receipt.get("supplier_id"), auto_create=auto_create)

    lines: list[dict] = []
    results: list[LineResult] = []
    for it in items:
        quantity = receipt_quantity(it)
        unit_price = to_amount(it.get("unit_cost"))
        item_id = it.get("item_id")
        if not is_well_formed_id(item_id) or not resolver.get_item(item_id):
            item_id = resolver.resolve(
                ItemCandidate(
                    item_id=item_id,
                    supplier_code=it.get("supplier_code"),
                    barcode=it.get("barcode"),
                    description=it.get("item_description"),
                )
            )
            if not item_id:
                json_log("warn", "purchase_invoice.line_unresolved", goods_receipt_item_id=it["id"])
        total = q(quantity * unit_price, places)
        results.append(LineResult.flat(total))
        lines.append(
            {
                "goods_receipt_item_id": it["id"],
                "lpo_item_id": it.get("lpo_item_id"),
                "item_id": item_id,
                "barcode": it.get("barcode"),
                "supplier_code": it.get("supplier_code"),
                "item_description": it.get("item_description"),
                "quantity": quantity,
                "unit_price": unit_price,
                "total_price": total,
                "unit_of_measure": "EA",
                "tax_rate": ZERO,
                "discount_rate": ZERO,
                "condition": it.get("condition") or "Good",
                "notes": it.get("discrepancy_reason"),
            }
        )

    totals = aggregate_totals(results, places=places)
    today = date.today()
    header = {
        "invoice_number": generate_document_number(store, "purchase_invoices", "invoice_number", "PI", include_time=False),
        "supplier_invoice_number": generate_document_number(
            store, "purchase_invoices", "supplier_invoice_number", "SUP", include_time=False
        ),
        "supplier_id": receipt.get("supplier_id"),
        "goods_receipt_id": receipt_id,
        "lpo_id": receipt.get("supplier_lpo_id"),
        "status": "Draft",
        "payment_status": "Unpaid",
        "invoice_date": today,
        "due_date": receipt.get("expected_delivery_date") or today,
        "received_date": receipt.get("actual_delivery_date") or today,
        "currency": currency,
        "subtotal": totals.subtotal,
        "tax_amount": ZERO,
        "discount_amount": ZERO,
        "total_amount": totals.total_amount,
        "paid_amount": ZERO,
        "remaining_amount": totals.total_amount,
        "payment_terms": receipt.get("notes") or "Net 30",
        "notes": f"Auto-generated from approved goods receipt {receipt.get('receipt_number') or receipt_id}",
    }
    row = insert_header(store, "purchase_invoices", header, label="Purchase invoice", number_field="invoice_number")
    saved = insert_lines(store, "purchase_invoice_items", "purchase_invoice_id", row["id"], lines, label="purchase invoice")
    return PurchaseInvoice.model_validate({**row, "items": saved})


def _invoice_after_approval(store, receipt: dict, *, auto_create: Optional[bool]) -> ReceiptApproval:
    # Separate unit of work: the approval is already committed and stays that way.
    try:
        with store.atomic():
            invoice = derive_purchase_invoice_from_receipt(store, receipt, auto_create=auto_create)
    except Exception as exc:
        error = exc.message if isinstance(exc, DerivationError) else str(exc)
        json_log("error", "purchase_invoice.failed", goods_receipt_id=receipt["id"], error=error, error_type=type(exc).__name__)
        return ReceiptApproval(receipt=receipt, invoice_error=error)
    if invoice:
        json_log(
            "info",
            "purchase_invoice.created",
            goods_receipt_id=receipt["id"],
            purchase_invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
        )
    return ReceiptApproval(receipt=receipt, purchase_invoice=invoice)


def update_goods_receipt_status(store, receipt_id, status: str, *, user_id=None, auto_create: Optional[bool] = None) -> ReceiptApproval:
    json_log("info", "goods_receipt.status.start", goods_receipt_id=receipt_id, status=status, user_id=user_id)
    with store.atomic():
        if not store.get("goods_receipt_headers", receipt_id):
            raise ReferentialError("Goods receipt not found", status_code=404)
        values: dict = {"status": status}
        if status == APPROVED and user_id:
            values["approved_by"] = user_id
        try:
            receipt = store.update("goods_receipt_headers", receipt_id, values)
        except ConstraintViolation as exc:
            if not (exc.is_foreign_key and exc.column == "approved_by"):
                raise
            json_log("warn", "goods_receipt.approver_dropped", goods_receipt_id=receipt_id, approved_by=user_id)
            receipt = store.update("goods_receipt_headers", receipt_id, {"status": status})
    if status != APPROVED:
        return ReceiptApproval(receipt=receipt)
    return _invoice_after_approval(store, receipt, auto_create=auto_create)


def approve_goods_receipt(store, receipt_id, *, user_id=None, auto_create: Optional[bool] = None) -> ReceiptApproval:
    return update_goods_receipt_status(store, receipt_id, APPROVED, user_id=user_id, auto_create=auto_create)
