from __future__ import annotations

import re
from decimal import Decimal
from typing import Iterable, Optional

from ..catalog import PLACEHOLDER_DESCRIPTIONS, IdentifierResolver, ItemCandidate, is_well_formed_id
from ..config import settings
from ..doc_numbers import generate_document_number
from ..documents import Invoice
from ..errors import ComputationError, ConstraintViolation, ReferentialError, SoftSkip
from ..logs import json_log
from ..money import ZERO, LineResult, aggregate_totals, calculate_line, currency_places, q, to_amount
from .common import first_present, first_truthy, insert_header, insert_lines

INVOICE_PREFIX = "INV"
PROFORMA_PREFIX = "PFINV"
VIRTUAL_PREFIX = "virtual-"


def _norm_desc(s) -> str:
    if not s:
        return ""
    return re.sub(r"\s+", " ", str(s)).strip().lower()


def _virtual_lines(delivery_id, so_items: list[dict], selected: set[str]) -> list[dict]:
    # Delivery without its own lines: invoice what the sales order says was ordered.
    out = []
    for soi in so_items:
        if selected and str(soi["id"]) not in selected:
            continue
        qty = soi.get("quantity")
        out.append(
            {
                "id": f"{VIRTUAL_PREFIX}{soi['id']}",
                "delivery_id": delivery_id,
                "sales_order_item_id": soi["id"],
                "item_id": soi.get("item_id"),
                "line_number": soi.get("line_number") or len(out) + 1,
                "barcode": soi.get("barcode"),
                "supplier_code": soi.get("supplier_code"),
                "description": soi.get("description") or soi.get("special_instructions") or "Item from Sales Order",
                "ordered_quantity": qty,
                "picked_quantity": qty,
                "delivered_quantity": qty,
                "unit_price": soi.get("unit_price"),
            }
        )
    return out


def _load_delivery_lines(store, delivery_id, so_items: list[dict], selected: set[str]) -> list[dict]:
    rows = store.find("delivery_items", {"delivery_id": delivery_id}, order_by=["line_number"])
    if selected:
        rows = [r for r in rows if str(r["id"]) in selected]
        json_log("debug", "invoice.from_delivery.partial", delivery_id=delivery_id, selected=len(rows))
    if rows:
        return rows
    return _virtual_lines(delivery_id, so_items, selected)


def _sales_order_item(store, di: dict, so_items_by_id: dict) -> Optional[dict]:
    soi_id = di.get("sales_order_item_id")
    if not is_well_formed_id(soi_id):
        return None
    return so_items_by_id.get(str(soi_id)) or store.get("sales_order_items", soi_id)


def _linked_enquiry_item(store, so_item: Optional[dict]) -> Optional[dict]:
    if not so_item:
        return None
    if so_item.get("enquiry_item_id"):
        return store.get("enquiry_items", so_item["enquiry_item_id"])
    if so_item.get("item_id"):
        return store.find_one("enquiry_items", {"item_id": so_item["item_id"]})
    return None


def _match_quotation_item(quotation_items: list[dict], so_item: Optional[dict], di: dict) -> Optional[dict]:
    wanted = _norm_desc((so_item or {}).get("description") or di.get("description"))
    if not wanted:
        return None
    for qi in quotation_items:
        if _norm_desc(qi.get("description")) == wanted:
            return qi
    return None


def _base_description(master, qi, so_item, di, enquiry) -> str:
    md = (master or {}).get("description")
    if md and md not in PLACEHOLDER_DESCRIPTIONS:
        return md
    return (
        first_truthy(
            (qi or {}).get("description"),
            (so_item or {}).get("description"),
            di.get("description"),
            (enquiry or {}).get("description"),
        )
        or "Item"
    )


def _compose_description(base: str, so_item, di, enquiry) -> str:
    notes = [n for n in ((enquiry or {}).get("notes"), (so_item or {}).get("notes"), di.get("picking_notes")) if n]
    return "\n".join([base, *notes]) if notes else base


def _discount_inputs(
    *,
    gross: Decimal,
    so_item: Optional[dict],
    di: dict,
    qi: Optional[dict],
    quotation: Optional[dict],
    gross_basis: Decimal,
    places: int,
) -> tuple[Decimal, Optional[Decimal]]:
    """
    (discount percent, explicit discount amount) for one line.
    Explicit line amount > line percent > prorated quotation header amount > quotation header percent.
    """
    so_item = so_item or {}
    qi = qi or {}
    quotation = quotation or {}
    line_pct = to_amount(
        first_present(
            so_item.get("discount_percentage"),
            so_item.get("discount_percent"),
            qi.get("discount_percentage"),
            qi.get("discount_percent"),
            di.get("discount_percentage"),
            di.get("discount_percent"),
        )
    )
    explicit = to_amount(first_present(so_item.get("discount_amount"), di.get("discount_amount"), qi.get("discount_amount")))
    if explicit > 0:
        return line_pct, explicit
    if line_pct > 0:
        return line_pct, None

    header_amount = to_amount(quotation.get("discount_amount"))
    if header_amount > 0:
        basis = to_amount(quotation.get("subtotal")) or gross_basis or gross
        if basis <= 0:
            return ZERO, None
        return ZERO, q(gross / basis * header_amount, places)
    return to_amount(quotation.get("discount_percentage")), None


def _load_quotation(store, so: dict) -> tuple[Optional[dict], list[dict]]:
    qid = so.get("quotation_id")
    if not qid:
        return None, []
    header = store.get("quotations", qid)
    rows = store.find("quotation_items", {"quotation_id": qid}, order_by=["line_number"])
    json_log("debug", "invoice.quotation.loaded", quotation_id=qid, items=len(rows))
    return header, rows


def _resolve_line_item(resolver: IdentifierResolver, candidate: ItemCandidate, *, line_number: int, line_id) -> str:
    item_id = resolver.resolve(candidate)
    if item_id:
        return item_id
    try:
        item_id = resolver.create_minimal_item(candidate, line_number)
    except ConstraintViolation as exc:
        json_log("error", "catalog.minimal_item.failed", line_id=line_id, error=exc.message)
        item_id = None
    if not item_id:
        raise SoftSkip("missing item reference and minimal item creation failed", line_id=str(line_id))
    return item_id


def _insert_invoice(store, header: dict, lines: list[dict]) -> Invoice:
    row = insert_header(store, "invoices", header, label="Invoice", number_field="invoice_number")
    items = insert_lines(store, "invoice_items", "invoice_id", row["id"], lines, label="invoice")
    return Invoice.model_validate({**row, "items": items})


def derive_invoice_from_delivery(
    store,
    delivery_id,
    *,
    invoice_type: str = "Final",
    user_id=None,
    delivery_item_ids: Optional[Iterable] = None,
    tax_percent=None,
    auto_create: Optional[bool] = None,
) -> Invoice:
    """
    Build a Draft invoice from a delivery (optionally a subset of its lines).
    Runs as one unit of work: a fatal error leaves nothing behind, catalog items included.
    """
    json_log("info", "invoice.from_delivery.start", delivery_id=delivery_id, user_id=user_id)
    with store.atomic():
        invoice = _derive_invoice_from_delivery(
            store,
            delivery_id,
            invoice_type=invoice_type,
            user_id=user_id,
            selected={str(x) for x in (delivery_item_ids or []) if x},
            tax_percent=settings.invoice_tax_percent if tax_percent is None else to_amount(tax_percent),
            auto_create=auto_create,
        )
    json_log(
        "info",
        "invoice.from_delivery.done",
        delivery_id=delivery_id,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        items=len(invoice.items),
        total_amount=invoice.total_amount,
    )
    return invoice


def _derive_invoice_from_delivery(store, delivery_id, *, invoice_type, user_id, selected, tax_percent, auto_create) -> Invoice:
    delivery = store.get("deliveries", delivery_id)
    if not delivery:
        raise ReferentialError("Delivery not found", status_code=404)
    so_id = delivery.get("sales_order_id")
    if not so_id:
        raise ReferentialError("Delivery must be linked to a sales order to generate an invoice")
    so = store.get("sales_orders", so_id)
    if not so:
        raise ReferentialError("Sales order not found for the delivery")
    if not so.get("customer_id"):
        raise ReferentialError("Sales order is missing customer ID")

    currency = (so.get("currency") or settings.default_currency).upper()
    places = currency_places(currency)

    so_items = store.find("sales_order_items", {"sales_order_id": so_id}, order_by=["line_number"])
    so_items_by_id = {str(r["id"]): r for r in so_items}
    source_lines = _load_delivery_lines(store, delivery_id, so_items, selected)
    if not source_lines:
        raise ComputationError(
            "No delivery items found for this delivery. Please ensure the delivery has items before generating an invoice."
        )
    quotation, quotation_items = _load_quotation(store, so)
    resolver = IdentifierResolver(store, auto_create=auto_create)

    # Quantity and price: delivery line first, sales order line as fallback.
    prepared = []
    gross_basis = ZERO
    for di in source_lines:
        so_item = _sales_order_item(store, di, so_items_by_id)
        qty = to_amount(
            first_truthy(di.get("delivered_quantity"), di.get("picked_quantity"), di.get("ordered_quantity"), (so_item or {}).get("quantity"))
        )
        price = to_amount(first_truthy(di.get("unit_price"), (so_item or {}).get("unit_price")))
        if qty == 0 or price == 0:
            json_log("warn", "invoice.from_delivery.zero_amount", line_id=di["id"], quantity=qty, unit_price=price)
        gross_basis += q(qty * price, places)
        prepared.append((di, so_item, qty, price))

    lines: list[dict] = []
    results: list[LineResult] = []
    skipped = 0
    line_number = 1
    for di, so_item, qty, price in prepared:
        gross = q(qty * price, places)
        qi = _match_quotation_item(quotation_items, so_item, di)
        enquiry = _linked_enquiry_item(store, so_item)
        item_id = first_truthy((so_item or {}).get("item_id"), di.get("item_id"))
        master = resolver.get_item(item_id) if is_well_formed_id(item_id) else None
        base_desc = _base_description(master, qi, so_item, di, enquiry)

        candidate = ItemCandidate(
            item_id=item_id,
            supplier_code=first_truthy(di.get("supplier_code"), (so_item or {}).get("supplier_code")),
            barcode=first_truthy(di.get("barcode"), (so_item or {}).get("barcode")),
            description=base_desc,
            unit_of_measure=(so_item or {}).get("unit_of_measure"),
        )
        try:
            resolved_id = _resolve_line_item(resolver, candidate, line_number=line_number, line_id=di["id"])
        except SoftSkip as skip:
            skipped += 1
            json_log("warn", "invoice.from_delivery.line_skipped", line_id=skip.line_id, reason=skip.message)
            continue
        resolved = resolver.cache.by_id.get(resolved_id) or {}

        disc_pct, explicit = _discount_inputs(
            gross=gross, so_item=so_item, di=di, qi=qi, quotation=quotation, gross_basis=gross_basis, places=places
        )
        result = calculate_line(qty, price, disc_pct, tax_percent, explicit, places=places)
        json_log(
            "debug",
            "invoice.from_delivery.line",
            line_id=di["id"],
            gross=result.gross_amount,
            discount=result.discount_amount,
            net=result.net_amount,
            tax=result.tax_amount,
        )
        is_virtual = str(di["id"]).startswith(VIRTUAL_PREFIX)
        lines.append(
            {
                "delivery_item_id": None if is_virtual else di["id"],
                "sales_order_item_id": first_truthy(di.get("sales_order_item_id"), (so_item or {}).get("id")),
                "item_id": resolved_id,
                "barcode": candidate.barcode or resolved.get("barcode") or f"AUTO-{line_number}",
                "supplier_code": candidate.supplier_code or resolved.get("supplier_code"),
                "description": _compose_description(base_desc, so_item, di, enquiry),
                "line_number": line_number,
                "quantity": qty,
                "unit_price": price,
                "discount_percentage": disc_pct,
                "discount_amount": result.discount_amount,
                "tax_rate": tax_percent,
                "tax_amount": result.tax_amount,
                "total_price": result.net_amount,
                "notes": first_truthy((enquiry or {}).get("notes"), (so_item or {}).get("notes")),
            }
        )
        results.append(result)
        line_number += 1

    if not lines:
        raise ComputationError(
            f"Found {len(source_lines)} delivery items but none could be processed for invoice generation. "
            "This may be due to missing item references or invalid data.",
            items_processed=len(source_lines),
            items_skipped=skipped,
        )

    totals = aggregate_totals(results, places=places)
    subtotal = totals.subtotal
    if subtotal <= 0:
        recomputed = q(sum((ln["total_price"] for ln in lines), ZERO), places)
        if recomputed <= 0:
            raise ComputationError(
                f"Invoice subtotal must be greater than zero. Subtotal: {subtotal}, Calculated: {recomputed}, "
                f"Items: {len(lines)}, ItemsToProcess: {len(source_lines)}",
                items_processed=len(source_lines),
                items_skipped=skipped,
            )
        json_log("warn", "invoice.from_delivery.subtotal_recomputed", accumulated=subtotal, recomputed=recomputed)
        subtotal = recomputed
    total = q(subtotal + totals.total_tax, places)

    header = {
        "invoice_number": generate_document_number(store, "invoices", "invoice_number", INVOICE_PREFIX),
        "invoice_type": invoice_type,
        "sales_order_id": so_id,
        "delivery_id": delivery_id,
        "customer_id": so["customer_id"],
        "status": "Draft",
        "currency": currency,
        "exchange_rate": so.get("exchange_rate") or Decimal("1"),
        "subtotal": subtotal,
        "tax_rate": tax_percent,
        "tax_amount": totals.total_tax,
        "discount_percentage": ZERO,
        "discount_amount": totals.total_discount,
        "total_amount": total,
        "paid_amount": ZERO,
        "remaining_amount": total,
        "outstanding_amount": total,
        "auto_generated": True,
        "generated_from_delivery_id": delivery_id,
        "created_by": user_id,
    }
    return _insert_invoice(store, header, lines)


def derive_proforma_invoice(store, sales_order_id, *, user_id=None, tax_percent=None, auto_create: Optional[bool] = None) -> Invoice:
    json_log("info", "invoice.proforma.start", sales_order_id=sales_order_id, user_id=user_id)
    tax_percent = settings.invoice_tax_percent if tax_percent is None else to_amount(tax_percent)
    with store.atomic():
        so = store.get("sales_orders", sales_order_id)
        if not so:
            raise ReferentialError("Sales order not found", status_code=404)
        so_items = store.find("sales_order_items", {"sales_order_id": sales_order_id}, order_by=["line_number"])
        if not so_items:
            raise ReferentialError("No items found in sales order")
        if not so.get("customer_id"):
            raise ReferentialError("Sales order is missing customer ID")

        currency = (so.get("currency") or settings.default_currency).upper()
        places = currency_places(currency)
        _, quotation_items = _load_quotation(store, so)
        resolver = IdentifierResolver(store, auto_create=auto_create)

        lines: list[dict] = []
        results: list[LineResult] = []
        for idx, soi in enumerate(so_items):
            master = resolver.get_item(soi["item_id"]) if is_well_formed_id(soi.get("item_id")) else None
            if master and master.get("description") and master["description"] not in PLACEHOLDER_DESCRIPTIONS:
                description = master["description"]
            elif soi.get("description") and soi["description"] not in PLACEHOLDER_DESCRIPTIONS:
                description = soi["description"]
            elif quotation_items:
                qi = quotation_items[idx] if idx < len(quotation_items) else quotation_items[0]
                description = qi.get("description") or f"Item from Sales Order {soi['id']}"
            else:
                description = f"Item from Sales Order {soi['id']}"

            candidate = ItemCandidate(
                item_id=soi.get("item_id"),
                supplier_code=soi.get("supplier_code"),
                barcode=soi.get("barcode"),
                description=description,
            )
            item_id = resolver.resolve(candidate)
            if not item_id:
                json_log("warn", "invoice.proforma.line_skipped", sales_order_item_id=soi["id"])
                continue
            resolved = resolver.cache.by_id.get(item_id) or {}
            result = calculate_line(
                soi.get("quantity"),
                soi.get("unit_price"),
                first_present(soi.get("discount_percentage"), soi.get("discount_percent")),
                tax_percent,
                soi.get("discount_amount"),
                places=places,
            )
            lines.append(
                {
                    "sales_order_item_id": soi["id"],
                    "item_id": item_id,
                    "barcode": resolved.get("barcode") or candidate.barcode,
                    "supplier_code": resolved.get("supplier_code") or candidate.supplier_code,
                    "description": description,
                    "line_number": len(lines) + 1,
                    "quantity": to_amount(soi.get("quantity")),
                    "unit_price": to_amount(soi.get("unit_price")),
                    "discount_percentage": to_amount(first_present(soi.get("discount_percentage"), soi.get("discount_percent"))),
                    "discount_amount": result.discount_amount,
                    "tax_rate": tax_percent,
                    "tax_amount": result.tax_amount,
                    "total_price": result.net_amount,
                    "notes": soi.get("special_instructions"),
                }
            )
            results.append(result)

        if not lines:
            raise ComputationError(
                "None of the sales order items could be processed for the proforma invoice.",
                items_processed=len(so_items),
                items_skipped=len(so_items),
            )
        totals = aggregate_totals(results, places=places)
        header = {
            "invoice_number": generate_document_number(store, "invoices", "invoice_number", PROFORMA_PREFIX),
            "invoice_type": "Proforma",
            "sales_order_id": sales_order_id,
            "customer_id": so["customer_id"],
            "status": "Draft",
            "currency": currency,
            "exchange_rate": so.get("exchange_rate") or Decimal("1"),
            "subtotal": totals.subtotal,
            "tax_rate": tax_percent,
            "tax_amount": totals.total_tax,
            "discount_percentage": ZERO,
            "discount_amount": totals.total_discount,
            "total_amount": totals.total_amount,
            "paid_amount": ZERO,
            "remaining_amount": totals.total_amount,
            "outstanding_amount": totals.total_amount,
            "auto_generated": True,
            "created_by": user_id,
        }
        invoice = _insert_invoice(store, header, lines)
    json_log("info", "invoice.proforma.done", sales_order_id=sales_order_id, invoice_id=invoice.id, items=len(invoice.items))
    return invoice
