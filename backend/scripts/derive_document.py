#!/usr/bin/env python3
"""
Derive a document from its upstream source without going through the API.

    python -m backend.scripts.derive_document --db postgresql://... delivery-invoice <delivery_id>
"""
import argparse
import json
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.config import settings
from backend.app.derivations.receipt_purchase_invoice import approve_goods_receipt
from backend.app.derivations.sales_invoices import derive_invoice_from_delivery, derive_proforma_invoice
from backend.app.derivations.supplier_lpo import create_lpos_from_sales_orders, create_lpos_from_supplier_quotes
from backend.app.errors import DerivationError
from backend.app.store import PgStore


def get_conn(db_url):
    return psycopg.connect(db_url, row_factory=dict_row)


def _run(store, args):
    if args.command == "delivery-invoice":
        inv = derive_invoice_from_delivery(
            store,
            args.delivery_id,
            invoice_type=args.invoice_type,
            user_id=args.user_id,
            delivery_item_ids=args.item or None,
        )
        return inv.model_dump(mode="json")
    if args.command == "proforma":
        return derive_proforma_invoice(store, args.sales_order_id, user_id=args.user_id).model_dump(mode="json")
    if args.command == "approve-receipt":
        result = approve_goods_receipt(store, args.receipt_id, user_id=args.user_id)
        return {
            "receipt": result.receipt,
            "purchase_invoice": result.purchase_invoice.model_dump(mode="json") if result.purchase_invoice else None,
            "invoice_error": result.invoice_error,
        }
    if args.command == "lpo-from-sales-orders":
        batch = create_lpos_from_sales_orders(
            store, args.ids, args.group_by, user_id=args.user_id, supplier_id=args.supplier_id
        )
    else:
        batch = create_lpos_from_supplier_quotes(store, args.ids, args.group_by, user_id=args.user_id)
    return {"lpos": [lpo.model_dump(mode="json") for lpo in batch.lpos], "skipped": batch.skipped}


def build_parser():
    parser = argparse.ArgumentParser(description="Derive invoices and supplier LPOs from upstream documents")
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--user-id", help="Recorded as created_by / approved_by")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("delivery-invoice", help="Invoice a delivery")
    p.add_argument("delivery_id")
    p.add_argument("--invoice-type", default="Final")
    p.add_argument("--item", action="append", help="Only invoice this delivery line (repeatable)")

    p = sub.add_parser("proforma", help="Proforma invoice for a sales order")
    p.add_argument("sales_order_id")

    p = sub.add_parser("approve-receipt", help="Approve a goods receipt and create its purchase invoice")
    p.add_argument("receipt_id")

    p = sub.add_parser("lpo-from-sales-orders", help="Supplier LPOs from sales orders")
    p.add_argument("ids", nargs="+")
    p.add_argument("--group-by", default="sales_order")
    p.add_argument("--supplier-id")

    p = sub.add_parser("lpo-from-quotes", help="Supplier LPOs from supplier quotes")
    p.add_argument("ids", nargs="+")
    p.add_argument("--group-by", default="supplier")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    with get_conn(args.db) as conn:
        try:
            out = _run(PgStore(conn), args)
        except DerivationError as exc:
            print(f"derive_document: {exc.message}", file=sys.stderr)
            return 1
    print(json.dumps(out, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
