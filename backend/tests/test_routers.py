import uuid
from contextlib import contextmanager
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.deps import get_user_id
from backend.app.errors import ReferentialError
from backend.app.routers import goods_receipts, invoices, supplier_lpos


@pytest.fixture
def wired(store, monkeypatch):
    @contextmanager
    def _fake_conn():
        yield object()

    for mod in (invoices, goods_receipts, supplier_lpos):
        monkeypatch.setattr(mod, "get_conn", _fake_conn)
        monkeypatch.setattr(mod, "PgStore", lambda _conn: store)
    return store


def _delivery(store):
    so = store.add("sales_orders", customer_id=str(uuid.uuid4()), currency="USD")
    soi = store.add("sales_order_items", sales_order_id=so["id"], line_number=1, supplier_code="SC-9", description="Hose", quantity=2, unit_price=Decimal("10"))
    delivery = store.add("deliveries", sales_order_id=so["id"])
    di = store.add("delivery_items", delivery_id=delivery["id"], sales_order_item_id=soi["id"], line_number=1, delivered_quantity=2)
    return so, delivery, di


def test_user_header_is_optional_but_must_be_an_id():
    assert get_user_id(None) is None
    assert get_user_id("  ") is None
    uid = str(uuid.uuid4())
    assert get_user_id(f" {uid} ") == uid
    with pytest.raises(HTTPException) as ei:
        get_user_id("admin")
    assert ei.value.status_code == 400


def test_invoice_from_delivery_route(wired):
    _, delivery, di = _delivery(wired)
    inv = invoices.create_invoice_from_delivery(delivery["id"], invoices.InvoiceFromDeliveryIn(delivery_item_ids=[di["id"]]), user_id=None)
    assert inv.total_amount == Decimal("22")
    assert inv.items[0].delivery_item_id == di["id"]


def test_invoice_route_without_body_uses_defaults(wired):
    _, delivery, _ = _delivery(wired)
    inv = invoices.create_invoice_from_delivery(delivery["id"], None, user_id=None)
    assert inv.invoice_type == "Final"


def test_proforma_route(wired):
    so, _, _ = _delivery(wired)
    inv = invoices.create_proforma_invoice(so["id"], user_id=None)
    assert inv.invoice_type == "Proforma"


def test_invoice_route_surfaces_referential_errors(wired):
    with pytest.raises(ReferentialError):
        invoices.create_invoice_from_delivery(str(uuid.uuid4()), None, user_id=None)


def test_goods_receipt_routes(wired):
    receipt = wired.add("goods_receipt_headers", receipt_number="GR-9", supplier_id=str(uuid.uuid4()), status="Draft")
    wired.add("goods_receipt_items", receipt_header_id=receipt["id"], supplier_code="SC-9", quantity_expected=1, quantity_received=1, unit_cost=3)

    out = goods_receipts.update_receipt_status(receipt["id"], goods_receipts.GoodsReceiptStatusIn(status="pending"), user_id=None)
    assert out["receipt"]["status"] == "Pending"
    assert out["purchase_invoice"] is None

    out = goods_receipts.approve_receipt(receipt["id"], user_id=None)
    assert out["receipt"]["status"] == "Approved"
    assert out["invoice_error"] is None
    assert out["purchase_invoice"]["kind"] == "purchase_invoice"
    assert out["purchase_invoice"]["total_amount"] == "3.000"


def test_supplier_lpo_routes(wired):
    so, _, _ = _delivery(wired)
    wired.tables["sales_order_items"][next(iter(wired.tables["sales_order_items"]))]["total_price"] = Decimal("20")
    out = supplier_lpos.lpos_from_sales_orders(supplier_lpos.LposFromSalesOrdersIn(sales_order_ids=[so["id"], "nope"]), user_id=None)
    assert len(out["lpos"]) == 1
    assert out["lpos"][0]["grouping_criteria"] == "sales_order"
    assert out["skipped"] == [{"source_id": "nope", "reason": "invalid sales order id"}]

    out = supplier_lpos.lpos_from_supplier_quotes(supplier_lpos.LposFromQuotesIn(quote_ids=[str(uuid.uuid4())]), user_id=None)
    assert out["lpos"] == []
    assert [s["reason"] for s in out["skipped"]] == ["quote not found"]


def test_lpo_request_validates_group_by():
    with pytest.raises(Exception):
        supplier_lpos.LposFromQuotesIn(quote_ids=["x"], group_by="by supplier!")
    assert supplier_lpos.LposFromQuotesIn(quote_ids=["x"], group_by="SUPPLIER").group_by == "supplier"
