from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional

from ..db import get_conn
from ..deps import get_user_id
from ..derivations.sales_invoices import derive_invoice_from_delivery, derive_proforma_invoice
from ..documents import Invoice
from ..store import PgStore
from ..validation import InvoiceType

router = APIRouter(prefix="/invoices", tags=["invoices"])


class InvoiceFromDeliveryIn(BaseModel):
    invoice_type: InvoiceType = "Final"
    # Partial invoicing: only these delivery lines (or sales order lines for deliveries without lines).
    delivery_item_ids: Optional[List[str]] = None


@router.post("/from-delivery/{delivery_id}", response_model=Invoice)
def create_invoice_from_delivery(delivery_id: str, data: Optional[InvoiceFromDeliveryIn] = None, user_id: Optional[str] = Depends(get_user_id)):
    data = data or InvoiceFromDeliveryIn()
    with get_conn() as conn:
        store = PgStore(conn)
        return derive_invoice_from_delivery(
            store,
            delivery_id,
            invoice_type=data.invoice_type,
            user_id=user_id,
            delivery_item_ids=data.delivery_item_ids,
        )


@router.post("/proforma/from-sales-order/{sales_order_id}", response_model=Invoice)
def create_proforma_invoice(sales_order_id: str, user_id: Optional[str] = Depends(get_user_id)):
    with get_conn() as conn:
        return derive_proforma_invoice(PgStore(conn), sales_order_id, user_id=user_id)
