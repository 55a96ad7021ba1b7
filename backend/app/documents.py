"""
Typed payloads for derived documents.

Each document type has its own header/line models and a `kind` discriminator, so callers
can accept `DerivedDocument` and branch on `doc.kind` instead of probing optional fields.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .validation import CurrencyCode, DocStatus


def _id_str(v):
    if v is None:
        return None
    return str(v)


def _id_list(v):
    if v is None:
        return []
    return [str(x) for x in v]


RowId = Annotated[Optional[str], BeforeValidator(_id_str)]
RowIdList = Annotated[List[str], BeforeValidator(_id_list)]


class _Row(BaseModel):
    # Store rows carry bookkeeping columns (created_at, base-currency mirrors, ...) we don't model.
    model_config = ConfigDict(extra="ignore")


class InvoiceLine(_Row):
    id: RowId = None
    line_number: int
    item_id: RowId = None
    delivery_item_id: RowId = None
    sales_order_item_id: RowId = None
    barcode: Optional[str] = None
    supplier_code: Optional[str] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percentage: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    # Net (post-discount, pre-tax) line amount.
    total_price: Decimal
    notes: Optional[str] = None


class Invoice(_Row):
    kind: Literal["invoice"] = "invoice"
    id: RowId = None
    invoice_number: str
    invoice_type: str = "Final"
    status: DocStatus = "Draft"
    customer_id: RowId = None
    sales_order_id: RowId = None
    delivery_id: RowId = None
    currency: CurrencyCode
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    tax_amount: Decimal
    total_amount: Decimal
    created_by: RowId = None
    items: List[InvoiceLine] = Field(default_factory=list)


class PurchaseInvoiceLine(_Row):
    id: RowId = None
    goods_receipt_item_id: RowId = None
    lpo_item_id: RowId = None
    item_id: RowId = None
    barcode: Optional[str] = None
    supplier_code: Optional[str] = None
    item_description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    tax_rate: Decimal = Decimal("0")
    discount_rate: Decimal = Decimal("0")


class PurchaseInvoice(_Row):
    kind: Literal["purchase_invoice"] = "purchase_invoice"
    id: RowId = None
    invoice_number: str
    supplier_invoice_number: str
    status: DocStatus = "Draft"
    payment_status: str = "Unpaid"
    supplier_id: RowId = None
    goods_receipt_id: RowId = None
    lpo_id: RowId = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    currency: CurrencyCode
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total_amount: Decimal
    items: List[PurchaseInvoiceLine] = Field(default_factory=list)


class SupplierLpoLine(_Row):
    id: RowId = None
    line_number: int
    item_id: RowId = None
    sales_order_item_id: RowId = None
    quotation_item_id: RowId = None
    supplier_code: Optional[str] = None
    barcode: Optional[str] = None
    item_description: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    discount_percent: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    special_instructions: Optional[str] = None


class SupplierLpo(_Row):
    kind: Literal["supplier_lpo"] = "supplier_lpo"
    id: RowId = None
    lpo_number: str
    status: DocStatus = "Draft"
    supplier_id: RowId = None
    source_type: str
    grouping_criteria: Optional[str] = None
    source_sales_order_ids: RowIdList = Field(default_factory=list)
    source_quotation_ids: RowIdList = Field(default_factory=list)
    currency: CurrencyCode
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal
    created_by: RowId = None
    items: List[SupplierLpoLine] = Field(default_factory=list)


DerivedDocument = Annotated[Union[Invoice, PurchaseInvoice, SupplierLpo], Field(discriminator="kind")]
