import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import CurrencyCode, DocStatus, GoodsReceiptStatus, GroupBy, InvoiceType


class _M(BaseModel):
    currency: CurrencyCode
    status: DocStatus
    receipt_status: GoodsReceiptStatus
    invoice_type: InvoiceType
    group_by: GroupBy


def test_validation_types_normalize_case():
    m = _M(currency="bhd", status="DRAFT", receipt_status=" approved ", invoice_type="proforma", group_by="Supplier")
    assert m.currency == "BHD"
    assert m.status == "Draft"
    assert m.receipt_status == "Approved"
    assert m.invoice_type == "Proforma"
    assert m.group_by == "supplier"


def test_group_by_rejects_spaces_and_weird_chars():
    with pytest.raises(ValidationError):
        _M(currency="BHD", status="Draft", receipt_status="Draft", invoice_type="Final", group_by="by supplier")
    with pytest.raises(ValidationError):
        _M(currency="BHD", status="Draft", receipt_status="Draft", invoice_type="Final", group_by="supplier;drop")


def test_unknown_statuses_are_rejected():
    with pytest.raises(ValidationError):
        _M(currency="BHD", status="posted", receipt_status="Draft", invoice_type="Final", group_by="supplier")
    with pytest.raises(ValidationError):
        _M(currency="BHD", status="Draft", receipt_status="Paid", invoice_type="Final", group_by="supplier")


def test_currency_must_be_three_letters():
    with pytest.raises(ValidationError):
        _M(currency="BD", status="Draft", receipt_status="Draft", invoice_type="Final", group_by="supplier")
