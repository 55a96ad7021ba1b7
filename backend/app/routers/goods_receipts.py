from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional

from ..db import get_conn
from ..deps import get_user_id
from ..derivations.receipt_purchase_invoice import ReceiptApproval, approve_goods_receipt, update_goods_receipt_status
from ..store import PgStore
from ..validation import GoodsReceiptStatus

router = APIRouter(prefix="/goods-receipts", tags=["goods-receipts"])


class GoodsReceiptStatusIn(BaseModel):
    status: GoodsReceiptStatus


def _approval_out(result: ReceiptApproval) -> dict:
    return {
        "receipt": result.receipt,
        "purchase_invoice": result.purchase_invoice.model_dump(mode="json") if result.purchase_invoice else None,
        "invoice_error": result.invoice_error,
    }


@router.post("/{receipt_id}/approve")
def approve_receipt(receipt_id: str, user_id: Optional[str] = Depends(get_user_id)):
    with get_conn() as conn:
        return _approval_out(approve_goods_receipt(PgStore(conn), receipt_id, user_id=user_id))


@router.patch("/{receipt_id}/status")
def update_receipt_status(receipt_id: str, data: GoodsReceiptStatusIn, user_id: Optional[str] = Depends(get_user_id)):
    with get_conn() as conn:
        return _approval_out(update_goods_receipt_status(PgStore(conn), receipt_id, data.status, user_id=user_id))
