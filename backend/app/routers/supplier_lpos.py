from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List, Optional

from ..db import get_conn
from ..deps import get_user_id
from ..derivations.supplier_lpo import LpoBatch, create_lpos_from_sales_orders, create_lpos_from_supplier_quotes
from ..store import PgStore
from ..validation import GroupBy

router = APIRouter(prefix="/supplier-lpos", tags=["supplier-lpos"])


class LposFromSalesOrdersIn(BaseModel):
    sales_order_ids: List[str] = Field(min_length=1)
    group_by: GroupBy = "sales_order"
    supplier_id: Optional[str] = None


class LposFromQuotesIn(BaseModel):
    quote_ids: List[str] = Field(min_length=1)
    group_by: GroupBy = "supplier"


def _batch_out(batch: LpoBatch) -> dict:
    return {
        "lpos": [lpo.model_dump(mode="json") for lpo in batch.lpos],
        "skipped": batch.skipped,
    }


@router.post("/from-sales-orders")
def lpos_from_sales_orders(data: LposFromSalesOrdersIn, user_id: Optional[str] = Depends(get_user_id)):
    with get_conn() as conn:
        batch = create_lpos_from_sales_orders(
            PgStore(conn),
            data.sales_order_ids,
            data.group_by,
            user_id=user_id,
            supplier_id=data.supplier_id,
        )
        return _batch_out(batch)


@router.post("/from-supplier-quotes")
def lpos_from_supplier_quotes(data: LposFromQuotesIn, user_id: Optional[str] = Depends(get_user_id)):
    with get_conn() as conn:
        return _batch_out(create_lpos_from_supplier_quotes(PgStore(conn), data.quote_ids, data.group_by, user_id=user_id))
