from fastapi import Header, HTTPException
from typing import Optional

from .catalog import is_well_formed_id


def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Optional[str]:
    """Acting user for created_by/approved_by columns; anonymous when the header is absent."""
    raw = (x_user_id or "").strip()
    if not raw:
        return None
    if not is_well_formed_id(raw):
        raise HTTPException(status_code=400, detail="invalid X-User-Id")
    return raw
