from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from .config import settings
from .errors import ConstraintViolation
from .logs import json_log

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

# Descriptions that carry no information about the item.
PLACEHOLDER_DESCRIPTIONS = {"Generic Item", "Item from Sales Order"}

GENERIC_SUPPLIER_CODE = "GEN-FALLBACK"


def is_well_formed_id(v) -> bool:
    if v is None:
        return False
    return bool(_UUID_RE.match(str(v).strip()))


def _trimmed(v) -> Optional[str]:
    if v is None:
        return None
    t = str(v).strip()
    if not t or t.lower() in {"null", "undefined"}:
        return None
    return t


def auto_supplier_code() -> str:
    return f"AUTO-{uuid.uuid4().hex[:8].upper()}"


@dataclass
class ItemCandidate:
    item_id: Optional[str] = None
    supplier_code: Optional[str] = None
    barcode: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    unit_of_measure: Optional[str] = None
    supplier_id: Optional[str] = None

    def __post_init__(self):
        self.item_id = _trimmed(self.item_id)
        self.supplier_code = _trimmed(self.supplier_code)
        self.barcode = _trimmed(self.barcode)


class CatalogCache:
    """Catalog rows seen during one derivation call, indexed three ways."""

    def __init__(self):
        self.by_id: dict[str, dict] = {}
        self.by_supplier_code: dict[str, dict] = {}
        self.by_barcode: dict[str, dict] = {}

    def remember(self, row: Optional[dict]) -> Optional[dict]:
        if not row:
            return row
        if row.get("id") is not None:
            self.by_id[str(row["id"])] = row
        if row.get("supplier_code"):
            self.by_supplier_code[row["supplier_code"]] = row
        if row.get("barcode"):
            self.by_barcode[row["barcode"]] = row
        return row


class ById:
    name = "id"

    def resolve(self, resolver: "IdentifierResolver", c: ItemCandidate) -> Optional[str]:
        if not c.item_id:
            return None
        if not is_well_formed_id(c.item_id):
            json_log("debug", "catalog.resolve.malformed_id", item_id=c.item_id)
            return None
        row = resolver.get_item(c.item_id)
        if row:
            return str(row["id"])
        json_log("warn", "catalog.resolve.id_missing", item_id=c.item_id)
        return None


class BySupplierCode:
    name = "supplier_code"

    def resolve(self, resolver: "IdentifierResolver", c: ItemCandidate) -> Optional[str]:
        if not c.supplier_code:
            return None
        row = resolver.lookup("supplier_code", c.supplier_code)
        return str(row["id"]) if row else None


class ByBarcode:
    name = "barcode"

    def resolve(self, resolver: "IdentifierResolver", c: ItemCandidate) -> Optional[str]:
        if not c.barcode:
            return None
        row = resolver.lookup("barcode", c.barcode)
        return str(row["id"]) if row else None


class AutoCreate:
    name = "auto_create"

    def resolve(self, resolver: "IdentifierResolver", c: ItemCandidate) -> Optional[str]:
        payload = {
            "supplier_code": c.supplier_code or auto_supplier_code(),
            "barcode": c.barcode,
            "description": c.description or "Auto-generated item",
            "category": c.category or "Uncategorized",
            "unit_of_measure": c.unit_of_measure or "EA",
            "supplier_id": c.supplier_id or resolver.supplier_id,
            "is_active": True,
        }
        try:
            row = resolver.insert_item(payload)
        except ConstraintViolation as exc:
            if not exc.is_unique:
                json_log("error", "catalog.auto_create.failed", error=exc.message, supplier_code=payload["supplier_code"])
                return None
            # Someone else created the same code/barcode first: look again, once, past the cache.
            json_log("warn", "catalog.auto_create.race", supplier_code=payload["supplier_code"], barcode=c.barcode)
            for column, value in (("supplier_code", c.supplier_code), ("barcode", c.barcode)):
                if not value:
                    continue
                row = resolver.lookup(column, value, use_cache=False)
                if row:
                    return str(row["id"])
            return None
        json_log("warn", "catalog.auto_create.created", item_id=row["id"], supplier_code=row.get("supplier_code"))
        return str(row["id"])


class IdentifierResolver:
    """
    Resolve catalog item ids for the lines of one derivation call.

    Strategies run in order (id, supplier code, barcode, auto-create); the first hit wins.
    With auto-create disabled (closed catalog) an unmatched candidate resolves to None.
    """

    def __init__(self, store, *, supplier_id: Optional[str] = None, auto_create: Optional[bool] = None):
        self.store = store
        self.supplier_id = supplier_id
        self.auto_create = settings.catalog_auto_create if auto_create is None else auto_create
        self.cache = CatalogCache()
        self.created_ids: list[str] = []
        self.strategies = [ById(), BySupplierCode(), ByBarcode()]
        if self.auto_create:
            self.strategies.append(AutoCreate())
        self._generic_id: Optional[str] = None

    def get_item(self, item_id: str) -> Optional[dict]:
        cached = self.cache.by_id.get(str(item_id))
        if cached:
            return cached
        return self.cache.remember(self.store.get("items", item_id))

    def lookup(self, column: str, value: str, *, use_cache: bool = True) -> Optional[dict]:
        index = self.cache.by_supplier_code if column == "supplier_code" else self.cache.by_barcode
        if use_cache and value in index:
            return index[value]
        return self.cache.remember(self.store.find_one("items", {column: value}))

    def insert_item(self, payload: dict) -> dict:
        row = self.cache.remember(self.store.insert("items", payload))
        self.created_ids.append(str(row["id"]))
        return row

    def resolve(self, candidate: ItemCandidate) -> Optional[str]:
        for strategy in self.strategies:
            hit = strategy.resolve(self, candidate)
            if hit:
                return hit
        json_log(
            "warn",
            "catalog.resolve.unresolved",
            item_id=candidate.item_id,
            supplier_code=candidate.supplier_code,
            barcode=candidate.barcode,
        )
        return None

    def create_minimal_item(self, candidate: ItemCandidate, line_number: int) -> Optional[str]:
        """Last-resort catalog entry with fresh codes; raises ConstraintViolation if even that fails."""
        if not self.auto_create:
            return None
        row = self.insert_item(
            {
                "supplier_code": auto_supplier_code(),
                "barcode": f"AUTO-{int(time.time() * 1000)}-{line_number}",
                "description": candidate.description or "Auto-generated item for invoice",
                "category": "Auto-generated",
                "unit_of_measure": "EA",
                "is_active": True,
            }
        )
        json_log("warn", "catalog.minimal_item.created", item_id=row["id"], line_number=line_number)
        return str(row["id"])

    def generic_item_id(self) -> Optional[str]:
        """Shared fallback entry for documents whose sources carry no usable lines."""
        if self._generic_id:
            return self._generic_id
        row = self.lookup("supplier_code", GENERIC_SUPPLIER_CODE)
        if not row and self.auto_create:
            try:
                row = self.insert_item(
                    {
                        "supplier_code": GENERIC_SUPPLIER_CODE,
                        "description": "Auto-generated fallback item",
                        "category": "Auto-generated",
                        "unit_of_measure": "PCS",
                        "is_active": True,
                    }
                )
            except ConstraintViolation as exc:
                if not exc.is_unique:
                    raise
                row = self.lookup("supplier_code", GENERIC_SUPPLIER_CODE, use_cache=False)
        self._generic_id = str(row["id"]) if row else None
        return self._generic_id
