import os
import sys


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import copy
import itertools
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.errors import ConstraintViolation


class MemoryStore:
    """
    Dict-backed stand-in for PgStore.

    Enforces the constraints the derivations rely on: unique catalog codes and document
    numbers, creator/approver references into `users`, and line item references into `items`.
    `atomic()` snapshots every table and restores it when the block raises.
    """

    UNIQUE = {
        "items": ("supplier_code", "barcode"),
        "invoices": ("invoice_number",),
        "purchase_invoices": ("invoice_number", "supplier_invoice_number"),
        "supplier_lpos": ("lpo_number",),
    }
    USER_FKS = {
        "invoices": ("created_by",),
        "supplier_lpos": ("created_by",),
        "goods_receipt_headers": ("approved_by",),
    }
    ITEM_FK_TABLES = {"invoice_items", "purchase_invoice_items", "supplier_lpo_items"}

    def __init__(self):
        self.tables = {}
        self.users = set()
        # table -> callable(store, row) run before each insert (e.g. to simulate a concurrent writer)
        self.before_insert = {}
        self.exists_calls = 0
        self._clock = itertools.count()
        self._epoch = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- seeding / inspection helpers --

    def add(self, table, **row):
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", self._epoch + timedelta(seconds=next(self._clock)))
        self.tables.setdefault(table, {})[row["id"]] = row
        return dict(row)

    def add_user(self):
        uid = str(uuid.uuid4())
        self.users.add(uid)
        return uid

    def rows(self, table):
        return [dict(r) for r in self.tables.get(table, {}).values()]

    # -- store protocol --

    @contextmanager
    def atomic(self):
        snapshot = copy.deepcopy(self.tables)
        try:
            yield self
        except BaseException:
            self.tables = snapshot
            raise

    @staticmethod
    def _matches(row, where):
        for col, val in (where or {}).items():
            have = row.get(col)
            if val is None:
                if have is not None:
                    return False
            elif isinstance(val, (list, tuple, set, frozenset)):
                if have not in val:
                    return False
            elif have != val:
                return False
        return True

    def find(self, table, where=None, *, order_by=None, limit=None):
        rows = [dict(r) for r in self.tables.get(table, {}).values() if self._matches(r, where)]
        for col in reversed(list(order_by or [])):
            rows.sort(key=lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else 0))
        if limit is not None:
            rows = rows[: int(limit)]
        return rows

    def find_one(self, table, where=None, *, order_by=None):
        rows = self.find(table, where, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def get(self, table, row_id):
        if row_id is None:
            return None
        row = self.tables.get(table, {}).get(str(row_id))
        return dict(row) if row else None

    def exists(self, table, where):
        self.exists_calls += 1
        return self.find_one(table, where) is not None

    def _check(self, table, row, *, row_id=None):
        for col in self.UNIQUE.get(table, ()):
            val = row.get(col)
            if val is None:
                continue
            for other in self.tables.get(table, {}).values():
                if other["id"] != row_id and other.get(col) == val:
                    raise ConstraintViolation(
                        f"Key ({col})=({val}) already exists.", kind="unique", table=table, column=col, constraint=f"{table}_{col}_key"
                    )
        for col in self.USER_FKS.get(table, ()):
            val = row.get(col)
            if val is not None and val not in self.users:
                raise ConstraintViolation(
                    f'Key ({col})=({val}) is not present in table "users".',
                    kind="foreign_key",
                    table=table,
                    column=col,
                    constraint=f"{table}_{col}_fkey",
                )
        if table in self.ITEM_FK_TABLES and row.get("item_id") is not None:
            if str(row["item_id"]) not in self.tables.get("items", {}):
                raise ConstraintViolation(
                    f'Key (item_id)=({row["item_id"]}) is not present in table "items".',
                    kind="foreign_key",
                    table=table,
                    column="item_id",
                    constraint=f"{table}_item_id_fkey",
                )

    def insert(self, table, row):
        hook = self.before_insert.get(table)
        if hook:
            hook(self, row)
        row = dict(row)
        row.setdefault("id", str(uuid.uuid4()))
        self._check(table, row)
        return self.add(table, **row)

    def update(self, table, row_id, values):
        current = self.tables.get(table, {}).get(str(row_id))
        if current is None:
            return None
        merged = {**current, **values}
        self._check(table, merged, row_id=current["id"])
        self.tables[table][current["id"]] = merged
        return dict(merged)


@pytest.fixture
def store():
    return MemoryStore()
