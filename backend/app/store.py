from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Any, Iterable, Optional

from psycopg import errors as pg_errors
from psycopg import sql

from .errors import ConstraintViolation

# Tables the derivation engine reads or writes. Anything else is rejected before it reaches SQL.
TABLES = frozenset(
    {
        "deliveries",
        "delivery_items",
        "sales_orders",
        "sales_order_items",
        "quotations",
        "quotation_items",
        "enquiry_items",
        "invoices",
        "invoice_items",
        "goods_receipt_headers",
        "goods_receipt_items",
        "purchase_invoices",
        "purchase_invoice_items",
        "supplier_lpos",
        "supplier_lpo_items",
        "supplier_quotes",
        "supplier_quote_items",
        "suppliers",
        "items",
    }
)

_KEY_COLUMN_RE = re.compile(r"Key \(([a-zA-Z0-9_]+)\)")


def _check_table(table: str) -> str:
    if table not in TABLES:
        raise ValueError(f"unknown table: {table}")
    return table


def constraint_from_pg_error(exc: Exception, table: Optional[str] = None) -> ConstraintViolation:
    """
    Translate a psycopg unique/FK error into a ConstraintViolation.
    The offending column is taken from the DETAIL line ("Key (created_by)=(...) is not present ...").
    """
    diag = getattr(exc, "diag", None)
    detail = (getattr(diag, "message_detail", None) or "") if diag is not None else ""
    constraint = getattr(diag, "constraint_name", None) if diag is not None else None
    m = _KEY_COLUMN_RE.search(detail or str(exc))
    column = m.group(1) if m else None
    kind = "unique" if isinstance(exc, pg_errors.UniqueViolation) else "foreign_key"
    return ConstraintViolation(
        detail or str(exc),
        kind=kind,
        table=(getattr(diag, "table_name", None) if diag is not None else None) or table,
        column=column,
        constraint=constraint,
    )


def _where_clause(where: Optional[dict]) -> tuple[sql.Composable, list]:
    if not where:
        return sql.SQL(""), []
    conds = []
    params: list = []
    for col, val in where.items():
        ident = sql.Identifier(col)
        if val is None:
            conds.append(sql.SQL("{} IS NULL").format(ident))
        elif isinstance(val, (list, tuple, set, frozenset)):
            conds.append(sql.SQL("{} = ANY(%s)").format(ident))
            params.append(list(val))
        else:
            conds.append(sql.SQL("{} = %s").format(ident))
            params.append(val)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conds), params


class PgStore:
    """
    Row store over a psycopg connection (dict rows).
    Writes and existence probes run inside a savepoint so a recovered failure does not abort the
    surrounding unit of work.
    """

    def __init__(self, conn):
        self.conn = conn

    @contextmanager
    def atomic(self):
        with self.conn.transaction():
            yield self

    def find(
        self,
        table: str,
        where: Optional[dict] = None,
        *,
        order_by: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        clause, params = _where_clause(where)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(_check_table(table))) + clause
        if order_by:
            query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(sql.Identifier(c) for c in order_by)
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(int(limit))
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return list(cur.fetchall() or [])

    def find_one(self, table: str, where: Optional[dict] = None, *, order_by: Optional[Iterable[str]] = None) -> Optional[dict]:
        rows = self.find(table, where, order_by=order_by, limit=1)
        return rows[0] if rows else None

    def get(self, table: str, row_id: Any) -> Optional[dict]:
        if row_id is None:
            return None
        return self.find_one(table, {"id": row_id})

    def exists(self, table: str, where: dict) -> bool:
        clause, params = _where_clause(where)
        query = sql.SQL("SELECT 1 FROM {}").format(sql.Identifier(_check_table(table))) + clause + sql.SQL(" LIMIT 1")
        # Savepoint: callers may recover from a failed probe and keep using the transaction.
        with self.conn.transaction():
            with self.conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone() is not None

    def insert(self, table: str, row: dict) -> dict:
        cols = [c for c in row.keys()]
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(_check_table(table)),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() * len(cols)),
        )
        try:
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    cur.execute(query, [row[c] for c in cols])
                    return cur.fetchone()
        except (pg_errors.UniqueViolation, pg_errors.ForeignKeyViolation) as exc:
            raise constraint_from_pg_error(exc, table) from exc

    def update(self, table: str, row_id: Any, values: dict) -> Optional[dict]:
        if not values:
            return self.get(table, row_id)
        cols = list(values.keys())
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(_check_table(table)),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in cols),
        )
        try:
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    cur.execute(query, [values[c] for c in cols] + [row_id])
                    return cur.fetchone()
        except (pg_errors.UniqueViolation, pg_errors.ForeignKeyViolation) as exc:
            raise constraint_from_pg_error(exc, table) from exc
