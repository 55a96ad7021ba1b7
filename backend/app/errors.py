from __future__ import annotations

from typing import Optional


class DerivationError(Exception):
    """Base class for failures raised while deriving a document."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ReferentialError(DerivationError):
    """A required upstream entity is missing (fatal)."""

    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ComputationError(DerivationError):
    """Totals could not be computed from any processable line (fatal)."""

    status_code = 422

    def __init__(self, message: str, *, items_processed: int = 0, items_skipped: int = 0):
        super().__init__(message)
        self.items_processed = items_processed
        self.items_skipped = items_skipped


class ConstraintViolation(DerivationError):
    """
    Unique / foreign-key violation surfaced by the row store.
    `kind` is "unique" or "foreign_key"; `column` is the offending column when known.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        table: Optional[str] = None,
        column: Optional[str] = None,
        constraint: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.table = table
        self.column = column
        self.constraint = constraint
        self.status_code = 409 if kind == "unique" else 400

    @property
    def is_unique(self) -> bool:
        return self.kind == "unique"

    @property
    def is_foreign_key(self) -> bool:
        return self.kind == "foreign_key"


class SoftSkip(DerivationError):
    """A single source line was excluded from the batch. Never escapes a derivation."""

    def __init__(self, message: str, *, line_id: Optional[str] = None):
        super().__init__(message)
        self.line_id = line_id
