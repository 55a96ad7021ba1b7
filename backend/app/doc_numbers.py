from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import settings
from .logs import json_log
from .retry import RetryExhausted, bounded_retry


class _NumberTaken(Exception):
    pass


def _random_suffix() -> str:
    return uuid.uuid4().hex[:5].upper()


def base_document_number(
    prefix: str,
    *,
    now: Optional[datetime] = None,
    include_time: bool = True,
    rand: Callable[[], str] = _random_suffix,
) -> str:
    now = now or datetime.now(timezone.utc)
    parts = [prefix.strip().upper(), now.strftime("%Y%m%d")]
    if include_time:
        parts.append(now.strftime("%H%M%S"))
    parts.append(rand())
    return "-".join(parts)


def generate_document_number(
    store,
    table: str,
    column: str,
    prefix: str,
    *,
    include_time: bool = True,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
    rand: Callable[[], str] = _random_suffix,
) -> str:
    """
    `PREFIX-YYYYMMDD[-HHMMSS]-XXXXX`, checked for uniqueness against `table.column`.
    Collisions append a zero-padded counter (-001, -002, ...); once the attempts run out a
    millisecond timestamp suffix is used instead. Never raises.
    """
    base = base_document_number(prefix, now=now, include_time=include_time, rand=rand)
    attempts = max_attempts or settings.doc_number_max_attempts

    current = {"number": base}

    def _attempt(n: int) -> str:
        candidate = base if n == 0 else f"{base}-{n:03d}"
        current["number"] = candidate
        if store.exists(table, {column: candidate}):
            raise _NumberTaken(candidate)
        return candidate

    try:
        return bounded_retry(
            _attempt,
            max_attempts=attempts,
            retry_if=lambda exc: isinstance(exc, _NumberTaken),
        )
    except RetryExhausted:
        fallback = f"{base}-{int(time.time() * 1000)}"
        json_log("warn", "doc_number.exhausted", table=table, prefix=prefix, attempts=attempts, number=fallback)
        return fallback
    except Exception as exc:
        # Uniqueness check failed (e.g. the lookup itself errored); the insert still guards the column.
        json_log("warn", "doc_number.check_failed", table=table, prefix=prefix, error=str(exc), number=current["number"])
        return current["number"]
