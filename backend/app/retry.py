from __future__ import annotations

from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class RetryExhausted(Exception):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def bounded_retry(
    attempt: Callable[[int], T],
    *,
    max_attempts: int,
    retry_if: Callable[[BaseException], bool],
) -> T:
    """
    Call `attempt(n)` for n = 0, 1, ... until it returns.
    Only errors matching `retry_if` are retried (immediately, no backoff); anything else propagates.
    """
    last: Optional[BaseException] = None
    for n in range(max(1, max_attempts)):
        try:
            return attempt(n)
        except Exception as exc:
            if not retry_if(exc):
                raise
            last = exc
    raise RetryExhausted(max(1, max_attempts), last)
