from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar


logger = logging.getLogger(__name__)

TResult = TypeVar("TResult")


def _always(_exc: Exception) -> bool:
    return True


def retry_call(
    fn: Callable[[], TResult],
    *,
    attempts: int = 2,
    delay_seconds: float = 0.3,
    is_retryable: Callable[[Exception], bool] = _always,
    label: str = "operation",
) -> TResult:
    """Call ``fn`` up to ``attempts`` times with a fixed pause between tries.

    Exceptions rejected by ``is_retryable`` propagate immediately; once the
    attempts are exhausted the last exception is re-raised unchanged.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt == attempts or not is_retryable(exc):
                raise
            logger.warning(
                "retry: %s attempt=%s/%s error=%s",
                label,
                attempt,
                attempts,
                exc,
            )
            time.sleep(delay_seconds)

    raise RuntimeError("retry_call exhausted without result")  # pragma: no cover
