from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar
import logging
import time

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    result: Optional[T] = None
    error: Optional[BaseException] = None


def retry(
    action: Callable[[], T],
    max_attempts: int,
    delay: float,
    predicate: Callable[[T], bool],
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, Optional[T], Optional[BaseException]], None]] = None,
) -> RetryOutcome[T]:
    """Run ``action`` until ``predicate`` holds or attempts run out.

    The delay between attempts is fixed. An exception raised by ``action``
    counts as a failed attempt; when the last attempt raises, the outcome
    carries that exception instead of a result.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    result: Optional[T] = None
    error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = action()
            error = None
        except Exception as exc:  # noqa: BLE001
            result, error = None, exc
        else:
            if predicate(result):
                return RetryOutcome(succeeded=True, attempts=attempt, result=result)
        if on_retry:
            on_retry(attempt, result, error)
        if attempt == max_attempts:
            break
        logger.debug("attempt=%s/%s failed; sleeping %ss", attempt, max_attempts, delay)
        sleep(delay)
    return RetryOutcome(succeeded=False, attempts=max_attempts, result=result, error=error)
