import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
) -> T:
    """Run fn() with retries and exponential backoff. If retry_on is None, defaults to (Exception,)."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    last_err: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return fn()
        except exc_types as e:
            last_err = e
            if attempt >= retries:
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            logger.warning("Attempt %d failed (%s); retrying in %.1fs", attempt + 1, e, sleep_s)
            time.sleep(sleep_s)

    assert last_err is not None
    raise last_err


def backoff_delay(attempt: int, base_seconds: float, cap_seconds: float = 300.0) -> float:
    """Exponential countdown for the given zero-based retry number."""
    return min(cap_seconds, base_seconds * (2 ** attempt))
