"""
Retry with exponential backoff for transient upstream failures.

Only errors the caller classifies as transient are retried; everything
else is raised on the first attempt.
"""
import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """
    Call fn, retrying on retry_on exceptions.

    Delays are base_delay * 2**attempt (1s, 2s, 4s with the defaults).
    The last exception is re-raised once attempts are exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except retry_on as e:
            if attempt == attempts - 1:
                logger.error(f"{label} failed after {attempts} attempts: {e}")
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(f"{label} attempt {attempt + 1} failed, retrying in {delay:.1f}s: {e}")
            sleep(delay)
    raise RuntimeError("unreachable")
