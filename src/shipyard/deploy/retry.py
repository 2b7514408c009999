"""Retry of transient cluster API failures with exponential backoff.

Only errors marked ``transient`` (connection failures, HTTP 429 and 5xx)
are retried. Rejections and bad input propagate on the first attempt, and
no retry is started that would end after the run deadline.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

from shipyard.lib.errors import ClusterError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RetryConfig

logger = get_logger(__name__)

T = TypeVar("T")


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    retry: RetryConfig,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "",
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    **kwargs: Any,
) -> T:
    """Call ``func`` and retry transient ClusterErrors.

    Args:
        func: Blocking callable, usually a cluster method
        retry: Backoff policy
        sleep: Sleep function (injectable for tests)
        description: Text used in log messages
        deadline: Absolute ``clock`` value after which no retry is made
        clock: Monotonic clock the deadline refers to

    Returns:
        Whatever ``func`` returns

    Raises:
        ClusterError: The last error once retries are exhausted or the
            deadline leaves no room for another attempt, or the first
            non-transient error
    """
    label = description or getattr(func, "__name__", "call")
    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except ClusterError as e:
            if not e.transient or attempt >= retry.max_retries:
                raise
            delay = retry.delay(attempt)
            if deadline is not None and clock() + delay >= deadline:
                logger.warning(f"Not retrying {label}: run deadline reached")
                raise
            attempt += 1
            logger.warning(
                f"Retry {attempt}/{retry.max_retries} for {label} after "
                f"transient error: {e.message} (waiting {delay:.1f}s)"
            )
            sleep(delay)
