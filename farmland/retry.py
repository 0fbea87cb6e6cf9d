# farmland/retry.py
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from farmland.errors import ConcurrencyConflict

LOG = logging.getLogger("farmland.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    initial_delay: float = 0.05   # seconds
    max_delay: float = 2.0
    backoff_factor: float = 2.0
    jitter: bool = True


DEFAULT_RETRY = RetryConfig()


def retry_with_backoff(
    operation: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY,
    *,
    op: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation`, retrying on ConcurrencyConflict with exponential backoff.
    Any other exception propagates on the first occurrence.
    Exhaustion re-raises ConcurrencyConflict carrying the attempt count.
    """
    attempts = max(1, config.max_attempts)
    delay = config.initial_delay

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflict as e:
            if attempt == attempts:
                LOG.error("[retry] %s gave up after %d attempts: %s", op, attempt, e)
                raise ConcurrencyConflict(
                    f"{op} failed after {attempt} attempts: {e}", attempts=attempt
                ) from e

            wait = delay * random.uniform(0.9, 1.1) if config.jitter else delay
            LOG.warning("[retry] %s conflict (attempt %d/%d), sleeping %.3fs: %s",
                        op, attempt, attempts, wait, e)
            sleep(wait)
            delay = min(delay * config.backoff_factor, config.max_delay)

    raise AssertionError("unreachable")
