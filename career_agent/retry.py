"""Bounded retries with exponential backoff for repository writes."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Substrings of SQLite and network error messages that indicate the same
# write can succeed later.
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "rate limit",
    "429",
    "500",
    "502",
    "503",
    "504",
    "database is locked",
    "busy",
    "temporary",
    "unavailable",
)


@dataclass
class RetryConfig:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep after the zero-based ``attempt`` failed."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        jitter = delay * self.jitter_factor * (2 * random.random() - 1)
        return max(delay + jitter, 0.0)


class TransientError(Exception):
    """Raised by callers to mark a failure as worth retrying."""


class PermanentError(Exception):
    """A failure that another attempt will not fix."""


def is_transient_error(error: Exception) -> bool:
    if isinstance(error, (TransientError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def always_retry(error: Exception) -> bool:
    """Use every attempt regardless of the error, e.g. for message saves."""
    return True


async def retry_with_backoff(
    func: Callable[..., Any],
    config: RetryConfig,
    *args: Any,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    operation: str = "operation",
    **kwargs: Any,
) -> Any:
    """Call ``func`` until it succeeds or the attempts run out.

    Args:
        func: Sync or async callable
        config: Attempt count and backoff
        should_retry: Decides whether an error gets another attempt,
            ``is_transient_error`` by default
        operation: Label for log lines

    Raises:
        PermanentError: ``should_retry`` rejected the error
        Exception: the last error once every attempt failed
    """
    retryable = should_retry or is_transient_error
    attempts = max(config.max_attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except (asyncio.CancelledError, PermanentError):
            raise
        except Exception as exc:
            if not retryable(exc):
                logger.error("retry_aborted operation=%s attempt=%d error=%s", operation, attempt, exc)
                raise PermanentError(str(exc)) from exc
            if attempt == attempts:
                logger.error("retry_exhausted operation=%s attempts=%d error=%s", operation, attempts, exc)
                raise
            delay = config.delay_for(attempt - 1)
            logger.warning(
                "retry_scheduled operation=%s attempt=%d/%d delay_s=%.2f error=%s",
                operation,
                attempt,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 1:
                logger.info("retry_succeeded operation=%s attempt=%d", operation, attempt)
            return result

    raise RuntimeError(f"{operation}: no attempt was made")
