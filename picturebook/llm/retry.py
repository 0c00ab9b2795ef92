"""Bounded exponential-backoff retry for upstream model calls"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from pydantic import BaseModel, Field

from picturebook.errors import PictureBookError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 503, 529}
RETRYABLE_MARKERS = (
    "overloaded",
    "rate limit",
    "rate_limit",
    "resource exhausted",
    "resource_exhausted",
    "too many requests",
    "server busy",
    "unavailable",
    "quota",
)


class RetryPolicy(BaseModel):
    """Retry budget for one call path"""
    max_retries: int = Field(default=3, ge=1, description="Total attempts, including the first")
    base_delay: float = Field(default=1.0, ge=0.0, description="Seconds before the second attempt")

    @classmethod
    def from_config(
        cls,
        config: Optional[Dict[str, Any]],
        name: str,
        default: Optional["RetryPolicy"] = None
    ) -> "RetryPolicy":
        """Read `retry.<name>` from the app config"""
        base = default or cls()
        section = ((config or {}).get("retry") or {}).get(name) or {}
        return cls(
            max_retries=section.get("max_retries", base.max_retries),
            base_delay=section.get("base_delay", base.base_delay),
        )


# Defaults per call path
CHARACTER_REFERENCE_RETRY = RetryPolicy(max_retries=3, base_delay=2.0)
PAGE_RENDER_RETRY = RetryPolicy(max_retries=3, base_delay=2.0)
CONSISTENCY_RETRY = RetryPolicy(max_retries=3, base_delay=1.0)
PLAN_RETRY = RetryPolicy(max_retries=3, base_delay=1.0)


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as transient (rate limit, overload, busy) or fatal"""
    if isinstance(exc, PictureBookError):
        return exc.retryable

    for attr in ("status", "status_code", "code"):
        status = getattr(exc, attr, None)
        if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
            return True

    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> T:
    """
    Run an async operation with bounded exponential backoff.

    Retryable failures wait ``base_delay * 2**attempt`` seconds before the next
    attempt, up to ``max_retries`` attempts in total. A fatal error, or the last
    retryable one once the budget is spent, is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Total number of attempts
        base_delay: Delay in seconds after the first failure
        label: Name used in log lines
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result
    """
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt == attempts - 1:
                raise

            delay = base_delay * (2 ** attempt)
            logger.info(
                f"[Retry] {label} attempt {attempt + 1}/{attempts} failed ({e}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    # range(attempts) always returns or raises
    raise RuntimeError(f"{label}: retry loop exited without a result")


async def call_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> T:
    """Shorthand for with_retry driven by a RetryPolicy"""
    return await with_retry(
        operation,
        max_retries=policy.max_retries,
        base_delay=policy.base_delay,
        label=label,
        sleep=sleep,
    )
