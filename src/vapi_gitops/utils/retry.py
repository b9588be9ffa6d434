"""Retry utilities with exponential backoff.

Uses the backoff library. Rate-limit responses and transport
failures are retried; every other error propagates at once.
"""

from collections.abc import Callable, Mapping
from typing import Any

import backoff
import httpx
from loguru import logger

from vapi_gitops.errors import RateLimitedError

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (RateLimitedError, httpx.TransportError)


def on_backoff(details: Mapping[str, Any]) -> None:
    """Log retry attempts."""
    logger.warning(
        "Retrying {}: attempt={} wait={}s error={}",
        details["target"].__name__,
        details["tries"],
        details["wait"],
        details["exception"],
    )


def on_giveup(details: Mapping[str, Any]) -> None:
    """Log when retries are exhausted."""
    logger.error(
        "Gave up on {}: attempts={} error={}",
        details["target"].__name__,
        details["tries"],
        details["exception"],
    )


def retry_rate_limited(
    max_retries: int,
    initial_delay: float,
    extra_on_backoff: Callable[[Mapping[str, Any]], None] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Build a decorator that retries rate-limited and transport failures.

    Waits double from ``initial_delay`` with no jitter, so consecutive
    waits strictly increase.

    Args:
        max_retries: Retries after the first attempt.
        initial_delay: First wait in seconds.
        extra_on_backoff: Additional handler invoked on every backoff.
    """
    handlers = [on_backoff]
    if extra_on_backoff is not None:
        handlers.append(extra_on_backoff)

    return backoff.on_exception(
        backoff.expo,
        RETRYABLE_ERRORS,
        max_tries=max_retries + 1,
        factor=initial_delay,
        jitter=None,
        on_backoff=handlers,
        on_giveup=on_giveup,
    )
