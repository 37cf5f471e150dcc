"""
Backoff and classification rules for the retry engine
"""
import asyncio
import random
import time
from email.utils import parsedate_to_datetime
from typing import Optional

from ..types import CancellationToken, FailureEnvelope, FailureKind
from .types import RetryConfig


# Default retry configuration
DEFAULT_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay_ms=1000,
    max_delay_ms=30000,
    jitter_factor=0.0,
    retry_on_status=[408, 429, 500, 502, 503, 504],
    retry_application_errors=True,
    respect_retry_after=False,
)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate the delay before the attempt following ``attempt``.

    delay = min(max_delay, base * 2^attempt), optionally spread by jitter:
    with jitter_factor j the delay is drawn from
    [delay * (1 - j/2), delay * (1 + j/2)].

    Args:
        attempt: The attempt that just failed (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    base_delay = min(config.max_delay_ms, config.base_delay_ms * (2 ** attempt))

    jitter = config.jitter_factor
    if jitter:
        jitter_amount = random.random() * jitter * base_delay
        base_delay = base_delay * (1 - jitter / 2) + jitter_amount

    return min(base_delay, config.max_delay_ms) / 1000.0


def is_retryable_status(status: int, config: RetryConfig) -> bool:
    """
    Check if an HTTP status code should trigger a retry.

    Args:
        status: The HTTP status code
        config: Retry configuration

    Returns:
        Whether the status is retryable
    """
    return status in config.retry_on_status


def classify_failure(failure: FailureEnvelope, config: RetryConfig) -> bool:
    """
    Decide whether a failure is eligible for another attempt.

    Args:
        failure: The (interceptor-transformed) failure of the last attempt
        config: Retry configuration

    Returns:
        Whether the failure is retryable
    """
    kind = failure.kind

    if kind in (FailureKind.TIMEOUT, FailureKind.NETWORK):
        return True

    if kind == FailureKind.HTTP_STATUS:
        return failure.status_code is not None and is_retryable_status(
            failure.status_code, config
        )

    if kind == FailureKind.APPLICATION:
        if failure.status_code is not None:
            return is_retryable_status(failure.status_code, config)
        return config.retry_application_errors

    return False


def parse_retry_after(value: Optional[str]) -> float:
    """
    Parse Retry-After header value.

    The Retry-After header can contain either:
    - A number of seconds to wait
    - An HTTP-date indicating when to retry

    Args:
        value: Retry-After header value

    Returns:
        Wait time in seconds, or 0 if parsing fails
    """
    if not value:
        return 0

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        dt = parsedate_to_datetime(value)
        return max(0, dt.timestamp() - time.time())
    except (ValueError, TypeError):
        pass

    return 0


def merge_config(config: Optional[RetryConfig] = None) -> RetryConfig:
    """
    Merge configuration with defaults.

    Args:
        config: User-provided configuration

    Returns:
        Complete configuration with defaults
    """
    if config is None:
        return RetryConfig(
            max_attempts=DEFAULT_RETRY_CONFIG.max_attempts,
            base_delay_ms=DEFAULT_RETRY_CONFIG.base_delay_ms,
            max_delay_ms=DEFAULT_RETRY_CONFIG.max_delay_ms,
            jitter_factor=DEFAULT_RETRY_CONFIG.jitter_factor,
            retry_on_status=list(DEFAULT_RETRY_CONFIG.retry_on_status),
            retry_application_errors=DEFAULT_RETRY_CONFIG.retry_application_errors,
            respect_retry_after=DEFAULT_RETRY_CONFIG.respect_retry_after,
        )
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if config.base_delay_ms < 0:
        raise ValueError("base_delay_ms must not be negative")
    return config


async def async_sleep(
    seconds: float, cancel_token: Optional[CancellationToken] = None
) -> bool:
    """
    Sleep for a specified duration, waking early on cancellation.

    Args:
        seconds: Duration in seconds
        cancel_token: Optional caller cancellation token

    Returns:
        True if the sleep was interrupted by the token
    """
    if cancel_token is None:
        await asyncio.sleep(seconds)
        return False
    if cancel_token.cancelled:
        return True

    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        done, _ = await asyncio.wait({waiter}, timeout=seconds)
        return waiter in done
    finally:
        if not waiter.done():
            waiter.cancel()
