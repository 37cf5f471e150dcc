"""
Retry with exponential backoff over classified transport failures.
"""
from .types import (
    RetryConfig,
    RetryResult,
    RetryEvent,
    RetryEventListener,
)
from .config import (
    DEFAULT_RETRY_CONFIG,
    calculate_delay,
    classify_failure,
    is_retryable_status,
    parse_retry_after,
    merge_config,
    async_sleep,
)
from .executor import (
    RetryExecutor,
    create_retry_executor,
)


__all__ = [
    # Types
    "RetryConfig",
    "RetryResult",
    "RetryEvent",
    "RetryEventListener",
    # Config
    "DEFAULT_RETRY_CONFIG",
    "calculate_delay",
    "classify_failure",
    "is_retryable_status",
    "parse_retry_after",
    "merge_config",
    "async_sleep",
    # Executor
    "RetryExecutor",
    "create_retry_executor",
]
