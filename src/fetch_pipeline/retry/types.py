"""
Type definitions for the retry engine
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Literal, TypeVar


T = TypeVar("T")


@dataclass
class RetryConfig:
    """Retry configuration"""

    max_attempts: int = 3
    """Total number of transport attempts, the first one included. Default: 3"""

    base_delay_ms: float = 1000
    """Base delay for exponential backoff (milliseconds). Default: 1000"""

    max_delay_ms: float = 30000
    """Maximum delay between attempts (milliseconds). Default: 30000"""

    jitter_factor: float = 0.0
    """Jitter factor (0-1). Default: 0 (plain exponential delay)"""

    retry_on_status: list[int] = field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504]
    )
    """HTTP status codes that should trigger retry"""

    retry_application_errors: bool = True
    """Whether APPLICATION failures without a status code are retried"""

    respect_retry_after: bool = False
    """Whether a Retry-After response header overrides the computed delay"""


@dataclass
class RetryResult(Generic[T]):
    """Result of a retried operation"""

    result: T
    """The result of the operation"""

    attempts: int
    """Number of attempts made (1 if succeeded on first try)"""

    total_time_seconds: float
    """Total time spent including retries (seconds)"""

    delay_time_seconds: float
    """Time spent in backoff delays (seconds)"""


# Event types
EventType = Literal[
    "attempt:start",
    "attempt:success",
    "attempt:fail",
    "retry:wait",
    "retry:abort",
]


@dataclass
class RetryEvent:
    """Event emitted by the retry executor"""

    type: EventType
    """Event type"""

    attempt: int
    """Current attempt number (0-indexed)"""

    data: dict[str, Any] = field(default_factory=dict)
    """Event-specific data"""


# Event listener type
RetryEventListener = Callable[[RetryEvent], None]
