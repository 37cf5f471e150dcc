"""
Type definitions for fetch_pipeline.
"""
import asyncio
from dataclasses import dataclass, field, replace as dataclass_replace
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    Union,
)


# HTTP methods
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# Cache policies
#
# - default: read the response cache and store fresh results
# - no-cache: skip the lookup, still store the fresh result
# - force-cache: serve any stored entry regardless of its age
CachePolicy = Literal["default", "no-cache", "force-cache"]

ParamValue = Union[str, int, float, bool, None]


class FailureKind(str, Enum):
    """Failure classification, decided where the failure is first observed."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    APPLICATION = "application"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MultipartBody:
    """Multipart payload, handed to httpx as ``files``/``data``."""

    files: Any = None
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RequestDescriptor:
    """Transport-ready request.

    Frozen: interceptors build a new descriptor with ``replace`` or
    ``with_headers`` instead of mutating one that concurrent requests share.
    """

    url: str
    method: HttpMethod = "GET"
    params: Tuple[Tuple[str, str], ...] = ()
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_ms: float = 30000
    allow_credentials: bool = False
    cache_policy: CachePolicy = "default"
    content: Optional[Union[str, bytes]] = None
    """Serialized body as sent on the wire (None for multipart and GET)."""

    def replace(self, **changes: Any) -> "RequestDescriptor":
        """Return a copy with ``changes`` applied."""
        if "headers" in changes:
            changes["headers"] = dict(changes["headers"])
        return dataclass_replace(self, **changes)

    def with_headers(self, headers: Mapping[str, str]) -> "RequestDescriptor":
        """Return a copy with ``headers`` merged over the current ones."""
        merged = {
            k: v for k, v in self.headers.items()
            if k.lower() not in {h.lower() for h in headers}
        }
        merged.update(headers)
        return dataclass_replace(self, headers=merged)

    def without_headers(self, *names: str) -> "RequestDescriptor":
        """Return a copy without the given headers (case-insensitive)."""
        lowered = {n.lower() for n in names}
        return dataclass_replace(
            self,
            headers={k: v for k, v in self.headers.items() if k.lower() not in lowered},
        )

    def get_header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lowered:
                return v
        return None


@dataclass
class ResponseEnvelope:
    """Response handed back to callers."""

    body: Any
    status_code: int
    status_text: str
    headers: Dict[str, str]
    request: Optional[RequestDescriptor] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class FailureEnvelope:
    """Structured failure surfaced to callers and error interceptors."""

    message: str
    kind: FailureKind
    status_code: Optional[int] = None
    body: Any = None
    request: Optional[RequestDescriptor] = None
    headers: Optional[Dict[str, str]] = None
    cause: Optional[BaseException] = None
    retry_request: Optional[RequestDescriptor] = None
    """Set by an error interceptor to ask for one replay of the request."""

    def replace(self, **changes: Any) -> "FailureEnvelope":
        """Return a copy with ``changes`` applied."""
        return dataclass_replace(self, **changes)


@dataclass
class CacheEntry:
    """Stored response body. Owned by the response cache."""

    body: Any
    stored_at_ms: float
    method: str = "GET"
    url: str = ""


class CancellationToken:
    """Caller-side cancellation signal.

    Passed in request options; cancelling it aborts the active attempt and
    skips further retries.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Request cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


RequestInterceptor = Callable[
    [RequestDescriptor], Union[RequestDescriptor, Awaitable[RequestDescriptor]]
]
ResponseInterceptor = Callable[
    [ResponseEnvelope], Union[ResponseEnvelope, Awaitable[ResponseEnvelope]]
]
ErrorInterceptorResult = Union[FailureEnvelope, ResponseEnvelope, None]
ErrorInterceptor = Callable[
    [FailureEnvelope], Union[ErrorInterceptorResult, Awaitable[ErrorInterceptorResult]]
]
Detach = Callable[[], None]


class Serializer(Protocol):
    """Serializer protocol for custom JSON handling."""

    def serialize(self, data: Any) -> str:
        """Serialize data to string."""
        ...

    def deserialize(self, text: str) -> Any:
        """Deserialize string to data."""
        ...
