"""
Request coalescing (Singleflight) implementation.

When multiple identical requests are made concurrently, only one
actually executes - others wait and receive the same result.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Set, TypeVar

logger = logging.getLogger("fetch_pipeline.singleflight")

T = TypeVar("T")


@dataclass
class InFlightRequest(Generic[T]):
    """In-flight request tracker."""

    task: "asyncio.Future[T]"
    """Shared outcome; settles once for every subscriber."""

    subscribers: int = 1
    """Number of callers waiting on this request."""

    started_at: float = 0
    """When the request was initiated (Unix timestamp)."""


@dataclass
class SingleflightResult(Generic[T]):
    """Result of a singleflight operation."""

    value: T
    """The result value."""

    shared: bool
    """Whether this caller joined a request another caller started."""

    subscribers: int
    """Number of callers that shared this result."""


class SingleflightEventType(str, Enum):
    """Event types for singleflight operations."""

    LEAD = "singleflight:lead"
    JOIN = "singleflight:join"
    COMPLETE = "singleflight:complete"
    ERROR = "singleflight:error"


@dataclass
class SingleflightEvent:
    """Singleflight event."""

    type: SingleflightEventType
    key: str
    timestamp: float
    metadata: Optional[Dict[str, Any]] = None


SingleflightEventListener = Callable[[SingleflightEvent], None]


class Singleflight:
    """
    Singleflight - Request coalescing for concurrent identical requests.

    Implements the "singleflight" pattern (popularized by Go's sync/singleflight):
    when several tasks request the same fingerprint simultaneously, the
    producer runs once and every caller awaits the same outcome.

    The producer runs in its own task. Its registry entry is removed by a
    done-callback, which fires on success, failure and cancellation alike,
    so a failed request never blocks later attempts at the same fingerprint.

    Example:
        sf = Singleflight()

        # These 50 concurrent calls result in only 1 actual fetch
        async def fetch_data():
            return await sf.do("GET https://api/data", lambda: client.get("/data"))

        results = await asyncio.gather(*[fetch_data() for _ in range(50)])
        print(results[0].shared)  # False (the leader)
        print(results[1].shared)  # True (joined existing)
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._listeners: Set[SingleflightEventListener] = set()

    def reserve_or_join(
        self,
        fingerprint: str,
        producer: Callable[[], Awaitable[T]],
    ) -> "asyncio.Future[T]":
        """
        Return the shared outcome for ``fingerprint``.

        Starts ``producer`` if nothing is in flight for the fingerprint,
        otherwise joins the existing outcome.
        """
        existing = self._in_flight.get(fingerprint)
        if existing is not None and existing.task.done():
            # Settled, removal callback not yet run
            del self._in_flight[fingerprint]
            existing = None

        if existing is not None:
            existing.subscribers += 1
            self._emit(
                SingleflightEventType.JOIN,
                fingerprint,
                {"subscribers": existing.subscribers},
            )
            logger.debug(
                f"Singleflight: joined {fingerprint} (subscribers={existing.subscribers})"
            )
            return existing.task

        task = asyncio.ensure_future(producer())
        in_flight = InFlightRequest(task=task, subscribers=1, started_at=time.time())
        self._in_flight[fingerprint] = in_flight
        task.add_done_callback(
            lambda done, key=fingerprint, entry=in_flight: self._settle(key, entry)
        )

        self._emit(SingleflightEventType.LEAD, fingerprint)
        logger.debug(f"Singleflight: leading {fingerprint}")
        return task

    async def do(
        self,
        fingerprint: str,
        producer: Callable[[], Awaitable[T]],
    ) -> SingleflightResult[T]:
        """
        Execute ``producer`` with request coalescing.

        A caller that is cancelled stops waiting without cancelling the
        shared work other callers still wait on.
        """
        existing = self._in_flight.get(fingerprint)
        shared = existing is not None and not existing.task.done()
        task = self.reserve_or_join(fingerprint, producer)
        entry = self._in_flight.get(fingerprint)

        value = await asyncio.shield(task)
        return SingleflightResult(
            value=value,
            shared=shared,
            subscribers=entry.subscribers if entry else 1,
        )

    def _settle(self, fingerprint: str, entry: InFlightRequest) -> None:
        """Done-callback: drop the entry and report the outcome."""
        if self._in_flight.get(fingerprint) is entry:
            del self._in_flight[fingerprint]

        task = entry.task
        if task.cancelled():
            self._emit(SingleflightEventType.ERROR, fingerprint, {"error": "cancelled"})
            return

        error = task.exception()  # marks the exception as retrieved
        if error is not None:
            self._emit(SingleflightEventType.ERROR, fingerprint, {"error": str(error)})
        else:
            self._emit(
                SingleflightEventType.COMPLETE,
                fingerprint,
                {
                    "subscribers": entry.subscribers,
                    "duration_seconds": time.time() - entry.started_at,
                },
            )

    def is_in_flight(self, fingerprint: str) -> bool:
        """Check if a request is currently in-flight (started and not yet settled)."""
        existing = self._in_flight.get(fingerprint)
        return existing is not None and not existing.task.done()

    def get_subscribers(self, fingerprint: str) -> int:
        """Get the number of subscribers for an in-flight request."""
        existing = self._in_flight.get(fingerprint)
        return existing.subscribers if existing else 0

    def size(self) -> int:
        """Get current number of in-flight requests."""
        return len(self._in_flight)

    def on(self, listener: SingleflightEventListener) -> Callable[[], None]:
        """Add event listener."""
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def off(self, listener: SingleflightEventListener) -> None:
        """Remove event listener."""
        self._listeners.discard(listener)

    def _emit(
        self,
        event_type: SingleflightEventType,
        key: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit an event to all listeners."""
        if not self._listeners:
            return
        event = SingleflightEvent(type=event_type, key=key, timestamp=time.time(), metadata=metadata)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Singleflight event listener failed for {event_type.value}")

    def clear(self) -> None:
        """Forget all in-flight requests (use with caution: running tasks keep going)."""
        self._in_flight.clear()

    def close(self) -> None:
        """Clear entries and listeners."""
        self._in_flight.clear()
        self._listeners.clear()
