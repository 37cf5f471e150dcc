"""
Main retry executor implementation
"""
import logging
import time
from typing import Awaitable, Callable, Optional, Union

from ..errors import FetchError, application_failure
from ..types import CancellationToken, FailureEnvelope, FailureKind, ResponseEnvelope
from .types import (
    RetryConfig,
    RetryResult,
    RetryEvent,
    RetryEventListener,
)
from .config import (
    merge_config,
    calculate_delay,
    classify_failure,
    parse_retry_after,
    async_sleep,
)

logger = logging.getLogger("fetch_pipeline.retry")

FailureHook = Callable[
    [FailureEnvelope], Awaitable[Union[FailureEnvelope, ResponseEnvelope]]
]


def _cancelled_failure(
    failure: Optional[FailureEnvelope], cancel_token: CancellationToken
) -> FailureEnvelope:
    return FailureEnvelope(
        message=cancel_token.reason or "Request cancelled",
        kind=FailureKind.CANCELLED,
        request=failure.request if failure else None,
    )


class RetryExecutor:
    """
    Retry Executor

    Drives the attempt state machine for one logical request:
    Attempt(n) -> Done on success; on failure the failure hook (the error
    interceptor chain) observes it, the result is classified, and the
    executor either waits base * 2^n and moves to Attempt(n + 1), or stops
    in Failed and raises.
    """

    def __init__(self, config: Optional[RetryConfig] = None, executor_id: Optional[str] = None):
        """
        Create a new RetryExecutor.

        Args:
            config: Retry configuration
            executor_id: Optional unique identifier
        """
        self._config = merge_config(config)
        self._id = executor_id or f"retry-{int(time.time() * 1000)}"
        self._listeners: list[RetryEventListener] = []

    def _emit(self, event: RetryEvent) -> None:
        """Emit an event to all listeners."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Retry event listener failed for {event.type}")

    async def execute(
        self,
        fn: Callable[[], Awaitable[ResponseEnvelope]],
        *,
        on_failure: Optional[FailureHook] = None,
        cancel_token: Optional[CancellationToken] = None,
        metadata: Optional[dict] = None,
    ) -> RetryResult[ResponseEnvelope]:
        """
        Execute a transport call with retry logic.

        Args:
            fn: Coroutine function performing one attempt. Failures are raised
                as FetchError; any other exception becomes an APPLICATION failure.
            on_failure: Hook applied to every failed attempt before it is
                classified. May return a ResponseEnvelope to substitute a success.
            cancel_token: Caller cancellation token; stops further attempts.
            metadata: Metadata attached to emitted events

        Returns:
            Result with retry metadata

        Raises:
            FetchError: with the last (hook-transformed) failure
        """
        config = self._config
        start_time = time.monotonic()
        delay_time = 0.0
        attempt = 0
        last_failure: Optional[FailureEnvelope] = None

        while True:
            if cancel_token is not None and cancel_token.cancelled:
                failure = _cancelled_failure(last_failure, cancel_token)
                outcome = await on_failure(failure) if on_failure is not None else failure
                if isinstance(outcome, ResponseEnvelope):
                    return RetryResult(
                        result=outcome,
                        attempts=attempt,
                        total_time_seconds=time.monotonic() - start_time,
                        delay_time_seconds=delay_time,
                    )
                raise FetchError(outcome)

            self._emit(RetryEvent(
                type="attempt:start",
                attempt=attempt,
                data={"metadata": metadata} if metadata else {},
            ))
            attempt_start = time.monotonic()

            try:
                result = await fn()
            except FetchError as error:
                failure = error.failure
            except Exception as error:
                failure = application_failure(error)
            else:
                self._emit(RetryEvent(
                    type="attempt:success",
                    attempt=attempt,
                    data={
                        "duration_seconds": time.monotonic() - attempt_start,
                        "metadata": metadata,
                    },
                ))
                return RetryResult(
                    result=result,
                    attempts=attempt + 1,
                    total_time_seconds=time.monotonic() - start_time,
                    delay_time_seconds=delay_time,
                )

            if on_failure is not None:
                outcome = await on_failure(failure)
                if isinstance(outcome, ResponseEnvelope):
                    logger.debug(
                        f"RetryExecutor[{self._id}]: attempt {attempt} failure replaced by a substitute response"
                    )
                    return RetryResult(
                        result=outcome,
                        attempts=attempt + 1,
                        total_time_seconds=time.monotonic() - start_time,
                        delay_time_seconds=delay_time,
                    )
                failure = outcome

            will_retry = self._should_retry_attempt(failure, attempt, cancel_token)

            self._emit(RetryEvent(
                type="attempt:fail",
                attempt=attempt,
                data={
                    "error": failure.message,
                    "kind": failure.kind.value,
                    "status_code": failure.status_code,
                    "will_retry": will_retry,
                    "metadata": metadata,
                },
            ))

            if not will_retry:
                self._emit(RetryEvent(
                    type="retry:abort",
                    attempt=attempt,
                    data={"kind": failure.kind.value, "metadata": metadata},
                ))
                raise FetchError(failure)

            delay = self._delay_for(failure, attempt)
            delay_time += delay

            self._emit(RetryEvent(
                type="retry:wait",
                attempt=attempt,
                data={
                    "delay_seconds": delay,
                    "metadata": metadata,
                },
            ))
            logger.warning(
                f"RetryExecutor[{self._id}]: attempt {attempt + 1}/{config.max_attempts} failed "
                f"({failure.kind.value}, status={failure.status_code}), retrying in {delay:.3f}s"
            )

            # A cancelled sleep surfaces at the top of the loop
            await async_sleep(delay, cancel_token)
            last_failure = failure
            attempt += 1

    def _should_retry_attempt(
        self,
        failure: FailureEnvelope,
        attempt: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> bool:
        """Determine if we should retry after a failure."""
        if attempt + 1 >= self._config.max_attempts:
            return False

        if cancel_token is not None and cancel_token.cancelled:
            return False

        # A replay request is handled by the caller as a fresh attempt sequence
        if failure.retry_request is not None:
            return False

        return classify_failure(failure, self._config)

    def _delay_for(self, failure: FailureEnvelope, attempt: int) -> float:
        """Backoff delay in seconds after ``attempt`` failed."""
        delay = calculate_delay(attempt, self._config)
        if self._config.respect_retry_after and failure.headers:
            retry_after = None
            for key, value in failure.headers.items():
                if key.lower() == "retry-after":
                    retry_after = value
            if retry_after:
                delay = min(
                    max(delay, parse_retry_after(retry_after)),
                    self._config.max_delay_ms / 1000.0,
                )
        return delay

    def on(self, listener: RetryEventListener) -> Callable[[], None]:
        """
        Add an event listener.

        Args:
            listener: Event listener function

        Returns:
            Function to remove the listener
        """
        self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: RetryEventListener) -> None:
        """Remove an event listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def configure(self, config: RetryConfig) -> None:
        """Replace the configuration used by subsequent executions."""
        self._config = merge_config(config)

    @property
    def id(self) -> str:
        """Get the executor ID."""
        return self._id

    @property
    def config(self) -> RetryConfig:
        """Get the current configuration."""
        return self._config


def create_retry_executor(
    config: Optional[RetryConfig] = None,
    executor_id: Optional[str] = None,
) -> RetryExecutor:
    """Create a new retry executor."""
    return RetryExecutor(config, executor_id)
