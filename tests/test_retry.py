"""
Tests for the retry engine.

Covers backoff calculation, failure classification and the attempt loop:
success paths, retry paths, exhaustion, failure hooks and cancellation.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from fetch_pipeline.errors import FetchError
from fetch_pipeline.retry import (
    RetryConfig,
    RetryExecutor,
    calculate_delay,
    classify_failure,
    create_retry_executor,
    merge_config,
    parse_retry_after,
)
from fetch_pipeline.types import (
    CancellationToken,
    FailureEnvelope,
    FailureKind,
    RequestDescriptor,
    ResponseEnvelope,
)


def http_failure(status):
    return FetchError(FailureEnvelope(message=f"HTTP {status}", kind=FailureKind.HTTP_STATUS, status_code=status))


def ok_response(body="ok"):
    return ResponseEnvelope(body=body, status_code=200, status_text="OK", headers={})


class TestCalculateDelay:
    def test_doubles_per_attempt(self):
        config = RetryConfig(base_delay_ms=1000, max_delay_ms=30000)
        assert calculate_delay(0, config) == 1.0
        assert calculate_delay(1, config) == 2.0
        assert calculate_delay(2, config) == 4.0

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay_ms=1000, max_delay_ms=3000)
        assert calculate_delay(5, config) == 3.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay_ms=1000, max_delay_ms=30000, jitter_factor=0.5)
        for _ in range(50):
            assert 0.75 <= calculate_delay(0, config) <= 1.25


class TestClassifyFailure:
    config = RetryConfig()

    @pytest.mark.parametrize("kind", [FailureKind.TIMEOUT, FailureKind.NETWORK])
    def test_transport_failures_retryable(self, kind):
        assert classify_failure(FailureEnvelope(message="x", kind=kind), self.config) is True

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        failure = FailureEnvelope(message="x", kind=FailureKind.HTTP_STATUS, status_code=status)
        assert classify_failure(failure, self.config) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_not_retryable(self, status):
        failure = FailureEnvelope(message="x", kind=FailureKind.HTTP_STATUS, status_code=status)
        assert classify_failure(failure, self.config) is False

    def test_cancelled_never_retryable(self):
        failure = FailureEnvelope(message="x", kind=FailureKind.CANCELLED)
        assert classify_failure(failure, self.config) is False

    def test_application_errors_follow_flag(self):
        failure = FailureEnvelope(message="x", kind=FailureKind.APPLICATION)
        assert classify_failure(failure, RetryConfig(retry_application_errors=True)) is True
        assert classify_failure(failure, RetryConfig(retry_application_errors=False)) is False

    def test_application_error_with_status_uses_status(self):
        failure = FailureEnvelope(message="x", kind=FailureKind.APPLICATION, status_code=404)
        assert classify_failure(failure, self.config) is False


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_invalid(self):
        assert parse_retry_after("soon") == 0
        assert parse_retry_after(None) == 0


class TestMergeConfig:
    def test_none_returns_fresh_defaults(self):
        a = merge_config(None)
        b = merge_config(None)
        a.retry_on_status.append(999)
        assert 999 not in b.retry_on_status
        assert b.max_attempts == 3

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            merge_config(RetryConfig(max_attempts=0))

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            merge_config(RetryConfig(base_delay_ms=-1))


class TestRetryExecutor:
    """Tests for RetryExecutor class."""

    class TestConstructor:
        def test_default_config(self):
            executor = RetryExecutor()
            assert executor.config.max_attempts == 3
            assert executor.config.base_delay_ms == 1000

        def test_generates_id(self):
            assert RetryExecutor().id.startswith("retry-")

        def test_uses_provided_id(self):
            assert create_retry_executor(executor_id="custom-id").id == "custom-id"

    class TestExecute:
        @pytest.mark.asyncio
        async def test_immediate_success(self):
            executor = RetryExecutor(RetryConfig(base_delay_ms=1))
            fn = AsyncMock(return_value=ok_response())

            result = await executor.execute(fn)

            assert result.result.body == "ok"
            assert result.attempts == 1
            assert result.delay_time_seconds == 0
            fn.assert_awaited_once()

        @pytest.mark.asyncio
        async def test_retries_then_succeeds(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))
            fn = AsyncMock(side_effect=[http_failure(500), http_failure(503), ok_response()])

            result = await executor.execute(fn)

            assert result.attempts == 3
            assert fn.await_count == 3

        @pytest.mark.asyncio
        async def test_backoff_delays_double(self):
            """Delays after attempts 0 and 1 are base and 2 * base."""
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1000))
            fn = AsyncMock(side_effect=[http_failure(500), http_failure(500), ok_response()])

            with patch("fetch_pipeline.retry.executor.async_sleep", new=AsyncMock(return_value=False)) as sleep:
                result = await executor.execute(fn)

            assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
            assert result.delay_time_seconds == 3.0

        @pytest.mark.asyncio
        async def test_max_attempts_is_total_attempts(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))
            fn = AsyncMock(side_effect=http_failure(500))

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn)

            assert fn.await_count == 3
            assert exc_info.value.status_code == 500

        @pytest.mark.asyncio
        async def test_single_attempt_config(self):
            executor = RetryExecutor(RetryConfig(max_attempts=1, base_delay_ms=1))
            fn = AsyncMock(side_effect=http_failure(503))

            with pytest.raises(FetchError):
                await executor.execute(fn)

            assert fn.await_count == 1

        @pytest.mark.asyncio
        async def test_non_retryable_fails_immediately(self):
            executor = RetryExecutor(RetryConfig(max_attempts=5, base_delay_ms=1))
            fn = AsyncMock(side_effect=http_failure(404))

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn)

            assert fn.await_count == 1
            assert exc_info.value.kind == FailureKind.HTTP_STATUS

        @pytest.mark.asyncio
        async def test_plain_exception_becomes_application_failure(self):
            executor = RetryExecutor(RetryConfig(max_attempts=2, base_delay_ms=1, retry_application_errors=False))
            fn = AsyncMock(side_effect=KeyError("missing"))

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn)

            assert exc_info.value.kind == FailureKind.APPLICATION
            assert fn.await_count == 1

    class TestFailureHook:
        @pytest.mark.asyncio
        async def test_hook_sees_every_failed_attempt_once(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))
            seen = []

            async def hook(failure):
                seen.append(failure.status_code)
                return failure

            fn = AsyncMock(side_effect=[http_failure(500), http_failure(502), http_failure(503)])

            with pytest.raises(FetchError):
                await executor.execute(fn, on_failure=hook)

            assert seen == [500, 502, 503]

        @pytest.mark.asyncio
        async def test_classification_uses_hook_output(self):
            """A hook that rewrites a 500 into a 400 stops the retries."""
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))

            async def hook(failure):
                return failure.replace(status_code=400)

            fn = AsyncMock(side_effect=http_failure(500))

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn, on_failure=hook)

            assert fn.await_count == 1
            assert exc_info.value.status_code == 400

        @pytest.mark.asyncio
        async def test_substitute_response_returned(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))
            substitute = ok_response("fallback")

            async def hook(failure):
                return substitute

            fn = AsyncMock(side_effect=http_failure(500))

            result = await executor.execute(fn, on_failure=hook)

            assert result.result is substitute
            assert fn.await_count == 1

        @pytest.mark.asyncio
        async def test_retry_request_stops_loop(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=1))

            async def hook(failure):
                return failure.replace(retry_request=RequestDescriptor(url="https://api.example.com/x"))

            fn = AsyncMock(side_effect=http_failure(503))

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn, on_failure=hook)

            assert fn.await_count == 1
            assert exc_info.value.failure.retry_request is not None

    class TestCancellation:
        @pytest.mark.asyncio
        async def test_cancelled_before_start(self):
            executor = RetryExecutor(RetryConfig(base_delay_ms=1))
            token = CancellationToken()
            token.cancel("stop")
            fn = AsyncMock(return_value=ok_response())

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(fn, cancel_token=token)

            assert exc_info.value.kind == FailureKind.CANCELLED
            fn.assert_not_awaited()

        @pytest.mark.asyncio
        async def test_cancelled_before_start_reaches_hook(self):
            executor = RetryExecutor(RetryConfig(base_delay_ms=1))
            token = CancellationToken()
            token.cancel("stop")
            seen = []

            async def hook(failure):
                seen.append(failure.kind)
                return failure

            with pytest.raises(FetchError) as exc_info:
                await executor.execute(AsyncMock(return_value=ok_response()), on_failure=hook, cancel_token=token)

            assert seen == [FailureKind.CANCELLED]
            assert exc_info.value.failure.message == "stop"

        @pytest.mark.asyncio
        async def test_hook_can_substitute_for_cancellation(self):
            executor = RetryExecutor(RetryConfig(base_delay_ms=1))
            token = CancellationToken()
            token.cancel()
            substitute = ok_response("offline")
            fn = AsyncMock(return_value=ok_response())

            async def hook(failure):
                return substitute

            result = await executor.execute(fn, on_failure=hook, cancel_token=token)

            assert result.result is substitute
            assert result.attempts == 0
            fn.assert_not_awaited()

        @pytest.mark.asyncio
        async def test_cancel_during_backoff(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=10_000, max_delay_ms=10_000))
            token = CancellationToken()
            fn = AsyncMock(side_effect=http_failure(500))

            task = asyncio.ensure_future(executor.execute(fn, cancel_token=token))
            await asyncio.sleep(0.01)
            token.cancel()

            with pytest.raises(FetchError) as exc_info:
                await asyncio.wait_for(task, timeout=1)

            assert exc_info.value.kind == FailureKind.CANCELLED
            assert fn.await_count == 1

        @pytest.mark.asyncio
        async def test_cancel_during_backoff_reaches_hook(self):
            executor = RetryExecutor(RetryConfig(max_attempts=3, base_delay_ms=10_000, max_delay_ms=10_000))
            token = CancellationToken()
            seen = []

            async def hook(failure):
                seen.append(failure.kind)
                return failure

            fn = AsyncMock(side_effect=http_failure(500))

            task = asyncio.ensure_future(executor.execute(fn, on_failure=hook, cancel_token=token))
            await asyncio.sleep(0.01)
            token.cancel()

            with pytest.raises(FetchError) as exc_info:
                await asyncio.wait_for(task, timeout=1)

            assert seen == [FailureKind.HTTP_STATUS, FailureKind.CANCELLED]
            assert exc_info.value.kind == FailureKind.CANCELLED
            assert fn.await_count == 1

    class TestEvents:
        @pytest.mark.asyncio
        async def test_event_sequence(self):
            executor = RetryExecutor(RetryConfig(max_attempts=2, base_delay_ms=1))
            events = []
            executor.on(lambda e: events.append(e.type))
            fn = AsyncMock(side_effect=[http_failure(500), ok_response()])

            await executor.execute(fn)

            assert events == [
                "attempt:start",
                "attempt:fail",
                "retry:wait",
                "attempt:start",
                "attempt:success",
            ]

        def test_off(self):
            executor = RetryExecutor()
            listener = lambda e: None  # noqa: E731
            executor.on(listener)
            executor.off(listener)
            executor.off(listener)
