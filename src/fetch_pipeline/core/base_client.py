"""
Pipeline HTTP client using httpx.
"""
import asyncio
import copy
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple

import httpx

from ..cache import ResponseCache
from ..config import ClientConfig, ResolvedConfig, resolve_config
from ..errors import ConfigError, FetchError, application_failure
from ..retry import RetryExecutor, create_retry_executor
from ..singleflight import Singleflight, SingleflightResult
from ..types import (
    CachePolicy,
    CancellationToken,
    Detach,
    ErrorInterceptor,
    FailureEnvelope,
    FailureKind,
    HttpMethod,
    ParamValue,
    RequestDescriptor,
    RequestInterceptor,
    ResponseEnvelope,
    ResponseInterceptor,
)
from .interceptors import InterceptorRegistry
from .request_builder import (
    build_descriptor,
    build_url,
    compute_fingerprint,
    full_url,
    normalize_url,
)
from .transport import TransportExecutor

logger = logging.getLogger("fetch_pipeline.base_client")


class AsyncFetchClient:
    """Asynchronous HTTP client running every request through the pipeline.

    request interceptors -> fingerprint -> in-flight registry -> response
    cache -> transport (with retry, failures observed by the error chain)
    -> response interceptors -> cache write.

    Each client owns its cache, in-flight registry and interceptor chains;
    two clients never share state.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        httpx_client: Optional[httpx.AsyncClient] = None,
        *,
        cache: Optional[ResponseCache] = None,
        singleflight: Optional[Singleflight] = None,
    ):
        config = config or ClientConfig()
        self._config: ResolvedConfig = resolve_config(config)

        client = httpx_client if httpx_client is not None else config.httpx_client
        if client is None:
            # Deadlines are enforced per attempt by the transport executor
            client = httpx.AsyncClient(timeout=None, verify=self._config.verify_ssl)
        self._client = client

        self._interceptors = InterceptorRegistry()
        self._cache = cache or ResponseCache(
            ttl_ms=self._config.cache_ttl_ms,
            methods=self._config.cache_methods,
        )
        self._singleflight = singleflight or Singleflight()
        self._retry = create_retry_executor(self._config.retry)
        self._transport = TransportExecutor(
            client,
            base_url=self._config.base_url,
            serializer=self._config.serializer,
            debug=self._config.debug,
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Caller-facing surface
    # ------------------------------------------------------------------

    async def request(
        self,
        method: HttpMethod = "GET",
        path: str = "/",
        body: Any = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, ParamValue]] = None,
        timeout_ms: Optional[float] = None,
        cache_policy: CachePolicy = "default",
        allow_credentials: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """Make a generic HTTP request.

        Raises:
            ConfigError: the URL or params cannot form a valid request
            FetchError: the request failed; ``.failure`` holds the envelope
        """
        self._ensure_open()
        descriptor = build_descriptor(
            self._config,
            method,
            path,
            body,
            headers=headers,
            params=params,
            timeout_ms=timeout_ms,
            cache_policy=cache_policy,
            allow_credentials=allow_credentials,
        )
        return await self.send(descriptor, cancel_token=cancel_token)

    async def get(self, path: str, **options: Any) -> ResponseEnvelope:
        """GET request."""
        return await self.request("GET", path, **options)

    async def post(self, path: str, body: Any = None, **options: Any) -> ResponseEnvelope:
        """POST request."""
        return await self.request("POST", path, body, **options)

    async def put(self, path: str, body: Any = None, **options: Any) -> ResponseEnvelope:
        """PUT request."""
        return await self.request("PUT", path, body, **options)

    async def patch(self, path: str, body: Any = None, **options: Any) -> ResponseEnvelope:
        """PATCH request."""
        return await self.request("PATCH", path, body, **options)

    async def delete(self, path: str, **options: Any) -> ResponseEnvelope:
        """DELETE request."""
        return await self.request("DELETE", path, **options)

    async def send(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """Run a built descriptor through the pipeline."""
        self._ensure_open()

        try:
            prepared = await self._interceptors.run_request(descriptor)
        except ConfigError:
            raise
        except Exception as error:
            logger.debug(f"Request interceptor failed for {descriptor.method} {descriptor.url}: {error}")
            return await self._surface(application_failure(error, descriptor))

        fingerprint = compute_fingerprint(prepared)
        producer = lambda: self._resolve(prepared, fingerprint, cancel_token)  # noqa: E731
        if cancel_token is not None and self._singleflight.is_in_flight(fingerprint):
            result = await self._join_cancellable(fingerprint, producer, prepared, cancel_token)
        else:
            result = await self._singleflight.do(fingerprint, producer)
        if result.shared:
            logger.debug(f"Shared in-flight result for {fingerprint} (subscribers={result.subscribers})")
            return copy.deepcopy(result.value)
        return result.value

    async def _join_cancellable(
        self,
        fingerprint: str,
        producer: Callable[[], Awaitable[ResponseEnvelope]],
        descriptor: RequestDescriptor,
        cancel_token: CancellationToken,
    ) -> SingleflightResult[ResponseEnvelope]:
        """Join an in-flight request, giving up when ``cancel_token`` fires.

        Only this caller stops waiting; the shared request keeps running for
        the other subscribers.
        """
        shared = asyncio.ensure_future(self._singleflight.do(fingerprint, producer))
        cancelled = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait({shared, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [w for w in (shared, cancelled) if not w.done()]
            for waiter in pending:
                waiter.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if shared in done:
            return shared.result()

        logger.debug(f"Joined request {fingerprint} cancelled by caller")
        substitute = await self._surface(FailureEnvelope(
            message=cancel_token.reason or "Request cancelled",
            kind=FailureKind.CANCELLED,
            request=descriptor,
        ))
        return SingleflightResult(value=substitute, shared=False, subscribers=1)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        descriptor: RequestDescriptor,
        fingerprint: str,
        cancel_token: Optional[CancellationToken],
    ) -> ResponseEnvelope:
        """Cache check, transport with retry, response chain and cache write."""
        policy = descriptor.cache_policy
        cacheable = self._cache.is_cacheable_method(descriptor.method)

        if cacheable and policy != "no-cache":
            entry = self._cache.get(fingerprint, ignore_ttl=(policy == "force-cache"))
            if entry is not None:
                logger.debug(f"Cache hit: {fingerprint}")
                return self._cache.to_response(entry, descriptor)
            logger.debug(f"Cache miss: {fingerprint}")

        response, substituted = await self._execute(descriptor, cancel_token)
        if substituted:
            return response

        try:
            response = await self._interceptors.run_response(response)
        except Exception as error:
            logger.debug(f"Response interceptor failed for {descriptor.method} {descriptor.url}: {error}")
            return await self._surface(application_failure(error, descriptor))

        if self._cache.should_store(descriptor.method, response.status_code):
            self._cache.set(
                fingerprint,
                response.body,
                method=descriptor.method,
                url=normalize_url(full_url(descriptor)),
            )

        return response

    async def _execute(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional[CancellationToken],
    ) -> Tuple[ResponseEnvelope, bool]:
        """Attempt loop; replays once when an error interceptor asks for it.

        Returns:
            (response, substituted) where substituted is True when an error
            interceptor supplied the response instead of the network
        """
        substitutes: List[ResponseEnvelope] = []

        async def observe(failure: FailureEnvelope):
            outcome = await self._interceptors.run_error(failure)
            if isinstance(outcome, ResponseEnvelope):
                substitutes.append(outcome)
            return outcome

        current = descriptor
        replayed = False
        while True:
            try:
                result = await self._retry.execute(
                    lambda target=current: self._transport.send(target, cancel_token),
                    on_failure=observe,
                    cancel_token=cancel_token,
                    metadata={"method": current.method, "url": current.url},
                )
            except FetchError as error:
                retry_request = error.failure.retry_request
                if retry_request is not None and not replayed:
                    logger.info(f"Replaying {retry_request.method} {retry_request.url} as a new attempt sequence")
                    replayed = True
                    current = retry_request
                    continue
                raise

            response = result.result
            return response, any(response is s for s in substitutes)

    async def _surface(self, failure: FailureEnvelope) -> ResponseEnvelope:
        """Pass a failure through the error chain and raise it, unless substituted."""
        outcome = await self._interceptors.run_error(failure)
        if isinstance(outcome, ResponseEnvelope):
            return outcome
        raise FetchError(outcome)

    # ------------------------------------------------------------------
    # Interceptors
    # ------------------------------------------------------------------

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> Detach:
        """Register a request interceptor; returns its detach callable."""
        return self._interceptors.request.add(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> Detach:
        """Register a response interceptor; returns its detach callable."""
        return self._interceptors.response.add(interceptor)

    def add_error_interceptor(self, interceptor: ErrorInterceptor) -> Detach:
        """Register an error interceptor; returns its detach callable."""
        return self._interceptors.error.add(interceptor)

    # ------------------------------------------------------------------
    # Cache and retry control
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Drop every cached response."""
        self._cache.clear()

    def invalidate_cache(self, path: str, method: HttpMethod = "GET") -> int:
        """Drop cached responses for ``path``.

        A path without a query string also drops entries cached for the same
        path with query parameters.
        """
        url = normalize_url(build_url(self._config.base_url, path))
        return self._cache.invalidate_url(method, url)

    def set_cache_ttl(self, ttl_ms: float) -> None:
        """Set the cache TTL in milliseconds."""
        try:
            self._cache.set_ttl(ttl_ms)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    def set_retry_config(self, max_attempts: int, base_delay_ms: float) -> None:
        """Set total attempts and the base backoff delay in milliseconds."""
        try:
            self._retry.configure(
                replace(self._retry.config, max_attempts=max_attempts, base_delay_ms=base_delay_ms)
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

    def reset(self) -> None:
        """Clear the response cache and the in-flight registry."""
        self._cache.clear()
        self._singleflight.clear()

    # ------------------------------------------------------------------
    # Accessors and lifecycle
    # ------------------------------------------------------------------

    @property
    def config(self) -> ResolvedConfig:
        return self._config

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def singleflight(self) -> Singleflight:
        return self._singleflight

    @property
    def retry_executor(self) -> RetryExecutor:
        return self._retry

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Client has been closed")

    async def close(self) -> None:
        """Close the client."""
        self._closed = True
        self.reset()
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncFetchClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()
