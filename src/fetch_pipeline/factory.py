"""
Factory functions for creating pipeline clients.

Clients are explicit objects; the default client is a lazily created
convenience for applications that want one shared instance.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import ClientConfig, load_config_from_env
from .core.base_client import AsyncFetchClient
from .retry import RetryConfig
from .types import FailureEnvelope

logger = logging.getLogger("fetch_pipeline.factory")

_default_client: Optional[AsyncFetchClient] = None


def log_failure(failure: FailureEnvelope) -> FailureEnvelope:
    """Error interceptor that logs every failure and passes it on unchanged."""
    request = failure.request
    target = f"{request.method} {request.url}" if request is not None else "<no request>"
    logger.error(
        f"API Error: {target} kind={failure.kind.value} "
        f"status={failure.status_code} message={failure.message}"
    )
    return failure


def create_client(
    base_url: str = "",
    httpx_client: Optional[httpx.AsyncClient] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: Optional[float] = None,
    cache_ttl_ms: Optional[float] = None,
    cache_methods: Optional[List[str]] = None,
    retry: Optional[RetryConfig] = None,
    debug: bool = False,
    **config: Any,
) -> AsyncFetchClient:
    """
    Create a pipeline client with the given configuration.

    Args:
        base_url: Base URL for relative paths.
        httpx_client: Pre-configured httpx.AsyncClient.
        headers: Default headers for all requests.
        timeout_ms: Default per-attempt timeout (milliseconds).
        cache_ttl_ms: Response cache TTL (milliseconds).
        cache_methods: Cache-eligible methods.
        retry: Retry configuration.
        debug: Render requests and responses on the console.
        **config: Remaining ClientConfig fields.

    Returns:
        AsyncFetchClient instance.

    Example:
        client = create_client(
            base_url="https://api.example.com",
            retry=RetryConfig(max_attempts=5, base_delay_ms=200),
        )
        async with client:
            response = await client.get("/users")
    """
    values: Dict[str, Any] = dict(config)
    if timeout_ms is not None:
        values["timeout_ms"] = timeout_ms
    if cache_ttl_ms is not None:
        values["cache_ttl_ms"] = cache_ttl_ms
    if cache_methods is not None:
        values["cache_methods"] = cache_methods

    client_config = ClientConfig(
        base_url=base_url,
        headers=headers or {},
        retry=retry,
        debug=debug,
        httpx_client=httpx_client,
        **values,
    )
    return AsyncFetchClient(client_config)


def get_default_client() -> AsyncFetchClient:
    """
    Return the shared default client, creating it on first use.

    The default client is configured from the environment (see
    ``load_config_from_env``) and logs every failure through ``log_failure``.
    """
    global _default_client
    if _default_client is None:
        _default_client = AsyncFetchClient(load_config_from_env())
        _default_client.add_error_interceptor(log_failure)
        logger.debug(f"Created default client for {_default_client.config.base_url}")
    return _default_client


async def reset_default_client() -> None:
    """Close and forget the default client; the next call creates a fresh one."""
    global _default_client
    client, _default_client = _default_client, None
    if client is not None:
        await client.close()
