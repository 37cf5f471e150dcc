"""
Shared fixtures for fetch_pipeline tests.
"""
import pytest
import respx

import httpx

from fetch_pipeline.config import ClientConfig, resolve_config
from fetch_pipeline.core.base_client import AsyncFetchClient
from fetch_pipeline.retry import RetryConfig

BASE_URL = "https://api.example.com"


@pytest.fixture
def base_url():
    return BASE_URL


@pytest.fixture
def fast_retry():
    """Retry configuration with millisecond delays."""
    return RetryConfig(max_attempts=3, base_delay_ms=1, max_delay_ms=10)


@pytest.fixture
def client_config(fast_retry):
    """Sample ClientConfig for testing."""
    return ClientConfig(base_url=BASE_URL, retry=fast_retry)


@pytest.fixture
def resolved_config(client_config):
    return resolve_config(client_config)


@pytest.fixture
def router():
    """respx router used as the transport of an httpx.AsyncClient."""
    return respx.MockRouter(assert_all_called=False)


@pytest.fixture
def make_client(router, client_config):
    """Build an AsyncFetchClient whose network is ``router`` (or a custom handler)."""

    def factory(config=None, handler=None, **kwargs):
        transport = httpx.MockTransport(handler or router.async_handler)
        httpx_client = httpx.AsyncClient(transport=transport)
        return AsyncFetchClient(config or client_config, httpx_client=httpx_client, **kwargs)

    return factory
