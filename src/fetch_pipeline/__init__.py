"""
Asynchronous HTTP request pipeline for Python.

Interceptor chains, response caching with TTL, in-flight request
deduplication, retry with exponential backoff and bounded, cancellable
transport over httpx.
"""
from .types import (
    HttpMethod,
    CachePolicy,
    FailureKind,
    MultipartBody,
    RequestDescriptor,
    ResponseEnvelope,
    FailureEnvelope,
    CacheEntry,
    CancellationToken,
    Serializer,
)
from .errors import ConfigError, FetchError
from .config import (
    ClientConfig,
    ResolvedConfig,
    DefaultSerializer,
    resolve_config,
    load_config_from_env,
)
from .retry import RetryConfig, RetryExecutor
from .cache import ResponseCache, MemoryCacheStore
from .singleflight import Singleflight
from .core.base_client import AsyncFetchClient
from .auth import BearerAuthInterceptor, create_bearer_auth
from .factory import (
    create_client,
    get_default_client,
    reset_default_client,
    log_failure,
)

__all__ = [
    # Types
    "HttpMethod",
    "CachePolicy",
    "FailureKind",
    "MultipartBody",
    "RequestDescriptor",
    "ResponseEnvelope",
    "FailureEnvelope",
    "CacheEntry",
    "CancellationToken",
    "Serializer",
    # Errors
    "ConfigError",
    "FetchError",
    # Config
    "ClientConfig",
    "ResolvedConfig",
    "DefaultSerializer",
    "resolve_config",
    "load_config_from_env",
    # Components
    "RetryConfig",
    "RetryExecutor",
    "ResponseCache",
    "MemoryCacheStore",
    "Singleflight",
    # Client
    "AsyncFetchClient",
    # Auth
    "BearerAuthInterceptor",
    "create_bearer_auth",
    # Factory
    "create_client",
    "get_default_client",
    "reset_default_client",
    "log_failure",
]

__version__ = "0.1.0"
