"""
Configuration for fetch_pipeline.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .errors import ConfigError
from .retry import RetryConfig, merge_config

logger = logging.getLogger("fetch_pipeline.config")

# Default values
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_CACHE_TTL_MS = 60000
DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_CACHE_METHODS = ["GET"]

# Base URL per application mode when API_URL is not set
DEFAULT_API_URLS = {
    "development": "http://localhost:3000/api",
    "production": "https://api.portal-templates.com",
    "test": "http://localhost:3000/api",
}


@dataclass
class ClientConfig:
    """Client configuration."""

    base_url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS
    cache_methods: List[str] = field(default_factory=lambda: list(DEFAULT_CACHE_METHODS))
    retry: Optional[RetryConfig] = None
    content_type: str = DEFAULT_CONTENT_TYPE
    verify_ssl: Optional[bool] = None
    debug: bool = False
    httpx_client: Optional[Any] = None


class DefaultSerializer:
    """Default JSON serializer."""

    def serialize(self, data: Any) -> str:
        """Serialize data to JSON string."""
        return json.dumps(data)

    def deserialize(self, text: str) -> Any:
        """Deserialize JSON string to data."""
        return json.loads(text)


default_serializer = DefaultSerializer()


def _is_ssl_verify_disabled_by_env() -> bool:
    """
    Check if SSL verification is disabled via environment variables.

    Returns True if any of these are set:
    - NODE_TLS_REJECT_UNAUTHORIZED=0
    - SSL_CERT_VERIFY=0
    """
    node_tls = os.environ.get("NODE_TLS_REJECT_UNAUTHORIZED", "")
    ssl_cert_verify = os.environ.get("SSL_CERT_VERIFY", "")
    return node_tls == "0" or ssl_cert_verify == "0"


def validate_config(config: ClientConfig) -> None:
    """Validate client configuration."""
    if config.base_url:
        try:
            parsed = urlparse(config.base_url)
        except ValueError as e:
            raise ConfigError(f"Invalid base_url: {config.base_url}") from e
        if not parsed.scheme or not parsed.netloc:
            raise ConfigError(f"Invalid base_url: {config.base_url}")

    if config.timeout_ms <= 0:
        raise ConfigError(f"timeout_ms must be positive, got {config.timeout_ms}")

    if config.cache_ttl_ms < 0:
        raise ConfigError(f"cache_ttl_ms must not be negative, got {config.cache_ttl_ms}")


@dataclass
class ResolvedConfig:
    """Resolved client configuration with defaults applied."""

    base_url: str
    headers: Dict[str, str]
    timeout_ms: float
    cache_ttl_ms: float
    cache_methods: List[str]
    retry: RetryConfig
    content_type: str
    verify_ssl: bool
    debug: bool
    serializer: DefaultSerializer


def resolve_config(config: ClientConfig) -> ResolvedConfig:
    """Resolve client configuration with defaults."""
    validate_config(config)

    headers = dict(config.headers)
    if "accept" not in {k.lower() for k in headers}:
        headers["Accept"] = "application/json"

    try:
        retry = merge_config(config.retry)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    verify_ssl = config.verify_ssl
    if verify_ssl is None:
        verify_ssl = not _is_ssl_verify_disabled_by_env()

    return ResolvedConfig(
        base_url=config.base_url,
        headers=headers,
        timeout_ms=config.timeout_ms,
        cache_ttl_ms=config.cache_ttl_ms,
        cache_methods=[m.upper() for m in (config.cache_methods or DEFAULT_CACHE_METHODS)],
        retry=retry,
        content_type=config.content_type or DEFAULT_CONTENT_TYPE,
        verify_ssl=verify_ssl,
        debug=config.debug,
        serializer=default_serializer,
    )


def _env_number(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def get_app_mode() -> str:
    """Application mode from APP_ENV (or MODE), defaulting to development."""
    mode = os.environ.get("APP_ENV") or os.environ.get("MODE") or "development"
    return mode.lower()


def load_config_from_env(**overrides: Any) -> ClientConfig:
    """
    Build a ClientConfig from environment variables.

    Recognized variables:
    - API_URL: base URL (falls back to the default URL of the APP_ENV mode)
    - FETCH_TIMEOUT_MS, FETCH_CACHE_TTL_MS
    - FETCH_RETRY_MAX_ATTEMPTS, FETCH_RETRY_BASE_DELAY_MS
    - FETCH_DEBUG=1 to render requests and responses on the console

    Keyword overrides take precedence over the environment.
    """
    mode = get_app_mode()
    base_url = os.environ.get("API_URL") or DEFAULT_API_URLS.get(
        mode, DEFAULT_API_URLS["production"]
    )

    values: Dict[str, Any] = {"base_url": base_url}

    timeout_ms = _env_number("FETCH_TIMEOUT_MS")
    if timeout_ms is not None:
        values["timeout_ms"] = timeout_ms

    cache_ttl_ms = _env_number("FETCH_CACHE_TTL_MS")
    if cache_ttl_ms is not None:
        values["cache_ttl_ms"] = cache_ttl_ms

    max_attempts = _env_number("FETCH_RETRY_MAX_ATTEMPTS")
    base_delay_ms = _env_number("FETCH_RETRY_BASE_DELAY_MS")
    if max_attempts is not None or base_delay_ms is not None:
        retry = merge_config(None)
        if max_attempts is not None:
            retry.max_attempts = int(max_attempts)
        if base_delay_ms is not None:
            retry.base_delay_ms = base_delay_ms
        values["retry"] = retry

    values["debug"] = os.environ.get("FETCH_DEBUG", "").lower() in ("1", "true", "yes")

    values.update(overrides)
    logger.debug(f"load_config_from_env: mode={mode}, base_url={values['base_url']}")
    return ClientConfig(**values)
