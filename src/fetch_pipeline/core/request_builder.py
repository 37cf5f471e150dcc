"""
Request builder utilities for fetch_pipeline.
"""
import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode, urljoin, urlparse

import httpx

from ..config import DEFAULT_CONTENT_TYPE, ResolvedConfig
from ..errors import ConfigError
from ..types import (
    CachePolicy,
    HttpMethod,
    MultipartBody,
    ParamValue,
    RequestDescriptor,
)

logger = logging.getLogger("fetch_pipeline.request_builder")

IDEMPOTENCY_HEADER = "Idempotency-Key"
BODYLESS_METHODS = ("GET", "HEAD", "OPTIONS")


def is_absolute_url(path: str) -> bool:
    """Whether ``path`` already denotes an absolute http(s) URL."""
    return path.lower().startswith(("http://", "https://"))


def normalize_params(
    params: Optional[Mapping[str, ParamValue]] = None,
) -> Tuple[Tuple[str, str], ...]:
    """Drop None values and coerce the rest to strings, keeping caller order."""
    if not params:
        return ()
    pairs = []
    for key, value in params.items():
        if not isinstance(key, str):
            raise ConfigError(f"Query parameter names must be strings, got {key!r}")
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, str(value)))
    return tuple(pairs)


def append_query(url: str, params: Tuple[Tuple[str, str], ...]) -> str:
    """Append encoded params to ``url``, extending an existing query string."""
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def build_url(
    base_url: str,
    path: str,
    params: Optional[Mapping[str, ParamValue]] = None,
) -> str:
    """Build full URL from base and path."""
    if is_absolute_url(path):
        url = path
    elif path.startswith("/"):
        # Preserve the base path and append the new one (avoid double slashes)
        parsed = urlparse(base_url)
        base_path = parsed.path.rstrip("/")
        url = f"{parsed.scheme}://{parsed.netloc}{base_path}{path}" if base_url else path
    elif path:
        if base_url and not base_url.endswith("/"):
            base_url = base_url + "/"
        url = urljoin(base_url, path)
    else:
        url = base_url

    url = append_query(url, normalize_params(params))
    validate_url(url)
    return url


def validate_url(url: str) -> httpx.URL:
    """Parse ``url``; raise ConfigError if it is not an absolute http(s) URL."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid URL: {url!r}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigError(f"Invalid URL: {url!r} (an absolute http(s) URL is required)")
    return parsed


def is_binary_body(body: Any) -> bool:
    """Whether ``body`` must be passed through without JSON encoding."""
    return isinstance(body, (bytes, bytearray, MultipartBody))


def build_headers(
    config: ResolvedConfig,
    headers: Optional[Mapping[str, str]] = None,
    body: Any = None,
) -> Dict[str, str]:
    """Build request headers."""
    result = dict(config.headers)

    if headers:
        overridden = {k.lower() for k in headers}
        result = {k: v for k, v in result.items() if k.lower() not in overridden}
        result.update(headers)

    present = {k.lower() for k in result}

    if isinstance(body, MultipartBody):
        # httpx sets the multipart boundary itself
        result = {k: v for k, v in result.items() if k.lower() != "content-type"}
    elif body is not None and not is_binary_body(body) and "content-type" not in present:
        result["Content-Type"] = config.content_type

    return result


def is_json_content_type(content_type: Optional[str]) -> bool:
    """Whether ``content_type`` names a JSON media type (application/json or +json)."""
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime == "application/json" or mime.endswith("+json")


def _content_type(headers: Mapping[str, str]) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == "content-type":
            return value
    return None


def build_body(
    body: Any = None,
    serializer: Optional[Any] = None,
    content_type: Optional[str] = DEFAULT_CONTENT_TYPE,
) -> Optional[Union[str, bytes]]:
    """Build the serialized request content.

    A str body is JSON-encoded when ``content_type`` is JSON and sent as-is
    otherwise.
    """
    if body is None or isinstance(body, MultipartBody):
        return None

    if isinstance(body, (bytes, bytearray)):
        return bytes(body)

    if isinstance(body, str) and not is_json_content_type(content_type):
        return body

    if serializer is not None:
        return serializer.serialize(body)
    return json.dumps(body)


def build_descriptor(
    config: ResolvedConfig,
    method: HttpMethod,
    path: str,
    body: Any = None,
    *,
    headers: Optional[Mapping[str, str]] = None,
    params: Optional[Mapping[str, ParamValue]] = None,
    timeout_ms: Optional[float] = None,
    cache_policy: CachePolicy = "default",
    allow_credentials: bool = False,
) -> RequestDescriptor:
    """Turn a logical request into a transport-ready RequestDescriptor."""
    method = method.upper()
    if method in BODYLESS_METHODS:
        body = None

    url = build_url(config.base_url, path)
    normalized = normalize_params(params)
    validate_url(append_query(url, normalized))

    if timeout_ms is not None and timeout_ms <= 0:
        raise ConfigError(f"timeout_ms must be positive, got {timeout_ms}")

    request_headers = build_headers(config, headers, body)
    descriptor = RequestDescriptor(
        url=url,
        method=method,
        params=normalized,
        body=body,
        headers=request_headers,
        timeout_ms=timeout_ms if timeout_ms is not None else config.timeout_ms,
        allow_credentials=allow_credentials,
        cache_policy=cache_policy,
        content=build_body(body, config.serializer, _content_type(request_headers)),
    )
    logger.debug(f"build_descriptor: {method} {full_url(descriptor)}")
    return descriptor


def full_url(descriptor: RequestDescriptor) -> str:
    """Transport URL of a descriptor: its URL plus encoded params."""
    return append_query(descriptor.url, tuple(descriptor.params))


def normalize_url(url: str) -> str:
    """Canonical URL form: lowercase scheme/host, no default port, sorted query."""
    parsed = validate_url(url)
    port = f":{parsed.port}" if parsed.port else ""
    normalized = f"{parsed.scheme}://{parsed.host}{port}{parsed.path or '/'}"
    query = sorted(parsed.params.multi_items())
    if query:
        normalized = f"{normalized}?{urlencode(query)}"
    return normalized


def canonical_serialization(body: Any) -> str:
    """Deterministic body serialization, independent of key order."""
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return "sha256:" + hashlib.sha256(bytes(body)).hexdigest()
    if isinstance(body, MultipartBody):
        files = body.files
        if isinstance(files, Mapping):
            files = sorted(files)
        described = json.dumps(
            {"data": body.data, "files": files},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return "multipart:" + hashlib.sha256(described.encode()).hexdigest()
    if isinstance(body, str):
        return body
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(descriptor: RequestDescriptor) -> str:
    """Cache and dedup key: method, normalized URL and canonical body."""
    fingerprint = (
        f"{descriptor.method} {normalize_url(full_url(descriptor))} "
        f"{canonical_serialization(descriptor.body)}"
    )
    idempotency_key = descriptor.get_header(IDEMPOTENCY_HEADER)
    if idempotency_key:
        fingerprint = f"{fingerprint} {IDEMPOTENCY_HEADER}={idempotency_key}"
    return fingerprint
