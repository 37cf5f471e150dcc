"""
Core modules for fetch_pipeline.
"""
from .base_client import AsyncFetchClient
from .interceptors import InterceptorChain, InterceptorRegistry
from .request_builder import (
    build_url,
    build_headers,
    build_body,
    build_descriptor,
    compute_fingerprint,
    normalize_url,
)
from .transport import TransportExecutor, decode_body

__all__ = [
    "AsyncFetchClient",
    "InterceptorChain",
    "InterceptorRegistry",
    "build_url",
    "build_headers",
    "build_body",
    "build_descriptor",
    "compute_fingerprint",
    "normalize_url",
    "TransportExecutor",
    "decode_body",
]
