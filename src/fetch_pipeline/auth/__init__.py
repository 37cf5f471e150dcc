"""
Auth interceptors for fetch_pipeline.
"""
from .auth_handler import (
    BearerAuthInterceptor,
    create_bearer_auth,
)

__all__ = [
    "BearerAuthInterceptor",
    "create_bearer_auth",
]
