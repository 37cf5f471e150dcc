"""
Bearer token interceptors for fetch_pipeline.
"""
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Union

from ..console import mask_sensitive
from ..types import Detach, FailureEnvelope, RequestDescriptor

if TYPE_CHECKING:
    from ..core.base_client import AsyncFetchClient

logger = logging.getLogger(__name__)
LOG_PREFIX = "[AUTH]"

TokenSource = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]
LogoutHook = Callable[[], Union[None, Awaitable[None]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class BearerAuthInterceptor:
    """
    Attaches ``Authorization: Bearer <token>`` and refreshes on 401.

    The request half reads the current token on every request. The error
    half, on a 401 failure, calls ``refresh``; with a new token it returns
    the failure with ``retry_request`` set to the original request carrying
    the new header, and the client replays it once. A failed or empty
    refresh calls ``on_logout`` and the 401 is surfaced unchanged.

    Example:
        auth = BearerAuthInterceptor(
            get_token=lambda: store.token,
            refresh=refresh_tokens,
            on_logout=store.logout,
        )
        detach = auth.install(client)
    """

    def __init__(
        self,
        get_token: TokenSource,
        refresh: Optional[TokenSource] = None,
        on_logout: Optional[LogoutHook] = None,
        header_name: str = "Authorization",
        refresh_on_status: Iterable[int] = (401,),
    ):
        self._get_token = get_token
        self._refresh = refresh
        self._on_logout = on_logout
        self._header_name = header_name
        self._refresh_on_status = frozenset(refresh_on_status)

    def _header(self, token: str) -> dict:
        return {self._header_name: f"Bearer {token}"}

    async def on_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """Request interceptor: attach the current token, if any."""
        token = await _maybe_await(self._get_token())
        if not token:
            logger.debug(f"{LOG_PREFIX} on_request: no token for {descriptor.method} {descriptor.url}")
            return descriptor
        logger.debug(f"{LOG_PREFIX} on_request: token={mask_sensitive(token)}")
        return descriptor.with_headers(self._header(token))

    async def on_error(self, failure: FailureEnvelope) -> FailureEnvelope:
        """Error interceptor: refresh the token on an auth failure and ask for a replay."""
        if failure.status_code not in self._refresh_on_status or failure.request is None:
            return failure

        if self._refresh is None:
            logger.info(f"{LOG_PREFIX} on_error: {failure.status_code} without refresh; logging out")
            await self._logout()
            return failure

        try:
            token = await _maybe_await(self._refresh())
        except Exception:
            logger.exception(f"{LOG_PREFIX} on_error: token refresh failed")
            await self._logout()
            return failure

        if not token:
            logger.info(f"{LOG_PREFIX} on_error: refresh returned no token; logging out")
            await self._logout()
            return failure

        logger.debug(f"{LOG_PREFIX} on_error: refreshed token={mask_sensitive(token)}; requesting replay")
        return failure.replace(retry_request=failure.request.with_headers(self._header(token)))

    async def _logout(self) -> None:
        if self._on_logout is None:
            return
        await _maybe_await(self._on_logout())

    def install(self, client: "AsyncFetchClient") -> Detach:
        """Register both halves on ``client``; the returned callable removes them."""
        detach_request = client.add_request_interceptor(self.on_request)
        detach_error = client.add_error_interceptor(self.on_error)

        def detach() -> None:
            detach_request()
            detach_error()

        return detach


def create_bearer_auth(
    token: Optional[str] = None,
    get_token: Optional[TokenSource] = None,
    refresh: Optional[TokenSource] = None,
    on_logout: Optional[LogoutHook] = None,
) -> BearerAuthInterceptor:
    """Create a bearer interceptor from a static token or a token getter."""
    if get_token is None:
        if token is None:
            raise ValueError("Either token or get_token is required")
        get_token = lambda: token  # noqa: E731
    logger.debug(f"{LOG_PREFIX} create_bearer_auth: token={mask_sensitive(token)}, dynamic={token is None}")
    return BearerAuthInterceptor(get_token=get_token, refresh=refresh, on_logout=on_logout)
