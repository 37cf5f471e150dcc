"""
Request, response and error interceptor chains.

Interceptors run strictly in registration order; each one receives the
previous one's output. Plain functions and coroutine functions are both
accepted; awaitable results are awaited before the next step runs.
"""
import inspect
import logging
from typing import Any, Callable, Generic, List, Tuple, TypeVar, Union

from ..errors import application_failure
from ..types import (
    Detach,
    ErrorInterceptor,
    FailureEnvelope,
    RequestDescriptor,
    RequestInterceptor,
    ResponseEnvelope,
    ResponseInterceptor,
)

logger = logging.getLogger("fetch_pipeline.interceptors")

F = TypeVar("F", bound=Callable[..., Any])


async def _call(fn: Callable[..., Any], value: Any) -> Any:
    result = fn(value)
    if inspect.isawaitable(result):
        result = await result
    return result


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)


class InterceptorChain(Generic[F]):
    """Ordered, append-only list of interceptors with detachable registrations."""

    def __init__(self, name: str):
        self._name = name
        self._entries: List[Tuple[object, F]] = []

    def add(self, interceptor: F) -> Detach:
        """Register ``interceptor``; the returned callable removes exactly this registration."""
        if not callable(interceptor):
            raise TypeError(f"{self._name} interceptor must be callable, got {interceptor!r}")
        handle = object()
        self._entries.append((handle, interceptor))
        logger.debug(f"{self._name} chain: added {_name(interceptor)} (size={len(self._entries)})")

        def detach() -> None:
            for index, (entry_handle, _) in enumerate(self._entries):
                if entry_handle is handle:
                    del self._entries[index]
                    logger.debug(f"{self._name} chain: detached {_name(interceptor)}")
                    return

        return detach

    def snapshot(self) -> List[F]:
        """Interceptors registered right now, in order."""
        return [fn for _, fn in self._entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class InterceptorRegistry:
    """The three chains of a client and the rules for running them."""

    def __init__(self) -> None:
        self.request: InterceptorChain[RequestInterceptor] = InterceptorChain("request")
        self.response: InterceptorChain[ResponseInterceptor] = InterceptorChain("response")
        self.error: InterceptorChain[ErrorInterceptor] = InterceptorChain("error")

    async def run_request(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """Fold a descriptor through the request chain.

        Raises whatever a failing interceptor raises; the caller routes it to
        the error chain.
        """
        for interceptor in self.request.snapshot():
            result = await _call(interceptor, descriptor)
            if not isinstance(result, RequestDescriptor):
                raise TypeError(
                    f"Request interceptor {_name(interceptor)} must return a RequestDescriptor, "
                    f"got {type(result).__name__}"
                )
            descriptor = result
        return descriptor

    async def run_response(self, response: ResponseEnvelope) -> ResponseEnvelope:
        """Fold a response through the response chain."""
        for interceptor in self.response.snapshot():
            result = await _call(interceptor, response)
            if not isinstance(result, ResponseEnvelope):
                raise TypeError(
                    f"Response interceptor {_name(interceptor)} must return a ResponseEnvelope, "
                    f"got {type(result).__name__}"
                )
            response = result
        return response

    async def run_error(
        self, failure: FailureEnvelope
    ) -> Union[FailureEnvelope, ResponseEnvelope]:
        """Fold a failure through the error chain.

        An interceptor that raises is logged and skipped. Returning None keeps
        the current failure; returning a ResponseEnvelope substitutes a success
        and ends the chain.
        """
        for interceptor in self.error.snapshot():
            try:
                result = await _call(interceptor, failure)
            except Exception:
                logger.exception(
                    f"Error interceptor {_name(interceptor)} failed; keeping the original failure"
                )
                continue

            if result is None:
                continue
            if isinstance(result, ResponseEnvelope):
                logger.debug(f"Error interceptor {_name(interceptor)} substituted a response")
                return result
            if isinstance(result, FailureEnvelope):
                failure = result
                continue
            if isinstance(result, BaseException):
                failure = application_failure(result, failure.request)
                continue

            logger.error(
                f"Error interceptor {_name(interceptor)} returned unsupported "
                f"{type(result).__name__}; ignoring it"
            )
        return failure

    def clear(self) -> None:
        self.request.clear()
        self.response.clear()
        self.error.clear()
