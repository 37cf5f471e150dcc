"""
Transport executor: one bounded, cancellable network call over httpx.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .. import console
from ..config import DefaultSerializer, default_serializer
from ..errors import FetchError
from ..types import (
    CancellationToken,
    FailureEnvelope,
    FailureKind,
    MultipartBody,
    RequestDescriptor,
    ResponseEnvelope,
)
from .request_builder import full_url, is_json_content_type

logger = logging.getLogger("fetch_pipeline.transport")

CREDENTIAL_HEADERS = ("authorization", "cookie")


def _origin(url: httpx.URL) -> tuple:
    return (url.scheme, url.host, url.port)


def decode_body(response: httpx.Response, serializer: DefaultSerializer = default_serializer) -> Any:
    """Decode a response body according to its declared content type.

    application/json (and +json) -> structured data, text/* -> str,
    anything else -> bytes. An empty body decodes to None.
    """
    content = response.content
    if not content:
        return None

    content_type = response.headers.get("content-type", "")
    mime = content_type.split(";", 1)[0].strip().lower()

    if is_json_content_type(mime):
        try:
            return serializer.deserialize(response.text)
        except ValueError:
            logger.warning(f"Response declared {mime} but is not valid JSON; returning text")
            return response.text

    if mime.startswith("text/"):
        return response.text

    return content


def _error_message(status_code: int, body: Any) -> str:
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"Request failed with status {status_code}"


class TransportExecutor:
    """
    Performs the network call for a prepared descriptor.

    Each call is raced against a deadline of ``descriptor.timeout_ms`` and the
    caller's cancellation token. Whichever loses is cancelled and awaited
    before returning, on every exit path.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "",
        serializer: DefaultSerializer = default_serializer,
        debug: bool = False,
    ):
        self._client = client
        self._base_origin = _origin(httpx.URL(base_url)) if base_url else None
        self._serializer = serializer
        self._debug = debug

    def build_request(self, descriptor: RequestDescriptor) -> httpx.Request:
        """Translate a descriptor into an httpx.Request."""
        url = full_url(descriptor)
        files = data = None
        if isinstance(descriptor.body, MultipartBody):
            files = descriptor.body.files
            data = descriptor.body.data

        request = self._client.build_request(
            descriptor.method,
            url,
            headers=dict(descriptor.headers),
            content=descriptor.content,
            files=files,
            data=data,
            # Overrides the timeout of an injected httpx client
            timeout=httpx.Timeout(descriptor.timeout_ms / 1000.0),
        )

        if not descriptor.allow_credentials and self._is_cross_origin(request.url):
            for name in CREDENTIAL_HEADERS:
                if name in request.headers:
                    del request.headers[name]
            logger.debug(f"TransportExecutor: stripped credentials for cross-origin {request.url}")

        return request

    def _is_cross_origin(self, url: httpx.URL) -> bool:
        return self._base_origin is not None and _origin(url) != self._base_origin

    async def send(
        self,
        descriptor: RequestDescriptor,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResponseEnvelope:
        """
        Perform one attempt.

        Returns:
            ResponseEnvelope for a 2xx response

        Raises:
            FetchError: TIMEOUT, CANCELLED, NETWORK, HTTP_STATUS (non-2xx,
                carrying the decoded body) or APPLICATION failures
        """
        request = self.build_request(descriptor)
        timeout_seconds = descriptor.timeout_ms / 1000.0

        if self._debug:
            console.print_request(descriptor.method, str(request.url), request.headers, descriptor.body)

        logger.debug(f"TransportExecutor.send: {descriptor.method} {request.url} timeout={timeout_seconds}s")

        call = asyncio.ensure_future(self._client.send(request))
        waiters = {call}
        cancel_waiter = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
            )

            if call in done:
                response = call.result()
            elif cancel_waiter is not None and cancel_waiter in done:
                raise FetchError(FailureEnvelope(
                    message=cancel_token.reason or "Request cancelled",
                    kind=FailureKind.CANCELLED,
                    request=descriptor,
                ))
            else:
                raise FetchError(FailureEnvelope(
                    message=f"Request timed out after {descriptor.timeout_ms:g}ms",
                    kind=FailureKind.TIMEOUT,
                    request=descriptor,
                ))
        except httpx.TimeoutException as error:
            raise FetchError(FailureEnvelope(
                message=f"Request timed out: {error}",
                kind=FailureKind.TIMEOUT,
                request=descriptor,
                cause=error,
            )) from error
        except (httpx.TransportError, OSError) as error:
            raise FetchError(FailureEnvelope(
                message=str(error) or type(error).__name__,
                kind=FailureKind.NETWORK,
                request=descriptor,
                cause=error,
            )) from error
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            pending = [w for w in waiters if not w.done()]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return self._to_envelope(descriptor, response)

    def _to_envelope(self, descriptor: RequestDescriptor, response: httpx.Response) -> ResponseEnvelope:
        headers: Dict[str, str] = dict(response.headers)
        body = decode_body(response, self._serializer)
        status_text = response.reason_phrase or ""

        if self._debug:
            console.print_response(str(response.url), response.status_code, status_text, headers, body)

        if not (200 <= response.status_code < 300):
            raise FetchError(FailureEnvelope(
                message=_error_message(response.status_code, body),
                kind=FailureKind.HTTP_STATUS,
                status_code=response.status_code,
                body=body,
                request=descriptor,
                headers=headers,
            ))

        return ResponseEnvelope(
            body=body,
            status_code=response.status_code,
            status_text=status_text,
            headers=headers,
            request=descriptor,
        )
