"""
Tests for the bearer token interceptor.
Verifies the path: client -> request interceptor -> transport -> 401 -> refresh -> replay.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fetch_pipeline.auth import BearerAuthInterceptor, create_bearer_auth
from fetch_pipeline.errors import FetchError
from fetch_pipeline.types import FailureEnvelope, FailureKind, RequestDescriptor

BASE_URL = "https://api.example.com"


class TokenStore:
    def __init__(self, token=None):
        self.token = token
        self.logged_out = False

    def logout(self):
        self.logged_out = True
        self.token = None


class TestOnRequest:
    @pytest.mark.asyncio
    async def test_attaches_token(self):
        auth = BearerAuthInterceptor(get_token=lambda: "abc")
        result = await auth.on_request(RequestDescriptor(url=f"{BASE_URL}/x"))
        assert result.get_header("Authorization") == "Bearer abc"

    @pytest.mark.asyncio
    async def test_async_token_getter(self):
        auth = BearerAuthInterceptor(get_token=AsyncMock(return_value="async-token"))
        result = await auth.on_request(RequestDescriptor(url=f"{BASE_URL}/x"))
        assert result.get_header("authorization") == "Bearer async-token"

    @pytest.mark.asyncio
    async def test_no_token_leaves_request_unchanged(self):
        auth = BearerAuthInterceptor(get_token=lambda: None)
        descriptor = RequestDescriptor(url=f"{BASE_URL}/x")
        assert await auth.on_request(descriptor) is descriptor


class TestOnError:
    def failure(self, status):
        return FailureEnvelope(
            message="auth",
            kind=FailureKind.HTTP_STATUS,
            status_code=status,
            request=RequestDescriptor(url=f"{BASE_URL}/x", headers={"Authorization": "Bearer old"}),
        )

    @pytest.mark.asyncio
    async def test_other_status_untouched(self):
        refresh = MagicMock()
        auth = BearerAuthInterceptor(get_token=lambda: "t", refresh=refresh)
        failure = self.failure(500)
        assert await auth.on_error(failure) is failure
        refresh.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_sets_retry_request(self):
        auth = BearerAuthInterceptor(get_token=lambda: "old", refresh=AsyncMock(return_value="new"))
        result = await auth.on_error(self.failure(401))
        assert result.retry_request.get_header("Authorization") == "Bearer new"
        assert result.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_failure_logs_out(self):
        store = TokenStore("old")
        auth = BearerAuthInterceptor(
            get_token=lambda: store.token,
            refresh=AsyncMock(side_effect=ConnectionError("refresh endpoint down")),
            on_logout=store.logout,
        )
        result = await auth.on_error(self.failure(401))
        assert result.retry_request is None
        assert store.logged_out is True

    @pytest.mark.asyncio
    async def test_empty_refresh_logs_out(self):
        on_logout = AsyncMock()
        auth = BearerAuthInterceptor(get_token=lambda: "old", refresh=lambda: None, on_logout=on_logout)
        await auth.on_error(self.failure(401))
        on_logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_refresh_configured_logs_out(self):
        store = TokenStore("old")
        auth = BearerAuthInterceptor(get_token=lambda: store.token, on_logout=store.logout)
        result = await auth.on_error(self.failure(401))
        assert result.retry_request is None
        assert store.logged_out is True


class TestAuthIntegration:
    @pytest.mark.asyncio
    async def test_refresh_and_replay(self, router, make_client):
        store = TokenStore("expired")

        async def refresh():
            store.token = "fresh"
            return "fresh"

        route = router.get(f"{BASE_URL}/me").mock(
            side_effect=[httpx.Response(401), httpx.Response(200, json={"id": 1})]
        )

        async with make_client() as client:
            BearerAuthInterceptor(get_token=lambda: store.token, refresh=refresh).install(client)
            response = await client.get("/me")

        first, second = route.calls
        assert first.request.headers["authorization"] == "Bearer expired"
        assert second.request.headers["authorization"] == "Bearer fresh"
        assert response.body == {"id": 1}

    @pytest.mark.asyncio
    async def test_failed_refresh_surfaces_401(self, router, make_client):
        store = TokenStore("expired")
        route = router.get(f"{BASE_URL}/me").mock(return_value=httpx.Response(401))

        async with make_client() as client:
            BearerAuthInterceptor(
                get_token=lambda: store.token,
                refresh=lambda: None,
                on_logout=store.logout,
            ).install(client)
            with pytest.raises(FetchError) as exc_info:
                await client.get("/me")

        assert route.call_count == 1
        assert exc_info.value.status_code == 401
        assert store.logged_out is True

    @pytest.mark.asyncio
    async def test_detach_removes_both_halves(self, router, make_client):
        route = router.get(f"{BASE_URL}/me").mock(return_value=httpx.Response(200, json={}))

        async with make_client() as client:
            detach = create_bearer_auth(token="static").install(client)
            detach()
            await client.get("/me")

        assert "authorization" not in route.calls.last.request.headers

    def test_create_bearer_auth_requires_token_source(self):
        with pytest.raises(ValueError):
            create_bearer_auth()
