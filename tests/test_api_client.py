"""Unit tests for the HTTP transport and its error mapping."""

import asyncio

import httpx
import pytest

from grana.models.auth_models import LoginRequest
from grana.models.user import UserProfile
from grana.networking.api_error import (
    DecodingError,
    InvalidResponse,
    NetworkError,
    ProblemDetails,
    RequestTimeout,
    ServerError,
    Unauthorized,
    is_cancellation,
    user_facing_message,
)


class StaticTokens:
    """Token provider that always hands out the same token."""

    def __init__(self, token="AT1", usable=True):
        self.token = token
        self.usable = usable
        self.refreshes = 0

    def get_access_token(self):
        return self.token

    async def refresh_tokens_if_needed(self):
        return self.usable

    async def refresh_tokens(self):
        self.refreshes += 1
        return False


@pytest.fixture
def api(make_api):
    client = make_api()
    client.set_token_provider(StaticTokens())
    return client


PROFILE = {"id": "u1", "name": "Ana", "email": "a@b.com", "status": 1}


class TestRequests:
    async def test_get_decodes_model_with_bearer(self, api, server):
        server.add("GET", "/users/me", json_body=PROFILE)

        profile = await api.request("/users/me", UserProfile)

        assert profile.id == "u1"
        (call,) = server.calls
        assert call.headers["Authorization"] == "Bearer AT1"
        assert call.headers["Accept"] == "application/json"
        assert "Idempotency-Key" not in call.headers

    async def test_unsafe_methods_carry_idempotency_key(self, api, server):
        server.add("POST", "/auth/login", status=204)
        server.add("PATCH", "/users/me", status=204)

        await api.request_no_response("/auth/login", method="POST", body=LoginRequest(email="a", password="b"))
        await api.request_no_response("users/me", method="patch", requires_auth=False)

        first, second = server.calls
        assert first.headers["Idempotency-Key"] != second.headers["Idempotency-Key"]
        assert first.url.path == "/api/v1/auth/login"
        assert second.method == "PATCH"

    async def test_query_params(self, api, server):
        server.add("GET", "/users/me", json_body=PROFILE)

        await api.request("/users/me", UserProfile, params={"expand": "status"})

        assert server.calls[0].url.params["expand"] == "status"


class TestErrorMapping:
    @pytest.mark.parametrize("status", [408, 504])
    async def test_timeout_statuses(self, api, server, status):
        server.add("GET", "/users/me", status=status)

        with pytest.raises(RequestTimeout):
            await api.request("/users/me", UserProfile)

    async def test_client_timeout(self, api, server):
        server.add("GET", "/users/me", exc=httpx.ReadTimeout("slow"))

        with pytest.raises(RequestTimeout):
            await api.request("/users/me", UserProfile)

    async def test_transport_error(self, api, server):
        server.add("GET", "/users/me", exc=httpx.ConnectError("down"))

        with pytest.raises(NetworkError) as exc_info:
            await api.request("/users/me", UserProfile)

        assert "internet" in exc_info.value.message

    async def test_server_error_uses_problem_detail(self, api, server):
        server.add("GET", "/users/me", status=500, json_body={"title": "Internal", "detail": "Database offline."})

        with pytest.raises(ServerError) as exc_info:
            await api.request("/users/me", UserProfile)

        assert exc_info.value.status == 500
        assert exc_info.value.problem.title == "Internal"
        assert exc_info.value.message == "Database offline."

    async def test_server_error_without_problem_body(self, api, server):
        server.add("GET", "/users/me", status=502, content=b"<html>bad gateway</html>")

        with pytest.raises(ServerError) as exc_info:
            await api.request("/users/me", UserProfile)

        assert exc_info.value.problem is None
        assert exc_info.value.message == "Server error."

    async def test_undecodable_body(self, api, server):
        server.add("GET", "/users/me", json_body={"unexpected": True})

        with pytest.raises(DecodingError):
            await api.request("/users/me", UserProfile)

    async def test_empty_body_when_model_expected(self, api, server):
        server.add("GET", "/users/me", status=200)

        with pytest.raises(InvalidResponse):
            await api.request("/users/me", UserProfile)

    async def test_unauthenticated_401_is_a_server_error(self, api, server):
        server.add("POST", "/auth/login", status=401, json_body={"title": "Invalid credentials."})

        with pytest.raises(ServerError) as exc_info:
            await api.request_no_response("/auth/login", method="POST", requires_auth=False)

        assert exc_info.value.status == 401

    async def test_401_with_failed_refresh(self, make_api, server):
        tokens = StaticTokens()
        client = make_api()
        client.set_token_provider(tokens)
        server.add("GET", "/users/me", status=401)

        with pytest.raises(Unauthorized):
            await client.request("/users/me", UserProfile)

        assert tokens.refreshes == 1
        assert len(server.calls) == 1

    async def test_401_without_retry(self, make_api, server):
        tokens = StaticTokens()
        client = make_api()
        client.set_token_provider(tokens)
        server.add("GET", "/users/me", status=401)

        with pytest.raises(Unauthorized):
            await client.request("/users/me", UserProfile, retry_on_auth_failure=False)

        assert tokens.refreshes == 0


class TestAuthorization:
    async def test_no_provider(self, make_api, server):
        client = make_api()

        with pytest.raises(Unauthorized):
            await client.request("/users/me", UserProfile)

        assert server.calls == []

    async def test_unusable_session(self, make_api, server):
        client = make_api()
        client.set_token_provider(StaticTokens(usable=False))

        with pytest.raises(Unauthorized):
            await client.request("/users/me", UserProfile)

    async def test_missing_token(self, make_api, server):
        client = make_api()
        client.set_token_provider(StaticTokens(token=None))

        with pytest.raises(Unauthorized):
            await client.request("/users/me", UserProfile)

    async def test_context_manager_closes_client(self, make_api, server):
        server.add("GET", "/users/me", json_body=PROFILE)

        async with make_api() as client:
            await client.request("/users/me", UserProfile, requires_auth=False)

        assert client._client.is_closed


class TestMessages:
    def test_validation_messages_are_joined(self):
        problem = ProblemDetails.model_validate(
            {"title": "Validation", "errors": {"Email": ["Invalid e-mail."], "Name": ["Required."]}}
        )

        assert ServerError(400, problem).message == "Invalid e-mail.\nRequired."

    def test_title_fallback(self):
        assert ServerError(400, ProblemDetails(title="Bad Request")).message == "Bad Request"

    def test_cancellation_is_silent(self):
        assert is_cancellation(asyncio.CancelledError())
        assert user_facing_message(asyncio.CancelledError()) is None

    def test_api_error_message(self):
        assert user_facing_message(Unauthorized()) == "Session expired. Please sign in again."

    def test_unknown_error_message(self):
        assert user_facing_message(RuntimeError("x")) == "An unexpected error occurred. Please try again later."

    def test_problem_account_id_alias(self):
        problem = ProblemDetails.model_validate({"accountId": "acc-1"})

        assert problem.account_id == "acc-1"
