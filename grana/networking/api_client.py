"""
HTTP Transport.

``APIClient`` performs JSON requests against the GranaStream API with
``httpx``.  Authenticated requests ask a ``TokenProvider`` (the session
core) for a fresh access token first; a 401 on such a request forces
one refresh and one replay before giving up with ``Unauthorized``.

Timeouts live here, not in the session core: ``HTTP_TIMEOUT_S`` bounds
every request.
"""

from __future__ import annotations

import uuid
from types import TracebackType
from typing import Mapping, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from grana.logger import StructuredLogger
from grana.models.base import ApiModel
from grana.networking.api_error import (
    DecodingError,
    InvalidResponse,
    NetworkError,
    ProblemDetails,
    RequestTimeout,
    ServerError,
    Unauthorized,
)

M = TypeVar("M", bound=BaseModel)

_IDEMPOTENT_KEY_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH"})
_TIMEOUT_STATUSES: frozenset[int] = frozenset({408, 504})


class TokenProvider(Protocol):
    """What the transport needs from the session core."""

    def get_access_token(self) -> Optional[str]: ...  # noqa: E704

    async def refresh_tokens_if_needed(self) -> bool: ...  # noqa: E704

    async def refresh_tokens(self) -> bool: ...  # noqa: E704


class APIClient:
    """Async JSON client bound to one API base URL.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://host/api/v1``.  Request paths are
        appended to it.
    logger:
        A ``StructuredLogger`` for request diagnostics.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport; tests pass ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        logger: StructuredLogger,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._token_provider: Optional[TokenProvider] = None

    def set_token_provider(self, provider: TokenProvider) -> None:
        """Bind the session core that authenticated requests draw tokens from."""
        self._token_provider = provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        response_model: type[M],
        *,
        method: str = "GET",
        params: Optional[Mapping[str, str]] = None,
        body: Optional[ApiModel] = None,
        requires_auth: bool = True,
        retry_on_auth_failure: bool = True,
    ) -> M:
        """Send a request and decode the JSON body into *response_model*.

        Raises:
            Unauthorized: No usable session, or 401 after the retry.
            RequestTimeout: 408/504 or a client-side timeout.
            NetworkError: The server could not be reached.
            ServerError: Any other non-2xx status.
            InvalidResponse: The 2xx response has no body.
            DecodingError: The 2xx body does not match *response_model*.
        """
        response = await self._send(
            path,
            method=method,
            params=params,
            body=body,
            requires_auth=requires_auth,
            retry_on_auth_failure=retry_on_auth_failure,
        )
        if not response.content:
            self._logger.warning("Empty response body from %s (HTTP %d).", path, response.status_code)
            raise InvalidResponse()
        try:
            return response_model.model_validate_json(response.content)
        except ValidationError as exc:
            self._logger.warning(
                "Could not decode response from %s (HTTP %d): %s",
                path,
                response.status_code,
                exc.error_count(),
            )
            raise DecodingError() from exc

    async def request_no_response(
        self,
        path: str,
        *,
        method: str,
        params: Optional[Mapping[str, str]] = None,
        body: Optional[ApiModel] = None,
        requires_auth: bool = True,
    ) -> None:
        """Send a request whose response body is ignored."""
        await self._send(
            path,
            method=method,
            params=params,
            body=body,
            requires_auth=requires_auth,
            retry_on_auth_failure=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _send(
        self,
        path: str,
        *,
        method: str,
        params: Optional[Mapping[str, str]],
        body: Optional[ApiModel],
        requires_auth: bool,
        retry_on_auth_failure: bool,
    ) -> httpx.Response:
        method = method.upper()
        headers: dict[str, str] = {}

        if requires_auth:
            headers["Authorization"] = f"Bearer {await self._authorize()}"

        if method in _IDEMPOTENT_KEY_METHODS:
            headers["Idempotency-Key"] = uuid.uuid4().hex

        try:
            response = await self._client.request(
                method,
                path.lstrip("/"),
                params=params,
                json=body.to_wire() if body is not None else None,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            self._logger.warning("Request timed out: %s %s", method, path)
            raise RequestTimeout() from exc
        except httpx.TransportError as exc:
            self._logger.warning("Network error on %s %s: %s", method, path, exc)
            raise NetworkError() from exc

        self._logger.debug("HTTP %s %s -> %d", method, path, response.status_code)

        if response.status_code == 401 and requires_auth and retry_on_auth_failure:
            if self._token_provider is not None and await self._token_provider.refresh_tokens():
                return await self._send(
                    path,
                    method=method,
                    params=params,
                    body=body,
                    requires_auth=requires_auth,
                    retry_on_auth_failure=False,
                )
            raise Unauthorized()

        if response.status_code == 401 and requires_auth:
            raise Unauthorized()

        if response.status_code in _TIMEOUT_STATUSES:
            raise RequestTimeout()

        if not response.is_success:
            raise ServerError(response.status_code, _parse_problem(response))

        return response

    async def _authorize(self) -> str:
        """Return a usable access token or raise ``Unauthorized``."""
        provider = self._token_provider
        if provider is None or not await provider.refresh_tokens_if_needed():
            raise Unauthorized()
        token = provider.get_access_token()
        if token is None:
            raise Unauthorized()
        return token


def _parse_problem(response: httpx.Response) -> Optional[ProblemDetails]:
    if not response.content:
        return None
    try:
        return ProblemDetails.model_validate_json(response.content)
    except ValidationError:
        return None
