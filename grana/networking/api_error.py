"""
API Error Taxonomy.

Exceptions raised by ``APIClient``.  The session core passes them
through unchanged; consumers turn them into messages with
``user_facing_message``.

Cancellation is not an ``APIError``: ``asyncio.CancelledError``
propagates as-is and ``user_facing_message`` returns ``None`` for it,
since a cancelled request means the user navigated away.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from grana.models.base import ApiModel


class ProblemDetails(ApiModel):
    """RFC 7807 problem body returned by the server on 4xx/5xx."""

    type: Optional[str] = None
    title: Optional[str] = None
    status: Optional[int] = None
    detail: Optional[str] = None
    instance: Optional[str] = None
    errors: Optional[dict[str, list[str]]] = None
    account_id: Optional[str] = None


class APIError(Exception):
    """Base class for transport and server failures."""

    default_message: str = "Unexpected error."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidResponse(APIError):
    default_message = "Invalid response from the server."


class Unauthorized(APIError):
    default_message = "Session expired. Please sign in again."


class DecodingError(APIError):
    default_message = "Unexpected response from the server."


class RequestTimeout(APIError):
    default_message = "The server took too long to respond. Please try again."


class NetworkError(APIError):
    default_message = "Cannot reach the server. Check your internet connection."


class ServerError(APIError):
    """Non-2xx response other than 401/408/504.

    Attributes
    ----------
    status:
        HTTP status code.
    problem:
        Parsed problem body, or ``None`` when the body was not one.
    """

    def __init__(self, status: int, problem: Optional[ProblemDetails] = None) -> None:
        self.status: int = status
        self.problem: Optional[ProblemDetails] = problem
        super().__init__(self._describe())

    def _describe(self) -> str:
        problem = self.problem
        if problem is None:
            return "Server error."
        if problem.errors:
            messages = [m for field_messages in problem.errors.values() for m in field_messages]
            if messages:
                return "\n".join(messages)
        return problem.detail or problem.title or "Server error."

    def __repr__(self) -> str:
        return f"ServerError(status={self.status})"


def is_cancellation(exc: BaseException) -> bool:
    """``True`` for errors that mean the caller stopped waiting."""
    return isinstance(exc, asyncio.CancelledError)


def user_facing_message(exc: BaseException) -> Optional[str]:
    """Map *exc* to a message for display, or ``None`` when it should stay silent."""
    if is_cancellation(exc):
        return None
    if isinstance(exc, APIError):
        return exc.message
    return "An unexpected error occurred. Please try again later."
