"""
Authentication Request / Response Models.

Pydantic models mirroring the ``/auth`` endpoints.  ``LoginResponse``
keeps both tokens optional because the server has been observed to omit
them; the session core rejects such a response with ``DecodingError``
instead of failing validation here.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from grana.models.base import ApiModel

# Ten years; anything longer is treated as a malformed response.
MAX_TOKEN_LIFETIME_S = 10 * 365 * 24 * 3600


class AuthenticatedUser(ApiModel):
    """The signed-in user as returned by login and refresh.

    Attributes
    ----------
    id:
        Server-side user identifier.
    name:
        Display name, if the user set one.
    email:
        E-mail address, if known.
    """

    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class LoginRequest(ApiModel):
    email: str
    password: str


class LoginResponse(ApiModel):
    """Response of ``POST /auth/login`` and ``POST /auth/refresh``.

    ``expires_in`` is the access token lifetime in seconds, relative to
    the moment the response was received.  Values outside
    ``0..MAX_TOKEN_LIFETIME_S`` fail validation.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: int = Field(ge=0, le=MAX_TOKEN_LIFETIME_S)
    user: AuthenticatedUser


class SignupRequest(ApiModel):
    name: str
    email: str
    password: str


class SignupResponse(ApiModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class RefreshTokenRequest(ApiModel):
    refresh_token: str


class LogoutRequest(ApiModel):
    refresh_token: str


class ChangePasswordRequest(ApiModel):
    current_password: str
    new_password: str
