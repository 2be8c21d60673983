"""
Data Models Package.

Re-exports the DTOs used by the session core:
    from grana.models import LoginResponse, UserProfile, UserStatus
"""

from grana.models.auth_models import (
    AuthenticatedUser,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshTokenRequest,
    SignupRequest,
    SignupResponse,
)
from grana.models.base import ApiModel
from grana.models.enums import SessionState, UserStatus
from grana.models.user import UpdateUserRequest, UserProfile

__all__ = [
    "ApiModel",
    "AuthenticatedUser",
    "ChangePasswordRequest",
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "RefreshTokenRequest",
    "SessionState",
    "SignupRequest",
    "SignupResponse",
    "UpdateUserRequest",
    "UserProfile",
    "UserStatus",
]
