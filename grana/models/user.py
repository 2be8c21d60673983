"""
User Profile Models.

The profile is fetched from ``GET /users/me`` and has its own lifecycle,
separate from the ``AuthenticatedUser`` returned at login.
"""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator

from grana.models.base import ApiModel
from grana.models.enums import UserStatus


class UserProfile(ApiModel):
    """Server-side profile of the signed-in user."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    status: UserStatus

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> UserStatus:
        return UserStatus.parse(value)


class UpdateUserRequest(ApiModel):
    """Partial update for ``PATCH /users/me``.

    ``None`` fields are sent as JSON ``null``; the server decides what a
    missing name defaults to.
    """

    name: Optional[str] = None
    email: Optional[str] = None
