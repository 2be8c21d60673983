"""
Shared Enumerations for GranaStream Models.

``SessionState`` values compare equal to their string equivalents, so
consumers can log or match on plain strings.  ``UserStatus`` is an
integer enum because the server sends the numeric value.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Optional


class SessionState(StrEnum):
    """Authentication state of the session core.

    ``REFRESHING`` is a transient sub-state of ``AUTHENTICATED``: the
    session keeps reporting ``is_authenticated`` while a refresh is in
    flight.
    """

    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    REFRESHING = "REFRESHING"


class UserStatus(IntEnum):
    """Account status reported by ``GET /users/me``."""

    UNVERIFIED = 0
    ACTIVE = 1
    BLOCKED = 2

    @property
    def label(self) -> str:
        """Display label shown on the profile screen."""
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: object) -> "UserStatus":
        """Accept the numeric value or one of the known spellings.

        Raises:
            ValueError: If *value* is not a recognised status.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            status: Optional[UserStatus] = _STATUS_ALIASES.get(value.strip().lower())
            if status is not None:
                return status
        raise ValueError(f"Invalid UserStatus: {value!r}")


_STATUS_LABELS: dict[UserStatus, str] = {
    UserStatus.UNVERIFIED: "Não verificado",
    UserStatus.ACTIVE: "Ativo",
    UserStatus.BLOCKED: "Bloqueado",
}

_STATUS_ALIASES: dict[str, UserStatus] = {
    "0": UserStatus.UNVERIFIED,
    "unverified": UserStatus.UNVERIFIED,
    "nao verificado": UserStatus.UNVERIFIED,
    "não verificado": UserStatus.UNVERIFIED,
    "1": UserStatus.ACTIVE,
    "active": UserStatus.ACTIVE,
    "ativo": UserStatus.ACTIVE,
    "2": UserStatus.BLOCKED,
    "blocked": UserStatus.BLOCKED,
    "bloqueado": UserStatus.BLOCKED,
}
