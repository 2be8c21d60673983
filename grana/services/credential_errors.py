"""
Credential Store Errors.

Typed failures raised by every ``CredentialStore`` backend.  Each
failure carries the backend status code and a human-readable reason;
``debug_description`` renders both for log lines.

Absence of a key is never an error: ``get`` returns ``None`` and
``delete`` succeeds.  Everything here is terminal for the single
operation that raised it; retry policy belongs to the session core.
"""

from __future__ import annotations

from enum import IntEnum


class StoreStatus(IntEnum):
    """Backend status codes, numbered after the platform keychain codes."""

    SUCCESS = 0
    UNIMPLEMENTED = -4
    IO = -36
    PARAM = -50
    ALLOCATE = -108
    USER_CANCELED = -128
    BAD_REQ = -909
    AUTH_FAILED = -25293
    DUPLICATE_ITEM = -25299
    ITEM_NOT_FOUND = -25300
    INTERACTION_NOT_ALLOWED = -25308
    DECODE = -26275


_STATUS_REASONS: dict[int, str] = {
    StoreStatus.SUCCESS: "Operation succeeded",
    StoreStatus.UNIMPLEMENTED: "Function not implemented by the backend",
    StoreStatus.IO: "I/O error",
    StoreStatus.PARAM: "Invalid parameter",
    StoreStatus.ALLOCATE: "Failed to allocate memory",
    StoreStatus.USER_CANCELED: "Operation cancelled by the user",
    StoreStatus.BAD_REQ: "Bad request",
    StoreStatus.AUTH_FAILED: "Stored data failed authentication",
    StoreStatus.DUPLICATE_ITEM: "Duplicate item",
    StoreStatus.ITEM_NOT_FOUND: "Item not found",
    StoreStatus.INTERACTION_NOT_ALLOWED: "Interaction with the backend is not allowed",
    StoreStatus.DECODE: "Unable to decode the stored data",
}


def describe_status(status: int) -> str:
    """Return the human-readable reason for a backend *status* code."""
    reason = _STATUS_REASONS.get(status)
    if reason is None:
        return f"Unknown credential store error (code: {status})"
    return reason


class CredentialStoreError(Exception):
    """Base class for credential store failures."""

    description: str = "Credential store failure"

    def __init__(self, status: int = StoreStatus.SUCCESS) -> None:
        self.status: int = int(status)
        super().__init__(self.debug_description)

    @property
    def reason(self) -> str:
        return describe_status(self.status)

    @property
    def debug_description(self) -> str:
        """``"<description> (status: <code>): <reason>"``, suitable for log lines."""
        return f"{self.description} (status: {self.status}): {self.reason}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status})"


class SaveFailed(CredentialStoreError):
    description = "Failed to save to the credential store"


class RetrievalFailed(CredentialStoreError):
    description = "Failed to read from the credential store"


class DeletionFailed(CredentialStoreError):
    description = "Failed to delete from the credential store"


class DecodingFailed(CredentialStoreError):
    description = "Failed to decode credential store data"

    def __init__(self) -> None:
        super().__init__(StoreStatus.DECODE)

    @property
    def reason(self) -> str:
        return "The stored bytes are not valid UTF-8 text"


class InvalidInput(CredentialStoreError):
    description = "Invalid input for credential store operation"

    def __init__(self) -> None:
        super().__init__(StoreStatus.PARAM)

    @property
    def reason(self) -> str:
        return "Key or value is empty"
