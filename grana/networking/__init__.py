"""HTTP transport and error taxonomy for the GranaStream API."""

from grana.networking.api_client import APIClient, TokenProvider
from grana.networking.api_error import (
    APIError,
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

__all__ = [
    "APIClient",
    "APIError",
    "DecodingError",
    "InvalidResponse",
    "NetworkError",
    "ProblemDetails",
    "RequestTimeout",
    "ServerError",
    "TokenProvider",
    "Unauthorized",
    "is_cancellation",
    "user_facing_message",
]
