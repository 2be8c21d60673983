"""
Session Guard Decorator.

Provides a factory that produces a decorator for gating async
feature-layer functions behind a live session.

Usage::

    from grana.guards import require_session

    session_guard = require_session(session)

    @session_guard
    async def load_statements() -> list[Statement]:
        ...
"""

from __future__ import annotations

from functools import wraps
from typing import Awaitable, Callable, ParamSpec, TypeVar

from grana.networking.api_error import Unauthorized
from grana.session import SessionCore

P = ParamSpec("P")
R = TypeVar("R")


def require_session(
    session: SessionCore,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Return a decorator that enforces a usable session via *session*.

    The returned decorator awaits ``session.refresh_tokens_if_needed()``
    before every call, so an expiring token is renewed first.  If no
    session can be established, :class:`Unauthorized` is raised and the
    wrapped function is not called.

    Args:
        session: The shared ``SessionCore``.

    Returns:
        A decorator suitable for wrapping async callables.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not await session.refresh_tokens_if_needed():
                raise Unauthorized(
                    "Authentication required. Please sign in before "
                    "performing this action."
                )
            return await func(*args, **kwargs)

        return wrapper

    return decorator
