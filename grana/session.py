"""
Session Core.

Owns the authentication state of the client: who is signed in, which
tokens are held, and when they expire.  Exposes login, signup, logout
and profile operations, and renews the access token transparently with
a single-flight refresh.

Concurrency model
-----------------
One asyncio event loop owns the session.  Every mutation happens on that
loop between awaits, so mutations never interleave.  Network calls are
the only suspension points; credential-store I/O is synchronous.

Single-flight refresh
---------------------
The first caller that needs a refresh while none is running creates an
``asyncio.Task`` and stores it as the shared handle.  Every caller,
including the first, awaits the task through ``asyncio.shield``, so a
cancelled caller stops waiting without cancelling the refresh.  The
handle is released as soon as the outcome is known, so the next
independent call starts a fresh attempt instead of reusing a settled
result.

A refresh that settles after the session was cleared or replaced by a
new login leaves the state untouched.

Usage::

    session = SessionCore(api=api, store=store, logger=logger)
    api.set_token_provider(session)
    await session.login("a@b.com", "secret")
    if await session.refresh_tokens_if_needed():
        token = session.get_access_token()
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import Callable, Optional

from grana.auth import DEFAULT_REFRESH_LEEWAY_S, Clock, TokenManager, utc_now
from grana.events import (
    SessionEvent,
    SessionEventEmitter,
    SessionEventKind,
    SessionListener,
    SessionSnapshot,
)
from grana.logger import StructuredLogger
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
from grana.models.enums import SessionState
from grana.models.user import UpdateUserRequest, UserProfile
from grana.networking.api_client import APIClient
from grana.networking.api_error import DecodingError
from grana.services.credential_errors import CredentialStoreError
from grana.services.credential_store import CredentialStore

LOGIN_PATH: str = "/auth/login"
REGISTER_PATH: str = "/auth/register"
LOGOUT_PATH: str = "/auth/logout"
REFRESH_PATH: str = "/auth/refresh"
PROFILE_PATH: str = "/users/me"
PASSWORD_PATH: str = "/users/me/password"


def _require_tokens(response: LoginResponse) -> tuple[str, str]:
    """Return ``(access, refresh)`` or raise ``DecodingError`` if either is missing."""
    if response.access_token is None or response.refresh_token is None:
        raise DecodingError("Authentication response is missing a token.")
    return response.access_token, response.refresh_token


class SessionCore:
    """Authentication state machine with coalesced token refresh.

    Construct exactly one per process and pass it to every consumer.
    Construction hydrates tokens from *store*; when a refresh token is
    present and the access token is absent or expiring, a refresh is
    started on the running event loop.  Without a running loop the
    refresh waits for the first ``refresh_tokens_if_needed()`` call.

    Parameters
    ----------
    api:
        Transport used for every ``/auth`` and ``/users/me`` call.
    store:
        Secure storage mirrored by the token state.
    logger:
        A ``StructuredLogger`` instance.
    leeway_s:
        Seconds before expiry at which the access token counts as
        expiring.
    clock:
        Returns the current aware UTC time; injectable for tests.
    """

    def __init__(
        self,
        api: APIClient,
        store: CredentialStore,
        logger: StructuredLogger,
        leeway_s: float = DEFAULT_REFRESH_LEEWAY_S,
        clock: Clock = utc_now,
    ) -> None:
        self._api: APIClient = api
        self._logger: StructuredLogger = logger
        self._events: SessionEventEmitter = SessionEventEmitter(logger)
        self._tokens: TokenManager = TokenManager(
            store=store,
            logger=logger,
            leeway_s=leeway_s,
            clock=clock,
            on_persistence_error=self._publish_persistence_warning,
        )

        self._current_user: Optional[AuthenticatedUser] = None
        self._profile: Optional[UserProfile] = None
        self._refresh_task: Optional[asyncio.Task[bool]] = None
        # Bumped whenever the session is cleared or replaced by a login.
        self._epoch: int = 0

        self._tokens.hydrate()
        if self._tokens.refresh_token is not None and (
            self._tokens.access_token is None or self._tokens.is_token_expiring_soon()
        ):
            self._start_refresh_in_background()

    # ==================================================================
    # Read access
    # ==================================================================

    @property
    def is_authenticated(self) -> bool:
        return self._tokens.access_token is not None

    @property
    def current_user(self) -> Optional[AuthenticatedUser]:
        return self._current_user

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._tokens.expires_at

    @property
    def state(self) -> SessionState:
        if not self.is_authenticated:
            return SessionState.UNAUTHENTICATED
        if self._refresh_task is not None:
            return SessionState.REFRESHING
        return SessionState.AUTHENTICATED

    @property
    def pending_refresh(self) -> Optional[asyncio.Task[bool]]:
        """The in-flight refresh task, if any."""
        return self._refresh_task

    def get_access_token(self) -> Optional[str]:
        """Return the in-memory access token without refreshing or blocking."""
        return self._tokens.access_token

    def is_token_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        """``True`` if no expiry is recorded or *now* is within the leeway of it."""
        return self._tokens.is_token_expiring_soon(now)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            is_authenticated=self.is_authenticated,
            current_user=self._current_user,
            profile=self._profile,
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* for session events; returns the unsubscribe callable."""
        return self._events.subscribe(listener)

    # ==================================================================
    # Authentication
    # ==================================================================

    async def login(self, email: str, password: str) -> None:
        """Sign in with e-mail and password.

        Raises:
            DecodingError: The response lacks the access or refresh token.
            APIError: Any transport or server error, unchanged.
        """
        response = await self._api.request(
            LOGIN_PATH,
            LoginResponse,
            method="POST",
            body=LoginRequest(email=email, password=password),
            requires_auth=False,
        )
        access_token, refresh_token = _require_tokens(response)

        self._epoch += 1
        self._authenticate(response, access_token, refresh_token)
        self._logger.info(
            "User authenticated: %s",
            response.user.id,
            extra={"event": "LOGIN", "user_id": response.user.id},
        )

    async def signup(self, name: str, email: str, password: str) -> None:
        """Register a new account, then sign in with the same credentials."""
        created = await self._api.request(
            REGISTER_PATH,
            SignupResponse,
            method="POST",
            body=SignupRequest(name=name, email=email, password=password),
            requires_auth=False,
        )
        self._logger.info(
            "User registered: %s",
            created.id,
            extra={"event": "REGISTER", "user_id": created.id},
        )
        await self.login(email, password)

    async def logout(self) -> None:
        """Sign out remotely if possible; local state is always cleared.

        The remote call is best effort: its failure is logged and
        ignored, so a user can always leave the session, even offline.
        """
        refresh_token = self._tokens.refresh_token
        user_id = self._current_user.id if self._current_user else "unknown"

        if refresh_token is None:
            self._clear_session()
            return

        try:
            await self._api.request_no_response(
                LOGOUT_PATH,
                method="POST",
                body=LogoutRequest(refresh_token=refresh_token),
            )
        except Exception as exc:
            self._logger.warning(
                "Remote logout failed for %s (%s); clearing local session anyway.",
                user_id,
                type(exc).__name__,
            )
        finally:
            self._clear_session()

        self._logger.info(
            "User logged out: %s",
            user_id,
            extra={"event": "LOGOUT", "user_id": user_id},
        )

    def logout_local(self) -> None:
        """Clear the session without any network call."""
        self._clear_session()

    # ==================================================================
    # Token refresh
    # ==================================================================

    async def refresh_tokens_if_needed(self) -> bool:
        """Make sure a usable access token is held.

        Returns ``True`` when a non-expiring token is already held or a
        refresh succeeded; ``False`` (with the session cleared) otherwise.
        Never raises for refresh failures.
        """
        if self._tokens.access_token is not None and not self._tokens.is_token_expiring_soon():
            return True
        if self._refresh_task is None and self._tokens.refresh_token is None:
            self._clear_session()
            return False
        return await self._join_refresh()

    async def refresh_tokens(self) -> bool:
        """Force a refresh, joining one already in flight.

        Used by the transport after the server rejected an access token
        that still looked valid locally.
        """
        if self._refresh_task is None and self._tokens.refresh_token is None:
            self._clear_session()
            return False
        return await self._join_refresh()

    async def _join_refresh(self) -> bool:
        task = self._refresh_task
        if task is None:
            task = self._start_refresh()
        return await asyncio.shield(task)

    def _start_refresh(self) -> asyncio.Task[bool]:
        refresh_token = self._tokens.refresh_token
        assert refresh_token is not None
        task = asyncio.get_running_loop().create_task(
            self._perform_refresh(refresh_token, self._epoch),
            name="grana-token-refresh",
        )
        self._refresh_task = task
        # Covers a task cancelled before its first step.
        task.add_done_callback(self._on_refresh_done)
        return task

    def _start_refresh_in_background(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug(
                "No running event loop; startup refresh deferred to first use.",
            )
            return
        self._start_refresh()
        self._logger.debug("Startup token refresh scheduled.")

    async def _perform_refresh(self, refresh_token: str, epoch: int) -> bool:
        try:
            response = await self._api.request(
                REFRESH_PATH,
                LoginResponse,
                method="POST",
                body=RefreshTokenRequest(refresh_token=refresh_token),
                requires_auth=False,
                retry_on_auth_failure=False,
            )
            access_token, new_refresh_token = _require_tokens(response)
        except Exception as exc:
            self._release_refresh_handle()
            if epoch != self._epoch:
                return self.is_authenticated
            self._logger.warning(
                "Token refresh failed (%s). Clearing session.",
                type(exc).__name__,
                extra={"event": "SESSION_EXPIRED"},
            )
            self._clear_session()
            return False

        self._release_refresh_handle()
        if epoch != self._epoch:
            self._logger.debug("Discarding refresh result for a replaced session.")
            return self.is_authenticated

        self._authenticate(response, access_token, new_refresh_token)
        self._logger.info(
            "Session tokens refreshed.",
            extra={"event": "TOKEN_REFRESHED", "user_id": response.user.id},
        )
        return True

    def _release_refresh_handle(self) -> None:
        if self._refresh_task is asyncio.current_task():
            self._refresh_task = None

    def _on_refresh_done(self, task: asyncio.Task[bool]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Marks any exception as retrieved.
            task.exception()

    # ==================================================================
    # Profile
    # ==================================================================

    async def load_profile(self) -> UserProfile:
        """Fetch the profile and reconcile ``current_user`` with it."""
        profile = await self._api.request(PROFILE_PATH, UserProfile)
        self._apply_profile(profile)
        return profile

    async def update_profile(self, name: str, email: Optional[str] = None) -> UserProfile:
        """Update name (and optionally e-mail); a blank name is sent as ``null``."""
        trimmed = name.strip()
        profile = await self._api.request(
            PROFILE_PATH,
            UserProfile,
            method="PATCH",
            body=UpdateUserRequest(name=trimmed or None, email=email),
        )
        self._apply_profile(profile)
        return profile

    async def change_password(self, current_password: str, new_password: str) -> None:
        """Change the password.  No local state changes; errors propagate."""
        await self._api.request_no_response(
            PASSWORD_PATH,
            method="PATCH",
            body=ChangePasswordRequest(
                current_password=current_password,
                new_password=new_password,
            ),
        )
        self._logger.info("Password changed.", extra={"event": "PASSWORD_CHANGED"})

    # ==================================================================
    # Lifecycle
    # ==================================================================

    async def aclose(self) -> None:
        """Cancel an in-flight refresh; call once at process shutdown."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ==================================================================
    # Internal state transitions
    # ==================================================================

    def _authenticate(
        self,
        response: LoginResponse,
        access_token: str,
        refresh_token: str,
    ) -> None:
        before = self.snapshot()
        self._tokens.store(access_token, refresh_token, response.expires_in)
        self._current_user = response.user
        self._publish_changes(before)

    def _apply_profile(self, profile: UserProfile) -> None:
        before = self.snapshot()
        self._profile = profile
        user = self._current_user
        if user is None:
            self._current_user = AuthenticatedUser(
                id=profile.id,
                name=profile.name,
                email=profile.email,
            )
        else:
            self._current_user = AuthenticatedUser(
                id=user.id,
                name=profile.name if profile.name is not None else user.name,
                email=profile.email if profile.email is not None else user.email,
            )
        self._publish_changes(before)

    def _clear_session(self) -> None:
        before = self.snapshot()
        self._epoch += 1
        self._tokens.clear()
        self._current_user = None
        self._profile = None
        self._publish_changes(before)

    def _publish_changes(self, before: SessionSnapshot) -> None:
        after = self.snapshot()
        if before.is_authenticated != after.is_authenticated:
            self._emit(SessionEventKind.AUTH_STATE_CHANGED, after)
        if before.current_user != after.current_user:
            self._emit(SessionEventKind.USER_CHANGED, after)
        if before.profile != after.profile:
            self._emit(SessionEventKind.PROFILE_CHANGED, after)

    def _publish_persistence_warning(self, exc: CredentialStoreError) -> None:
        self._emit(
            SessionEventKind.PERSISTENCE_WARNING,
            self.snapshot(),
            error=exc.debug_description,
        )

    def _emit(
        self,
        kind: SessionEventKind,
        snapshot: SessionSnapshot,
        error: Optional[str] = None,
    ) -> None:
        self._events.emit(SessionEvent(kind=kind, snapshot=snapshot, error=error))
