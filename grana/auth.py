"""
Token State.

Provides ``TokenManager``, which holds the access token, refresh token
and absolute expiry for the lifetime of the process and mirrors them to
the secure credential store.

Memory is always written first.  A storage failure is logged and
reported through *on_persistence_error* but never rolls memory back: the
session keeps working with the in-memory tokens until the process exits.

Usage::

    log = StructuredLogger(name="grana.tokens")
    store = InMemoryCredentialStore(service="GranaStreamApp", logger=log)
    tokens = TokenManager(store=store, logger=log)
    tokens.hydrate()
    tokens.store("access", "refresh", expires_in=3600)
    tokens.is_token_expiring_soon()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from grana.logger import StructuredLogger
from grana.services.credential_errors import CredentialStoreError
from grana.services.credential_store import CredentialStore
from grana.utils.date_coder import format_timestamp, parse_timestamp

ACCESS_TOKEN_KEY: str = "gs_access_token"
REFRESH_TOKEN_KEY: str = "gs_refresh_token"
EXPIRES_AT_KEY: str = "gs_expires_at"

DEFAULT_REFRESH_LEEWAY_S: float = 60.0

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """In-memory token triple mirrored to a ``CredentialStore``.

    Parameters
    ----------
    store:
        Secure storage for the three token entries.
    logger:
        A ``StructuredLogger`` instance.
    leeway_s:
        Safety margin subtracted from the expiry when judging whether the
        access token is about to expire.
    clock:
        Returns the current aware UTC time; injectable for tests.
    on_persistence_error:
        Called with every storage failure after it has been logged.
    """

    def __init__(
        self,
        store: CredentialStore,
        logger: StructuredLogger,
        leeway_s: float = DEFAULT_REFRESH_LEEWAY_S,
        clock: Clock = utc_now,
        on_persistence_error: Optional[Callable[[CredentialStoreError], None]] = None,
    ) -> None:
        self._store: CredentialStore = store
        self._logger: StructuredLogger = logger
        self._leeway: timedelta = timedelta(seconds=leeway_s)
        self._clock: Clock = clock
        self._on_persistence_error = on_persistence_error

        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    @property
    def leeway(self) -> timedelta:
        return self._leeway

    def now(self) -> datetime:
        return self._clock()

    def is_token_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        """``True`` when no expiry is recorded or *now* is inside the leeway window."""
        if self._expires_at is None:
            return True
        current = now if now is not None else self._clock()
        try:
            return current + self._leeway >= self._expires_at
        except OverflowError:
            return True

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def store(self, access_token: str, refresh_token: str, expires_in: int) -> None:
        """Record a new token pair expiring *expires_in* seconds from now.

        Memory is updated before storage is attempted.
        """
        expiry = self._clock() + timedelta(seconds=expires_in)
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._expires_at = expiry

        self._persist(ACCESS_TOKEN_KEY, access_token)
        self._persist(REFRESH_TOKEN_KEY, refresh_token)
        self._persist(EXPIRES_AT_KEY, format_timestamp(expiry))

    def clear(self) -> None:
        """Forget the tokens in memory, then remove them from storage."""
        self._access_token = None
        self._refresh_token = None
        self._expires_at = None

        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY):
            try:
                self._store.delete(key)
            except CredentialStoreError as exc:
                self._report("delete", key, exc)

    def hydrate(self) -> None:
        """Load tokens persisted by a previous run.

        A read failure on any entry counts as "no stored value" for that
        entry.  An expiry that does not parse is dropped, which makes the
        access token count as expiring.
        """
        self._access_token = self._read(ACCESS_TOKEN_KEY)
        self._refresh_token = self._read(REFRESH_TOKEN_KEY)

        raw_expiry = self._read(EXPIRES_AT_KEY)
        self._expires_at = parse_timestamp(raw_expiry)
        if raw_expiry is not None and self._expires_at is None:
            self._logger.warning(
                "Stored token expiry %r could not be parsed; treating the "
                "access token as expiring.",
                raw_expiry,
            )

        self._logger.debug(
            "Hydrated tokens (access=%s, refresh=%s, expiry=%s).",
            self._access_token is not None,
            self._refresh_token is not None,
            self._expires_at.isoformat() if self._expires_at else None,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Optional[str]:
        try:
            return self._store.get(key)
        except CredentialStoreError as exc:
            self._logger.warning(
                "Could not read %s from the credential store: %s",
                key,
                exc.debug_description,
            )
            return None

    def _persist(self, key: str, value: str) -> None:
        try:
            self._store.set(key, value)
        except CredentialStoreError as exc:
            self._report("save", key, exc)

    def _report(self, operation: str, key: str, exc: CredentialStoreError) -> None:
        self._logger.warning(
            "Failed to %s %s in the credential store: %s. "
            "Continuing with in-memory tokens.",
            operation,
            key,
            exc.debug_description,
            extra={"event": "PERSISTENCE_WARNING", "status": exc.status},
        )
        if self._on_persistence_error is not None:
            self._on_persistence_error(exc)
