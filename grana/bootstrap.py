"""
Composition Root.

The ``create_session_core()`` factory wires configuration, logging,
credential storage, the HTTP transport and the session core together,
returning a typed dict that the application layer (CLI / views) can
consume without knowing the internal dependency graph.

Call it once per process, from inside the event loop that will own the
session, so the startup refresh can be scheduled immediately.
"""

from __future__ import annotations

from typing import Optional, TypedDict

import httpx

from grana.config import AppConfig, get_config
from grana.logger import StructuredLogger
from grana.networking.api_client import APIClient
from grana.services.credential_store import CredentialStore, create_credential_store
from grana.session import SessionCore


class SessionContainer(TypedDict):
    """Typed container for the session stack."""

    config: AppConfig
    store: CredentialStore
    api: APIClient
    session: SessionCore


def create_session_core(
    config: Optional[AppConfig] = None,
    store: Optional[CredentialStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SessionContainer:
    """
    Wire the session stack together.

    Args:
        config: Application configuration; ``get_config()`` when omitted.
        store: Credential store override; the backend named by
            ``CREDENTIAL_BACKEND`` when omitted.
        transport: Optional ``httpx`` transport for the API client.

    Returns:
        SessionContainer holding the fully-wired instances.  The API
        client already has the session bound as its token provider.
    """
    config = config or get_config()

    if store is None:
        store = create_credential_store(
            config,
            StructuredLogger(name="grana.credentials"),
        )

    api = APIClient(
        base_url=config.resolved_base_url(),
        logger=StructuredLogger(name="grana.http"),
        timeout=config.HTTP_TIMEOUT_S,
        transport=transport,
    )
    session = SessionCore(
        api=api,
        store=store,
        logger=StructuredLogger(name="grana.session"),
        leeway_s=config.TOKEN_REFRESH_LEEWAY_S,
    )
    api.set_token_provider(session)

    return SessionContainer(config=config, store=store, api=api, session=session)
