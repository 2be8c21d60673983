"""Unit tests for the event hub, the session guard, configuration and the
composition root."""

import io
import json
import logging
from datetime import timedelta

import pytest

from grana.bootstrap import create_session_core
from grana.config import AppConfig, get_config
from grana.events import (
    SessionEvent,
    SessionEventEmitter,
    SessionEventKind,
    SessionSnapshot,
)
from grana.guards import require_session
from grana.logger import StructuredLogger
from grana.models.enums import SessionState
from grana.networking.api_error import Unauthorized
from grana.services.credential_store import InMemoryCredentialStore
from tests.conftest import BASE_URL, SERVICE, login_payload


def _event(kind=SessionEventKind.AUTH_STATE_CHANGED):
    snapshot = SessionSnapshot(state=SessionState.UNAUTHENTICATED, is_authenticated=False)
    return SessionEvent(kind=kind, snapshot=snapshot)


class TestEventEmitter:
    def test_listeners_called_in_order(self, logger):
        emitter = SessionEventEmitter(logger)
        seen = []
        emitter.subscribe(lambda e: seen.append(("first", e.kind)))
        emitter.subscribe(lambda e: seen.append(("second", e.kind)))

        emitter.emit(_event())

        assert seen == [
            ("first", SessionEventKind.AUTH_STATE_CHANGED),
            ("second", SessionEventKind.AUTH_STATE_CHANGED),
        ]

    def test_failing_listener_does_not_block_others(self, logger):
        emitter = SessionEventEmitter(logger)
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        emitter.subscribe(broken)
        emitter.subscribe(seen.append)

        emitter.emit(_event())

        assert len(seen) == 1

    def test_unsubscribe_is_idempotent(self, logger):
        emitter = SessionEventEmitter(logger)
        unsubscribe = emitter.subscribe(lambda e: None)

        unsubscribe()
        unsubscribe()

        assert len(emitter) == 0


class TestSessionGuard:
    async def test_guarded_call_runs_with_session(self, make_session, server):
        server.add("POST", "/auth/login", json_body=login_payload())
        session = make_session()
        await session.login("a@b.com", "secret")
        guard = require_session(session)

        @guard
        async def load_accounts(prefix):
            return f"{prefix}:{session.get_access_token()}"

        assert await load_accounts("accounts") == "accounts:access-1"
        assert load_accounts.__name__ == "load_accounts"

    async def test_guarded_call_rejected_without_session(self, make_session):
        session = make_session()
        called = []

        @require_session(session)
        async def load_accounts():
            called.append(True)

        with pytest.raises(Unauthorized):
            await load_accounts()

        assert called == []


class TestConfig:
    def test_defaults(self):
        config = AppConfig()

        assert config.KEYCHAIN_SERVICE == "GranaStreamApp"
        assert config.TOKEN_REFRESH_LEEWAY_S == 60.0
        assert config.resolved_base_url().endswith("/api/v1")

    def test_environment_urls(self):
        config = AppConfig(APP_ENV="dev", API_BASE_URL_DEV="http://localhost:5000/api/v1/")

        assert config.resolved_base_url() == "http://localhost:5000/api/v1"
        assert AppConfig(APP_ENV="hml").resolved_base_url() == AppConfig().resolved_base_url()

    def test_log_level(self):
        assert AppConfig(LOG_LEVEL="warning").log_level == logging.WARNING
        assert AppConfig(LOG_LEVEL="chatty").log_level == logging.INFO

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_TIMEOUT_S", "5")

        assert AppConfig().HTTP_TIMEOUT_S == 5.0

    def test_get_config_is_cached(self):
        assert get_config() is get_config()


class TestBootstrap:
    async def test_wires_session_into_transport(self, server, logger):
        server.add("POST", "/auth/login", json_body=login_payload(access="AT1"))
        server.add("GET", "/users/me", json_body={"id": "u-1", "name": "Ana", "email": None, "status": 1})
        config = AppConfig(API_BASE_URL=BASE_URL, CREDENTIAL_BACKEND="memory", TOKEN_REFRESH_LEEWAY_S=120)

        container = create_session_core(config=config, transport=server.transport())
        session = container["session"]
        await session.login("a@b.com", "secret")
        await session.load_profile()
        await container["api"].aclose()

        assert isinstance(container["store"], InMemoryCredentialStore)
        assert container["store"].get("gs_access_token") == "AT1"
        assert server.calls[1].headers["Authorization"] == "Bearer AT1"
        assert session.is_token_expiring_soon(session.expires_at - timedelta(seconds=90)) is True

    async def test_store_override(self, server, logger):
        store = InMemoryCredentialStore(service=SERVICE, logger=logger)
        config = AppConfig(API_BASE_URL=BASE_URL)

        container = create_session_core(config=config, store=store, transport=server.transport())

        assert container["store"] is store
        await container["api"].aclose()


class TestStructuredLogger:
    def test_renders_json_with_event_field(self):
        stream = io.StringIO()
        log = StructuredLogger(name="grana.tests.json", level=logging.INFO, stream=stream)

        log.info("Signed in %s.", "u-1", extra={"event": "LOGIN"})
        log.debug("Hidden below the level.")

        (line,) = stream.getvalue().splitlines()
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger_name"] == "grana.tests.json"
        assert entry["message"] == "Signed in u-1."
        assert entry["extra"] == {"event": "LOGIN"}

    def test_same_name_does_not_duplicate_lines(self):
        stream = io.StringIO()
        first = StructuredLogger(name="grana.tests.shared", level=logging.INFO, stream=stream)
        StructuredLogger(name="grana.tests.shared", level=logging.INFO, stream=stream)

        first.warning("Refresh failed.")

        assert len(stream.getvalue().splitlines()) == 1

    def test_exception_is_included(self):
        stream = io.StringIO()
        log = StructuredLogger(name="grana.tests.exc", level=logging.INFO, stream=stream)

        try:
            raise RuntimeError("listener bug")
        except RuntimeError:
            log.error("Listener failed.", exc_info=True)

        entry = json.loads(stream.getvalue())
        assert "RuntimeError: listener bug" in entry["exception"]
