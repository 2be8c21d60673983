import asyncio
import inspect
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# Configure before any grana import reads the environment.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("CREDENTIAL_BACKEND", "memory")

import httpx  # noqa: E402
import pytest  # noqa: E402

from grana.config import reset_config  # noqa: E402
from grana.logger import StructuredLogger  # noqa: E402
from grana.networking.api_client import APIClient  # noqa: E402
from grana.services.credential_store import InMemoryCredentialStore  # noqa: E402
from grana.session import SessionCore  # noqa: E402

BASE_URL = "https://api.test/api/v1"
SERVICE = "GranaStreamApp"
T0 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeServer:
    """Scripted GranaStream API behind ``httpx.MockTransport``.

    Routes are keyed by ``(method, path)`` with the ``/api/v1`` prefix
    stripped.  Each route holds a queue of replies; the last reply is
    reused once the queue is down to one.  A reply may carry an
    ``asyncio.Event`` gate that the handler waits on before answering.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        gate: Optional[asyncio.Event] = None,
        exc: Optional[Exception] = None,
        content: Optional[bytes] = None,
    ) -> None:
        self.routes.setdefault((method, path), []).append(
            {"status": status, "json": json_body, "gate": gate, "exc": exc, "content": content}
        )

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.method == method and _route_path(c) == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, _route_path(request))
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"title": "Not Found", "status": 404})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if reply["gate"] is not None:
            await reply["gate"].wait()
        if reply["exc"] is not None:
            raise reply["exc"]
        if reply["content"] is not None:
            return httpx.Response(reply["status"], content=reply["content"])
        if reply["json"] is None:
            return httpx.Response(reply["status"])
        return httpx.Response(reply["status"], json=reply["json"])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _route_path(request: httpx.Request) -> str:
    path = request.url.path
    prefix = "/api/v1"
    return path[len(prefix):] if path.startswith(prefix) else path


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


def login_payload(
    access: str = "access-1",
    refresh: str = "refresh-1",
    expires_in: int = 3600,
    user_id: str = "u-1",
    name: Optional[str] = "Ana",
    email: Optional[str] = "ana@example.com",
) -> dict[str, Any]:
    return {
        "accessToken": access,
        "refreshToken": refresh,
        "expiresIn": expires_in,
        "user": {"id": user_id, "name": name, "email": email},
    }


@pytest.fixture(autouse=True)
def reset_config_state():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def logger():
    return StructuredLogger(name="grana.tests")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(logger):
    return InMemoryCredentialStore(service=SERVICE, logger=logger)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def make_api(server, logger):
    def factory() -> APIClient:
        return APIClient(base_url=BASE_URL, logger=logger, transport=server.transport())

    return factory


@pytest.fixture
def make_session(make_api, store, logger, clock):
    """Build a wired session.  Call it inside a test coroutine to get the
    startup refresh scheduled on the running loop."""

    def factory(**kwargs: Any) -> SessionCore:
        api = make_api()
        session = SessionCore(
            api=api,
            store=kwargs.get("store", store),
            logger=logger,
            clock=clock,
        )
        api.set_token_provider(session)
        return session

    return factory


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
