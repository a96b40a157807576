"""Fixtures shared by the unit tests.

* ``identity_server`` – scripted fake of the authorize/authn/token/logout
  endpoints served through :class:`httpx.MockTransport`
* ``manual_sleep`` – sleep function that blocks until released, so cooldown
  and restart timers only advance when a test says so
* ``make_jwt`` – builds unsigned three-segment tokens
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections import defaultdict
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from app_native_auth.core.config import AuthConfig
from app_native_auth.core.orchestrator import FlowOrchestrator
from app_native_auth.core.transport import IdentityServerClient

BASE_URL = "https://is.example.com"


# --------------------------------------------------------------------------- #
# Fakes                                                                       #
# --------------------------------------------------------------------------- #
class FakeIdentityServer:
    """Serve queued responses per path and record every request."""

    def __init__(self) -> None:
        self._queues: dict[str, list[httpx.Response | Exception]] = defaultdict(list)
        self.requests: list[httpx.Request] = []
        self.gate: asyncio.Event | None = None

    def reply(self, path: str, payload: Any = None, *, status: int = 200, text: str | None = None) -> None:
        if text is not None:
            response = httpx.Response(status, text=text)
        else:
            response = httpx.Response(status, json=payload if payload is not None else {})
        self._queues[path].append(response)

    def fail(self, path: str, exc: Exception) -> None:
        self._queues[path].append(exc)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        queue = self._queues[request.url.path]
        if not queue:
            return httpx.Response(599, text=f"unexpected call to {request.url.path}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)

    @staticmethod
    def form_body(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class ManualSleep:
    """Awaitable sleep that records delays and waits for :meth:`release`."""

    def __init__(self) -> None:
        self.calls: list[float] = []
        self._released = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self._released.wait()

    def release(self) -> None:
        self._released.set()


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        client_id="app-client",
        callback_url="myapp://callback",
        base_url=BASE_URL + "/",
    )


@pytest.fixture
def identity_server() -> FakeIdentityServer:
    return FakeIdentityServer()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def make_client(identity_server: FakeIdentityServer) -> Callable[[AuthConfig], IdentityServerClient]:
    def _make(config: AuthConfig) -> IdentityServerClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(identity_server.handler))
        return IdentityServerClient(config, http_client=http)

    return _make


@pytest.fixture
async def orchestrator(auth_config, make_client, manual_sleep):
    """FlowOrchestrator wired to the fake server; timers only tick on release."""
    orch = FlowOrchestrator(
        auth_config,
        client=make_client(auth_config),
        clock=lambda: 1_700_000_000.0,
        sleep=manual_sleep,
    )
    yield orch
    orch.reset_to_init()
    await orch.client._http.aclose()


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    def _b64(data: dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()

    def _make(payload: dict[str, Any], header: dict[str, Any] | None = None) -> str:
        return f"{_b64(header or {'alg': 'RS256', 'typ': 'JWT'})}.{_b64(payload)}.c2lnbmF0dXJl"

    return _make
