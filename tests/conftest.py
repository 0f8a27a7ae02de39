"""Shared fixtures: a fake language server and fake collaborators."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from agquota.client import GET_UNLEASH_DATA, GET_USER_STATUS, SERVICE_PATH, RpcResponse
from agquota.models import Platform, ProcessRecord

TOKEN = "4f1c9a2e-0b7d-4c1e-9f3a-6d2b8e5c7a10"


def user_status_payload() -> dict:
    """A GetUserStatus reply shaped like the real one."""
    return {
        "userStatus": {
            "name": "Test User",
            "email": "test@example.com",
            "planStatus": {
                "planInfo": {"planName": "Pro", "monthlyPromptCredits": 50000},
                "availablePromptCredits": 12500,
            },
            "cascadeModelConfigData": {
                "clientModelConfigs": [
                    {
                        "label": "Gemini 3 Pro (High)",
                        "modelOrAlias": {"model": "MODEL_PLACEHOLDER_M7"},
                        "quotaInfo": {
                            "remainingFraction": 0.75,
                            "resetTime": "2099-01-01T00:00:00Z",
                        },
                    },
                    {
                        "label": "Claude Sonnet 4.5",
                        "modelOrAlias": {"model": "MODEL_CLAUDE_4_5_SONNET"},
                        "quotaInfo": {"used": 80, "limit": 100},
                    },
                ]
            },
        }
    }


class FakeLanguageServer:
    """aiohttp server answering the two RPCs agquota uses."""

    def __init__(self, token: str | None = TOKEN) -> None:
        self.token = token
        self.payload: object = user_status_payload()
        self.status = 200
        self.requests: list[tuple[str, str | None]] = []
        app = web.Application()
        app.router.add_post(f"/{SERVICE_PATH}/{GET_UNLEASH_DATA}", self._unleash)
        app.router.add_post(f"/{SERVICE_PATH}/{GET_USER_STATUS}", self._user_status)
        self.server = TestServer(app, host="127.0.0.1")

    @property
    def port(self) -> int:
        return self.server.port

    async def start(self) -> None:
        await self.server.start_server()

    async def close(self) -> None:
        await self.server.close()

    def _authorized(self, request: web.Request) -> bool:
        received = request.headers.get("X-Codeium-Csrf-Token")
        self.requests.append((request.path.rsplit("/", 1)[-1], received))
        return self.token is None or received == self.token

    async def _unleash(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"code": "unauthenticated"}, status=401)
        return web.json_response({"features": []})

    async def _user_status(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.json_response({"code": "unauthenticated"}, status=401)
        if self.status != 200:
            return web.json_response({"code": "internal"}, status=self.status)
        if isinstance(self.payload, str):
            return web.Response(text=self.payload)
        return web.json_response(self.payload)


class FakeClient:
    """Stand-in for LanguageServerClient that records calls."""

    def __init__(self, payload=None, status: int = 200, error: Exception | None = None):
        self.payload = user_status_payload() if payload is None else payload
        self.status = status
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[int, str, str | None]] = []
        self.active = 0
        self.max_active = 0

    async def call(self, port, method, body, token, timeout):
        self.calls.append((port, method, token))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            return RpcResponse(status=self.status, port=port, payload=self.payload, text="")
        finally:
            self.active -= 1


class FakeScanner:
    """Scanner returning canned records and listening ports."""

    def __init__(self, records=None, ports=None, error: Exception | None = None):
        self.records = records or []
        self.ports = ports or {}
        self.error = error

    async def list_candidate_processes(self):
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def find_listening_ports(self, pid):
        return list(self.ports.get(pid, []))


def unix_record(pid: int, command_line: str) -> ProcessRecord:
    return ProcessRecord(pid=pid, command_line=command_line, platform=Platform.UNIX)


@pytest.fixture
def fake_client_cls():
    return FakeClient


@pytest.fixture
def fake_scanner_cls():
    return FakeScanner


@pytest.fixture
def make_record():
    return unix_record


@pytest.fixture
def token():
    return TOKEN


@pytest.fixture
def payload():
    return user_status_payload()


@pytest_asyncio.fixture
async def language_server():
    server = FakeLanguageServer()
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def open_language_server():
    """A server that runs without a token, like a dev-mode build."""
    server = FakeLanguageServer(token=None)
    await server.start()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def binary_server():
    """Some other service that answers every POST with non-UTF-8 bytes."""

    async def garbage(request: web.Request) -> web.Response:
        return web.Response(body=b"\xff\xfe\x00garbage", content_type="application/octet-stream")

    app = web.Application()
    app.router.add_post("/{tail:.*}", garbage)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def redirecting_server(language_server):
    """Front-door server that redirects every RPC to ``language_server``."""

    async def redirect(request: web.Request) -> web.Response:
        location = f"http://127.0.0.1:{language_server.port}{request.path}"
        raise web.HTTPTemporaryRedirect(location)

    app = web.Application()
    app.router.add_post("/{tail:.*}", redirect)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    yield server
    await server.close()
