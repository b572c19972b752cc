"""Shared fakes: a Digest-protected JointSpace TV behind httpx.MockTransport."""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from tvhub.jointspace.digest import md5_hex, parse_www_authenticate

USERNAME = "tvhub-test"
PASSWORD = "s3cret-auth-key"


@pytest.fixture(autouse=True)
def tvhub_env_sandbox(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TV_HOST", "TV_MAC", "TV_USERNAME", "TV_PASSWORD", "TV_PASSWORD_FILE",
        "TV_API_VERSION", "POLL_INTERVAL", "INITIAL_POLL_DELAY", "LONG_POLL",
        "API_HOST", "PORT", "DEBUG_API",
    ):
        monkeypatch.delenv(name, raising=False)


Route = Any  # JSON body, or callable(request) -> httpx.Response


class FakeTV:
    """Checks Digest responses the way the TV does; 401 + challenge otherwise."""

    def __init__(self, *, realm: str = "XTV", nonce: str = "n0nce-1", qop: Optional[str] = "auth",
                 password: str = PASSWORD) -> None:
        self.realm = realm
        self.nonce = nonce
        self.qop = qop
        self.password = password
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[httpx.Request] = []
        self.send_challenge = True

    def route(self, method: str, path: str, body: Route) -> None:
        self.routes[(method, path)] = body

    def challenge(self) -> str:
        header = f'Digest realm="{self.realm}", nonce="{self.nonce}"'
        if self.qop:
            header += f', qop="{self.qop}"'
        return header

    def authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("authorization", "")
        if not header.startswith("Digest "):
            return False
        p = parse_www_authenticate(header[len("Digest "):])
        if p.get("nonce") != self.nonce or p.get("uri") != request.url.path:
            return False
        ha1 = md5_hex(f"{p.get('username')}:{self.realm}:{self.password}")
        ha2 = md5_hex(f"{request.method}:{p['uri']}")
        if self.qop:
            expected = md5_hex(f"{ha1}:{self.nonce}:{p.get('nc')}:{p.get('cnonce')}:{p.get('qop')}:{ha2}")
        else:
            expected = md5_hex(f"{ha1}:{self.nonce}:{ha2}")
        return p.get("response") == expected

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.authorized(request):
            headers = {"WWW-Authenticate": self.challenge()} if self.send_challenge else {}
            return httpx.Response(401, headers=headers)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="<html><head><title>Status page</title></head>"
                                            "<body><p>Not Found</p></body></html>")
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def tv() -> FakeTV:
    return FakeTV()


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
