"""Tests for the local authorization callback listener."""

from __future__ import annotations

import asyncio
import socket
from typing import List

import httpx
import pytest

from mailbridge.auth.callback_server import (
    callback_path,
    resolve_callback_port,
    wait_for_authorization_code,
)
from mailbridge.errors import CallbackError


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class _Browser:
    """Fake browser that follows the redirect straight to the listener."""

    def __init__(self, redirect: str) -> None:
        self.redirect = redirect
        self.opened: List[str] = []
        self.responses: List[httpx.Response] = []
        self._tasks: List[asyncio.Task] = []

    def __call__(self, url: str) -> bool:
        self.opened.append(url)
        self._tasks.append(asyncio.get_running_loop().create_task(self._visit()))
        return True

    async def _visit(self) -> None:
        async with httpx.AsyncClient() as client:
            self.responses.append(await client.get(self.redirect))


@pytest.mark.parametrize(
    "redirect_uri, expected",
    [
        ("http://localhost:8765/callback", 8765),
        ("http://localhost/callback", 80),
        ("https://localhost/callback", 443),
        ("http://127.0.0.1/callback", 80),
        ("https://tunnel.example.net/callback", 3000),
        ("https://tunnel.example.net:9443/callback", 9443),
    ],
)
def test_resolve_callback_port(redirect_uri: str, expected: int) -> None:
    assert resolve_callback_port(redirect_uri) == expected


def test_resolve_callback_port_uses_configured_default_for_remote() -> None:
    assert resolve_callback_port("https://tunnel.example.net/cb", 4000) == 4000


def test_callback_path() -> None:
    assert callback_path("http://localhost:3000/oauth/callback") == "/oauth/callback"
    assert callback_path("http://localhost:3000") == "/"


@pytest.mark.asyncio
async def test_code_is_delivered_and_listener_shut_down() -> None:
    port = _free_port()
    browser = _Browser(f"http://127.0.0.1:{port}/callback?code=abc&state=xyz")

    result = await wait_for_authorization_code(
        "https://auth.example.com/authorize?x=1",
        port=port,
        host="127.0.0.1",
        timeout=5,
        launch=browser,
    )

    assert result.code == "abc"
    assert result.state == "xyz"
    assert browser.opened == ["https://auth.example.com/authorize?x=1"]

    async with httpx.AsyncClient() as client:
        with pytest.raises(httpx.ConnectError):
            await client.get(f"http://127.0.0.1:{port}/callback?code=again")


@pytest.mark.asyncio
async def test_provider_error_raises_callback_error() -> None:
    port = _free_port()
    browser = _Browser(
        f"http://127.0.0.1:{port}/callback?error=access_denied&error_description=User+said+no"
    )

    with pytest.raises(CallbackError) as excinfo:
        await wait_for_authorization_code(
            "https://auth.example.com/authorize",
            port=port,
            host="127.0.0.1",
            timeout=5,
            launch=browser,
        )

    assert excinfo.value.error == "access_denied"
    assert excinfo.value.description == "User said no"


@pytest.mark.asyncio
async def test_request_without_code_keeps_waiting_until_timeout() -> None:
    port = _free_port()
    browser = _Browser(f"http://127.0.0.1:{port}/callback?state=only")

    with pytest.raises(CallbackError, match="No authorization callback"):
        await wait_for_authorization_code(
            "https://auth.example.com/authorize",
            port=port,
            host="127.0.0.1",
            timeout=0.3,
            launch=browser,
        )

    assert browser.responses[0].status_code == 400
