"""Short-lived local HTTP listener for the OAuth redirect.

Starts an aiohttp server on the redirect URI's port and path, opens the
authorization URL in the browser and waits for the provider to redirect
back with either ``code`` or ``error``. The listener is torn down as soon as
one of those arrives or the wait times out.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import webbrowser
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

from aiohttp import web

from mailbridge.errors import CallbackError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PORT = 3000
DEFAULT_CALLBACK_TIMEOUT = 120.0
_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}

_SUCCESS_PAGE = """
<html>
<head><title>Authentication Successful</title></head>
<body>
    <h1>Authentication Successful!</h1>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""

_FAILURE_PAGE = """
<html>
<head><title>Authentication Failed</title></head>
<body>
    <h1>Authentication Failed</h1>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""


@dataclass(frozen=True)
class CallbackResult:
    """Query parameters delivered to the redirect URI."""

    code: str
    state: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)


def resolve_callback_port(redirect_uri: str, default_port: int = DEFAULT_CALLBACK_PORT) -> int:
    """Port the local listener should bind for ``redirect_uri``.

    An explicit port wins. A loopback redirect without a port uses the
    scheme's default port; a remote redirect (a tunnel forwarding to this
    machine) uses ``default_port``.
    """
    parts = urlsplit(redirect_uri)
    if parts.port:
        return parts.port
    if parts.hostname in _LOOPBACK_HOSTS:
        return 443 if parts.scheme == "https" else 80
    return default_port


def callback_path(redirect_uri: str) -> str:
    return urlsplit(redirect_uri).path or "/"


async def wait_for_authorization_code(
    authorization_url: str,
    *,
    port: int,
    path: str = "/callback",
    host: str = "localhost",
    timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    launch: Callable[[str], object] = webbrowser.open,
) -> CallbackResult:
    """Open ``authorization_url`` and wait for the redirect carrying the code.

    Raises:
        CallbackError: Provider returned an error, or nothing arrived in time
    """
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[CallbackResult] = loop.create_future()

    async def handle_callback(request: web.Request) -> web.Response:
        params = dict(request.query)
        if outcome.done():
            return web.Response(status=409, text="Authorization already completed")
        if "error" in params:
            outcome.set_exception(
                CallbackError(
                    f"Authorization server returned error: {params['error']}",
                    error=params["error"],
                    description=params.get("error_description"),
                )
            )
            return web.Response(status=400, text=_FAILURE_PAGE, content_type="text/html")
        if "code" not in params:
            return web.Response(status=400, text="Missing authorization code")
        outcome.set_result(
            CallbackResult(code=params["code"], state=params.get("state"), params=params)
        )
        return web.Response(status=200, text=_SUCCESS_PAGE, content_type="text/html")

    app = web.Application()
    app.router.add_get(path, handle_callback)
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info("Waiting for authorization callback on %s:%s%s", host, port, path)

        print("\nOpening browser for authentication...", file=sys.stderr)
        print(f"If browser doesn't open, visit: {authorization_url}\n", file=sys.stderr)
        launch(authorization_url)

        try:
            return await asyncio.wait_for(outcome, timeout)
        except asyncio.TimeoutError as exc:
            raise CallbackError(
                f"No authorization callback received within {timeout:g} seconds"
            ) from exc
    finally:
        await runner.cleanup()


__all__ = [
    "CallbackResult",
    "DEFAULT_CALLBACK_PORT",
    "DEFAULT_CALLBACK_TIMEOUT",
    "callback_path",
    "resolve_callback_port",
    "wait_for_authorization_code",
]
