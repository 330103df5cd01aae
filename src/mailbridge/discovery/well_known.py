"""``/.well-known/jmap`` endpoint verification (RFC 8620 section 2.2)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

DEFAULT_WELL_KNOWN_TIMEOUT = 10.0
WELL_KNOWN_PATH = "/.well-known/jmap"

# 401 still proves a JMAP endpoint lives here; it just wants credentials.
_ACCEPTED_STATUS = {200, 401}
MAX_REDIRECTS = 10


def well_known_url(host: str, port: Optional[int] = None) -> str:
    if port is None or port == 443:
        return f"https://{host}{WELL_KNOWN_PATH}"
    return f"https://{host}:{port}{WELL_KNOWN_PATH}"


async def verify_jmap_url(
    url: str,
    timeout: float = DEFAULT_WELL_KNOWN_TIMEOUT,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """Return the final URL after redirects if ``url`` is a JMAP endpoint.

    Only https is ever requested: a redirect to any other scheme ends the
    probe. ``timeout`` bounds the whole redirect chain. Any status other than
    200/401, a timeout, a network error or an unusable URL yields ``None``.
    """
    try:
        scheme = urlsplit(url).scheme
    except ValueError as exc:
        logger.warning("Cannot probe malformed URL %r: %s", url, exc)
        return None
    if scheme != "https":
        logger.debug("Refusing to probe non-https URL %s", url)
        return None
    if client is None:
        async with httpx.AsyncClient() as owned:
            return await verify_jmap_url(url, timeout, client=owned)

    try:
        response = await asyncio.wait_for(_get_over_https(client, url, timeout), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        logger.warning("JMAP URL verification timeout for %s", url)
        return None
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.warning("JMAP URL verification failed for %s: %s", url, exc)
        return None

    if response is None:
        return None
    if response.status_code not in _ACCEPTED_STATUS:
        logger.debug("%s returned %s, not a JMAP endpoint", url, response.status_code)
        return None
    return str(response.url)


async def _get_over_https(
    client: httpx.AsyncClient, url: str, timeout: float
) -> Optional[httpx.Response]:
    """GET ``url``, following redirects by hand so every hop stays on https."""
    current = url
    for _ in range(MAX_REDIRECTS + 1):
        response = await client.get(current, timeout=timeout, follow_redirects=False)
        if not response.is_redirect or response.next_request is None:
            return response
        target = response.next_request.url
        if target.scheme != "https":
            logger.warning("%s redirects to non-https %s, ignoring endpoint", current, target)
            return None
        current = str(target)
    logger.warning("Too many redirects probing %s", url)
    return None


async def fetch_well_known_jmap(
    domain: str,
    timeout: float = DEFAULT_WELL_KNOWN_TIMEOUT,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    return await verify_jmap_url(well_known_url(domain), timeout, client=client)


__all__ = [
    "DEFAULT_WELL_KNOWN_TIMEOUT",
    "fetch_well_known_jmap",
    "verify_jmap_url",
    "well_known_url",
]
