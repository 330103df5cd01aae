"""Locate the authorization server protecting a JMAP resource.

Three probes are tried in order, each with its own timeout:

1. RFC 9728 protected resource metadata at the resource origin
2. the ``WWW-Authenticate`` challenge on an unauthenticated request
3. OIDC discovery on conventional identity subdomains of the base domain

A probe that fails for any reason just hands over to the next one.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Dict, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from mailbridge.auth.issuer import fetch_issuer_metadata
from mailbridge.errors import IssuerDiscoveryError

from .models import IssuerMethod, OidcDiscoveryResult

logger = logging.getLogger(__name__)

DEFAULT_OAUTH_DISCOVERY_TIMEOUT = 10.0
PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
OIDC_SUBDOMAINS = ("auth", "sso", "login", "id")

_BEARER_SCHEME = re.compile(r"^Bearer\s+", re.IGNORECASE)
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]+)"')
_CHALLENGE_KEYS = frozenset({"issuer", "realm", "scope"})


def parse_www_authenticate(header: str) -> Optional[Dict[str, str]]:
    """Extract ``issuer``/``realm``/``scope`` from a Bearer challenge.

    Returns ``None`` for other schemes or when none of those keys is present.
    """
    if not header or not _BEARER_SCHEME.match(header):
        return None
    params = _BEARER_SCHEME.sub("", header, count=1)
    result = {
        key: value
        for key, value in _CHALLENGE_PARAM.findall(params)
        if key in _CHALLENGE_KEYS
    }
    return result or None


def base_domain_of(host: str) -> str:
    """``jmap.example.com`` -> ``example.com``; two-label hosts are kept."""
    labels = host.split(".")
    if len(labels) > 2:
        return ".".join(labels[1:])
    return host


async def _probe_protected_resource(
    client: httpx.AsyncClient, resource_url: str, timeout: float
) -> Optional[OidcDiscoveryResult]:
    parts = urlsplit(resource_url)
    metadata_url = f"{parts.scheme}://{parts.netloc}{PROTECTED_RESOURCE_PATH}"
    response = await asyncio.wait_for(client.get(metadata_url, timeout=timeout), timeout)
    if not response.is_success:
        return None
    document = response.json()
    servers = document.get("authorization_servers") if isinstance(document, dict) else None
    if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
        return None
    return OidcDiscoveryResult(issuer=servers[0], method=IssuerMethod.PROTECTED_RESOURCE)


async def _probe_www_authenticate(
    client: httpx.AsyncClient, resource_url: str, timeout: float
) -> Optional[OidcDiscoveryResult]:
    response = await asyncio.wait_for(client.get(resource_url, timeout=timeout), timeout)
    if response.status_code != 401:
        return None
    challenge = parse_www_authenticate(response.headers.get("WWW-Authenticate", ""))
    if not challenge or "issuer" not in challenge:
        return None
    return OidcDiscoveryResult(issuer=challenge["issuer"], method=IssuerMethod.WWW_AUTHENTICATE)


async def _probe_oidc_subdomains(
    client: httpx.AsyncClient,
    base_domain: str,
    timeout: float,
    subdomains: Sequence[str] = OIDC_SUBDOMAINS,
) -> Optional[OidcDiscoveryResult]:
    for subdomain in subdomains:
        candidate = f"https://{subdomain}.{base_domain}"
        try:
            metadata = await fetch_issuer_metadata(
                candidate, client=client, timeout=timeout, require_match=False
            )
        except IssuerDiscoveryError as exc:
            logger.debug("No OIDC metadata at %s: %s", candidate, exc)
            continue
        if metadata.issuer:
            return OidcDiscoveryResult(issuer=metadata.issuer, method=IssuerMethod.WELL_KNOWN_OIDC)
    return None


async def discover_oauth_from_resource(
    resource_url: str,
    timeout: float = DEFAULT_OAUTH_DISCOVERY_TIMEOUT,
    *,
    base_domain: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[OidcDiscoveryResult]:
    """Find the issuer for ``resource_url``, or ``None`` if nothing advertises one.

    Args:
        resource_url: Verified JMAP session URL
        timeout: Per-probe timeout in seconds
        base_domain: Domain for subdomain guessing (defaults to the
            resource host minus its first label)
        client: Shared HTTP client (one is created when omitted)
    """
    try:
        host = urlsplit(resource_url).hostname
    except ValueError as exc:
        logger.warning("Cannot probe malformed resource URL %r: %s", resource_url, exc)
        return None
    if not host:
        return None
    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as owned:
            return await discover_oauth_from_resource(
                resource_url, timeout, base_domain=base_domain, client=owned
            )

    domain = base_domain or base_domain_of(host)
    probes: Sequence[tuple[str, Callable[[], Awaitable[Optional[OidcDiscoveryResult]]]]] = (
        ("protected-resource", lambda: _probe_protected_resource(client, resource_url, timeout)),
        ("www-authenticate", lambda: _probe_www_authenticate(client, resource_url, timeout)),
        ("well-known-oidc", lambda: _probe_oidc_subdomains(client, domain, timeout)),
    )
    for name, probe in probes:
        try:
            # the timeout bounds the whole sub-step, including every subdomain tried
            result = await asyncio.wait_for(probe(), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("OAuth discovery probe %s timed out for %s", name, resource_url)
            continue
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.debug("OAuth discovery probe %s failed for %s: %s", name, resource_url, exc)
            continue
        if result is not None:
            logger.info("Found authorization server %s via %s", result.issuer, name)
            return result

    logger.debug("No authorization server advertised for %s", resource_url)
    return None


__all__ = [
    "DEFAULT_OAUTH_DISCOVERY_TIMEOUT",
    "OIDC_SUBDOMAINS",
    "base_domain_of",
    "discover_oauth_from_resource",
    "parse_www_authenticate",
]
