"""Discover JMAP and OIDC settings from nothing but an email address.

The session URL is located first, cheapest probe first:

1. DNS SRV ``_jmap._tcp.<domain>``, verified via its ``/.well-known/jmap``
2. ``https://<domain>/.well-known/jmap``

Only once a session URL is confirmed is it probed for an authorization
server. Not finding one is not an error; the result simply has no ``oidc``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from mailbridge.errors import DiscoveryError, InvalidEmailError

from . import dns_srv, oauth_discovery, well_known
from .models import (
    DiscoveryStage,
    DiscoveryTimeouts,
    EndpointMethod,
    FullDiscoveryResult,
    JmapDiscoveryResult,
)

logger = logging.getLogger(__name__)

EndpointStrategy = Callable[[str, DiscoveryTimeouts], Awaitable[Optional[str]]]


def extract_domain(email: str) -> str:
    """Return the part after the sole ``@``.

    Raises:
        InvalidEmailError: Not exactly one ``@``, or no ``.`` in the domain
    """
    parts = email.split("@")
    if len(parts) != 2 or "." not in parts[1]:
        raise InvalidEmailError("Invalid email format")
    return parts[1]


async def _via_dns_srv(domain: str, timeouts: DiscoveryTimeouts) -> Optional[str]:
    record = await dns_srv.resolve_srv_record(domain, timeouts.dns)
    if record is None:
        return None
    url = well_known.well_known_url(record.hostname, record.port)
    verified = await well_known.verify_jmap_url(url, timeouts.well_known)
    if verified is None:
        logger.info("SRV target %s did not verify, falling back", url)
    return verified


async def _via_well_known(domain: str, timeouts: DiscoveryTimeouts) -> Optional[str]:
    return await well_known.fetch_well_known_jmap(domain, timeouts.well_known)


ENDPOINT_STRATEGIES: Sequence[Tuple[EndpointMethod, EndpointStrategy]] = (
    (EndpointMethod.DNS_SRV, _via_dns_srv),
    (EndpointMethod.WELL_KNOWN, _via_well_known),
)


async def discover_from_email(
    email: str,
    timeouts: Optional[DiscoveryTimeouts] = None,
) -> FullDiscoveryResult:
    """Discover the JMAP session URL and, if advertised, its issuer.

    Raises:
        InvalidEmailError: Before any network access
        DiscoveryError: No strategy produced a session URL
    """
    domain = extract_domain(email)
    timeouts = timeouts or DiscoveryTimeouts()

    jmap: Optional[JmapDiscoveryResult] = None
    for method, strategy in ENDPOINT_STRATEGIES:
        session_url = await strategy(domain, timeouts)
        if session_url is not None:
            jmap = JmapDiscoveryResult(session_url=session_url, method=method)
            break

    if jmap is None:
        logger.error("JMAP discovery failed for %s", domain)
        raise DiscoveryError(
            f'Could not discover JMAP server for domain "{domain}". '
            "The domain does not have a JMAP SRV record or .well-known/jmap endpoint.",
            domain=domain,
            stage=DiscoveryStage.WELL_KNOWN.value,
        )

    logger.info("Found JMAP session %s via %s", jmap.session_url, jmap.method.value)
    oidc = await oauth_discovery.discover_oauth_from_resource(
        jmap.session_url, timeouts.oauth, base_domain=domain
    )
    return FullDiscoveryResult(email=email, domain=domain, jmap=jmap, oidc=oidc)


__all__ = ["ENDPOINT_STRATEGIES", "discover_from_email", "extract_domain"]
