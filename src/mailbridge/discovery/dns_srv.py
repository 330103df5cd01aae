"""DNS SRV lookup for JMAP service discovery (RFC 8620 section 2.2)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from .models import SrvRecord

logger = logging.getLogger(__name__)

DEFAULT_DNS_TIMEOUT = 3.0
SERVICE_NAME = "_jmap._tcp"


def srv_query_name(domain: str) -> str:
    return f"{SERVICE_NAME}.{domain}"


def select_best_record(records: list[SrvRecord]) -> Optional[SrvRecord]:
    """Lowest priority wins, then highest weight."""
    if not records:
        return None
    return sorted(records, key=lambda record: (record.priority, -record.weight))[0]


async def resolve_srv_record(
    domain: str,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    *,
    resolver: Optional[Any] = None,
) -> Optional[SrvRecord]:
    """Return the preferred ``_jmap._tcp`` target for ``domain``, or ``None``.

    Only the single best record is returned. A missing record, a timeout
    and any other resolver failure all mean "not found"; only the log level
    tells them apart.
    """
    query = srv_query_name(domain)
    resolver = resolver or dns.asyncresolver.Resolver()
    try:
        answer = await asyncio.wait_for(
            resolver.resolve(query, "SRV", lifetime=timeout), timeout
        )
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        logger.debug("No SRV record for %s", query)
        return None
    except (asyncio.TimeoutError, dns.exception.Timeout):
        logger.warning("DNS SRV query timeout for %s", query)
        return None
    except (dns.exception.DNSException, OSError, ValueError) as exc:
        logger.warning("DNS SRV query failed for %s: %s", query, exc)
        return None

    records = [
        SrvRecord(
            hostname=str(rdata.target).rstrip("."),
            port=int(rdata.port),
            priority=int(rdata.priority),
            weight=int(rdata.weight),
        )
        for rdata in answer
    ]
    best = select_best_record(records)
    if best is None or not best.hostname:
        # A target of "." means the service is explicitly not offered.
        logger.debug("SRV record for %s advertises no service", query)
        return None
    logger.debug("SRV %s -> %s:%s", query, best.hostname, best.port)
    return best


__all__ = ["DEFAULT_DNS_TIMEOUT", "resolve_srv_record", "select_best_record", "srv_query_name"]
