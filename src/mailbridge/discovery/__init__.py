"""JMAP session and authorization server discovery."""

from .dns_srv import resolve_srv_record
from .models import (
    DiscoveryStage,
    DiscoveryTimeouts,
    EndpointMethod,
    FullDiscoveryResult,
    IssuerMethod,
    JmapDiscoveryResult,
    OidcDiscoveryResult,
    SrvRecord,
)
from .oauth_discovery import discover_oauth_from_resource, parse_www_authenticate
from .orchestrator import discover_from_email, extract_domain
from .well_known import fetch_well_known_jmap, verify_jmap_url

__all__ = [
    "DiscoveryStage",
    "DiscoveryTimeouts",
    "EndpointMethod",
    "FullDiscoveryResult",
    "IssuerMethod",
    "JmapDiscoveryResult",
    "OidcDiscoveryResult",
    "SrvRecord",
    "discover_from_email",
    "discover_oauth_from_resource",
    "extract_domain",
    "fetch_well_known_jmap",
    "parse_www_authenticate",
    "resolve_srv_record",
    "verify_jmap_url",
]
