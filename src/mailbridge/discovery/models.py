"""Result types for mail server and authorization server discovery."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EndpointMethod(str, Enum):
    """How the JMAP session URL was found."""

    DNS_SRV = "dns-srv"
    WELL_KNOWN = "well-known"
    MANUAL = "manual"


class IssuerMethod(str, Enum):
    """How the authorization server was found."""

    PROTECTED_RESOURCE = "protected-resource"
    WWW_AUTHENTICATE = "www-authenticate"
    WELL_KNOWN_OIDC = "well-known-oidc"
    MANUAL = "manual"


class DiscoveryStage(str, Enum):
    """Last stage reached when discovery gives up."""

    DNS = "dns"
    WELL_KNOWN = "well-known"
    VERIFICATION = "verification"


class SrvRecord(BaseModel):
    """Single ``_jmap._tcp`` SRV answer."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    port: int
    priority: int = 0
    weight: int = 0


class JmapDiscoveryResult(BaseModel):
    session_url: str
    method: EndpointMethod


class OidcDiscoveryResult(BaseModel):
    issuer: str
    client_id: Optional[str] = None
    method: IssuerMethod


class FullDiscoveryResult(BaseModel):
    """Everything discovered from one email address.

    ``oidc`` is only ever populated by probing ``jmap.session_url``.
    """

    email: str
    domain: str
    jmap: JmapDiscoveryResult
    oidc: Optional[OidcDiscoveryResult] = None


class DiscoveryTimeouts(BaseModel):
    """Per-probe timeouts in seconds."""

    dns: float = Field(3.0, gt=0)
    well_known: float = Field(10.0, gt=0)
    oauth: float = Field(10.0, gt=0)


__all__ = [
    "DiscoveryStage",
    "DiscoveryTimeouts",
    "EndpointMethod",
    "FullDiscoveryResult",
    "IssuerMethod",
    "JmapDiscoveryResult",
    "OidcDiscoveryResult",
    "SrvRecord",
]
