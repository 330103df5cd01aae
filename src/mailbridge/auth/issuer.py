"""Authorization server metadata discovery and token endpoint grants.

Implements the small subset of OpenID Connect Discovery 1.0 / RFC 8414
and RFC 6749 token requests needed by a public client using PKCE:
metadata lookup, the authorization-code grant and the refresh-token grant.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mailbridge.errors import IssuerDiscoveryError, TokenEndpointError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0


class IssuerMetadata(BaseModel):
    """Subset of authorization server metadata used by the flows."""

    model_config = ConfigDict(extra="ignore")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    scopes_supported: List[str] = Field(default_factory=list)
    code_challenge_methods_supported: Optional[List[str]] = None

    def supports_s256(self) -> bool:
        # Absence of the field means the server did not advertise, not "unsupported".
        if self.code_challenge_methods_supported is None:
            return True
        return "S256" in self.code_challenge_methods_supported


class TokenResponse(BaseModel):
    """Successful token endpoint response."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None


def metadata_urls(issuer_url: str) -> List[str]:
    """Candidate metadata document URLs for an issuer, in lookup order."""

    parts = urlsplit(issuer_url)
    path = parts.path.rstrip("/")
    openid = urlunsplit(
        (parts.scheme, parts.netloc, f"{path}/.well-known/openid-configuration", "", "")
    )
    # RFC 8414 inserts the well-known segment before the issuer path.
    oauth = urlunsplit(
        (parts.scheme, parts.netloc, f"/.well-known/oauth-authorization-server{path}", "", "")
    )
    return [openid, oauth]


def _same_issuer(left: str, right: str) -> bool:
    return left.rstrip("/") == right.rstrip("/")


async def fetch_issuer_metadata(
    issuer_url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    require_match: bool = True,
) -> IssuerMetadata:
    """Fetch and validate metadata for ``issuer_url``.

    Each candidate document gets its own ``timeout``. With ``require_match``
    the document must describe the requested issuer.

    Raises:
        IssuerDiscoveryError: If no candidate yields usable metadata
    """
    if client is None:
        async with httpx.AsyncClient(follow_redirects=True) as owned:
            return await fetch_issuer_metadata(
                issuer_url, client=owned, timeout=timeout, require_match=require_match
            )

    last_reason = "no metadata document found"
    for url in metadata_urls(issuer_url):
        try:
            response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout)
        except asyncio.TimeoutError:
            last_reason = f"timeout fetching {url}"
            continue
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            last_reason = f"{type(exc).__name__} fetching {url}"
            continue

        if response.status_code != 200:
            last_reason = f"{url} returned {response.status_code}"
            continue
        try:
            metadata = IssuerMetadata.model_validate(response.json())
        except (ValueError, ValidationError):
            last_reason = f"{url} is not a valid metadata document"
            continue
        if require_match and not _same_issuer(metadata.issuer, issuer_url):
            raise IssuerDiscoveryError(
                issuer_url,
                f"metadata describes issuer {metadata.issuer}",
            )
        return metadata

    raise IssuerDiscoveryError(issuer_url, last_reason)


@dataclass
class IssuerClient:
    """Public OAuth client bound to one issuer and client id."""

    issuer_url: str
    client_id: str
    timeout: float = DEFAULT_HTTP_TIMEOUT
    http_client: Optional[httpx.AsyncClient] = None

    async def discover(self) -> IssuerMetadata:
        return await fetch_issuer_metadata(
            self.issuer_url, client=self.http_client, timeout=self.timeout
        )

    async def exchange_code_for_tokens(
        self,
        metadata: IssuerMetadata,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        payload = await self._post(metadata.token_endpoint, data)
        return _token_response(payload)

    async def refresh_access_token(
        self,
        metadata: IssuerMetadata,
        *,
        refresh_token: str,
    ) -> TokenResponse:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        payload = await self._post(metadata.token_endpoint, data)
        return _token_response(payload)

    async def _post(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.http_client is not None:
            resp = await self.http_client.post(
                url, data=data, headers=headers, timeout=self.timeout
            )
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(url, data=data, headers=headers, timeout=self.timeout)

        if resp.status_code != 200:
            error, description = _oauth_error(resp)
            logger.warning(
                "Token endpoint %s returned %s (%s)", url, resp.status_code, error or "no error code"
            )
            raise TokenEndpointError(resp.status_code, error, description)
        try:
            return resp.json()
        except ValueError as exc:
            raise TokenEndpointError(200, "invalid_response", "response is not JSON") from exc


def _oauth_error(resp: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        body = resp.json()
    except ValueError:
        return None, resp.text[:200] or None
    if not isinstance(body, dict):
        return None, None
    return body.get("error"), body.get("error_description")


def _token_response(payload: Dict[str, Any]) -> TokenResponse:
    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise TokenEndpointError(200, "invalid_response", "response has no access_token")
    try:
        return TokenResponse.model_validate(payload)
    except ValidationError as exc:
        raise TokenEndpointError(200, "invalid_response", str(exc)) from exc


__all__ = [
    "IssuerClient",
    "IssuerMetadata",
    "TokenResponse",
    "fetch_issuer_metadata",
    "metadata_urls",
]
