"""Interactive OIDC authorization-code flow with PKCE.

Runs once to sign the user in:

    discover issuer -> PKCE verifier/challenge (S256) -> state
    -> authorization URL -> browser + local callback -> state check
    -> code exchange -> persist tokens

Every failure aborts the flow with an ``OIDCFlowError`` naming the stage.
Nothing is retried here; callers restart the whole flow.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode

import httpx

from mailbridge.errors import (
    CallbackError,
    IssuerDiscoveryError,
    OIDCFlowError,
    OIDCFlowStage,
    StateMismatchError,
    TokenEndpointError,
)

from .callback_server import (
    DEFAULT_CALLBACK_PORT,
    DEFAULT_CALLBACK_TIMEOUT,
    CallbackResult,
    callback_path,
    resolve_callback_port,
    wait_for_authorization_code,
)
from .issuer import IssuerClient, IssuerMetadata
from .token_store import StoredTokens, TokenStore, get_default_store

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid email offline_access"
DEFAULT_REDIRECT_URI = "http://localhost:3000/callback"
CODE_CHALLENGE_METHOD = "S256"

CallbackWaiter = Callable[..., Awaitable[CallbackResult]]


@dataclass
class OIDCFlowOptions:
    """Inputs for one interactive sign-in."""

    issuer_url: str
    client_id: str
    scope: str = DEFAULT_SCOPE
    redirect_uri: str = DEFAULT_REDIRECT_URI
    callback_port: int = DEFAULT_CALLBACK_PORT
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT
    token_path: Optional[Path] = None


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """43-character verifier from 32 random bytes (RFC 7636 section 4.1)."""
    return _b64url(secrets.token_bytes(32))


def calculate_code_challenge(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def build_authorization_url(
    metadata: IssuerMetadata,
    options: OIDCFlowOptions,
    *,
    code_challenge: str,
    state: str,
) -> str:
    params = {
        "response_type": "code",
        "client_id": options.client_id,
        "redirect_uri": options.redirect_uri,
        "scope": options.scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    separator = "&" if "?" in metadata.authorization_endpoint else "?"
    return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"


async def perform_oidc_flow(
    options: OIDCFlowOptions,
    *,
    token_store: Optional[TokenStore] = None,
    issuer_client: Optional[IssuerClient] = None,
    wait_for_callback: Optional[CallbackWaiter] = None,
    launch: Callable[[str], object] = webbrowser.open,
    clock: Callable[[], float] = time.time,
) -> StoredTokens:
    """Sign in interactively and persist the resulting tokens.

    Args:
        options: Issuer, client and redirect settings
        token_store: Where to persist tokens (default ``options.token_path``,
            else the per-user file)
        issuer_client: Client for the issuer (built from ``options`` if omitted)
        wait_for_callback: Replacement for the local callback listener
        launch: Opens the authorization URL in a browser
        clock: Source of "now" for computing the absolute expiry

    Returns:
        The persisted token set

    Raises:
        OIDCFlowError: Tagged with the stage that failed
        StateMismatchError: Callback state differs from the one sent
    """
    if token_store is not None:
        store = token_store
    elif options.token_path is not None:
        store = TokenStore(options.token_path)
    else:
        store = get_default_store()
    client = issuer_client or IssuerClient(options.issuer_url, options.client_id)
    waiter = wait_for_callback or wait_for_authorization_code

    try:
        metadata = await client.discover()
    except (IssuerDiscoveryError, httpx.HTTPError) as exc:
        logger.error("Issuer discovery failed for %s: %s", options.issuer_url, exc)
        raise OIDCFlowError(OIDCFlowStage.DISCOVERY, str(exc)) from exc
    if not metadata.supports_s256():
        raise OIDCFlowError(
            OIDCFlowStage.DISCOVERY,
            "authorization server does not support the S256 code challenge method",
        )

    code_verifier = generate_code_verifier()
    code_challenge = calculate_code_challenge(code_verifier)
    state = generate_state()
    authorization_url = build_authorization_url(
        metadata, options, code_challenge=code_challenge, state=state
    )

    port = resolve_callback_port(options.redirect_uri, options.callback_port)
    try:
        callback = await waiter(
            authorization_url,
            port=port,
            path=callback_path(options.redirect_uri),
            timeout=options.callback_timeout,
            launch=launch,
        )
    except CallbackError as exc:
        stage = OIDCFlowStage.AUTHORIZATION if exc.error else OIDCFlowStage.CALLBACK
        logger.error("Authorization callback failed: %s", exc)
        raise OIDCFlowError(stage, str(exc)) from exc
    except OSError as exc:
        logger.error("Could not listen for the callback on port %s: %s", port, exc)
        raise OIDCFlowError(OIDCFlowStage.CALLBACK, str(exc)) from exc
    except Exception as exc:
        # browser launch or listener failures
        logger.error("Waiting for the authorization callback failed: %s", exc)
        raise OIDCFlowError(OIDCFlowStage.CALLBACK, str(exc) or type(exc).__name__) from exc

    if callback.state is None or not secrets.compare_digest(
        callback.state.encode("utf-8"), state.encode("utf-8")
    ):
        logger.error("Authorization callback state mismatch")
        raise StateMismatchError()

    try:
        response = await client.exchange_code_for_tokens(
            metadata,
            code=callback.code,
            redirect_uri=options.redirect_uri,
            code_verifier=code_verifier,
        )
    except (TokenEndpointError, httpx.HTTPError) as exc:
        logger.error("Authorization code exchange failed: %s", exc)
        raise OIDCFlowError(OIDCFlowStage.TOKEN_EXCHANGE, str(exc)) from exc

    tokens = StoredTokens.from_token_response(response, now=clock())
    store.save(tokens)
    logger.info("Signed in with %s", options.issuer_url)
    return tokens


__all__ = [
    "CODE_CHALLENGE_METHOD",
    "DEFAULT_REDIRECT_URI",
    "DEFAULT_SCOPE",
    "OIDCFlowOptions",
    "build_authorization_url",
    "calculate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "perform_oidc_flow",
]
