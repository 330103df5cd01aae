"""OIDC sign-in, token persistence and single-flight token refresh.

``AuthorizationHeaderProvider`` lives in ``mailbridge.auth.headers`` and is
not re-exported here, since it depends on ``mailbridge.configuration``.
"""

from .callback_server import CallbackResult, resolve_callback_port, wait_for_authorization_code
from .issuer import IssuerClient, IssuerMetadata, TokenResponse, fetch_issuer_metadata
from .oidc_flow import (
    OIDCFlowOptions,
    calculate_code_challenge,
    generate_code_verifier,
    generate_state,
    perform_oidc_flow,
)
from .token_refresh import (
    TokenRefresher,
    create_token_refresher,
    ensure_valid_token,
    reset_token_refreshers,
)
from .token_store import StoredTokens, TokenStore, clear_tokens, load_tokens, save_tokens

__all__ = [
    "CallbackResult",
    "IssuerClient",
    "IssuerMetadata",
    "OIDCFlowOptions",
    "StoredTokens",
    "TokenRefresher",
    "TokenResponse",
    "TokenStore",
    "calculate_code_challenge",
    "clear_tokens",
    "create_token_refresher",
    "ensure_valid_token",
    "fetch_issuer_metadata",
    "generate_code_verifier",
    "generate_state",
    "load_tokens",
    "perform_oidc_flow",
    "reset_token_refreshers",
    "resolve_callback_port",
    "save_tokens",
    "wait_for_authorization_code",
]
