"""User-friendly error messages for mailbridge.

Human-readable messages and recovery suggestions keyed by error code, so
callers can surface an actionable message instead of a raw exception.

Privacy Note:
- Messages NEVER include tokens, authorization codes or PKCE verifiers
- Details keys that may carry secrets are dropped from CLI output
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # Authentication errors
    "AUTH_ERROR": "Authentication with the mail server failed.",
    "NO_STORED_TOKENS": "You have not signed in yet.",
    "TOKEN_EXPIRED": "Your session has expired.",
    "TOKEN_REFRESH_FAILED": "We couldn't renew your session with the authorization server.",
    "OIDC_FLOW_ERROR": "Signing in with your identity provider failed.",
    "STATE_MISMATCH": "The sign-in response did not match the request and was rejected.",
    "AUTH_CALLBACK_ERROR": "The identity provider did not complete the sign-in.",
    "ISSUER_DISCOVERY_ERROR": "The identity provider's configuration could not be loaded.",
    "TOKEN_ENDPOINT_ERROR": "The identity provider refused to issue tokens.",
    # Discovery errors
    "DISCOVERY_FAILED": "We couldn't find a mail server for this domain.",
    "INVALID_EMAIL": "That doesn't look like a valid email address.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a configuration issue.",
    "INVALID_CONFIG": "The configuration is invalid.",
    # Generic
    "MAILBRIDGE_ERROR": "An unexpected error occurred. Please try again.",
    "UNKNOWN_ERROR": "Something went wrong. Please try again.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    # Authentication errors
    "AUTH_ERROR": "Check your credentials and authentication method.",
    "NO_STORED_TOKENS": "Run the authentication flow first to sign in.",
    "TOKEN_EXPIRED": "Re-run the authentication flow to sign in again.",
    "TOKEN_REFRESH_FAILED": "Check your network and retry. If it keeps failing, sign in again.",
    "OIDC_FLOW_ERROR": "Verify JMAP_OIDC_ISSUER and JMAP_OIDC_CLIENT_ID, and that the provider supports PKCE (S256).",
    "STATE_MISMATCH": "Restart the sign-in from the beginning. Do not reuse old sign-in links.",
    "AUTH_CALLBACK_ERROR": "Complete the sign-in in the browser within the time limit, then retry.",
    "ISSUER_DISCOVERY_ERROR": "Check that JMAP_OIDC_ISSUER is correct and reachable.",
    "TOKEN_ENDPOINT_ERROR": "Check the client registration (client id, redirect URI) with your provider.",
    # Discovery errors
    "DISCOVERY_FAILED": "Enter the JMAP session URL manually.",
    "INVALID_EMAIL": "Use the form name@example.com.",
    # Configuration errors
    "CONFIGURATION_ERROR": "Check your environment variables.",
    "INVALID_CONFIG": "Fix the listed settings. OIDC needs JMAP_OIDC_ISSUER and JMAP_OIDC_CLIENT_ID.",
    # Generic
    "MAILBRIDGE_ERROR": "If this persists, please report the issue.",
    "UNKNOWN_ERROR": "Retry the operation. Report it if the issue continues.",
}

_SENSITIVE_DETAIL_KEYS = frozenset(
    {"password", "token", "access_token", "refresh_token", "code", "code_verifier"}
)


# =============================================================================
# Helper Functions
# =============================================================================


def _error_code(error: Any) -> str:
    if hasattr(error, "code") and isinstance(error.code, str):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_error_code(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error."""
    return RECOVERY_SUGGESTIONS.get(
        _error_code(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message with a suggestion."""
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_cli(error: Any) -> str:
    """Format error for terminal output, including non-sensitive details.

    Args:
        error: The error to format

    Returns:
        Multi-line message: code, message, suggestion, then details
    """
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)
    code = getattr(error, "code", "ERROR")

    lines = [
        f"Error [{code}]: {message}",
        "",
        f"Suggestion: {suggestion}",
    ]

    details = getattr(error, "details", None)
    if details:
        shown = {
            key: value
            for key, value in details.items()
            if key not in _SENSITIVE_DETAIL_KEYS and value is not None
        }
        if shown:
            lines.append("")
            lines.append("Details:")
            for key, value in shown.items():
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "format_error_for_cli",
    "format_error_for_user",
    "get_recovery_suggestion",
    "get_user_message",
]
