"""Centralized error definitions for mailbridge.

The authentication and discovery layers raise these errors at the boundary
where a failure first becomes fatal. Probes that merely find nothing never
raise; they return ``None`` so the discovery chain can fall through.

Usage:
    from mailbridge.errors import MailBridgeError, format_error_for_user

    try:
        tokens = await refresher.ensure_valid_token()
    except MailBridgeError as e:
        print(format_error_for_user(e))
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from mailbridge.errors.user_messages import (
    format_error_for_cli,
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class MailBridgeError(Exception):
    """Base exception for all mailbridge errors.

    Attributes:
        code: Error code for categorization
        user_message: User-friendly message (optional override)
        recoverable: Whether retrying without user action may succeed
        details: Additional error details for debugging
    """

    code: str = "MAILBRIDGE_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(MailBridgeError):
    """Base error for authentication operations."""

    code = "AUTH_ERROR"
    default_message = "Authentication failed"
    requires_reauth: bool = False


class NoStoredTokensError(AuthError):
    """No credentials have been persisted yet."""

    code = "NO_STORED_TOKENS"
    default_message = "No stored authentication tokens found"
    recoverable = False
    requires_reauth = True


class TokenExpiredError(AuthError):
    """Access token expired and cannot be renewed without the user."""

    code = "TOKEN_EXPIRED"
    default_message = (
        "Access token expired and no refresh token available. Re-authenticate."
    )
    recoverable = False
    requires_reauth = True


class TokenRefreshError(AuthError):
    """A refresh attempt against the authorization server failed."""

    code = "TOKEN_REFRESH_FAILED"
    default_message = "Token refresh failed"
    recoverable = True

    def __init__(self, reason: str | None = None, *, oauth_error: str | None = None) -> None:
        self.reason = reason
        self.oauth_error = oauth_error
        # A rejected refresh token will not start working on retry.
        self.requires_reauth = oauth_error == "invalid_grant"
        if self.requires_reauth:
            self.recoverable = False
        message = f"Token refresh failed: {reason}" if reason else None
        super().__init__(
            message,
            details={"reason": reason, "oauth_error": oauth_error},
        )


class OIDCFlowStage(str, Enum):
    """Stages of the interactive authorization flow that can fail."""

    DISCOVERY = "discovery"
    CALLBACK = "callback"
    STATE_VALIDATION = "state-validation"
    AUTHORIZATION = "authorization"
    TOKEN_EXCHANGE = "token-exchange"


class OIDCFlowError(AuthError):
    """The interactive authorization flow aborted at a given stage."""

    code = "OIDC_FLOW_ERROR"
    default_message = "OIDC authentication failed"

    def __init__(self, stage: OIDCFlowStage | str, details: str | None = None) -> None:
        self.stage = OIDCFlowStage(stage)
        self.reason = details
        message = f"OIDC authentication failed at {self.stage.value}"
        if details:
            message = f"{message}: {details}"
        super().__init__(message, details={"stage": self.stage.value, "reason": details})


class StateMismatchError(OIDCFlowError):
    """Returned state differs from the one generated: possible CSRF attack."""

    code = "STATE_MISMATCH"
    recoverable = False

    def __init__(self) -> None:
        super().__init__(
            OIDCFlowStage.STATE_VALIDATION,
            "State parameter mismatch. Possible CSRF attack.",
        )


class CallbackError(AuthError):
    """The authorization callback reported an error or never arrived."""

    code = "AUTH_CALLBACK_ERROR"
    default_message = "Authorization callback failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.error = error
        self.description = description
        super().__init__(message, details={"error": error, "description": description})


class IssuerDiscoveryError(AuthError):
    """Issuer metadata could not be fetched or validated."""

    code = "ISSUER_DISCOVERY_ERROR"
    default_message = "Could not discover authorization server metadata"

    def __init__(self, issuer: str, reason: str | None = None) -> None:
        self.issuer = issuer
        message = f"Could not discover metadata for issuer {issuer}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"issuer": issuer, "reason": reason})


class TokenEndpointError(AuthError):
    """The token endpoint rejected a grant."""

    code = "TOKEN_ENDPOINT_ERROR"
    default_message = "Token endpoint returned an error"

    def __init__(
        self,
        status_code: int,
        error: str | None = None,
        description: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.error = error
        self.description = description
        summary = description or error or "no error details"
        super().__init__(
            f"Token endpoint returned {status_code}: {summary}",
            details={"status_code": status_code, "error": error},
        )


# =============================================================================
# Discovery Errors
# =============================================================================


class DiscoveryError(MailBridgeError):
    """No mail endpoint could be located for a domain."""

    code = "DISCOVERY_FAILED"
    default_message = "Mail server discovery failed"

    def __init__(self, message: str, *, domain: str, stage: str) -> None:
        self.domain = domain
        self.stage = stage
        super().__init__(message, details={"domain": domain, "stage": stage})


class InvalidEmailError(MailBridgeError, ValueError):
    """The address is not of the form local@domain.tld."""

    code = "INVALID_EMAIL"
    default_message = "Invalid email format"
    recoverable = False


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(MailBridgeError):
    """Base error for configuration issues."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"


class InvalidConfigError(ConfigurationError):
    """Configuration is invalid."""

    code = "INVALID_CONFIG"
    default_message = "Invalid configuration"

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        message = "Configuration validation failed:\n" + "\n".join(
            f"  {problem}" for problem in self.problems
        )
        super().__init__(message, details={"problems": self.problems})


# =============================================================================
# Error Handler
# =============================================================================


def is_recoverable(error: Exception) -> bool:
    """Check if an error is potentially recoverable without user action."""
    if isinstance(error, MailBridgeError):
        return error.recoverable
    return False


__all__ = [
    "AuthError",
    "CallbackError",
    "ConfigurationError",
    "DiscoveryError",
    "InvalidConfigError",
    "InvalidEmailError",
    "IssuerDiscoveryError",
    "MailBridgeError",
    "NoStoredTokensError",
    "OIDCFlowError",
    "OIDCFlowStage",
    "StateMismatchError",
    "TokenEndpointError",
    "TokenExpiredError",
    "TokenRefreshError",
    "format_error_for_cli",
    "format_error_for_user",
    "get_recovery_suggestion",
    "get_user_message",
    "is_recoverable",
]
