"""Typed settings for the mail adapter, read from environment variables.

Values are collected from the environment into a plain mapping, then
validated by Pydantic models so the auth and discovery layers can rely on
well-formed settings. Problems are reported together in a single
``InvalidConfigError`` rather than one at a time.
"""

from __future__ import annotations

import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from mailbridge.auth.oidc_flow import DEFAULT_REDIRECT_URI, DEFAULT_SCOPE, OIDCFlowOptions
from mailbridge.auth.token_store import DEFAULT_TOKEN_PATH
from mailbridge.discovery.models import DiscoveryTimeouts
from mailbridge.errors import InvalidConfigError

_LOCAL_HOSTS = {"localhost", "127.0.0.1"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class AuthMethod(str, Enum):
    """How outbound requests authenticate against the mail server."""

    BASIC = "basic"
    BEARER = "bearer"
    OIDC = "oidc"


class OidcSettings(BaseModel):
    """Authorization server settings for the ``oidc`` auth method."""

    issuer: Optional[str] = Field(default=None, description="Issuer URL")
    client_id: Optional[str] = Field(default=None, description="Public client id")
    scope: str = Field(DEFAULT_SCOPE, description="Space separated scopes")
    redirect_uri: str = Field(DEFAULT_REDIRECT_URI, description="Registered redirect URI")
    callback_port: int = Field(3000, ge=1, le=65535)

    @field_validator("issuer", "redirect_uri")
    def _validate_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parts = urlsplit(value)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return value

    @property
    def configured(self) -> bool:
        return bool(self.issuer and self.client_id)


class MailSettings(BaseModel):
    """Root configuration state."""

    session_url: str = Field(..., description="JMAP session resource URL")
    auth_method: AuthMethod = AuthMethod.BASIC
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    token: Optional[SecretStr] = None
    oidc: OidcSettings = Field(default_factory=OidcSettings)
    request_timeout_ms: int = Field(30000, ge=1)
    dns_timeout_ms: int = Field(3000, ge=1)
    well_known_timeout_ms: int = Field(10000, ge=1)
    oauth_discovery_timeout_ms: int = Field(10000, ge=1)
    token_path: Path = Field(default=DEFAULT_TOKEN_PATH)
    log_level: str = "INFO"

    @field_validator("session_url")
    def _validate_session_url(cls, value: str) -> str:
        parts = urlsplit(value)
        if not parts.netloc:
            raise ValueError("must be an absolute URL")
        if parts.scheme == "https":
            return value
        if parts.scheme == "http" and parts.hostname in _LOCAL_HOSTS:
            return value
        raise ValueError("must use https (http is only allowed for localhost)")

    @field_validator("log_level")
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(sorted(_LOG_LEVELS))}")
        return level

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000

    def discovery_timeouts(self) -> DiscoveryTimeouts:
        return DiscoveryTimeouts(
            dns=self.dns_timeout_ms / 1000,
            well_known=self.well_known_timeout_ms / 1000,
            oauth=self.oauth_discovery_timeout_ms / 1000,
        )


def load_settings(env: Optional[Mapping[str, str]] = None) -> MailSettings:
    """Build settings from ``env`` (the process environment by default).

    Raises:
        InvalidConfigError: Listing every invalid or missing setting
    """
    source = os.environ if env is None else env
    data = _apply_env_overrides({}, source)

    problems = _auth_problems(data)
    try:
        settings = MailSettings.model_validate(data)
    except ValidationError as exc:
        problems = [_format_validation_error(err) for err in exc.errors()] + problems
        raise InvalidConfigError(problems) from exc
    if problems:
        raise InvalidConfigError(problems)
    return settings


def oidc_options_from_settings(settings: MailSettings) -> Optional[OIDCFlowOptions]:
    """Flow options for the configured issuer, or ``None`` if OIDC is not in use."""
    if settings.auth_method is not AuthMethod.OIDC or not settings.oidc.configured:
        return None
    return OIDCFlowOptions(
        issuer_url=settings.oidc.issuer,
        client_id=settings.oidc.client_id,
        scope=settings.oidc.scope,
        redirect_uri=settings.oidc.redirect_uri,
        callback_port=settings.oidc.callback_port,
        token_path=settings.token_path,
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Send ``mailbridge`` logs to stderr at ``level``.

    stdout carries the tool protocol, so nothing is ever logged there.
    Calling this again replaces the handler instead of adding another.
    """
    logger = logging.getLogger("mailbridge")
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        if getattr(handler, "_mailbridge_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._mailbridge_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


def _apply_env_overrides(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    _set_env_override(data, "session_url", "JMAP_SESSION_URL", env)
    _set_env_override(data, "auth_method", "JMAP_AUTH_METHOD", env, lower=True)
    _set_env_override(data, "username", "JMAP_USERNAME", env)
    _set_env_override(data, "password", "JMAP_PASSWORD", env)
    _set_env_override(data, "token", "JMAP_TOKEN", env)
    _set_env_override(data, "request_timeout_ms", "JMAP_REQUEST_TIMEOUT", env)
    _set_env_override(data, "dns_timeout_ms", "JMAP_DNS_TIMEOUT", env)
    _set_env_override(data, "well_known_timeout_ms", "JMAP_WELL_KNOWN_TIMEOUT", env)
    _set_env_override(data, "oauth_discovery_timeout_ms", "JMAP_OAUTH_DISCOVERY_TIMEOUT", env)
    _set_env_override(data, "token_path", "MAILBRIDGE_TOKEN_PATH", env)
    _set_env_override(data, "log_level", "LOG_LEVEL", env)

    oidc = data.setdefault("oidc", {})
    _set_env_override(oidc, "issuer", "JMAP_OIDC_ISSUER", env)
    _set_env_override(oidc, "client_id", "JMAP_OIDC_CLIENT_ID", env)
    _set_env_override(oidc, "scope", "JMAP_OIDC_SCOPE", env)
    _set_env_override(oidc, "redirect_uri", "JMAP_OIDC_REDIRECT_URI", env)
    _set_env_override(oidc, "callback_port", "JMAP_OIDC_CALLBACK_PORT", env)
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    env: Mapping[str, str],
    *,
    lower: bool = False,
) -> None:
    raw = env.get(env_name)
    if raw is None or raw == "":
        return
    mapping[key] = raw.lower() if lower else raw


def _auth_problems(data: Dict[str, Any]) -> List[str]:
    method = data.get("auth_method", AuthMethod.BASIC.value)
    oidc = data.get("oidc", {})
    problems: List[str] = []
    if method == AuthMethod.BASIC.value:
        if not data.get("username"):
            problems.append("JMAP_USERNAME is required when JMAP_AUTH_METHOD=basic")
        if not data.get("password"):
            problems.append("JMAP_PASSWORD is required when JMAP_AUTH_METHOD=basic")
    elif method == AuthMethod.BEARER.value:
        if not data.get("token"):
            problems.append("JMAP_TOKEN is required when JMAP_AUTH_METHOD=bearer")
    elif method == AuthMethod.OIDC.value:
        if not oidc.get("issuer"):
            problems.append("JMAP_OIDC_ISSUER is required when JMAP_AUTH_METHOD=oidc")
        if not oidc.get("client_id"):
            problems.append("JMAP_OIDC_CLIENT_ID is required when JMAP_AUTH_METHOD=oidc")
    return problems


_ENV_NAMES = {
    ("session_url",): "JMAP_SESSION_URL",
    ("auth_method",): "JMAP_AUTH_METHOD",
    ("request_timeout_ms",): "JMAP_REQUEST_TIMEOUT",
    ("dns_timeout_ms",): "JMAP_DNS_TIMEOUT",
    ("well_known_timeout_ms",): "JMAP_WELL_KNOWN_TIMEOUT",
    ("oauth_discovery_timeout_ms",): "JMAP_OAUTH_DISCOVERY_TIMEOUT",
    ("token_path",): "MAILBRIDGE_TOKEN_PATH",
    ("log_level",): "LOG_LEVEL",
    ("oidc", "issuer"): "JMAP_OIDC_ISSUER",
    ("oidc", "client_id"): "JMAP_OIDC_CLIENT_ID",
    ("oidc", "scope"): "JMAP_OIDC_SCOPE",
    ("oidc", "redirect_uri"): "JMAP_OIDC_REDIRECT_URI",
    ("oidc", "callback_port"): "JMAP_OIDC_CALLBACK_PORT",
}


def _format_validation_error(error: Dict[str, Any]) -> str:
    loc = tuple(str(part) for part in error.get("loc", ()))
    name = _ENV_NAMES.get(loc, ".".join(loc) or "settings")
    return f"{name}: {error.get('msg', 'invalid value')}"


__all__ = [
    "AuthMethod",
    "MailSettings",
    "OidcSettings",
    "configure_logging",
    "load_settings",
    "oidc_options_from_settings",
]
