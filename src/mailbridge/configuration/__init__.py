"""Environment-driven configuration."""

from .settings import (
    AuthMethod,
    MailSettings,
    OidcSettings,
    configure_logging,
    load_settings,
    oidc_options_from_settings,
)

__all__ = [
    "AuthMethod",
    "MailSettings",
    "OidcSettings",
    "configure_logging",
    "load_settings",
    "oidc_options_from_settings",
]
