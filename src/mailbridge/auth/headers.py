"""Authorization header values for outbound mail session requests."""

from __future__ import annotations

import base64
from typing import Optional

from mailbridge.configuration.settings import AuthMethod, MailSettings
from mailbridge.errors import InvalidConfigError

from .token_refresh import TokenRefresher, create_token_refresher
from .token_store import TokenStore


class AuthorizationHeaderProvider:
    """Produces the ``Authorization`` header for the configured auth method.

    For ``oidc`` every call goes through the shared ``TokenRefresher`` for
    the configured issuer and client, so concurrent requests never refresh
    more than once.
    """

    def __init__(
        self,
        settings: MailSettings,
        *,
        refresher: Optional[TokenRefresher] = None,
    ) -> None:
        self.settings = settings
        self._refresher = refresher
        if settings.auth_method is AuthMethod.OIDC and refresher is None:
            if not settings.oidc.configured:
                raise InvalidConfigError(
                    "JMAP_OIDC_ISSUER and JMAP_OIDC_CLIENT_ID are required for OIDC authentication"
                )
            self._refresher = create_token_refresher(
                settings.oidc.issuer,
                settings.oidc.client_id,
                token_store=TokenStore(settings.token_path),
            )

    async def get_authorization_header_value(self) -> str:
        method = self.settings.auth_method
        if method is AuthMethod.BASIC:
            username = self.settings.username or ""
            password = self.settings.password.get_secret_value() if self.settings.password else ""
            encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
            return f"Basic {encoded}"
        if method is AuthMethod.BEARER:
            token = self.settings.token.get_secret_value() if self.settings.token else ""
            return f"Bearer {token}"

        tokens = await self._refresher.ensure_valid_token()
        return f"Bearer {tokens.access_token}"


__all__ = ["AuthorizationHeaderProvider"]
