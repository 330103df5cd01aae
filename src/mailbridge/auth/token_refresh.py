"""Expiry-aware access to stored tokens with single-flight refresh.

A server handling several requests at once may find the access token
expiring in all of them simultaneously. Refreshing once per request would
spend the refresh token several times and, with rotating refresh tokens,
make every refresh after the first fail with ``invalid_grant``.

``TokenRefresher`` keeps at most one refresh in flight per instance. The
first caller that needs a refresh starts it as a task; every caller that
arrives while it runs awaits that same task and observes the same outcome.
The in-flight marker is dropped when the task finishes, whatever the
outcome, so a later call can try again.

All mutation of the marker happens between ``await`` points on one event
loop, so no lock is needed. Porting this to threads requires guarding the
check-and-set with a mutex.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from mailbridge.errors import (
    NoStoredTokensError,
    TokenEndpointError,
    TokenExpiredError,
    TokenRefreshError,
)

from .issuer import IssuerClient, IssuerMetadata
from .token_store import StoredTokens, TokenStore, get_default_store

logger = logging.getLogger(__name__)

# Refresh this many seconds before the recorded expiry.
TOKEN_EXPIRY_BUFFER = 60


class TokenRefresher:
    """Refresh coordinator for one (issuer, client id) pair and token file."""

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        *,
        token_store: Optional[TokenStore] = None,
        issuer_client: Optional[IssuerClient] = None,
        clock: Callable[[], float] = time.time,
        expiry_buffer: int = TOKEN_EXPIRY_BUFFER,
    ) -> None:
        self.issuer_url = issuer_url
        self.client_id = client_id
        self.token_store = token_store or get_default_store()
        self.issuer_client = issuer_client or IssuerClient(issuer_url, client_id)
        self.expiry_buffer = expiry_buffer
        self._clock = clock
        self._cached_config: Optional[IssuerMetadata] = None
        self._refresh_task: Optional[asyncio.Task[StoredTokens]] = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    async def get_issuer_config(self) -> IssuerMetadata:
        """Issuer metadata, fetched on first use and cached afterwards."""
        if self._cached_config is None:
            self._cached_config = await self.issuer_client.discover()
        return self._cached_config

    def is_token_valid(self, tokens: StoredTokens) -> bool:
        """Whether the access token outlives the expiry buffer.

        A token expiring exactly ``expiry_buffer`` seconds from now is
        already considered invalid.
        """
        if tokens.expires_at is None:
            return True
        expires_in = tokens.expires_at - int(self._clock())
        return expires_in > self.expiry_buffer

    async def ensure_valid_token(self) -> StoredTokens:
        """Return currently valid tokens, refreshing them when needed.

        Raises:
            NoStoredTokensError: Nothing has been stored yet
            TokenExpiredError: Refresh needed but no refresh token stored
            TokenRefreshError: The refresh attempt failed
        """
        tokens = self.token_store.load()
        if tokens is None:
            raise NoStoredTokensError()

        if self.is_token_valid(tokens):
            return tokens

        if not tokens.refresh_token:
            raise TokenExpiredError()

        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._do_refresh(tokens.refresh_token))
            self._refresh_task = task
            task.add_done_callback(self._release)
        else:
            logger.debug("Joining in-flight token refresh for %s", self.issuer_url)

        # shield: a cancelled waiter must not cancel the refresh other waiters share
        return await asyncio.shield(task)

    def _release(self, task: "asyncio.Task[StoredTokens]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # retrieve so an unobserved failure is not reported as never retrieved
            task.exception()

    async def _do_refresh(self, refresh_token: str) -> StoredTokens:
        logger.info("Refreshing access token with %s", self.issuer_url)
        try:
            config = await self.get_issuer_config()
            response = await self.issuer_client.refresh_access_token(
                config, refresh_token=refresh_token
            )
            new_tokens = StoredTokens.from_token_response(
                response,
                now=self._clock(),
                fallback_refresh_token=refresh_token,
            )
            self.token_store.save(new_tokens)
        except TokenEndpointError as exc:
            logger.warning("Token refresh rejected: %s", exc.error or exc.status_code)
            raise TokenRefreshError(str(exc), oauth_error=exc.error) from exc
        except Exception as exc:  # noqa: BLE001 - every failure surfaces as a refresh error
            logger.warning("Token refresh failed: %s", exc)
            raise TokenRefreshError(str(exc) or type(exc).__name__) from exc
        return new_tokens

    def clear_cache(self) -> None:
        """Forget cached issuer metadata and any in-flight marker."""
        self._cached_config = None
        self._refresh_task = None


_refreshers: Dict[Tuple[str, str, Path], TokenRefresher] = {}


def create_token_refresher(
    issuer_url: str,
    client_id: str,
    *,
    token_store: Optional[TokenStore] = None,
) -> TokenRefresher:
    """Return the process-wide refresher for an issuer, client and token file.

    Callers naming the same store path share one refresher; a different
    ``token_store`` gets its own.
    """
    store = token_store or get_default_store()
    key = (issuer_url, client_id, store.path)
    refresher = _refreshers.get(key)
    if refresher is None:
        refresher = TokenRefresher(issuer_url, client_id, token_store=store)
        _refreshers[key] = refresher
    return refresher


def reset_token_refreshers() -> None:
    """Drop every shared refresher and its cached state."""
    for refresher in _refreshers.values():
        refresher.clear_cache()
    _refreshers.clear()


async def ensure_valid_token(issuer_url: str, client_id: str) -> StoredTokens:
    """Convenience wrapper around the shared refresher for a pair."""
    return await create_token_refresher(issuer_url, client_id).ensure_valid_token()


__all__ = [
    "TOKEN_EXPIRY_BUFFER",
    "TokenRefresher",
    "create_token_refresher",
    "ensure_valid_token",
    "reset_token_refreshers",
]
