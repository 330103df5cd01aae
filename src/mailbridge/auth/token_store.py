"""On-disk persistence for the single set of OIDC tokens.

Tokens live in one JSON file under the user's home directory. The parent
directory is created owner-only (0700) and the file is written owner
read/write only (0600); permissions are re-applied on every save so a file
left behind by a looser umask is tightened. Writes go through a temporary
file and ``os.replace`` so readers never observe a half-written record.

There is no locking here. ``TokenRefresher`` serializes writers.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_PATH = Path.home() / ".mailbridge" / "tokens.json"

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class StoredTokens(BaseModel):
    """Persisted credential set.

    ``expires_at`` is an absolute Unix timestamp in seconds. A token set
    without it is treated as valid until the server says otherwise.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
    id_token: Optional[str] = Field(default=None, alias="idToken")

    def serialize(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_token_response(
        cls,
        response: Any,
        *,
        now: float,
        fallback_refresh_token: Optional[str] = None,
    ) -> "StoredTokens":
        """Build a credential set from a token endpoint response.

        ``fallback_refresh_token`` is carried forward when the server did not
        rotate the refresh token.
        """
        expires_at = None
        if response.expires_in:
            expires_at = int(now) + int(response.expires_in)
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token or fallback_refresh_token,
            expires_at=expires_at,
            id_token=response.id_token,
        )


@dataclass
class TokenStore:
    """Reads and writes ``StoredTokens`` at a fixed path."""

    path: Path = field(default=DEFAULT_TOKEN_PATH)

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser()

    def save(self, tokens: StoredTokens) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(mode=_DIR_MODE, parents=True)
        except FileExistsError:
            pass
        else:
            # mkdir's mode is filtered through the umask
            os.chmod(directory, _DIR_MODE)

        payload = json.dumps(tokens.serialize(), indent=2)
        tmp = self.path.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.chmod(tmp, _FILE_MODE)
            os.replace(tmp, self.path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        os.chmod(self.path, _FILE_MODE)
        logger.debug("Saved tokens to %s", self.path)

    def load(self) -> Optional[StoredTokens]:
        """Return stored tokens, or ``None`` when nothing has been saved.

        Unreadable or corrupt files raise; they are not treated as absent.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return StoredTokens.model_validate(json.loads(raw))

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Cleared tokens at %s", self.path)


_default_store = TokenStore()


def get_default_store() -> TokenStore:
    return _default_store


def save_tokens(tokens: StoredTokens) -> None:
    _default_store.save(tokens)


def load_tokens() -> Optional[StoredTokens]:
    return _default_store.load()


def clear_tokens() -> None:
    _default_store.clear()


__all__ = [
    "DEFAULT_TOKEN_PATH",
    "StoredTokens",
    "TokenStore",
    "clear_tokens",
    "get_default_store",
    "load_tokens",
    "save_tokens",
]
