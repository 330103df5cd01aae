"""Tests for the on-disk token store."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest
from pydantic import ValidationError

from mailbridge.auth.issuer import TokenResponse
from mailbridge.auth.token_store import StoredTokens, TokenStore


def _mode(path: Path) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store = TokenStore(tmp_path / "state" / "tokens.json")
    tokens = StoredTokens(
        access_token="access", refresh_token="refresh", expires_at=1_700_000_000, id_token="id"
    )

    store.save(tokens)

    assert store.load() == tokens


def test_file_uses_camel_case_keys_and_omits_missing_fields(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    TokenStore(path).save(StoredTokens(access_token="access", expires_at=42))

    assert json.loads(path.read_text()) == {"accessToken": "access", "expiresAt": 42}


def test_save_creates_owner_only_directory_and_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "tokens.json"
    TokenStore(path).save(StoredTokens(access_token="access"))

    assert _mode(path.parent) == 0o700
    assert _mode(path) == 0o600


def test_save_tightens_permissions_of_existing_file(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("{}")
    os.chmod(path, 0o644)

    TokenStore(path).save(StoredTokens(access_token="access"))

    assert _mode(path) == 0o600
    assert not path.with_suffix(".tmp").exists()


def test_load_missing_file_returns_none(tmp_path: Path) -> None:
    assert TokenStore(tmp_path / "absent.json").load() is None


def test_load_corrupt_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text("{not json")

    with pytest.raises(json.JSONDecodeError):
        TokenStore(path).load()


def test_load_record_without_access_token_raises(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    path.write_text(json.dumps({"refreshToken": "refresh"}))

    with pytest.raises(ValidationError):
        TokenStore(path).load()


def test_clear_removes_file_and_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "tokens.json"
    store = TokenStore(path)
    store.save(StoredTokens(access_token="access"))

    store.clear()
    store.clear()

    assert not path.exists()
    assert store.load() is None


def test_from_token_response_computes_absolute_expiry() -> None:
    response = TokenResponse(access_token="new", expires_in=3600, refresh_token="rotated")

    tokens = StoredTokens.from_token_response(response, now=1000.7, fallback_refresh_token="old")

    assert tokens.expires_at == 4600
    assert tokens.refresh_token == "rotated"


def test_from_token_response_carries_refresh_token_forward() -> None:
    response = TokenResponse(access_token="new")

    tokens = StoredTokens.from_token_response(response, now=1000, fallback_refresh_token="old")

    assert tokens.refresh_token == "old"
    assert tokens.expires_at is None


def test_failed_save_removes_temporary_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "tokens.json"
    store = TokenStore(path)
    store.save(StoredTokens(access_token="old"))

    def fail_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("mailbridge.auth.token_store.os.replace", fail_replace)

    with pytest.raises(OSError, match="disk full"):
        store.save(StoredTokens(access_token="new"))

    assert not path.with_suffix(".tmp").exists()
    assert store.load() == StoredTokens(access_token="old")
