"""Tests for environment-driven settings."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from mailbridge.configuration.settings import (
    AuthMethod,
    configure_logging,
    load_settings,
    oidc_options_from_settings,
)
from mailbridge.errors import InvalidConfigError

SESSION = "https://jmap.example.com/.well-known/jmap"


def test_basic_defaults() -> None:
    settings = load_settings(
        {"JMAP_SESSION_URL": SESSION, "JMAP_USERNAME": "user", "JMAP_PASSWORD": "pw"}
    )

    assert settings.auth_method is AuthMethod.BASIC
    assert settings.password.get_secret_value() == "pw"
    assert settings.request_timeout == 30.0
    assert settings.oidc.scope == "openid email offline_access"
    assert settings.oidc.redirect_uri == "http://localhost:3000/callback"
    assert settings.oidc.callback_port == 3000
    assert settings.log_level == "INFO"


def test_oidc_settings_and_flow_options(tmp_path: Path) -> None:
    settings = load_settings(
        {
            "JMAP_SESSION_URL": SESSION,
            "JMAP_AUTH_METHOD": "OIDC",
            "JMAP_OIDC_ISSUER": "https://auth.example.com",
            "JMAP_OIDC_CLIENT_ID": "mail-client",
            "JMAP_OIDC_REDIRECT_URI": "https://tunnel.example.net/callback",
            "JMAP_OIDC_CALLBACK_PORT": "4000",
            "MAILBRIDGE_TOKEN_PATH": str(tmp_path / "tokens.json"),
            "LOG_LEVEL": "debug",
        }
    )
    options = oidc_options_from_settings(settings)

    assert settings.auth_method is AuthMethod.OIDC
    assert settings.token_path == tmp_path / "tokens.json"
    assert settings.log_level == "DEBUG"
    assert options.issuer_url == "https://auth.example.com"
    assert options.client_id == "mail-client"
    assert options.redirect_uri == "https://tunnel.example.net/callback"
    assert options.callback_port == 4000
    assert options.token_path == tmp_path / "tokens.json"


def test_no_flow_options_without_oidc() -> None:
    settings = load_settings({"JMAP_SESSION_URL": SESSION, "JMAP_AUTH_METHOD": "bearer", "JMAP_TOKEN": "t"})

    assert oidc_options_from_settings(settings) is None


def test_discovery_timeouts_are_converted_from_milliseconds() -> None:
    settings = load_settings(
        {
            "JMAP_SESSION_URL": SESSION,
            "JMAP_TOKEN": "t",
            "JMAP_AUTH_METHOD": "bearer",
            "JMAP_DNS_TIMEOUT": "1500",
            "JMAP_WELL_KNOWN_TIMEOUT": "2000",
        }
    )
    timeouts = settings.discovery_timeouts()

    assert timeouts.dns == 1.5
    assert timeouts.well_known == 2.0
    assert timeouts.oauth == 10.0


@pytest.mark.parametrize(
    "url",
    ["http://localhost:8080/jmap", "http://127.0.0.1/.well-known/jmap", SESSION],
)
def test_session_url_schemes_accepted(url: str) -> None:
    settings = load_settings({"JMAP_SESSION_URL": url, "JMAP_AUTH_METHOD": "bearer", "JMAP_TOKEN": "t"})
    assert settings.session_url == url


def test_plain_http_remote_session_url_rejected() -> None:
    with pytest.raises(InvalidConfigError) as excinfo:
        load_settings(
            {"JMAP_SESSION_URL": "http://jmap.example.com/", "JMAP_AUTH_METHOD": "bearer", "JMAP_TOKEN": "t"}
        )

    assert excinfo.value.problems[0].startswith("JMAP_SESSION_URL:")


def test_every_problem_is_reported_together() -> None:
    with pytest.raises(InvalidConfigError) as excinfo:
        load_settings({"JMAP_AUTH_METHOD": "oidc", "JMAP_DNS_TIMEOUT": "soon"})

    problems = excinfo.value.problems
    assert any(problem.startswith("JMAP_SESSION_URL:") for problem in problems)
    assert any(problem.startswith("JMAP_DNS_TIMEOUT:") for problem in problems)
    assert "JMAP_OIDC_ISSUER is required when JMAP_AUTH_METHOD=oidc" in problems
    assert "JMAP_OIDC_CLIENT_ID is required when JMAP_AUTH_METHOD=oidc" in problems


@pytest.mark.parametrize(
    "env, expected",
    [
        ({}, ["JMAP_USERNAME is required", "JMAP_PASSWORD is required"]),
        ({"JMAP_AUTH_METHOD": "bearer"}, ["JMAP_TOKEN is required"]),
    ],
)
def test_conditional_credentials(env, expected) -> None:
    with pytest.raises(InvalidConfigError) as excinfo:
        load_settings({"JMAP_SESSION_URL": SESSION, **env})

    for fragment in expected:
        assert any(fragment in problem for problem in excinfo.value.problems)


def test_unknown_auth_method_rejected() -> None:
    with pytest.raises(InvalidConfigError) as excinfo:
        load_settings({"JMAP_SESSION_URL": SESSION, "JMAP_AUTH_METHOD": "kerberos"})

    assert excinfo.value.problems[0].startswith("JMAP_AUTH_METHOD:")


def test_process_environment_is_the_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JMAP_SESSION_URL", SESSION)
    monkeypatch.setenv("JMAP_AUTH_METHOD", "bearer")
    monkeypatch.setenv("JMAP_TOKEN", "from-env")

    assert load_settings().token.get_secret_value() == "from-env"


def test_configure_logging_installs_one_stderr_handler() -> None:
    logger = configure_logging("debug")
    configure_logging("warning")

    handlers = [h for h in logger.handlers if getattr(h, "_mailbridge_handler", False)]
    assert len(handlers) == 1
    assert logger.level == logging.WARNING
    logger.removeHandler(handlers[0])
