# pylint: disable=missing-module-docstring,missing-function-docstring
from pathlib import Path

import pytest

from config import AppConfig


_VARS = (
    "ENV",
    "ENABLE_JSON_LOGS",
    "TRANSPORT",
    "SESSION_CREDENTIALS_DIR",
    "RECONNECT_MAX_RETRIES",
    "RECONNECT_BACKOFF",
    "PAIRING_ARTIFACT_FORMAT",
    "START_MODE",
    "CORS_ALLOW_ORIGINS",
    "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = AppConfig.load_from_env()

    assert config.transport is None
    assert config.credentials_dir == Path("./sessions")
    assert config.reconnect_max_retries == 5
    assert config.reconnect_backoff == "exponential"
    assert config.pairing_artifact_format == "png"
    assert config.start_mode == "async"
    assert config.port == 3001
    assert config.cors_allow_origins == ("*",)
    assert config.enable_json_logs


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSPORT", "acme.transport:build")
    monkeypatch.setenv("SESSION_CREDENTIALS_DIR", "/var/lib/sessions")
    monkeypatch.setenv("RECONNECT_MAX_RETRIES", "2")
    monkeypatch.setenv("RECONNECT_BACKOFF", "fixed")
    monkeypatch.setenv("START_MODE", "wait")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("ENABLE_JSON_LOGS", "0")
    monkeypatch.setenv("PORT", "8080")

    config = AppConfig.load_from_env()

    assert config.transport == "acme.transport:build"
    assert config.credentials_dir == Path("/var/lib/sessions")
    assert config.reconnect_max_retries == 2
    assert config.reconnect_backoff == "fixed"
    assert config.start_mode == "wait"
    assert config.cors_allow_origins == ("https://a.example", "https://b.example")
    assert not config.enable_json_logs
    assert config.port == 8080


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("RECONNECT_BACKOFF", "linear"),
        ("START_MODE", "sync"),
        ("PAIRING_ARTIFACT_FORMAT", "svg"),
        ("RECONNECT_MAX_RETRIES", "-1"),
        ("PORT", "not-a-port"),
    ],
)
def test_rejects_bad_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        AppConfig.load_from_env()
