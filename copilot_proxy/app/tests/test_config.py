"""
Tests for copilot_proxy/app/config.py
"""

import httpx
import pytest
from pydantic import ValidationError

from copilot_proxy.app.config import DEFAULT_UPSTREAM_URL, Settings
from copilot_proxy.app.proxy.forwarder import CopilotForwarder


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.PORT == 3000
    assert settings.HOST == "0.0.0.0"
    assert settings.UPSTREAM_URL == DEFAULT_UPSTREAM_URL == "https://127.0.0.1:8443/copilot?chunked=true"
    assert settings.UPSTREAM_INSECURE_SKIP_VERIFY is True
    assert settings.upstream_verify is False
    assert settings.UPSTREAM_CONNECT_TIMEOUT == 10.0
    assert settings.UPSTREAM_READ_TIMEOUT is None
    assert settings.STATIC_DIR == "public"
    assert settings.allowed_origins_list == ["*"]


def test_port_from_environment(monkeypatch):
    monkeypatch.setenv("PORT", "8081")

    assert Settings(_env_file=None).PORT == 8081


def test_verification_can_be_enabled(monkeypatch):
    monkeypatch.setenv("UPSTREAM_INSECURE_SKIP_VERIFY", "false")

    settings = Settings(_env_file=None)

    assert settings.UPSTREAM_INSECURE_SKIP_VERIFY is False
    assert settings.upstream_verify is True


def test_empty_timeout_disables_it(monkeypatch):
    monkeypatch.setenv("UPSTREAM_CONNECT_TIMEOUT", "")
    monkeypatch.setenv("UPSTREAM_READ_TIMEOUT", "120")

    settings = Settings(_env_file=None)

    assert settings.UPSTREAM_CONNECT_TIMEOUT is None
    assert settings.UPSTREAM_READ_TIMEOUT == 120.0


@pytest.mark.parametrize("url", ["127.0.0.1:8443/copilot", "ftp://127.0.0.1/copilot", "https:///copilot"])
def test_invalid_upstream_url_rejected(url):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, UPSTREAM_URL=url)


@pytest.mark.parametrize("port", [0, 70000])
def test_port_out_of_range_rejected(port):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, PORT=port)


def test_log_level_normalized_and_validated():
    assert Settings(_env_file=None, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    with pytest.raises(ValidationError):
        Settings(_env_file=None, LOG_LEVEL="chatty")


def test_allowed_origins_list_parsing():
    settings = Settings(_env_file=None, ALLOWED_ORIGINS=" https://a.example.com, ,https://b.example.com ")

    assert settings.allowed_origins_list == ["https://a.example.com", "https://b.example.com"]


def test_settings_are_immutable():
    settings = Settings(_env_file=None)

    with pytest.raises(ValidationError):
        settings.PORT = 9999


def test_forwarder_timeouts_follow_settings():
    forwarder = CopilotForwarder(Settings(_env_file=None, UPSTREAM_READ_TIMEOUT=30))

    assert isinstance(forwarder.timeout, httpx.Timeout)
    assert forwarder.timeout.connect == 10.0
    assert forwarder.timeout.read == 30.0
    assert forwarder.timeout.write is None
    assert forwarder.timeout.pool is None
