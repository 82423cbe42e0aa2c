"""
Shared fixtures for the Copilot proxy tests.

The upstream copilot service is replaced by an httpx.MockTransport that
records every request it receives.
"""

from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from copilot_proxy.app.config import Settings
from copilot_proxy.app.main import create_app

UPSTREAM_URL = "https://127.0.0.1:8443/copilot?chunked=true"

SETTINGS_ENV_VARS = [
    "HOST",
    "PORT",
    "UPSTREAM_URL",
    "UPSTREAM_INSECURE_SKIP_VERIFY",
    "UPSTREAM_CONNECT_TIMEOUT",
    "UPSTREAM_READ_TIMEOUT",
    "STATIC_DIR",
    "ALLOWED_ORIGINS",
    "LOG_LEVEL",
]


class RecordingUpstream:
    """Fake copilot upstream: records requests and answers via a swappable handler."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200,
            headers={"Content-Type": "application/json"},
            json={"reply": "Hello! How can I help?"},
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep process environment out of Settings"""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def static_dir(tmp_path):
    """Static asset directory with an index page and a script"""
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<h1>Copilot chat</h1>")
    (public / "app.js").write_text("console.log('chat');")
    (tmp_path / "secret.txt").write_text("do not serve")
    return public


@pytest.fixture
def settings(static_dir):
    """Test settings"""
    return Settings(
        _env_file=None,
        UPSTREAM_URL=UPSTREAM_URL,
        STATIC_DIR=str(static_dir),
        ALLOWED_ORIGINS="*",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def upstream():
    """Recording fake upstream"""
    return RecordingUpstream()


@pytest.fixture
def app(settings, upstream):
    """Create test FastAPI application wired to the fake upstream"""
    return create_app(settings, upstream_transport=httpx.MockTransport(upstream))


@pytest.fixture
def client(app):
    """Create test client; unhandled errors come back as 500 responses"""
    return TestClient(app, raise_server_exceptions=False)
