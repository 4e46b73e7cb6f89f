"""
Shared fixtures for the BFF tests.

The upstream API is replaced by FakeUpstreamClient, injected through
create_app, so no test touches the network.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from petcare_bff.config import DeploymentMode, Settings
from petcare_bff.main import create_app
from petcare_bff.proxy.client import ResponseKind, UpstreamResponse


@dataclass
class ForwardCall:
    method: str
    path: str
    body: Optional[bytes]
    response_kind: ResponseKind
    headers: Dict[str, str] = field(default_factory=dict)


class FakeUpstreamClient:
    """Records forwarded calls and answers with a canned response or error."""

    def __init__(self) -> None:
        self.calls: List[ForwardCall] = []
        self.response = UpstreamResponse(
            status=200,
            headers=[("content-type", "application/json")],
            body={"ok": True},
        )
        self.error: Optional[Exception] = None

    async def forward(self, method, path, body, response_kind, headers=None) -> UpstreamResponse:
        self.calls.append(ForwardCall(method, path, body, response_kind, dict(headers or {})))
        if self.error is not None:
            raise self.error
        return self.response

    def respond(self, status: int, body: Any = None, headers=None) -> None:
        self.response = UpstreamResponse(status=status, headers=list(headers or []), body=body)

    @property
    def last_call(self) -> ForwardCall:
        assert self.calls, "upstream was not called"
        return self.calls[-1]


def make_settings(**overrides) -> Settings:
    values = dict(
        SESSION_SECRET="test-session-secret-1234567890",
        BACKEND_URL="http://upstream.test",
        DEPLOYMENT_MODE=DeploymentMode.TEST,
        LOG_FORMAT="text",
        LOG_LEVEL="DEBUG",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def fake_upstream():
    return FakeUpstreamClient()


@pytest.fixture
def app(settings, fake_upstream):
    return create_app(settings=settings, upstream=fake_upstream)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def csrf_headers(client):
    """Headers carrying the CSRF token of the test client's session."""
    token = client.get("/auth/csrf").json()["csrfToken"]
    return {"x-csrf-token": token}
