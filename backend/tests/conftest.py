"""
DocGate Backend - Test Configuration (conftest.py)
==================================================

What:  Shared pytest fixtures for the whole suite.
How:   Every HTTP test builds its own app through create_app() with explicit
       Settings, a fresh RateLimiter and in-process fake collaborators, so
       no test shares limiter state or needs a running document service.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── fake_clock:         manually advanced clock for the rate limiter
    ├── make_settings:      Settings factory ignoring .env and the environment
    ├── fake_collaborators: one recording FakeCollaborator per route group
    ├── make_app:           create_app() wrapper wired to the fakes
    ├── make_client:        AsyncClient factory over ASGITransport
    └── client:             AsyncClient for a default production-mode app
"""

import os
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Before any docgate import: the module-level app reads these
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["COLLABORATOR_BASE_URL"] = ""

from docgate.config import Settings  # noqa: E402
from docgate.main import create_app  # noqa: E402
from docgate.routing import ROUTE_GROUPS  # noqa: E402
from docgate.services.collaborator_base import (  # noqa: E402
    Collaborator,
    CollaboratorCall,
    CollaboratorReply,
)
from docgate.services.rate_limiter import RateLimiter  # noqa: E402

ALLOWED_ORIGIN = "https://app.example.com"


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCollaborator(Collaborator):
    """
    Records every call and answers with `reply`, or raises `error` when set.
    """

    def __init__(self, name: str, reply: Optional[CollaboratorReply] = None):
        self.name = name
        self.reply = reply or CollaboratorReply(status_code=200, content={"ok": True, "group": name})
        self.error: Optional[BaseException] = None
        self.calls: List[CollaboratorCall] = []
        self.closed = False

    async def handle(self, call: CollaboratorCall) -> CollaboratorReply:
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self) -> None:
        self.closed = True


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    """
    Settings factory. Defaults describe a production deployment allowing one
    browser origin; keyword arguments override any field.

    Usage:
        settings = make_settings(environment="development", max_body_size=1024)
    """

    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "environment": "production",
            "cors_origin": ALLOWED_ORIGIN,
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def fake_collaborators() -> Dict[str, FakeCollaborator]:
    return {group.name: FakeCollaborator(group.name) for group in ROUTE_GROUPS}


@pytest.fixture
def make_app(make_settings, fake_collaborators, fake_clock):
    """
    create_app() wired to the fake collaborators and a limiter on the fake
    clock. Pass `limiter=` to supply a hand-built RateLimiter.
    """

    def _make(limiter: Optional[RateLimiter] = None, **setting_overrides: Any):
        config = make_settings(**setting_overrides)
        if limiter is None:
            limiter = RateLimiter.from_settings(config, clock=fake_clock)
        return create_app(settings=config, rate_limiter=limiter, collaborators=fake_collaborators)

    return _make


@pytest.fixture
def make_client():
    """
    AsyncClient factory over ASGITransport; requests reach the app directly.

    Usage:
        async with make_client(app) as client:
            response = await client.get("/api/health")
    """

    def _make(app) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _make


@pytest_asyncio.fixture
async def client(make_app, make_client):
    """AsyncClient for a production-mode app with default limits."""
    async with make_client(make_app()) as test_client:
        yield test_client
