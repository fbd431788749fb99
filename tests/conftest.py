"""
tests/conftest.py -- Shared test fixtures for the session bridge tests.

This module provides:
  - settings / business_settings: Settings built directly, no environment
  - engine: an isolated named shared-memory SQLite engine per test
  - users / organizations: the real SQLAlchemy stores on that engine
  - fake_verifier: a MagicMock standing in for IdentityVerifier
  - make_request: a Starlette Request with a dict-backed session
  - api_client: TestClient on the real app with a test bridge installed

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The STYTCH_* env vars must be set before api.main is imported: the session
middleware reads get_settings() at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

# CRITICAL: set before any api/ import so get_settings() validates.
os.environ.setdefault("STYTCH_PROJECT_ID", "project-test-00000000-0000-0000-0000-000000000000")
os.environ.setdefault("STYTCH_SECRET", "secret-test-xxxxxxxxxxxxxxxxxxxx")
os.environ.setdefault("STYTCH_DEBUG", "true")
os.environ.setdefault("STYTCH_LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from starlette.requests import Request

from auth.guard import SessionBridge
from auth.reconciler import IdentityReconciler
from auth.store import OrganizationStore, UserStore, make_engine
from auth.verifier import IdentityVerifier
from core.config import Settings
from core.models import (
    BusinessProfile,
    ConsumerProfile,
    EmailAddress,
    ExternalIdentity,
    ExternalMembership,
    PersonName,
    TenancyMode,
)

SESSION_SECRET = "s" * 48

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "project_id": "project-test-00000000-0000-0000-0000-000000000000",
        "secret": "secret-test-xxxxxxxxxxxxxxxxxxxx",
        "session_secret_key": SESSION_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


def consumer_profile(
    external_id: str = "user-test-1",
    email: str | None = "ada@example.com",
    verified: bool = True,
    first_name: str = "Ada",
    last_name: str = "Lovelace",
) -> ConsumerProfile:
    emails = (EmailAddress(address=email, verified=verified),) if email else ()
    return ConsumerProfile(
        identity=ExternalIdentity(
            external_user_id=external_id,
            emails=emails,
            display_name=PersonName(first_name=first_name, last_name=last_name),
        )
    )


def business_profile(
    member_id: str = "member-test-1",
    email: str | None = "grace@acme.test",
    organization_id: str = "organization-test-1",
    organization_name: str = "Acme",
) -> BusinessProfile:
    return BusinessProfile(
        identity=ExternalIdentity(
            external_user_id=member_id,
            emails=(EmailAddress(address=email, verified=True),) if email else (),
            display_name="Grace Hopper",
        ),
        membership=ExternalMembership(
            member_id=member_id,
            organization_id=organization_id,
            member_email=email,
            member_status="active",
            organization_name=organization_name,
            organization_slug="acme",
        ),
    )


def make_request(
    session: dict | None = None,
    cookies: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
) -> Request:
    """Build a bare Starlette Request carrying a plain-dict session.

    Same scope keys SessionMiddleware would leave behind, without needing an
    app or a signed cookie.
    """
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode()))
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": raw_headers,
        "query_string": b"",
        "session": session if session is not None else {},
        "state": {},
    }
    return Request(scope)


class Clock:
    """Settable stand-in for time.time."""

    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def business_settings() -> Settings:
    return make_settings(default_auth_method="b2b")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    url = f"sqlite:///file:test_bridge_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    eng = make_engine(url)
    yield eng
    eng.dispose()


@pytest.fixture
def users(settings: Settings, engine: Engine) -> UserStore:
    return UserStore(settings, engine)


@pytest.fixture
def organizations(settings: Settings, engine: Engine) -> OrganizationStore:
    return OrganizationStore(settings, engine)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def fake_verifier() -> MagicMock:
    return MagicMock(spec=IdentityVerifier)


@pytest.fixture
def consumer_bridge(settings, users, fake_verifier, clock) -> SessionBridge:
    reconciler = IdentityReconciler(settings, users)
    return SessionBridge(settings, fake_verifier, reconciler, users, clock=clock)


@pytest.fixture
def business_bridge(business_settings, users, organizations, fake_verifier, clock) -> SessionBridge:
    reconciler = IdentityReconciler(business_settings, users, organizations)
    return SessionBridge(
        business_settings,
        fake_verifier,
        reconciler,
        users,
        organizations,
        mode=TenancyMode.BUSINESS,
        clock=clock,
    )


@pytest.fixture
def api_client(settings, users, fake_verifier) -> Generator[tuple[TestClient, MagicMock, UserStore], None, None]:
    """Yield (client, fake_verifier, users) against the real FastAPI app.

    The bridge is installed on app.state before the client starts, so the
    lifespan uses it instead of building one from the environment. Routes,
    middleware and exception handlers are the real ones.
    """
    from api.main import app

    reconciler = IdentityReconciler(settings, users)
    app.state.bridge = SessionBridge(settings, fake_verifier, reconciler, users)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, fake_verifier, users

    app.state.bridge = None
