"""
tests/conftest.py -- Shared fixtures for AuditBoard route tests.

This module provides:
  - _patch_lifespan(): wires an in-memory durable store and a scripted
    identity factory into app.state, bypassing real startup
  - identity: the IdentityScript the factory builds fake clients from
  - web_client / api_client: TestClient over the full asgi app

The TestClient base URL is http://localhost:8000 so TrustedHostMiddleware
accepts it and SessionContext URLs look like the real dev server.

Environment variables must be set before any core/ import so get_settings()
auto-generates SECRET_KEY in dev mode and the list source is configured.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before importing the app so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LIST_HOSTNAME", "contoso.sharepoint.com")
os.environ.setdefault("LIST_SITE_PATH", "sites/Quality")
os.environ.setdefault("LIST_ID", "{6b1c2c7e-0000-4000-8000-000000000001}")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.storage import DurableStore
from tests.fakes import IdentityScript


def _patch_lifespan(store: DurableStore, script: IdentityScript):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.durable_store = store
        app.state.identity_factory = script.build
        yield

    return test_lifespan


@pytest.fixture
def identity() -> IdentityScript:
    return IdentityScript()


def _client(script: IdentityScript) -> Generator[TestClient, None, None]:
    store = DurableStore("sqlite://")
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store, script)
    with TestClient(
        app,
        base_url="http://localhost:8000",
        follow_redirects=False,
        raise_server_exceptions=True,
    ) as client:
        yield client
    store.close()


@pytest.fixture
def web_client(identity: IdentityScript) -> Generator[TestClient, None, None]:
    """follow_redirects=False: web tests assert on redirect locations."""
    yield from _client(identity)


@pytest.fixture
def api_client(identity: IdentityScript) -> Generator[TestClient, None, None]:
    yield from _client(identity)
