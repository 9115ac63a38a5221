"""
auth/dependencies.py -- Assemble the per-page session components from a request.

A "page" is one HTTP request to a web or API route. open_page() builds, in
order:

  SessionContext   -- session storage over request.session (signed cookie),
                      durable storage over app.state.durable_store scoped to
                      the browser's profile cookie, and the request URL.
  IdentityClient   -- app.state.identity_factory(context); defaults to the
                      msal binding. Tests inject a fake factory.
  SessionBootstrap, AutoLoginGuard, TokenGateway -- all sharing that context.

Client construction errors propagate: nothing works without an identity
client, so routes render them as a full-page error.

require_account() guards the API routes: bootstrap, then 401 if no
account resolved.

Layer rule: no imports from web/, api/ or lists/. core.config is the only
core import (settings).
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import HTTPException, Request

from auth.bootstrap import SessionBootstrap, install_account_tracking
from auth.context import SessionContext
from auth.gateway import TokenGateway
from auth.guard import AutoLoginGuard, resolve_account
from auth.identity import Account, IdentityClient
from auth.msal_client import MsalIdentityClient
from auth.storage import DurableStore, SafeStorage, SessionCookieStore
from core.config import get_settings

PROFILE_COOKIE = "auditboard_profile"
PROFILE_COOKIE_MAX_AGE = 400 * 24 * 60 * 60  # browsers cap cookie lifetime at 400 days

IdentityFactory = Callable[[SessionContext], IdentityClient]


@dataclass
class Page:
    context: SessionContext
    client: IdentityClient
    bootstrap: SessionBootstrap
    guard: AutoLoginGuard
    gateway: TokenGateway


def new_profile_id() -> str:
    return secrets.token_urlsafe(16)


def profile_id_for(request: Request) -> Optional[str]:
    """Profile id set by the profile-cookie middleware, else the raw cookie."""
    return getattr(request.state, "profile_id", None) or request.cookies.get(PROFILE_COOKIE)


def msal_identity_factory(context: SessionContext) -> IdentityClient:
    settings = get_settings()
    return MsalIdentityClient(
        context,
        client_id=settings.client_id,
        authority=settings.authority,
        redirect_uri=settings.redirect_uri,
        client_secret=settings.client_secret,
        post_logout_redirect_uri=settings.post_logout_redirect_uri,
        scopes=settings.login_scope_list,
    )


def build_context(request: Request) -> SessionContext:
    settings = get_settings()

    # request.session asserts when SessionMiddleware is not installed.
    session_backend = SessionCookieStore(request.session) if "session" in request.scope else None

    durable: Optional[DurableStore] = getattr(request.app.state, "durable_store", None)
    profile_id = profile_id_for(request)
    local_backend = durable.for_profile(profile_id) if durable is not None and profile_id else None

    return SessionContext(
        session_storage=SafeStorage("session", session_backend),
        local_storage=SafeStorage("local", local_backend),
        url=str(request.url),
        redirect_uri=settings.redirect_uri,
    )


def open_page(request: Request) -> Page:
    settings = get_settings()
    context = build_context(request)
    factory: IdentityFactory = getattr(request.app.state, "identity_factory", None) or msal_identity_factory
    client = factory(context)
    install_account_tracking(client, context)
    return Page(
        context=context,
        client=client,
        bootstrap=SessionBootstrap(client, context, settings.login_scope_list),
        guard=AutoLoginGuard(client, context, settings.login_scope_list),
        gateway=TokenGateway(client, context),
    )


async def require_account(page: Page) -> Account:
    """Bootstrap the page and return its account. Raises HTTP 401 if there is none.

    Bootstrap errors propagate to the caller's exception handling.
    """
    await page.bootstrap.ensure_ready()
    account = resolve_account(page.client)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Sign-in required."},
        )
    return account
