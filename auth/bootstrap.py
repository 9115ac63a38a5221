"""
auth/bootstrap.py -- Session Bootstrap Protocol.

Resolves the identity for a page exactly once, in order of precedence:

  1. redirect response in the URL           -> that account          (redirect)
  2. redirect error no_token_request_cache  -> strip auth params from the
                                               URL, continue as if no
                                               redirect happened
  3. accounts already in the token cache    -> the first one         (cache)
  4. stored Login Hint                      -> silent SSO            (sso)
       interaction-class failure            -> no account, no error
  5. nothing                                -> no account            (none)

Only two outcomes raise: an unrecognised redirect-handling error and an
unrecognised SSO error. Callers render those as a full-page error.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from auth.context import SessionContext
from auth.identity import (
    NO_TOKEN_REQUEST_CACHE_ERROR,
    Account,
    AuthError,
    AuthEvent,
    EventType,
    IdentityClient,
    LoginRequest,
    is_interaction_required,
)

logger = logging.getLogger("auditboard.auth.bootstrap")

_AUTH_PARAM_RE = re.compile(r"(?:^|&)(?:code|state|error|error_description|client_info)=[^&]*")


def _strip_auth_params(component: str) -> str:
    return _AUTH_PARAM_RE.sub("", component).lstrip("&")


def clear_auth_params_from_url(url: str) -> str:
    """Remove code/state/error/error_description/client_info from query and fragment."""
    parts = urlsplit(url)
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, _strip_auth_params(parts.query), _strip_auth_params(parts.fragment))
    )


class BootstrapSource(str, Enum):
    REDIRECT = "redirect"
    CACHE = "cache"
    SSO = "sso"
    NONE = "none"


@dataclass(frozen=True)
class BootstrapResult:
    account: Optional[Account]
    source: BootstrapSource = BootstrapSource.NONE


def install_account_tracking(client: IdentityClient, context: SessionContext) -> None:
    """Activate the account of every login/token success and remember it as the Login Hint."""

    def _on_event(event: AuthEvent) -> None:
        if event.event_type not in (EventType.LOGIN_SUCCESS, EventType.ACQUIRE_TOKEN_SUCCESS):
            return
        if event.account is None:
            return
        client.set_active_account(event.account)
        context.remember_login_hint(event.account.username)

    client.add_event_callback(_on_event)


class SessionBootstrap:
    """Idempotent per instance: every ensure_ready() awaits the same task."""

    def __init__(self, client: IdentityClient, context: SessionContext, login_scopes: Sequence[str] = ()) -> None:
        self.client = client
        self.context = context
        self.login_scopes = tuple(login_scopes)
        self._task: Optional[asyncio.Task] = None

    async def ensure_ready(self) -> BootstrapResult:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return await self._task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def _run(self) -> BootstrapResult:
        client, context = self.client, self.context
        await client.initialize()

        try:
            response = await client.handle_redirect_promise()
        except AuthError as exc:
            if exc.error_code != NO_TOKEN_REQUEST_CACHE_ERROR:
                raise
            logger.info("Redirect response had no matching request; clearing auth params from URL")
            context.replace_url(clear_auth_params_from_url(context.url))
            response = None

        if response is not None and response.account is not None:
            client.set_active_account(response.account)
            context.replace_url(clear_auth_params_from_url(context.url))
            logger.info("Signed in from redirect response: %s", response.account.username)
            return BootstrapResult(response.account, BootstrapSource.REDIRECT)

        accounts = client.get_all_accounts()
        if accounts:
            client.set_active_account(accounts[0])
            return BootstrapResult(accounts[0], BootstrapSource.CACHE)

        hint = context.login_hint
        if not hint:
            return BootstrapResult(None, BootstrapSource.NONE)

        try:
            sso = await client.sso_silent(LoginRequest(scopes=self.login_scopes, login_hint=hint))
        except Exception as exc:
            if not is_interaction_required(exc):
                raise
            logger.info("Silent SSO for %s needs interaction: %s", hint, exc)
            return BootstrapResult(None, BootstrapSource.NONE)

        if sso.account is None:
            return BootstrapResult(None, BootstrapSource.NONE)
        client.set_active_account(sso.account)
        return BootstrapResult(sso.account, BootstrapSource.SSO)
