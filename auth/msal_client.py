"""
auth/msal_client.py -- IdentityClient implementation over msal.

Maps the redirect-based browser flow onto msal's auth-code-flow helpers:

  login_redirect / acquire_token_redirect
      initiate_auth_code_flow() -> flow dict saved in session storage (the
      "request cache") -> context.navigate(flow["auth_uri"]).

  handle_redirect_promise
      If the current URL carries an auth response, pop the saved flow and
      redeem it with acquire_token_by_auth_code_flow(). No saved flow means
      session storage was cleared mid-flow: raise no_token_request_cache_error
      so bootstrap can strip the URL and carry on.

  acquire_token_silent / sso_silent
      acquire_token_silent_with_error() against the cached account. msal has
      no hidden-iframe SSO, so sso_silent resolves the hinted username in the
      token cache and fails with login_required when it is not there.

The SerializableTokenCache is persisted in durable storage after every call
that changes it. Blocking msal calls run in a worker thread.

Layer rule: no imports from api/, web/, core/ or lists/.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Sequence
from urllib.parse import parse_qsl, quote, urlsplit

import msal

from auth.context import SessionContext
from auth.identity import (
    INTERACTION_REQUIRED_CODES,
    NO_TOKEN_REQUEST_CACHE_ERROR,
    Account,
    AuthError,
    AuthEvent,
    AuthResult,
    EventCallback,
    EventType,
    InteractionRequiredError,
    InteractionStatus,
    LoginRequest,
)

logger = logging.getLogger("auditboard.auth.msal")

TOKEN_CACHE_KEY = "auditboard:msal_token_cache"
ACTIVE_ACCOUNT_KEY = "auditboard:msal_active_account"
AUTH_FLOW_KEY = "auditboard:msal_auth_flow"

# msal adds these itself and rejects them when passed explicitly.
_RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access"})

_AUTH_RESPONSE_PARAMS = ("code", "error")


def _filter_scopes(scopes: Sequence[str]) -> list[str]:
    return [s for s in scopes if s and s not in _RESERVED_SCOPES]


def _granted_scopes(result: dict) -> tuple[str, ...]:
    scope = result.get("scope") or ""
    if isinstance(scope, str):
        return tuple(scope.split())
    return tuple(scope)


def _account_from_msal(entry: dict) -> Account:
    return Account(
        home_account_id=entry.get("home_account_id", ""),
        username=entry.get("username", ""),
        name=entry.get("name", "") or "",
    )


def auth_response_params(url: str) -> dict[str, str]:
    """Auth response parameters from the URL query, else its fragment."""
    parts = urlsplit(url)
    for component in (parts.query, parts.fragment):
        params = dict(parse_qsl(component, keep_blank_values=True))
        if any(p in params for p in _AUTH_RESPONSE_PARAMS):
            return params
    return {}


def _error_from_result(result: dict, silent: bool = False) -> AuthError:
    code = result.get("error", "") or "unknown_error"
    message = result.get("error_description") or code
    if code in INTERACTION_REQUIRED_CODES:
        return InteractionRequiredError(message, code)
    if silent and code == "invalid_grant":
        # Expired or revoked refresh token: the user has to sign in again.
        return InteractionRequiredError(message, "interaction_required")
    return AuthError(message, code)


class MsalIdentityClient:
    def __init__(
        self,
        context: SessionContext,
        client_id: str,
        authority: str,
        redirect_uri: str,
        client_secret: str = "",
        post_logout_redirect_uri: str = "",
        scopes: Sequence[str] = (),
        app: Any = None,
    ) -> None:
        self.context = context
        self.authority = authority.rstrip("/")
        self.redirect_uri = redirect_uri
        self.post_logout_redirect_uri = post_logout_redirect_uri or redirect_uri
        self.scopes = tuple(scopes)
        self.interaction_status = InteractionStatus.NONE
        self._callbacks: list[EventCallback] = []

        self.cache = msal.SerializableTokenCache()
        serialized = context.local_storage.get_item(TOKEN_CACHE_KEY)
        if serialized:
            try:
                self.cache.deserialize(serialized)
            except ValueError as exc:
                logger.debug("Discarding unreadable token cache: %s", exc)

        if app is None:
            if client_secret:
                app = msal.ConfidentialClientApplication(
                    client_id,
                    client_credential=client_secret,
                    authority=self.authority,
                    token_cache=self.cache,
                )
            else:
                app = msal.PublicClientApplication(client_id, authority=self.authority, token_cache=self.cache)
        self.app = app

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persist_cache(self) -> None:
        if self.cache.has_state_changed:
            self.context.local_storage.set_item(TOKEN_CACHE_KEY, self.cache.serialize())
            self.cache.has_state_changed = False

    def _emit(self, event_type: EventType, account: Optional[Account]) -> None:
        event = AuthEvent(event_type=event_type, account=account)
        for callback in list(self._callbacks):
            callback(event)

    def _msal_accounts(self, username: Optional[str] = None) -> list[dict]:
        return list(self.app.get_accounts(username=username) or [])

    def _find_msal_account(self, account: Account) -> Optional[dict]:
        for entry in self._msal_accounts():
            if entry.get("home_account_id") == account.home_account_id:
                return entry
        return None

    def _result_account(self, result: dict) -> Optional[Account]:
        claims = result.get("id_token_claims") or {}
        username = claims.get("preferred_username", "")
        entries = self._msal_accounts(username=username) if username else self._msal_accounts()
        if entries:
            account = _account_from_msal(entries[0])
            if not account.name and claims.get("name"):
                account = Account(account.home_account_id, account.username, claims["name"])
            return account
        if claims.get("oid"):
            return Account(
                home_account_id=f"{claims['oid']}.{claims.get('tid', '')}",
                username=username,
                name=claims.get("name", ""),
            )
        return None

    def _to_auth_result(self, result: dict, account: Optional[Account]) -> AuthResult:
        return AuthResult(
            account=account,
            access_token=result.get("access_token", ""),
            scopes=_granted_scopes(result),
            id_token_claims=result.get("id_token_claims") or {},
        )

    async def _start_redirect(self, scopes: Sequence[str], login_hint: Optional[str], prompt: Optional[str]) -> None:
        kwargs: dict[str, Any] = {"redirect_uri": self.redirect_uri}
        if login_hint:
            kwargs["login_hint"] = login_hint
        if prompt:
            kwargs["prompt"] = prompt
        flow = await asyncio.to_thread(self.app.initiate_auth_code_flow, _filter_scopes(scopes), **kwargs)
        if "error" in flow:
            raise _error_from_result(flow)
        self.context.session_storage.set_item(AUTH_FLOW_KEY, json.dumps(flow))
        self.context.navigate(flow["auth_uri"])

    # ------------------------------------------------------------------
    # IdentityClient
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        self.interaction_status = InteractionStatus.NONE

    async def handle_redirect_promise(self) -> Optional[AuthResult]:
        params = auth_response_params(self.context.url)
        if not params:
            return None

        self.interaction_status = InteractionStatus.HANDLE_REDIRECT
        try:
            raw_flow = self.context.session_storage.get_item(AUTH_FLOW_KEY)
            if not raw_flow:
                raise AuthError(
                    "No cached authorization request matches the redirect response.",
                    NO_TOKEN_REQUEST_CACHE_ERROR,
                )
            self.context.session_storage.remove_item(AUTH_FLOW_KEY)
            try:
                flow = json.loads(raw_flow)
            except ValueError as exc:
                raise AuthError("Cached authorization request is unreadable.", NO_TOKEN_REQUEST_CACHE_ERROR) from exc

            try:
                result = await asyncio.to_thread(self.app.acquire_token_by_auth_code_flow, flow, params)
            except ValueError as exc:
                # msal raises ValueError on state mismatch between flow and response.
                raise AuthError(str(exc), "state_mismatch") from exc

            if "error" in result:
                raise _error_from_result(result)

            self._persist_cache()
            account = self._result_account(result)
            auth_result = self._to_auth_result(result, account)
            self._emit(EventType.LOGIN_SUCCESS, account)
            return auth_result
        finally:
            self.interaction_status = InteractionStatus.NONE

    async def acquire_token_silent(self, scopes: Sequence[str], account: Account) -> AuthResult:
        entry = self._find_msal_account(account)
        if entry is None:
            raise InteractionRequiredError("Account is not in the token cache.", "login_required")
        result = await asyncio.to_thread(self.app.acquire_token_silent_with_error, _filter_scopes(scopes), entry)
        if not result:
            raise InteractionRequiredError("No cached token for the requested scopes.", "interaction_required")
        if "error" in result:
            raise _error_from_result(result, silent=True)
        self._persist_cache()
        self._emit(EventType.ACQUIRE_TOKEN_SUCCESS, account)
        return self._to_auth_result(result, account)

    async def acquire_token_redirect(self, scopes: Sequence[str], account: Optional[Account]) -> None:
        self.interaction_status = InteractionStatus.ACQUIRE_TOKEN
        await self._start_redirect(scopes, account.username if account else None, None)

    async def login_redirect(self, request: LoginRequest) -> None:
        self.interaction_status = InteractionStatus.LOGIN
        await self._start_redirect(request.scopes or self.scopes, request.login_hint, request.prompt)

    async def logout_redirect(self, account: Optional[Account]) -> None:
        self.interaction_status = InteractionStatus.LOGOUT
        account = account or self.get_active_account()
        if account is not None:
            entry = self._find_msal_account(account)
            if entry is not None:
                await asyncio.to_thread(self.app.remove_account, entry)
                self._persist_cache()
        self.set_active_account(None)
        self._emit(EventType.LOGOUT_SUCCESS, account)
        logout_url = f"{self.authority}/oauth2/v2.0/logout"
        if self.post_logout_redirect_uri:
            logout_url += f"?post_logout_redirect_uri={quote(self.post_logout_redirect_uri, safe='')}"
        self.context.navigate(logout_url)

    async def sso_silent(self, request: LoginRequest) -> AuthResult:
        entries = self._msal_accounts(username=request.login_hint) if request.login_hint else []
        if not entries:
            raise InteractionRequiredError("No cached session for the hinted account.", "login_required")
        account = _account_from_msal(entries[0])
        return await self.acquire_token_silent(request.scopes or self.scopes, account)

    def get_all_accounts(self) -> list[Account]:
        return [_account_from_msal(entry) for entry in self._msal_accounts()]

    def get_active_account(self) -> Optional[Account]:
        home_account_id = self.context.local_storage.get_item(ACTIVE_ACCOUNT_KEY)
        if not home_account_id:
            return None
        for account in self.get_all_accounts():
            if account.home_account_id == home_account_id:
                return account
        return None

    def set_active_account(self, account: Optional[Account]) -> None:
        if account is None:
            self.context.local_storage.remove_item(ACTIVE_ACCOUNT_KEY)
        else:
            self.context.local_storage.set_item(ACTIVE_ACCOUNT_KEY, account.home_account_id)

    def add_event_callback(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)
