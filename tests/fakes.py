"""
tests/fakes.py -- Scripted IdentityClient used by unit and route tests.

FakeIdentityClient records every call in .calls and navigates the
SessionContext the way a real redirect would, so tests can assert on both
the calls made and the URL the page would leave for.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from auth.context import SessionContext
from auth.identity import (
    Account,
    AuthEvent,
    AuthResult,
    EventType,
    InteractionStatus,
    LoginRequest,
)

LOGIN_URL = "https://login.example.test/authorize"
LOGOUT_URL = "https://login.example.test/logout"

ALICE = Account(home_account_id="uid-alice.tid", username="alice@contoso.com", name="Alice")
BOB = Account(home_account_id="uid-bob.tid", username="bob@contoso.com", name="Bob")


class FakeIdentityClient:
    def __init__(
        self,
        context: Optional[SessionContext] = None,
        accounts: Sequence[Account] = (),
        active: Optional[Account] = None,
        redirect_result: Optional[AuthResult] = None,
        redirect_error: Optional[BaseException] = None,
        sso_result: Optional[AuthResult] = None,
        sso_error: Optional[BaseException] = None,
        silent_result: Optional[AuthResult] = None,
        silent_error: Optional[BaseException] = None,
        login_error: Optional[BaseException] = None,
        logout_error: Optional[BaseException] = None,
        interaction_status: InteractionStatus = InteractionStatus.NONE,
    ) -> None:
        self.context = context
        self.accounts = list(accounts)
        self.active = active
        self.redirect_result = redirect_result
        self.redirect_error = redirect_error
        self.sso_result = sso_result
        self.sso_error = sso_error
        self.silent_result = silent_result
        self.silent_error = silent_error
        self.login_error = login_error
        self.logout_error = logout_error
        self.interaction_status = interaction_status
        self.calls: list[tuple[str, Any]] = []
        self.callbacks: list = []

    def calls_named(self, name: str) -> list:
        return [args for call, args in self.calls if call == name]

    def emit(self, event: AuthEvent) -> None:
        for callback in list(self.callbacks):
            callback(event)

    async def initialize(self) -> None:
        self.calls.append(("initialize", None))

    async def handle_redirect_promise(self) -> Optional[AuthResult]:
        self.calls.append(("handle_redirect_promise", None))
        if self.redirect_error is not None:
            raise self.redirect_error
        if self.redirect_result is not None and self.redirect_result.account is not None:
            self.emit(AuthEvent(EventType.LOGIN_SUCCESS, self.redirect_result.account))
        return self.redirect_result

    async def acquire_token_silent(self, scopes: Sequence[str], account: Account) -> AuthResult:
        self.calls.append(("acquire_token_silent", (tuple(scopes), account)))
        if self.silent_error is not None:
            raise self.silent_error
        return self.silent_result or AuthResult(account=account, access_token="opaque-token", scopes=tuple(scopes))

    async def acquire_token_redirect(self, scopes: Sequence[str], account: Optional[Account]) -> None:
        self.calls.append(("acquire_token_redirect", (tuple(scopes), account)))
        self.interaction_status = InteractionStatus.ACQUIRE_TOKEN
        if self.context is not None:
            self.context.navigate(f"{LOGIN_URL}?flow=acquire")

    async def login_redirect(self, request: LoginRequest) -> None:
        self.calls.append(("login_redirect", request))
        if self.login_error is not None:
            raise self.login_error
        self.interaction_status = InteractionStatus.LOGIN
        if self.context is not None:
            self.context.navigate(LOGIN_URL)

    async def logout_redirect(self, account: Optional[Account]) -> None:
        self.calls.append(("logout_redirect", account))
        if self.logout_error is not None:
            raise self.logout_error
        self.active = None
        if self.context is not None:
            self.context.navigate(LOGOUT_URL)

    async def sso_silent(self, request: LoginRequest) -> AuthResult:
        self.calls.append(("sso_silent", request))
        if self.sso_error is not None:
            raise self.sso_error
        return self.sso_result or AuthResult(account=None)

    def get_all_accounts(self) -> list[Account]:
        return list(self.accounts)

    def get_active_account(self) -> Optional[Account]:
        return self.active

    def set_active_account(self, account: Optional[Account]) -> None:
        self.calls.append(("set_active_account", account))
        self.active = account

    def add_event_callback(self, callback) -> None:
        self.callbacks.append(callback)


@dataclass
class IdentityScript:
    """Per-test script for the identity factory installed on app.state.

    Every request builds a fresh FakeIdentityClient from the current script,
    the same way every page load builds a fresh msal client.
    """

    accounts: list = field(default_factory=list)
    redirect_result: Optional[AuthResult] = None
    redirect_error: Optional[BaseException] = None
    sso_error: Optional[BaseException] = None
    silent_error: Optional[BaseException] = None
    login_error: Optional[BaseException] = None
    logout_error: Optional[BaseException] = None
    construct_error: Optional[BaseException] = None
    clients: list = field(default_factory=list)

    def build(self, context: SessionContext) -> FakeIdentityClient:
        if self.construct_error is not None:
            raise self.construct_error
        client = FakeIdentityClient(
            context,
            accounts=self.accounts,
            redirect_result=self.redirect_result,
            redirect_error=self.redirect_error,
            sso_error=self.sso_error,
            silent_error=self.silent_error,
            login_error=self.login_error,
            logout_error=self.logout_error,
        )
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeIdentityClient:
        return self.clients[-1]
