"""Unit tests for auth/msal_client.py -- the msal binding of IdentityClient.

The msal application object is a MagicMock; these tests pin how responses
and errors from msal map onto AuthResult, the error classes and navigation.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from auth.bootstrap import SessionBootstrap
from auth.context import SessionContext
from auth.identity import (
    NO_TOKEN_REQUEST_CACHE_ERROR,
    Account,
    AuthError,
    EventType,
    InteractionRequiredError,
    InteractionStatus,
    LoginRequest,
    is_interaction_required,
)
from auth.msal_client import (
    ACTIVE_ACCOUNT_KEY,
    AUTH_FLOW_KEY,
    TOKEN_CACHE_KEY,
    MsalIdentityClient,
    auth_response_params,
)

_AUTHORITY = "https://login.microsoftonline.com/contoso.onmicrosoft.com"
_ALICE_ENTRY = {"home_account_id": "uid-alice.tid", "username": "alice@contoso.com", "name": "Alice"}
_ALICE = Account("uid-alice.tid", "alice@contoso.com", "Alice")


def _client(url: str = "http://localhost:8000/", accounts=None) -> tuple[MsalIdentityClient, MagicMock, SessionContext]:
    app = MagicMock()
    app.get_accounts.return_value = list(accounts or [])
    context = SessionContext(url=url)
    client = MsalIdentityClient(
        context,
        client_id="client-id",
        authority=_AUTHORITY,
        redirect_uri="http://localhost:8000/",
        scopes=("openid", "profile", "User.Read"),
        app=app,
    )
    return client, app, context


class TestAuthResponseParams:
    def test_query(self):
        assert auth_response_params("http://h/?code=abc&state=s") == {"code": "abc", "state": "s"}

    def test_fragment(self):
        assert auth_response_params("http://h/#error=access_denied&state=s")["error"] == "access_denied"

    def test_no_response(self):
        assert auth_response_params("http://h/dashboard?area=Dock") == {}


# ---------------------------------------------------------------------------
# TestHandleRedirect
# ---------------------------------------------------------------------------


class TestHandleRedirect:
    def test_plain_url_is_not_a_redirect(self):
        client, app, _ = _client()
        assert asyncio.run(client.handle_redirect_promise()) is None
        app.acquire_token_by_auth_code_flow.assert_not_called()

    def test_missing_flow_is_no_token_request_cache_error(self):
        client, _, _ = _client("http://localhost:8000/?code=abc&state=s")
        with pytest.raises(AuthError) as exc:
            asyncio.run(client.handle_redirect_promise())
        assert exc.value.error_code == NO_TOKEN_REQUEST_CACHE_ERROR
        assert client.interaction_status == InteractionStatus.NONE

    def test_unreadable_flow_is_no_token_request_cache_error(self):
        client, _, context = _client("http://localhost:8000/?code=abc&state=s")
        context.session_storage.set_item(AUTH_FLOW_KEY, "{broken")
        with pytest.raises(AuthError) as exc:
            asyncio.run(client.handle_redirect_promise())
        assert exc.value.error_code == NO_TOKEN_REQUEST_CACHE_ERROR

    def test_success_redeems_flow_and_emits(self):
        client, app, context = _client("http://localhost:8000/?code=abc&state=s", accounts=[_ALICE_ENTRY])
        context.session_storage.set_item(AUTH_FLOW_KEY, json.dumps({"state": "s"}))
        app.acquire_token_by_auth_code_flow.return_value = {
            "access_token": "token",
            "scope": "User.Read",
            "id_token_claims": {"preferred_username": "alice@contoso.com", "name": "Alice"},
        }
        events = []
        client.add_event_callback(events.append)

        result = asyncio.run(client.handle_redirect_promise())

        assert result.account == _ALICE
        assert result.access_token == "token"
        assert result.scopes == ("User.Read",)
        flow, params = app.acquire_token_by_auth_code_flow.call_args.args
        assert flow == {"state": "s"}
        assert params == {"code": "abc", "state": "s"}
        assert context.session_storage.get_item(AUTH_FLOW_KEY) is None
        assert [e.event_type for e in events] == [EventType.LOGIN_SUCCESS]

    def test_state_mismatch(self):
        client, app, context = _client("http://localhost:8000/?code=abc&state=other")
        context.session_storage.set_item(AUTH_FLOW_KEY, json.dumps({"state": "s"}))
        app.acquire_token_by_auth_code_flow.side_effect = ValueError("state missing from auth_code_flow")
        with pytest.raises(AuthError) as exc:
            asyncio.run(client.handle_redirect_promise())
        assert exc.value.error_code == "state_mismatch"

    def test_provider_error_mapped(self):
        client, app, context = _client("http://localhost:8000/?error=consent_required&state=s")
        context.session_storage.set_item(AUTH_FLOW_KEY, json.dumps({"state": "s"}))
        app.acquire_token_by_auth_code_flow.return_value = {
            "error": "consent_required",
            "error_description": "AADSTS65001",
        }
        with pytest.raises(InteractionRequiredError) as exc:
            asyncio.run(client.handle_redirect_promise())
        assert "AADSTS65001" in str(exc.value)


# ---------------------------------------------------------------------------
# TestRedirects
# ---------------------------------------------------------------------------


class TestRedirects:
    def test_login_redirect_saves_flow_and_navigates(self):
        client, app, context = _client()
        app.initiate_auth_code_flow.return_value = {
            "auth_uri": "https://login.example.test/authorize?x=1",
            "state": "s",
        }
        asyncio.run(client.login_redirect(LoginRequest(prompt="select_account")))

        assert context.pending_navigation == "https://login.example.test/authorize?x=1"
        assert json.loads(context.session_storage.get_item(AUTH_FLOW_KEY))["state"] == "s"
        args, kwargs = app.initiate_auth_code_flow.call_args
        assert args == (["User.Read"],)
        assert kwargs == {"redirect_uri": "http://localhost:8000/", "prompt": "select_account"}
        assert client.interaction_status == InteractionStatus.LOGIN

    def test_login_redirect_passes_hint(self):
        client, app, _ = _client()
        app.initiate_auth_code_flow.return_value = {"auth_uri": "https://login.example.test/a", "state": "s"}
        asyncio.run(client.login_redirect(LoginRequest(scopes=("User.Read",), login_hint="alice@contoso.com")))
        assert app.initiate_auth_code_flow.call_args.kwargs["login_hint"] == "alice@contoso.com"

    def test_flow_error_raises(self):
        client, app, context = _client()
        app.initiate_auth_code_flow.return_value = {"error": "invalid_scope", "error_description": "bad scope"}
        with pytest.raises(AuthError, match="bad scope"):
            asyncio.run(client.login_redirect(LoginRequest()))
        assert context.navigating is False

    def test_logout_redirect(self):
        client, app, context = _client(accounts=[_ALICE_ENTRY])
        client.set_active_account(_ALICE)
        asyncio.run(client.logout_redirect(_ALICE))
        app.remove_account.assert_called_once_with(_ALICE_ENTRY)
        assert context.pending_navigation == (
            f"{_AUTHORITY}/oauth2/v2.0/logout?post_logout_redirect_uri=http%3A%2F%2Flocalhost%3A8000%2F"
        )
        assert context.local_storage.get_item(ACTIVE_ACCOUNT_KEY) is None


# ---------------------------------------------------------------------------
# TestSilent
# ---------------------------------------------------------------------------


class TestSilent:
    def test_uncached_account_needs_login(self):
        client, _, _ = _client()
        with pytest.raises(InteractionRequiredError) as exc:
            asyncio.run(client.acquire_token_silent(["Sites.Read.All"], _ALICE))
        assert exc.value.error_code == "login_required"

    def test_no_cached_token(self):
        client, app, _ = _client(accounts=[_ALICE_ENTRY])
        app.acquire_token_silent_with_error.return_value = None
        with pytest.raises(InteractionRequiredError):
            asyncio.run(client.acquire_token_silent(["Sites.Read.All"], _ALICE))

    def test_invalid_grant_is_interaction_required(self):
        client, app, _ = _client(accounts=[_ALICE_ENTRY])
        app.acquire_token_silent_with_error.return_value = {"error": "invalid_grant", "error_description": "expired"}
        with pytest.raises(AuthError) as exc:
            asyncio.run(client.acquire_token_silent(["Sites.Read.All"], _ALICE))
        assert is_interaction_required(exc.value)

    def test_other_error_is_not_interaction(self):
        client, app, _ = _client(accounts=[_ALICE_ENTRY])
        app.acquire_token_silent_with_error.return_value = {"error": "temporarily_unavailable"}
        with pytest.raises(AuthError) as exc:
            asyncio.run(client.acquire_token_silent(["Sites.Read.All"], _ALICE))
        assert not is_interaction_required(exc.value)

    def test_success_emits_token_event(self):
        client, app, _ = _client(accounts=[_ALICE_ENTRY])
        app.acquire_token_silent_with_error.return_value = {"access_token": "t", "scope": "Sites.Read.All"}
        events = []
        client.add_event_callback(events.append)
        result = asyncio.run(client.acquire_token_silent(["openid", "Sites.Read.All"], _ALICE))
        assert result.access_token == "t"
        assert app.acquire_token_silent_with_error.call_args.args == (["Sites.Read.All"], _ALICE_ENTRY)
        assert events[0].event_type == EventType.ACQUIRE_TOKEN_SUCCESS

    def test_sso_without_cached_hint_account(self):
        client, _, _ = _client()
        with pytest.raises(InteractionRequiredError):
            asyncio.run(client.sso_silent(LoginRequest(login_hint="alice@contoso.com")))


class TestAccounts:
    def test_active_account_persisted_by_home_id(self):
        client, _, context = _client(accounts=[_ALICE_ENTRY])
        assert client.get_active_account() is None
        client.set_active_account(_ALICE)
        assert context.local_storage.get_item(ACTIVE_ACCOUNT_KEY) == "uid-alice.tid"
        assert client.get_active_account() == _ALICE

    def test_stale_active_account_ignored(self):
        client, _, context = _client()
        context.local_storage.set_item(ACTIVE_ACCOUNT_KEY, "uid-gone.tid")
        assert client.get_active_account() is None

    def test_unreadable_token_cache_discarded(self):
        context = SessionContext()
        context.local_storage.set_item(TOKEN_CACHE_KEY, "not json")
        client = MsalIdentityClient(context, "client-id", _AUTHORITY, "http://localhost:8000/", app=MagicMock())
        assert client.cache is not None


# ---------------------------------------------------------------------------
# TestNoticeUrl
# ---------------------------------------------------------------------------


class TestNoticeUrl:
    """The page's own ?notice= status code must pass through the bootstrap untouched."""

    NOTICE_URL = "http://localhost:8000/?notice=logout_failed"

    def test_notice_is_not_an_auth_response(self):
        assert auth_response_params(self.NOTICE_URL) == {}

    def test_bootstrap_keeps_notice_url(self):
        client, app, context = _client(self.NOTICE_URL)
        result = asyncio.run(SessionBootstrap(client, context, ("User.Read",)).ensure_ready())
        assert result.account is None
        assert context.url == self.NOTICE_URL
        assert context.url_replaced is False
        app.acquire_token_by_auth_code_flow.assert_not_called()

    def test_saved_flow_not_redeemed(self):
        """A flow left over from an earlier sign-in stays unused on a notice URL."""
        client, app, context = _client(self.NOTICE_URL)
        context.session_storage.set_item(AUTH_FLOW_KEY, json.dumps({"state": "s"}))
        asyncio.run(SessionBootstrap(client, context, ("User.Read",)).ensure_ready())
        app.acquire_token_by_auth_code_flow.assert_not_called()
        assert context.url == self.NOTICE_URL
