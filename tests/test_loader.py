"""Unit tests for lists/loader.py -- one dashboard mount's list load.

The Graph fetch is patched at lists.loader.fetch_all_list_items; tokens come
from a FakeIdentityClient behind a real TokenGateway.
"""

import asyncio
from unittest.mock import patch

from auth.context import SessionContext
from auth.gateway import TokenGateway
from auth.identity import InteractionRequiredError
from lists.graph import GraphError, ListFetchResult
from lists.loader import LIST_AUTOLOAD_HINT, DashboardLoader, ListSource
from tests.fakes import ALICE, FakeIdentityClient

_SOURCE = ListSource(hostname="contoso.sharepoint.com", site_path="sites/Quality", list_id="list-guid")
_FETCHED = ListFetchResult(
    site_id="site-1",
    items=[
        {"id": "1", "fields": {"Title": "Forklift bay", "Area": "Warehouse", "field_2": "Seiri"}},
        {"id": "2", "fields": {"Title": "Reception", "Area": "Office"}},
    ],
    pages=1,
)


def _loader(source: ListSource = _SOURCE, **script) -> tuple[DashboardLoader, FakeIdentityClient, SessionContext]:
    context = SessionContext()
    client = FakeIdentityClient(context, **script)
    return DashboardLoader(TokenGateway(client, context), context, source), client, context


class TestListSource:
    def test_configured(self):
        assert _SOURCE.configured is True
        assert ListSource("", "sites/Quality", "x").configured is False

    def test_from_settings(self):
        class _Settings:
            list_hostname = "h"
            list_site_path = "p"
            list_id = "l"
            list_scope_list = ["Sites.Read.All"]
            list_page_size = 50
            list_max_pages = 4
            list_field_map = {"Sub Area": "field_1"}

        source = ListSource.from_settings(_Settings())
        assert source.scopes == ("Sites.Read.All",)
        assert (source.page_size, source.max_pages) == (50, 4)
        assert source.field_map == {"Sub Area": "field_1"}


class TestDashboardLoader:
    def test_load_success(self):
        loader, client, _ = _loader()
        with patch("lists.loader.fetch_all_list_items", return_value=_FETCHED) as fetch:
            state = asyncio.run(loader.load(ALICE))

        assert state.loaded is True
        assert state.loading is False
        assert state.error == ""
        assert state.site_id == "site-1"
        assert [r.get("Title") for r in state.rows] == ["Forklift bay", "Reception"]
        assert state.rows[0].get("5S") == "Seiri"
        assert state.token_scopes == "Sites.Read.All"
        args = fetch.call_args.args
        assert args[:4] == ("opaque-token", "contoso.sharepoint.com", "sites/Quality", "list-guid")
        assert client.calls_named("acquire_token_silent") == [(("Sites.Read.All",), ALICE)]

    def test_unconfigured_source(self):
        loader, client, _ = _loader(ListSource("", "", ""))
        with patch("lists.loader.fetch_all_list_items") as fetch:
            state = asyncio.run(loader.load(ALICE))
        assert "not configured" in state.error
        fetch.assert_not_called()
        assert client.calls == []

    def test_no_account_is_an_error(self):
        loader, _, _ = _loader()
        with patch("lists.loader.fetch_all_list_items") as fetch:
            state = asyncio.run(loader.load(None))
        assert "Not signed in" in state.error
        fetch.assert_not_called()

    def test_interaction_required_redirects_quietly(self):
        loader, client, context = _loader(silent_error=InteractionRequiredError("consent", "consent_required"))
        with patch("lists.loader.fetch_all_list_items") as fetch:
            state = asyncio.run(loader.load(ALICE))
        assert state.error == ""
        assert state.loaded is False
        assert context.navigating is True
        fetch.assert_not_called()

        # The hint survives until a later load succeeds.
        after = DashboardLoader(loader.gateway, context, _SOURCE)
        assert after.resume_requested() is True
        assert after.resume_requested() is True

    def test_resume_hint_cleared_after_successful_load(self):
        loader, _, context = _loader()
        context.set_resume_hint(LIST_AUTOLOAD_HINT)
        with patch("lists.loader.fetch_all_list_items", return_value=_FETCHED):
            state = asyncio.run(loader.load(ALICE))
        assert state.loaded is True
        assert context.has_resume_hint(LIST_AUTOLOAD_HINT) is False

    def test_resume_hint_kept_when_load_fails(self):
        loader, _, context = _loader()
        context.set_resume_hint(LIST_AUTOLOAD_HINT)
        with patch("lists.loader.fetch_all_list_items", side_effect=GraphError("Graph error 503: busy", 503)):
            state = asyncio.run(loader.load(ALICE))
        assert state.error == "Graph error 503: busy"
        assert loader.resume_requested() is True

    def test_graph_error_shown(self):
        loader, _, _ = _loader()
        with patch("lists.loader.fetch_all_list_items", side_effect=GraphError("Graph error 403: denied", 403)):
            state = asyncio.run(loader.load(ALICE))
        assert state.error == "Graph error 403: denied"
        assert state.loading is False
        assert state.rows == []

    def test_unmounted_loader_does_nothing(self):
        loader, client, _ = _loader()
        loader.unmount()
        with patch("lists.loader.fetch_all_list_items") as fetch:
            state = asyncio.run(loader.load(ALICE))
        fetch.assert_not_called()
        assert client.calls == []
        assert state.loaded is False

    def test_unmount_during_fetch_discards_result(self):
        loader, _, _ = _loader()

        def fetch(*args):
            loader.unmount()
            assert args[-1].is_set()
            return _FETCHED

        with patch("lists.loader.fetch_all_list_items", side_effect=fetch):
            state = asyncio.run(loader.load(ALICE))
        assert state.rows == []
        assert state.loaded is False
        assert loader.mounted is False
