"""
lists/graph.py -- Microsoft Graph access to the audit SharePoint list.

Read-only. Pages are fetched sequentially: each @odata.nextLink is followed
only after the previous page arrived, up to max_pages, which bounds the
worst-case latency and memory of a load.

Blocking (requests); callers on the event loop run fetch_all_list_items() in
a worker thread and pass a threading.Event to cancel between pages.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

logger = logging.getLogger("auditboard.lists.graph")

GRAPH_BASE = "https://graph.microsoft.com/v1.0"

# Module-level session shared across calls for connection pooling.
# Graph and its nextLinks never need more than a couple of hops.
_session = requests.Session()
_session.max_redirects = 3

_TIMEOUT = 10


class GraphError(Exception):
    """Graph answered with a non-2xx status or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchCancelled(Exception):
    """The caller cancelled the fetch between two page requests."""


@dataclass
class ListFetchResult:
    site_id: str
    items: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0


def site_by_path_url(hostname: str, site_path: str) -> str:
    """Site-by-path address. Graph expects the trailing ':/'."""
    clean_host = (hostname or "").strip()
    clean_path = (site_path or "").strip().strip("/")
    return f"{GRAPH_BASE}/sites/{clean_host}:/{clean_path}:/"


def list_items_url(site_id: str, list_id: str, top: int = 200) -> str:
    # List GUIDs are often copied with surrounding braces.
    clean_list_id = (list_id or "").strip().lstrip("{").rstrip("}")
    return f"{GRAPH_BASE}/sites/{site_id}/lists/{clean_list_id}/items?$expand=fields&$top={top}"


def graph_get_json(access_token: str, url: str) -> Any:
    """GET url with a bearer token. Non-2xx raises GraphError("Graph error {status}: {body}")."""
    resp = _session.get(url, headers={"Authorization": f"Bearer {access_token}"}, timeout=_TIMEOUT)
    if not resp.ok:
        raise GraphError(f"Graph error {resp.status_code}: {resp.text}", resp.status_code)
    try:
        return resp.json()
    except ValueError as exc:
        raise GraphError(f"Graph returned a non-JSON body for {url}") from exc


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise FetchCancelled()


def fetch_all_list_items(
    access_token: str,
    hostname: str,
    site_path: str,
    list_id: str,
    page_size: int = 200,
    max_pages: int = 20,
    cancel: Optional[threading.Event] = None,
) -> ListFetchResult:
    """Resolve the site id, then collect every list item page by page."""
    _check_cancel(cancel)
    site = graph_get_json(access_token, site_by_path_url(hostname, site_path))
    site_id = site.get("id") if isinstance(site, dict) else None
    if not site_id:
        raise GraphError("Could not resolve the site id from Graph.")

    result = ListFetchResult(site_id=site_id)
    next_url: Optional[str] = list_items_url(site_id, list_id, page_size)
    while next_url and result.pages < max_pages:
        _check_cancel(cancel)
        page = graph_get_json(access_token, next_url)
        result.pages += 1
        if not isinstance(page, dict):
            break
        value = page.get("value")
        if isinstance(value, list):
            result.items.extend(value)
        next_url = page.get("@odata.nextLink")

    if next_url:
        logger.warning("Stopped after %d pages; list %s has more items", max_pages, list_id)
    logger.info("Fetched %d items from site %s in %d page(s)", len(result.items), site_id, result.pages)
    return result
