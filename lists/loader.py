"""
lists/loader.py -- Loads the audit list for one dashboard mount.

  account -> TokenGateway.fetch_as_user(Sites.Read.All)
          -> fetch_all_list_items() in a worker thread
          -> parse_list_items() -> to_logical_rows() -> state.rows

A RedirectingError means the gateway started an interactive redirect; the
load is abandoned without an error. Any other failure is shown to the user
as state.error.

unmount() cancels the in-flight fetch before its next page request and turns
every later state update into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from auth.context import SessionContext
from auth.gateway import TokenGateway
from auth.identity import Account, RedirectingError
from core.models import DEFAULT_FIELD_MAP, LogicalRow
from core.normalizer import parse_list_items, to_logical_rows
from lists.graph import FetchCancelled, fetch_all_list_items

logger = logging.getLogger("auditboard.lists.loader")

LIST_AUTOLOAD_HINT = "auditboard:list_autoload"


@dataclass(frozen=True)
class ListSource:
    hostname: str
    site_path: str
    list_id: str
    scopes: tuple[str, ...] = ("Sites.Read.All",)
    page_size: int = 200
    max_pages: int = 20
    field_map: Mapping[str, Any] = field(default_factory=lambda: dict(DEFAULT_FIELD_MAP))

    @property
    def configured(self) -> bool:
        return bool(self.hostname and self.site_path and self.list_id)

    @classmethod
    def from_settings(cls, settings: Any) -> "ListSource":
        return cls(
            hostname=settings.list_hostname,
            site_path=settings.list_site_path,
            list_id=settings.list_id,
            scopes=tuple(settings.list_scope_list),
            page_size=settings.list_page_size,
            max_pages=settings.list_max_pages,
            field_map=dict(settings.list_field_map),
        )


@dataclass
class LoadState:
    loading: bool = False
    loaded: bool = False
    error: str = ""
    site_id: str = ""
    rows: list[LogicalRow] = field(default_factory=list)
    token_scopes: str = ""


class DashboardLoader:
    def __init__(self, gateway: TokenGateway, context: SessionContext, source: ListSource) -> None:
        self.gateway = gateway
        self.context = context
        self.source = source
        self.state = LoadState()
        self._mounted = True
        self._cancel = threading.Event()

    @property
    def mounted(self) -> bool:
        return self._mounted

    def _update(self, **changes: Any) -> None:
        if not self._mounted:
            return
        for name, value in changes.items():
            setattr(self.state, name, value)

    def resume_requested(self) -> bool:
        """True after a sign-in redirect started by a load, until a load succeeds."""
        return self.context.has_resume_hint(LIST_AUTOLOAD_HINT)

    async def load(self, account: Optional[Account], scopes: Optional[Sequence[str]] = None) -> LoadState:
        if not self._mounted:
            return self.state
        if not self.source.configured:
            self._update(error="The audit list is not configured (LIST_HOSTNAME, LIST_SITE_PATH, LIST_ID).")
            return self.state

        self._update(loading=True, error="")
        try:
            token = await self.gateway.fetch_as_user(
                account, scopes or self.source.scopes, resume_hint_key=LIST_AUTOLOAD_HINT
            )
            self._update(token_scopes=" ".join(token.granted_scopes))
            fetched = await asyncio.to_thread(
                fetch_all_list_items,
                token.access_token,
                self.source.hostname,
                self.source.site_path,
                self.source.list_id,
                self.source.page_size,
                self.source.max_pages,
                self._cancel,
            )
            rows = to_logical_rows(parse_list_items(fetched.items), self.source.field_map)
            self._update(site_id=fetched.site_id, rows=rows, loaded=True)
            if self._mounted:
                self.context.clear_resume_hint(LIST_AUTOLOAD_HINT)
        except RedirectingError:
            logger.debug("List load abandoned: redirecting to sign-in")
        except FetchCancelled:
            logger.debug("List load cancelled by unmount")
        except Exception as exc:
            logger.warning("List load failed: %s", exc)
            self._update(error=str(exc) or exc.__class__.__name__)
        finally:
            self._update(loading=False)
        return self.state

    def unmount(self) -> None:
        self._mounted = False
        self._cancel.set()
