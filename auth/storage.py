"""
auth/storage.py -- The two browser storage surfaces and their soft-fail accessor.

Two independent key/value surfaces back the session state:

  Session storage -- SessionCookieStore over the signed Starlette session
      cookie. Lives as long as the browser session (no max-age), so a
      restored tab can bring it back.

  Durable storage -- DurableStore, a SQLAlchemy Core table keyed by a
      per-browser profile id. Survives restarts.

Either surface may fail on any call (cookie too large, database locked,
session middleware missing). SafeStorage is the only accessor the rest of the
package uses: every backend failure is logged at DEBUG and the operation falls
back to an in-memory surrogate owned by that SafeStorage instance. Same-page
reads still see same-page writes; only cross-reload durability is lost.

Layer rule: no imports from api/, web/, core/ or lists/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Protocol

from sqlalchemy import Column, MetaData, String, Table, Text, UniqueConstraint, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("auditboard.auth.storage")


class KeyValueStore(Protocol):
    """Minimal storage surface. Any method may raise."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStore:
    """Plain dict store. Used for tests and as the SafeStorage fallback."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class SessionCookieStore:
    """View over request.session (Starlette SessionMiddleware)."""

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self._session = session

    def get_item(self, key: str) -> Optional[str]:
        value = self._session.get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        self._session[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._session.pop(key, None)


# ---------------------------------------------------------------------------
# Durable storage
# ---------------------------------------------------------------------------

_metadata = MetaData()

_local_storage = Table(
    "local_storage",
    _metadata,
    Column("profile_id", String(64), nullable=False),
    Column("key", String(255), nullable=False),
    Column("value", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("profile_id", "key", name="uq_local_storage_profile_key"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DurableStore:
    """Repository for the local_storage table.

    Usage:
        store = DurableStore("sqlite:///auditboard_storage.db")
        profile = store.for_profile("3f1c...")
        profile.set_item("auditboard:msal_login_hint", "ana@contoso.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database.
            engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite") and "poolclass" not in engine_kwargs:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def get(self, profile_id: str, key: str) -> Optional[str]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _local_storage.select().where(
                    (_local_storage.c.profile_id == profile_id) & (_local_storage.c.key == key)
                )
            ).fetchone()
        return None if row is None else row.value

    def set(self, profile_id: str, key: str, value: str) -> None:
        where = (_local_storage.c.profile_id == profile_id) & (_local_storage.c.key == key)
        with self.engine.begin() as conn:
            updated = conn.execute(_local_storage.update().where(where).values(value=value, updated_at=_now_iso()))
            if updated.rowcount == 0:
                conn.execute(
                    _local_storage.insert().values(profile_id=profile_id, key=key, value=value, updated_at=_now_iso())
                )

    def delete(self, profile_id: str, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _local_storage.delete().where(
                    (_local_storage.c.profile_id == profile_id) & (_local_storage.c.key == key)
                )
            )

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def for_profile(self, profile_id: str) -> "ProfileStore":
        return ProfileStore(self, profile_id)

    def close(self) -> None:
        self.engine.dispose()


class ProfileStore:
    """KeyValueStore view of DurableStore scoped to one browser profile."""

    def __init__(self, store: DurableStore, profile_id: str) -> None:
        self._store = store
        self.profile_id = profile_id

    def get_item(self, key: str) -> Optional[str]:
        return self._store.get(self.profile_id, key)

    def set_item(self, key: str, value: str) -> None:
        self._store.set(self.profile_id, key, str(value))

    def remove_item(self, key: str) -> None:
        self._store.delete(self.profile_id, key)


# ---------------------------------------------------------------------------
# Soft-fail accessor
# ---------------------------------------------------------------------------


class SafeStorage:
    """Wrap a KeyValueStore so that no storage failure ever reaches the caller.

    get_item() prefers the backend and falls back to the in-memory surrogate
    when the backend raises or has nothing. set_item() writes the surrogate
    only when the backend write fails. remove_item() always clears the
    surrogate so a stale fallback value cannot resurface.
    """

    def __init__(self, name: str, backend: Optional[KeyValueStore]) -> None:
        self.name = name
        self._backend = backend
        self._fallback = MemoryStore()

    def get_item(self, key: str) -> Optional[str]:
        value: Optional[str] = None
        if self._backend is not None:
            try:
                value = self._backend.get_item(key)
            except Exception as exc:
                logger.debug("%s storage read failed for %s: %s", self.name, key, exc)
        if value is None:
            value = self._fallback.get_item(key)
        return value

    def set_item(self, key: str, value: str) -> None:
        if self._backend is None:
            self._fallback.set_item(key, value)
            return
        try:
            self._backend.set_item(key, value)
        except Exception as exc:
            logger.debug("%s storage write failed for %s: %s", self.name, key, exc)
            self._fallback.set_item(key, value)

    def remove_item(self, key: str) -> None:
        self._fallback.remove_item(key)
        if self._backend is None:
            return
        try:
            self._backend.remove_item(key)
        except Exception as exc:
            logger.debug("%s storage remove failed for %s: %s", self.name, key, exc)
