"""
auth/context.py -- Per-page session context.

One SessionContext is built for every page request (auth/dependencies.py)
and handed to every component that needs shared session state. It owns the
two storage surfaces, the URL surface, and the only accessors allowed to
touch the Login-Attempt Flag, the Login Hint and resume-after-redirect hints.

Nothing here is module-level state: two contexts never share a fallback
store, and a context is never torn down before its page is done.

Layer rule: no imports from api/, web/, core/ or lists/.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

from auth.storage import MemoryStore, SafeStorage

LOGIN_ATTEMPTED_KEY = "auditboard:auto_login_attempted"
LOGIN_HINT_KEY = "auditboard:msal_login_hint"
SIGNED_OUT_KEY = "auditboard:signed_out"
FLASH_ERROR_KEY = "auditboard:flash_error"


class SessionContext:
    def __init__(
        self,
        session_storage: Optional[SafeStorage] = None,
        local_storage: Optional[SafeStorage] = None,
        url: str = "http://localhost:8000/",
        redirect_uri: str = "",
        secure_context: Optional[bool] = None,
    ) -> None:
        self.session_storage = session_storage or SafeStorage("session", MemoryStore())
        self.local_storage = local_storage or SafeStorage("local", MemoryStore())
        self.url = url
        self.redirect_uri = redirect_uri or url
        parts = urlsplit(url)
        self.origin = f"{parts.scheme}://{parts.netloc}"
        if secure_context is None:
            secure_context = parts.scheme == "https" or parts.hostname in ("localhost", "127.0.0.1")
        self.secure_context = secure_context
        self.url_replaced = False
        self.pending_navigation: Optional[str] = None

    # ------------------------------------------------------------------
    # URL surface
    # ------------------------------------------------------------------

    def replace_url(self, new_url: str) -> None:
        """history.replaceState equivalent: change the visible URL, no navigation."""
        if new_url != self.url:
            self.url = new_url
            self.url_replaced = True

    def navigate(self, url: str) -> None:
        """Full navigation. The first call wins; the page is unloading after it."""
        if self.pending_navigation is None:
            self.pending_navigation = url

    @property
    def navigating(self) -> bool:
        return self.pending_navigation is not None

    # ------------------------------------------------------------------
    # Login-Attempt Flag (session storage)
    # ------------------------------------------------------------------

    @property
    def login_attempted(self) -> bool:
        return self.session_storage.get_item(LOGIN_ATTEMPTED_KEY) == "1"

    def mark_login_attempted(self) -> None:
        self.session_storage.set_item(LOGIN_ATTEMPTED_KEY, "1")

    def clear_login_attempted(self) -> None:
        self.session_storage.remove_item(LOGIN_ATTEMPTED_KEY)

    # ------------------------------------------------------------------
    # Login Hint (durable storage)
    # ------------------------------------------------------------------

    @property
    def login_hint(self) -> Optional[str]:
        return self.local_storage.get_item(LOGIN_HINT_KEY) or None

    def remember_login_hint(self, username: str) -> None:
        if username:
            self.local_storage.set_item(LOGIN_HINT_KEY, username)

    def clear_login_hint(self) -> None:
        self.local_storage.remove_item(LOGIN_HINT_KEY)

    # ------------------------------------------------------------------
    # Resume-after-redirect hints (session storage)
    # ------------------------------------------------------------------

    def set_resume_hint(self, key: str) -> None:
        self.session_storage.set_item(key, "1")

    def has_resume_hint(self, key: str) -> bool:
        return self.session_storage.get_item(key) == "1"

    def clear_resume_hint(self, key: str) -> None:
        self.session_storage.remove_item(key)

    # ------------------------------------------------------------------
    # Sign-out marker and flashed errors (session storage)
    # ------------------------------------------------------------------

    @property
    def signed_out(self) -> bool:
        return self.session_storage.get_item(SIGNED_OUT_KEY) == "1"

    def mark_signed_out(self) -> None:
        """Set after an explicit logout; auto sign-in stays off until a manual sign-in."""
        self.session_storage.set_item(SIGNED_OUT_KEY, "1")

    def clear_signed_out(self) -> None:
        self.session_storage.remove_item(SIGNED_OUT_KEY)

    def flash_error(self, message: str) -> None:
        """Carry an error message across one redirect."""
        if message:
            self.session_storage.set_item(FLASH_ERROR_KEY, message)

    def pop_flash_error(self) -> str:
        message = self.session_storage.get_item(FLASH_ERROR_KEY) or ""
        if message:
            self.session_storage.remove_item(FLASH_ERROR_KEY)
        return message
