"""
auth/identity.py -- Contract between the session components and the identity client.

The session components (gateway, bootstrap, guard) only depend on the
IdentityClient protocol defined here. auth/msal_client.py binds it to msal;
tests bind it to a scripted fake.

Dataclasses only; no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

NO_TOKEN_REQUEST_CACHE_ERROR = "no_token_request_cache_error"

# Error codes that mean "the user has to interact", as opposed to a real failure.
INTERACTION_REQUIRED_CODES = frozenset({"login_required", "interaction_required", "consent_required"})


@dataclass(frozen=True)
class Account:
    """A signed-in identity. home_account_id is stable per user and tenant."""

    home_account_id: str
    username: str = ""
    name: str = ""


@dataclass(frozen=True)
class LoginRequest:
    scopes: tuple[str, ...] = ()
    login_hint: Optional[str] = None
    prompt: Optional[str] = None  # "select_account" when no hint is known


@dataclass(frozen=True)
class AuthResult:
    account: Optional[Account]
    access_token: str = ""
    scopes: tuple[str, ...] = ()
    id_token_claims: dict[str, Any] = field(default_factory=dict, compare=False)


class EventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    ACQUIRE_TOKEN_SUCCESS = "acquire_token_success"
    LOGOUT_SUCCESS = "logout_success"


@dataclass(frozen=True)
class AuthEvent:
    event_type: EventType
    account: Optional[Account] = None


class InteractionStatus(str, Enum):
    NONE = "none"
    STARTUP = "startup"
    HANDLE_REDIRECT = "handleRedirect"
    LOGIN = "login"
    ACQUIRE_TOKEN = "acquireToken"
    LOGOUT = "logout"


EventCallback = Callable[[AuthEvent], None]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Identity failure carrying the provider's error code."""

    def __init__(self, message: str, error_code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        if self.error_code and self.error_code not in self.message:
            return f"{self.error_code}: {self.message}"
        return self.message


class InteractionRequiredError(AuthError):
    """Silent acquisition needs the user; recoverable by redirect."""


class RedirectingError(Exception):
    """The page is navigating to the identity provider.

    Not an error for the user: the operation that raised it is abandoned and
    the caller should stop without rendering a failure.
    """

    def __init__(self, url: str = "") -> None:
        super().__init__("Redirecting to sign-in.")
        self.url = url


def is_interaction_required(exc: BaseException) -> bool:
    if isinstance(exc, InteractionRequiredError):
        return True
    return isinstance(exc, AuthError) and exc.error_code in INTERACTION_REQUIRED_CODES


# ---------------------------------------------------------------------------
# Client contract
# ---------------------------------------------------------------------------


class IdentityClient(Protocol):
    interaction_status: InteractionStatus

    async def initialize(self) -> None: ...

    async def handle_redirect_promise(self) -> Optional[AuthResult]: ...

    async def acquire_token_silent(self, scopes: Sequence[str], account: Account) -> AuthResult: ...

    async def acquire_token_redirect(self, scopes: Sequence[str], account: Optional[Account]) -> None: ...

    async def login_redirect(self, request: LoginRequest) -> None: ...

    async def logout_redirect(self, account: Optional[Account]) -> None: ...

    async def sso_silent(self, request: LoginRequest) -> AuthResult: ...

    def get_all_accounts(self) -> list[Account]: ...

    def get_active_account(self) -> Optional[Account]: ...

    def set_active_account(self, account: Optional[Account]) -> None: ...

    def add_event_callback(self, callback: EventCallback) -> None: ...
