"""
auth/guard.py -- Auto-Login Retry State Machine.

One AutoLoginGuard per mount (per page render). evaluate() decides whether to
start an interactive login:

  account present                      -> AUTHENTICATED
  interaction already in progress      -> BUSY (not counted)
  Login-Attempt Flag unset             -> set flag, one login redirect
  flag set, first evaluation of this
    mount, zero cached accounts,
    forced retry not yet used          -> one forced retry
  flag set otherwise                   -> WAITING (manual controls only)

After an explicit logout the sign-out marker holds every evaluation at
WAITING until retry() or reset_session(); the identity provider sends the
browser back here with no cached account, which would otherwise trigger the
forced retry.

The forced retry covers a restored tab that resurrected the session-scoped
flag without any cached account. Its one-shot marker lives on the instance,
never in storage, so repeated evaluations of one mount cannot loop.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Sequence

from auth.context import SessionContext
from auth.identity import Account, IdentityClient, InteractionStatus, LoginRequest

logger = logging.getLogger("auditboard.auth.guard")

RESET_MESSAGE = "Session reset. Select Sign in to start again."
SIGNED_OUT_MESSAGE = "You are signed out. Select Sign in to start again."


class GuardDecision(str, Enum):
    AUTHENTICATED = "authenticated"
    BUSY = "busy"
    REDIRECTED = "redirected"
    WAITING = "waiting"


def resolve_account(client: IdentityClient) -> Optional[Account]:
    """Active account, else the first cached one (which is then activated)."""
    account = client.get_active_account()
    if account is not None:
        return account
    accounts = client.get_all_accounts()
    if accounts:
        client.set_active_account(accounts[0])
        return accounts[0]
    return None


class AutoLoginGuard:
    def __init__(self, client: IdentityClient, context: SessionContext, login_scopes: Sequence[str] = ()) -> None:
        self.client = client
        self.context = context
        self.login_scopes = tuple(login_scopes)
        self.evaluations = 0
        self.redirects = 0
        self.message = ""
        self.error = ""
        self._forced_retry_used = False

    async def _login_redirect(self) -> GuardDecision:
        hint = self.context.login_hint
        if hint:
            request = LoginRequest(scopes=self.login_scopes, login_hint=hint)
        else:
            request = LoginRequest(scopes=self.login_scopes, prompt="select_account")
        try:
            await self.client.login_redirect(request)
        except Exception as exc:
            logger.info("Login redirect failed: %s", exc)
            self.error = str(exc) or exc.__class__.__name__
            return GuardDecision.WAITING
        self.redirects += 1
        return GuardDecision.REDIRECTED

    async def evaluate(self) -> GuardDecision:
        if resolve_account(self.client) is not None:
            if self.context.signed_out:
                self.context.clear_signed_out()
            return GuardDecision.AUTHENTICATED
        if self.client.interaction_status != InteractionStatus.NONE:
            return GuardDecision.BUSY

        first_evaluation = self.evaluations == 0
        self.evaluations += 1

        if self.context.signed_out:
            self.message = SIGNED_OUT_MESSAGE
            return GuardDecision.WAITING

        if not self.context.login_attempted:
            self.context.mark_login_attempted()
            return await self._login_redirect()

        if first_evaluation and not self._forced_retry_used and not self.client.get_all_accounts():
            self._forced_retry_used = True
            logger.info("Login flag set but no cached account; forcing one retry")
            self.context.mark_login_attempted()
            return await self._login_redirect()

        return GuardDecision.WAITING

    async def retry(self) -> GuardDecision:
        """Manual sign-in: clear the flag and start a fresh attempt."""
        self.context.clear_login_attempted()
        self.context.clear_signed_out()
        self.message = ""
        self.error = ""
        self.context.mark_login_attempted()
        return await self._login_redirect()

    def reset_session(self) -> None:
        """Forget hint, flag and active account. The user starts again with retry()."""
        self.context.clear_login_hint()
        self.context.clear_login_attempted()
        self.context.clear_signed_out()
        self.client.set_active_account(None)
        self.error = ""
        self.message = RESET_MESSAGE

    def diagnostics(self) -> dict[str, Any]:
        status = self.client.interaction_status
        return {
            "origin": self.context.origin,
            "redirect_uri": self.context.redirect_uri,
            "secure_context": self.context.secure_context,
            "cached_accounts": len(self.client.get_all_accounts()),
            "login_attempted": self.context.login_attempted,
            "interaction_status": getattr(status, "value", str(status)),
            "message": self.message,
            "error": self.error,
        }
