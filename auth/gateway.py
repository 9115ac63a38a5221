"""
auth/gateway.py -- Token Acquisition Gateway.

Data components never talk to the identity client directly. They call
TokenGateway.fetch_as_user(), which either returns a TokenResult or raises:

  AuthError("Not signed in.", "no_account")   -- no account was passed
  RedirectingError                             -- interaction was required; a
                                                  redirect has been started and
                                                  the page is navigating away
  anything else                                -- propagated unchanged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from jose import JWTError, jwt

from auth.context import SessionContext
from auth.identity import Account, AuthError, IdentityClient, RedirectingError, is_interaction_required

logger = logging.getLogger("auditboard.auth.gateway")


@dataclass(frozen=True)
class TokenResult:
    access_token: str
    granted_scopes: tuple[str, ...] = ()


def granted_scopes_from_token(access_token: str) -> tuple[str, ...]:
    """The scp claim of an access token, read without verifying the signature.

    Diagnostics only. Returns () for tokens that are not JWTs.
    """
    if not access_token:
        return ()
    try:
        claims = jwt.get_unverified_claims(access_token)
    except JWTError:
        return ()
    scp = claims.get("scp") or ""
    if isinstance(scp, str):
        return tuple(scp.split())
    return tuple(scp)


class TokenGateway:
    def __init__(self, client: IdentityClient, context: SessionContext) -> None:
        self.client = client
        self.context = context

    async def fetch_as_user(
        self,
        account: Optional[Account],
        scopes: Sequence[str],
        resume_hint_key: Optional[str] = None,
    ) -> TokenResult:
        if account is None:
            raise AuthError("Not signed in.", "no_account")

        try:
            result = await self.client.acquire_token_silent(scopes, account)
        except Exception as exc:
            if not is_interaction_required(exc):
                raise
            logger.info("Silent token for %s needs interaction (%s); redirecting", account.username, exc)
            if resume_hint_key:
                self.context.set_resume_hint(resume_hint_key)
            await self.client.acquire_token_redirect(scopes, account)
            raise RedirectingError(self.context.pending_navigation or "") from exc

        granted = granted_scopes_from_token(result.access_token) or tuple(result.scopes)
        return TokenResult(access_token=result.access_token, granted_scopes=granted)
