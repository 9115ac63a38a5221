"""
api/routes/v1/session.py -- Session state and the manual sign-in controls.

  GET  /api/v1/session        -- bootstrap, report account or diagnostics
  POST /api/v1/session/retry  -- clear the login flag and start a sign-in
  POST /api/v1/session/reset  -- forget hint, flag and active account

None of these follow the identity provider redirect themselves: when a call
starts an interactive sign-in, redirect_url tells the client where to go.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from api.limiter import CONTROL_LIMIT, READ_LIMIT, limiter
from api.models import AccountModel, ErrorDetail, SessionDiagnostics, SessionResponse
from auth.dependencies import Page, open_page
from auth.guard import GuardDecision, resolve_account
from auth.identity import Account

logger = logging.getLogger("auditboard.api.session")

router = APIRouter()


def open_page_or_500(request: Request) -> Page:
    """open_page(), with identity-client construction failure as a 500 envelope."""
    try:
        return open_page(request)
    except Exception:
        logger.exception("Identity client construction failed")
        raise HTTPException(
            status_code=500,
            detail=ErrorDetail(code="identity_unavailable", message="Sign-in is unavailable.").model_dump(),
        )


async def bootstrap_or_500(page: Page) -> None:
    try:
        await page.bootstrap.ensure_ready()
    except Exception:
        logger.exception("Session bootstrap failed")
        raise HTTPException(
            status_code=500,
            detail=ErrorDetail(code="bootstrap_failed", message="Could not restore the sign-in session.").model_dump(),
        )


def _session_response(
    page: Page, account: Optional[Account], decision: Optional[GuardDecision] = None
) -> SessionResponse:
    return SessionResponse(
        authenticated=account is not None,
        account=AccountModel.from_account(account) if account is not None else None,
        decision=decision.value if decision is not None else None,
        redirect_url=page.context.pending_navigation,
        diagnostics=SessionDiagnostics(**page.guard.diagnostics()),
    )


@limiter.limit(READ_LIMIT)
@router.get("/session", response_model=SessionResponse)
async def get_session(request: Request) -> SessionResponse:
    page = open_page_or_500(request)
    await bootstrap_or_500(page)
    return _session_response(page, resolve_account(page.client))


@limiter.limit(CONTROL_LIMIT)
@router.post("/session/retry", response_model=SessionResponse)
async def retry_session(request: Request) -> SessionResponse:
    page = open_page_or_500(request)
    await bootstrap_or_500(page)
    account = resolve_account(page.client)
    if account is not None:
        return _session_response(page, account, GuardDecision.AUTHENTICATED)
    decision = await page.guard.retry()
    return _session_response(page, None, decision)


@limiter.limit(CONTROL_LIMIT)
@router.post("/session/reset", response_model=SessionResponse)
async def reset_session(request: Request) -> SessionResponse:
    page = open_page_or_500(request)
    page.guard.reset_session()
    return _session_response(page, None)
