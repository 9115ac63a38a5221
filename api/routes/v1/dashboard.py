"""
api/routes/v1/dashboard.py -- Aggregated audit view for the signed-in user.

Loads the audit list with the user's delegated token, then returns every
dashboard view computed over the rows that match the query filters.

This is a read-only route -- no mutations here.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from api.limiter import READ_LIMIT, limiter
from api.models import DashboardResponse, ErrorDetail
from api.routes.v1.session import bootstrap_or_500, open_page_or_500
from auth.dependencies import require_account
from core.config import get_settings
from core.pipeline import build_view, criteria_from_params
from lists.loader import DashboardLoader, ListSource

router = APIRouter()


@limiter.limit(READ_LIMIT)
@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    request: Request,
    search: Optional[str] = Query(None, max_length=200),
    area: Optional[str] = Query(None, max_length=200),
    status_filter: Optional[str] = Query(None, alias="status", max_length=200),
    five_s: Optional[str] = Query(None, max_length=200),
) -> DashboardResponse:
    """Return stats, grouped views and trends for the audit list.

    401 unauthorized          -- no signed-in account
    401 interaction_required  -- the list token needs the user; detail is the sign-in URL
    502 list_fetch_failed     -- Graph rejected the request
    """
    settings = get_settings()
    page = open_page_or_500(request)
    await bootstrap_or_500(page)
    account = await require_account(page)

    loader = DashboardLoader(page.gateway, page.context, ListSource.from_settings(settings))
    try:
        state = await loader.load(account)
    finally:
        loader.unmount()

    if page.context.navigating:
        raise HTTPException(
            status_code=401,
            detail=ErrorDetail(
                code="interaction_required",
                message="Sign-in is required to read the audit list.",
                detail=page.context.pending_navigation,
            ).model_dump(),
        )
    if state.error:
        raise HTTPException(
            status_code=502,
            detail=ErrorDetail(code="list_fetch_failed", message=state.error).model_dump(),
        )

    view = build_view(state.rows, criteria_from_params(search, area, status_filter, five_s), top_n=settings.top_n)
    return DashboardResponse.from_view(view, site_id=state.site_id, token_scopes=state.token_scopes)
