"""
web/routes.py -- Jinja2 template routes for the AuditBoard web UI.

Each request is one "page": open_page() builds the session components, the
bootstrap resolves the identity, and the route renders or redirects.

Routes:
  GET  /              -- bootstrap; auto-login guard; waiting view or redirect
  POST /login/retry   -- manual sign-in (clears the login flag first)
  POST /login/reset   -- forget hint, flag and active account; no redirect
  GET  /dashboard     -- audit dashboard (sign-in required)
  POST /logout        -- sign out at the identity provider

Status codes travel in ?notice=, never ?error=: "error" (like "code") is an
auth response parameter, and the bootstrap would treat the page's own URL as
an identity provider response.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import Page, open_page
from auth.guard import GuardDecision, resolve_account
from core.config import get_settings
from core.pipeline import build_view, criteria_from_params
from lists.loader import DashboardLoader, ListSource

logger = logging.getLogger("auditboard.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

NOTICE_PARAM = "notice"

# Whitelist mapping for ?notice= codes and failure pages.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "logout_failed": "Sign-out did not complete. Please try again.",
    "bootstrap_failed": "Could not restore your sign-in session. Reload the page or reset the session.",
    "identity_unavailable": "Sign-in is not available right now. Check the application registration settings.",
}
_NOTICES = frozenset({"logout_failed"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _local_path(url: str) -> str:
    """Path and query of url, for redirects that must stay on this site."""
    parts = urlsplit(url)
    path = parts.path or "/"
    if not path.startswith("/") or path.startswith("//"):
        path = "/"
    return f"{path}?{parts.query}" if parts.query else path


def _navigate(url: str) -> RedirectResponse:
    resp = RedirectResponse(url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _notice(request: Request) -> Optional[str]:
    code = request.query_params.get(NOTICE_PARAM, "")
    return code if code in _NOTICES else None


def _error_page(request: Request, code: str, status_code: int = 500) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"error_msg": _ERROR_MESSAGES.get(code, _ERROR_MESSAGES["bootstrap_failed"])},
        status_code=status_code,
    )


def _waiting_view(request: Request, page: Page, decision: Optional[GuardDecision] = None) -> HTMLResponse:
    notice = _notice(request)
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "diagnostics": page.guard.diagnostics(),
            "busy": decision == GuardDecision.BUSY,
            "account": resolve_account(page.client),
            "error_msg": _ERROR_MESSAGES[notice] if notice else "",
            # Exception text from the previous request; autoescaped by Jinja.
            "error_detail": page.context.pop_flash_error(),
        },
    )


async def _start_page(request: Request, bootstrap: bool = True) -> tuple[Optional[Page], Optional[HTMLResponse]]:
    """Open the page and run its bootstrap. Returns (page, None) or (None, error page)."""
    try:
        page = open_page(request)
    except Exception:
        logger.exception("Identity client construction failed")
        return None, _error_page(request, "identity_unavailable")
    if bootstrap:
        try:
            await page.bootstrap.ensure_ready()
        except Exception:
            logger.exception("Session bootstrap failed")
            return None, _error_page(request, "bootstrap_failed")
    return page, None


# ---------------------------------------------------------------------------
# GET / -- sign-in gate
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def home(request: Request) -> HTMLResponse:
    page, failure = await _start_page(request)
    if failure:
        return failure

    # Bootstrap stripped a stale auth response from the URL; show the clean one.
    if page.context.url_replaced and resolve_account(page.client) is None:
        return _navigate(_local_path(page.context.url))

    # A failed sign-out usually leaves the account cached; show why instead of
    # sending the user back to the dashboard or the identity provider.
    if _notice(request):
        return _waiting_view(request, page)

    decision = await page.guard.evaluate()
    if decision == GuardDecision.AUTHENTICATED:
        return _navigate("/dashboard")
    if decision == GuardDecision.REDIRECTED and page.context.pending_navigation:
        return _navigate(page.context.pending_navigation)
    return _waiting_view(request, page, decision)

@router.post("/login/retry", response_class=HTMLResponse)
async def login_retry(request: Request) -> HTMLResponse:
    page, failure = await _start_page(request, bootstrap=False)
    if failure:
        return failure
    decision = await page.guard.retry()
    if decision == GuardDecision.REDIRECTED and page.context.pending_navigation:
        return _navigate(page.context.pending_navigation)
    return _waiting_view(request, page, decision)


@router.post("/login/reset", response_class=HTMLResponse)
async def login_reset(request: Request) -> HTMLResponse:
    page, failure = await _start_page(request, bootstrap=False)
    if failure:
        return failure
    page.guard.reset_session()
    return _waiting_view(request, page)


# ---------------------------------------------------------------------------
# GET /dashboard
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    search: str = "",
    area: str = "",
    status: str = "",
    five_s: str = "",
) -> HTMLResponse:
    settings = get_settings()
    page, failure = await _start_page(request)
    if failure:
        return failure

    account = resolve_account(page.client)
    if account is None:
        return _navigate("/")

    loader = DashboardLoader(page.gateway, page.context, ListSource.from_settings(settings))
    if loader.resume_requested():
        logger.info("Resuming list load after sign-in for %s", account.username)
    try:
        state = await loader.load(account)
    finally:
        loader.unmount()

    if page.context.navigating:
        return _navigate(page.context.pending_navigation)

    criteria = criteria_from_params(search, area, status, five_s)
    view = build_view(state.rows, criteria, top_n=settings.top_n)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "account": account,
            "state": state,
            "view": view,
            "filters": {"search": search, "area": area, "status": status, "five_s": five_s},
        },
    )


# ---------------------------------------------------------------------------
# POST /logout
# ---------------------------------------------------------------------------


@router.post("/logout")
async def logout(request: Request) -> RedirectResponse:
    """Forget the Login Hint and sign out at the identity provider."""
    page, failure = await _start_page(request, bootstrap=False)
    if failure:
        return _navigate(f"/?{NOTICE_PARAM}=logout_failed")

    account = page.client.get_active_account()
    page.context.clear_login_hint()
    try:
        await page.client.logout_redirect(account)
    except Exception as exc:
        logger.warning("Logout failed: %s", exc)
        page.context.flash_error(str(exc) or exc.__class__.__name__)
        return _navigate(f"/?{NOTICE_PARAM}=logout_failed")
    # The identity provider returns here with no cached account; wait for a
    # manual sign-in instead of starting one.
    page.context.mark_login_attempted()
    page.context.mark_signed_out()
    return _navigate(page.context.pending_navigation or "/")
