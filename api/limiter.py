"""
api/limiter.py -- Shared slowapi rate limiter for the /api/v1 session routes.

Requests are counted per browser profile (the auditboard_profile cookie that
also keys durable storage), falling back to the client address before the
cookie is issued. Several users behind one proxy therefore get separate
budgets, while one browser cannot reset its budget by opening new tabs.

api/main.py mounts the middleware; the route modules apply READ_LIMIT or
CONTROL_LIMIT with @limiter.limit(). Every module must import this one
instance, or each would count against its own store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from auth.dependencies import PROFILE_COOKIE

# Reading state is cheap; retry/reset can start identity provider round trips.
READ_LIMIT = "60/minute"
CONTROL_LIMIT = "10/minute"


def profile_or_address(request: Request) -> str:
    profile_id = request.cookies.get(PROFILE_COOKIE)
    if profile_id:
        return f"profile:{profile_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=profile_or_address, storage_uri="memory://")
