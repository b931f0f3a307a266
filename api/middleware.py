"""Caller identity middleware using ContextVar.

Reads the calling user from the X-User-ID request header and stores it in a
ContextVar, so route handlers can call get_current_user() without passing
it around. User accounts and sessions are the host application's concern;
requests without the header run as the demo user.
"""

from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

DEFAULT_USER = "demo-user"
USER_HEADER = "X-User-ID"

# ---------------------------------------------------------------------------
# Context variable: task-safe caller state
# ---------------------------------------------------------------------------

_current_user: ContextVar[str] = ContextVar("current_user", default=DEFAULT_USER)


def get_current_user() -> str:
    """Return the user id for the current request."""
    return _current_user.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class UserMiddleware(BaseHTTPMiddleware):
    """Bind the X-User-ID header (or the demo user) to the request context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        user_id = (request.headers.get(USER_HEADER) or "").strip()
        token = _current_user.set(user_id or DEFAULT_USER)
        try:
            return await call_next(request)
        finally:
            _current_user.reset(token)
