"""Current-user middleware using ContextVar.

The identity provider in front of this service authenticates the caller
and forwards the user id in the X-User-ID header. The value is trusted
as-is and stored in a ContextVar so that downstream code can call
get_current_user() without explicit parameter passing.
"""

from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

USER_HEADER = "X-User-ID"

# ---------------------------------------------------------------------------
# Context variable: task-safe user state
# ---------------------------------------------------------------------------

_current_user: ContextVar[Optional[str]] = ContextVar("current_user", default=None)


def get_current_user() -> Optional[str]:
    """Return the authenticated user id for the current request, if any.

    Safe to call from any async context within the request lifecycle::

        user_id = get_current_user()
        credential = await manager.get_valid_credential(user_id)
    """
    return _current_user.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class CurrentUserMiddleware(BaseHTTPMiddleware):
    """Copy the forwarded user id into the request context.

    Webhook and cron routes carry no user; they authenticate by signature
    and shared secret instead.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        user_id = (request.headers.get(USER_HEADER) or "").strip() or None
        token = _current_user.set(user_id)
        try:
            response = await call_next(request)
            return response
        finally:
            _current_user.reset(token)
