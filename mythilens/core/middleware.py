import re

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from structlog.contextvars import bind_contextvars

from mythilens.models.dto import ErrorResponse

USER_HEADER = "x-user-id"
USER_COOKIE = "mythilens_user"

# emails and opaque ids; no whitespace or key separators
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._@+\-]{1,254}$")

class UserIdentityMiddleware(BaseHTTPMiddleware):
    """
    Resolves the caller's user id for profile-bound routes.

    Authentication happens upstream; this only reads the identity it
    forwarded (header first, then cookie) and rejects requests without one.
    Allowlist: /health, /api/points/table, /api/leaderboard, and the admin
    reputation route (which checks its own token).
    """

    ALLOWLIST_PREFIXES = ("/health", "/api/points/table", "/api/leaderboard", "/docs", "/openapi.json")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        user_id = request.headers.get(USER_HEADER) or request.cookies.get(USER_COOKIE)
        if user_id:
            user_id = user_id.strip()

        allowlisted = (
            path == "/"
            or path.startswith(self.ALLOWLIST_PREFIXES)
            or (path.startswith("/api/profile/") and path.endswith("/reputation"))
        )

        if user_id and USER_ID_PATTERN.match(user_id):
            request.state.user_id = user_id
            bind_contextvars(user_id=user_id)
        elif not allowlisted:
            return JSONResponse(
                status_code=401,
                content={
                    "detail": ErrorResponse(
                        error="IDENTITY_REQUIRED",
                        detail="A valid X-User-Id header or mythilens_user cookie is required.",
                    ).model_dump()
                },
            )

        return await call_next(request)
