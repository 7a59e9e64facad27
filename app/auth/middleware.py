"""HTTP middleware that resolves the session cookie and guards protected routes."""

from __future__ import annotations

from typing import Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse

from app.api.contracts import ApiErrorResponse
from app.api.errors import ApiErrorCode
from app.auth.login_flow import SESSION_COOKIE_NAME
from app.auth.service import AuthService

PROTECTED_PATHS = frozenset({"/api/auth/change-password"})


def _unauthorized(error_code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content=ApiErrorResponse(error_code=error_code, message=message).model_dump(
            by_alias=True, exclude_none=True
        ),
    )


def create_auth_middleware(
    service: AuthService, protected_paths: Iterable[str] = PROTECTED_PATHS
) -> Callable:
    """Create middleware that puts session claims on ``request.state.user``."""
    protected = frozenset(protected_paths)

    async def auth_middleware(request: Request, call_next: Callable):
        token = request.cookies.get(SESSION_COOKIE_NAME, "")
        claims = service.resolve_session(token) if token else None
        request.state.user = claims

        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in protected and claims is None:
            if not token:
                return _unauthorized(ApiErrorCode.AUTH_MISSING_TOKEN, "unauthenticated")
            return _unauthorized(ApiErrorCode.AUTH_TOKEN_INVALID, "invalid session")

        return await call_next(request)

    return auth_middleware
