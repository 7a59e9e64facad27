"""HTTP middleware and exception handler wiring for the FastAPI app."""

from __future__ import annotations

import uuid
from typing import Any, Mapping

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.contracts import ApiErrorResponse
from app.api.errors import ApiErrorCode, to_error_payload
from app.core.config import AppConfig
from app.core.logging import set_correlation_id

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
    # Auth responses carry codes, session ids and cookies.
    "Cache-Control": "no-store",
}


def _error_response(
    status_code: int,
    payload: Mapping[str, Any],
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    body = ApiErrorResponse(**payload).model_dump(by_alias=True, exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=dict(headers or {}))


def _request_extra(request: Request, status_code: int, **extra: Any) -> dict[str, Any]:
    return {
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        **extra,
    }


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach request size limiting, correlation ids and security headers."""

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        try:
            declared = int(request.headers.get("content-length") or 0)
        except ValueError:
            declared = 0
        if declared > config.security.request_max_bytes:
            return _error_response(
                413,
                {
                    "error_code": ApiErrorCode.REQUEST_TOO_LARGE,
                    "message": (
                        "Request size exceeds configured limit "
                        f"({config.security.request_max_bytes} bytes)."
                    ),
                },
            )
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-correlation-id")
            or uuid.uuid4().hex
        )
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        for name, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        logger.info("request_completed", extra=_request_extra(request, response.status_code))
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Render every failure as the ``ApiErrorResponse`` envelope."""

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception",
            extra=_request_extra(request, exc.status_code, error_code=payload["error_code"]),
        )
        # Forwards Retry-After from rate-limit errors.
        return _error_response(exc.status_code, payload, exc.headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("validation_exception", extra=_request_extra(request, 422))
        details = [
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
            for error in exc.errors()
        ]
        return _error_response(
            422,
            {
                "error_code": ApiErrorCode.VALIDATION_ERROR,
                "message": "Request validation failed",
                "details": details or None,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unexpected_exception", extra=_request_extra(request, 500))
        return _error_response(
            500,
            {
                "error_code": ApiErrorCode.INTERNAL_SERVER_ERROR,
                "message": "Internal server error",
            },
        )
