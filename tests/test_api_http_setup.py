from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Coroutine, cast

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import Response

from app.api.errors import RateLimited, WeakPassword
from app.api.http_setup import register_exception_handlers, register_http_middleware
from tests.auth_fixtures import build_config

LOGGER = logging.getLogger(__name__)


def _app() -> FastAPI:
    app = FastAPI()
    register_http_middleware(app, config=build_config(), logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)
    return app


def _request(path: str, method: str = "GET", headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    return Request(scope, receive)


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _resolve_response(result: Response | Awaitable[Response]) -> Response:
    if inspect.iscoroutine(result):
        return asyncio.run(cast(Coroutine[Any, Any, Response], result))
    return cast(Response, result)


def test_http_setup_adds_security_headers_and_request_id() -> None:
    dispatch = _dispatch_by_name(_app(), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"req-123")])

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"


def test_http_setup_generates_request_id_when_missing() -> None:
    dispatch = _dispatch_by_name(_app(), "request_logging_middleware")

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(_request("/ok"), call_next))
    assert len(response.headers["X-Request-ID"]) == 32


def test_http_setup_rejects_large_request_before_handler() -> None:
    dispatch = _dispatch_by_name(_app(), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"4096")])
    called = []

    async def call_next(_request: Request) -> Response:
        called.append(True)
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    assert response.status_code == 413
    assert json.loads(response.body)["errorCode"] == "REQUEST_TOO_LARGE"
    assert called == []


def test_http_setup_serializes_http_exception_payload() -> None:
    app = _app()
    handler = app.exception_handlers[HTTPException]
    response: Response = _resolve_response(
        handler(
            _request("/not-found"),
            HTTPException(
                status_code=404,
                detail={"error_code": "USER_NOT_FOUND", "message": "missing"},
            ),
        )
    )
    assert response.status_code == 404
    assert json.loads(response.body) == {"errorCode": "USER_NOT_FOUND", "message": "missing"}


def test_http_setup_forwards_retry_after_for_rate_limits() -> None:
    app = _app()
    handler = app.exception_handlers[HTTPException]
    response: Response = _resolve_response(
        handler(_request("/api/auth/login", method="POST"), RateLimited(420))
    )

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "420"
    assert json.loads(response.body) == {
        "errorCode": "AUTH_RATE_LIMITED",
        "message": "too many attempts",
        "retryAfter": 420,
    }


def test_http_setup_lists_every_password_violation() -> None:
    app = _app()
    handler = app.exception_handlers[HTTPException]
    violations = ["Password must contain at least one number", "Password must contain at least one special character"]
    response: Response = _resolve_response(
        handler(_request("/api/auth/change-password", method="POST"), WeakPassword(violations))
    )

    body = json.loads(response.body)
    assert response.status_code == 400
    assert body["errorCode"] == "AUTH_WEAK_PASSWORD"
    assert body["details"] == violations


def test_http_setup_handles_unexpected_exceptions() -> None:
    app = _app()
    handler = app.exception_handlers[Exception]
    response: Response = _resolve_response(handler(_request("/boom"), RuntimeError("boom")))
    assert response.status_code == 500
    assert b"INTERNAL_SERVER_ERROR" in response.body
    assert b"boom" not in response.body


def test_http_setup_handles_validation_exception() -> None:
    app = _app()
    handler = app.exception_handlers[RequestValidationError]
    response: Response = _resolve_response(
        handler(
            _request("/validation"),
            RequestValidationError(
                [{"loc": ("body", "email"), "msg": "Field required", "type": "missing"}]
            ),
        )
    )
    body = json.loads(response.body)
    assert response.status_code == 422
    assert body["errorCode"] == "VALIDATION_ERROR"
    assert body["details"] == ["body.email: Field required"]
