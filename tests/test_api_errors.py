from __future__ import annotations

from app.api.errors import (
    ApiErrorCode,
    CodeExpired,
    InvalidCredentials,
    RateLimited,
    SessionInvalidOrExpired,
    to_error_payload,
)


def test_to_error_payload_preserves_structured_detail() -> None:
    payload = to_error_payload(
        {"error_code": "AUTH_TOKEN_INVALID", "message": "Invalid"},
        401,
    )

    assert payload == {"error_code": "AUTH_TOKEN_INVALID", "message": "Invalid"}


def test_to_error_payload_normalizes_plain_string() -> None:
    payload = to_error_payload("boom", 500)

    assert payload == {"error_code": "HTTP_500", "message": "boom"}


def test_to_error_payload_keeps_retry_after_and_details() -> None:
    payload = to_error_payload(RateLimited(30).detail, 429)

    assert payload == {
        "error_code": "AUTH_RATE_LIMITED",
        "message": "too many attempts",
        "retry_after": 30,
    }


def test_auth_errors_map_to_expected_status_and_codes() -> None:
    assert InvalidCredentials().status_code == 401
    assert InvalidCredentials().error_code == ApiErrorCode.AUTH_INVALID_CREDENTIALS
    assert CodeExpired().status_code == 400
    assert SessionInvalidOrExpired().error_code == ApiErrorCode.AUTH_SESSION_INVALID
    expired = SessionInvalidOrExpired("session expired", expired=True)
    assert expired.status_code == 401
    assert expired.error_code == ApiErrorCode.AUTH_SESSION_EXPIRED
