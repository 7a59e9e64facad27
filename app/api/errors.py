"""Shared API error types and helpers."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from fastapi import HTTPException


class ApiErrorCode(StrEnum):
    """Machine-readable API error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_MISSING_TOKEN = "AUTH_MISSING_TOKEN"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_RATE_LIMITED = "AUTH_RATE_LIMITED"
    AUTH_SESSION_INVALID = "AUTH_SESSION_INVALID"
    AUTH_SESSION_EXPIRED = "AUTH_SESSION_EXPIRED"
    AUTH_CODE_EXPIRED = "AUTH_CODE_EXPIRED"
    AUTH_CODE_INVALID = "AUTH_CODE_INVALID"
    AUTH_VERIFICATION_REQUIRED = "AUTH_VERIFICATION_REQUIRED"
    AUTH_WEAK_PASSWORD = "AUTH_WEAK_PASSWORD"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ApiError(HTTPException):
    """HTTP exception carrying stable API error envelope."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: ApiErrorCode,
        message: str,
        details: list[str] | None = None,
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        detail: dict[str, Any] = {"error_code": str(error_code), "message": message}
        if details:
            detail["details"] = list(details)
        if retry_after is not None:
            detail["retry_after"] = retry_after
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.message = message


class InvalidCredentials(ApiError):
    """Unknown account and wrong password look exactly the same."""

    def __init__(self) -> None:
        super().__init__(
            status_code=401,
            error_code=ApiErrorCode.AUTH_INVALID_CREDENTIALS,
            message="invalid credentials",
        )


class RateLimited(ApiError):
    def __init__(self, retry_after: int, message: str = "too many attempts") -> None:
        super().__init__(
            status_code=429,
            error_code=ApiErrorCode.AUTH_RATE_LIMITED,
            message=message,
            retry_after=retry_after,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


class SessionInvalidOrExpired(ApiError):
    def __init__(self, message: str = "invalid session", *, expired: bool = False) -> None:
        super().__init__(
            status_code=401,
            error_code=(
                ApiErrorCode.AUTH_SESSION_EXPIRED
                if expired
                else ApiErrorCode.AUTH_SESSION_INVALID
            ),
            message=message,
        )


class CodeExpired(ApiError):
    """The session is still alive; the client should ask for a new code."""

    def __init__(self, message: str = "code expired") -> None:
        super().__init__(
            status_code=400, error_code=ApiErrorCode.AUTH_CODE_EXPIRED, message=message
        )


class CodeMismatch(ApiError):
    def __init__(self, message: str = "invalid code") -> None:
        super().__init__(
            status_code=400, error_code=ApiErrorCode.AUTH_CODE_INVALID, message=message
        )


class VerificationRequired(ApiError):
    def __init__(self) -> None:
        super().__init__(
            status_code=400,
            error_code=ApiErrorCode.AUTH_VERIFICATION_REQUIRED,
            message="please verify your code first",
        )


class WeakPassword(ApiError):
    """Carries every violated password rule, never only the first."""

    def __init__(self, violations: list[str]) -> None:
        super().__init__(
            status_code=400,
            error_code=ApiErrorCode.AUTH_WEAK_PASSWORD,
            message="Password does not meet requirements",
            details=violations,
        )
        self.violations = list(violations)


class DeliveryFailure(ApiError):
    def __init__(self, message: str = "Failed to send email. Please try again.") -> None:
        super().__init__(
            status_code=500, error_code=ApiErrorCode.EMAIL_DELIVERY_FAILED, message=message
        )


def to_error_payload(detail: Any, status_code: int) -> dict[str, Any]:
    """Normalize HTTP exception detail into stable error payload."""
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "error_code": str(detail.get("error_code") or f"HTTP_{status_code}"),
            "message": str(detail.get("message") or detail.get("detail") or "HTTP error"),
        }
        if detail.get("details"):
            payload["details"] = [str(item) for item in detail["details"]]
        if detail.get("retry_after") is not None:
            payload["retry_after"] = int(detail["retry_after"])
        return payload
    return {
        "error_code": f"HTTP_{status_code}",
        "message": str(detail or "HTTP error"),
    }
