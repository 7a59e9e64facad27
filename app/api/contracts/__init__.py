"""Public API contracts."""

from app.api.contracts.models import (
    ApiErrorResponse,
    CamelModel,
    CurrentUserResponse,
    ForgotPasswordResponse,
    HealthResponse,
    LoginChallengeResponse,
    LoginVerifiedResponse,
    OkResponse,
    PublicUserResponse,
)

__all__ = [
    "ApiErrorResponse",
    "CamelModel",
    "CurrentUserResponse",
    "ForgotPasswordResponse",
    "HealthResponse",
    "LoginChallengeResponse",
    "LoginVerifiedResponse",
    "OkResponse",
    "PublicUserResponse",
]
