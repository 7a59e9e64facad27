"""Pydantic API models used in OpenAPI contracts.

Wire payloads use camelCase keys; Python code uses snake_case attributes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiErrorResponse(CamelModel):
    """Stable error envelope for API responses."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    details: list[str] | None = Field(
        default=None, description="Every violated rule, for validation-style failures"
    )
    retry_after: int | None = Field(
        default=None, description="Seconds until a rate-limited call may be retried"
    )


class HealthResponse(BaseModel):
    """Health check response payload."""

    status: Literal["ok"]


class OkResponse(CamelModel):
    ok: Literal[True] = True
    message: str | None = None


class LoginChallengeResponse(CamelModel):
    """Password accepted; a one-time code was sent and must be verified."""

    requires_verification: Literal[True] = True
    session_id: str


class LoginVerifiedResponse(CamelModel):
    ok: Literal[True] = True
    must_change_password: bool


class ForgotPasswordResponse(CamelModel):
    """Identical for known and unknown emails."""

    ok: Literal[True] = True
    session_id: str
    message: str


class PublicUserResponse(CamelModel):
    id: str
    email: str
    name: str
    role: str


class CurrentUserResponse(CamelModel):
    user: PublicUserResponse | None = None
