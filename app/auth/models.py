"""Pydantic models for the authentication domain."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from app.api.contracts.models import CamelModel


class AuthUser(BaseModel):
    """Persisted user account."""

    user_id: str
    email: str
    name: str = ""
    password_hash: str
    role: str = "client"
    must_change_password: bool = False
    email_verified: bool = False
    password_changed_at: float | None = None


class LoginSession(BaseModel):
    """Server-side record scoping a login code to one login attempt."""

    session_id: str
    user_id: str
    email: str
    verification_code: str
    code_expires: float
    created_at: float
    expires_at: float


class PasswordResetSession(BaseModel):
    """Server-side record scoping a reset code to one recovery attempt."""

    session_id: str
    user_id: str
    email: str
    verification_code: str
    code_expires: float
    created_at: float
    expires_at: float
    verified: bool = False


class RateLimitRecord(BaseModel):
    """Attempt counter for one key inside one fixed window."""

    key: str
    count: int
    created_at: float
    expires_at: float


class RateLimitDecision(BaseModel):
    allowed: bool
    remaining: int
    retry_after: int | None = None


class LoginRequest(CamelModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class VerifyCodeRequest(CamelModel):
    session_id: str = Field(min_length=1)
    code: str = Field(min_length=1)

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, value: object) -> object:
        # Codes are compared as text even when a client posts a JSON number.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SessionRequest(CamelModel):
    session_id: str = Field(min_length=1)


class ForgotPasswordRequest(CamelModel):
    email: str = Field(min_length=3)


class ResetPasswordRequest(CamelModel):
    session_id: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChangePasswordRequest(CamelModel):
    password: str = Field(min_length=1)
