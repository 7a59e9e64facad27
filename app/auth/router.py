"""Authentication and account recovery API router."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from app.api.contracts import (
    ApiErrorResponse,
    CurrentUserResponse,
    ForgotPasswordResponse,
    LoginChallengeResponse,
    LoginVerifiedResponse,
    OkResponse,
    PublicUserResponse,
)
from app.api.errors import ApiError, ApiErrorCode
from app.auth.login_flow import SESSION_COOKIE_NAME, LoginFlow
from app.auth.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SessionRequest,
    VerifyCodeRequest,
)
from app.auth.recovery_flow import PasswordRecoveryFlow
from app.auth.service import AuthService

_ERROR = {"model": ApiErrorResponse}


def create_auth_router(
    *,
    login_flow: LoginFlow,
    recovery_flow: PasswordRecoveryFlow,
    service: AuthService,
) -> APIRouter:
    """Build the ``/api/auth`` router for login, OTP verification and recovery."""
    router = APIRouter(prefix="/api/auth", tags=["auth"])

    @router.post(
        "/login",
        response_model=LoginChallengeResponse,
        responses={401: _ERROR, 429: _ERROR, 500: _ERROR},
    )
    async def login(req: LoginRequest) -> LoginChallengeResponse:
        """Check credentials and email a one-time code."""
        challenge = await login_flow.start(req.email, req.password)
        return LoginChallengeResponse(session_id=challenge.session_id)

    @router.post(
        "/verify",
        response_model=LoginVerifiedResponse,
        responses={400: _ERROR, 401: _ERROR, 404: _ERROR, 429: _ERROR},
    )
    async def verify(req: VerifyCodeRequest, response: Response) -> LoginVerifiedResponse:
        """Exchange the emailed code for the session cookie."""
        result = await login_flow.verify(req.session_id, req.code)
        response.headers["Set-Cookie"] = result.set_cookie
        return LoginVerifiedResponse(must_change_password=result.must_change_password)

    @router.post(
        "/resend",
        response_model=OkResponse,
        responses={401: _ERROR, 429: _ERROR, 500: _ERROR},
    )
    async def resend(req: SessionRequest) -> OkResponse:
        await login_flow.resend(req.session_id)
        return OkResponse(message="New verification code sent")

    @router.post("/logout", response_model=OkResponse, response_model_exclude_none=True)
    async def logout(response: Response) -> OkResponse:
        response.headers["Set-Cookie"] = login_flow.logout_cookie()
        return OkResponse()

    @router.get("/me", response_model=CurrentUserResponse)
    async def me(request: Request) -> CurrentUserResponse:
        user = await service.current_user(request.cookies.get(SESSION_COOKIE_NAME))
        if user is None:
            return CurrentUserResponse(user=None)
        return CurrentUserResponse(
            user=PublicUserResponse(
                id=user.user_id, email=user.email, name=user.name, role=user.role
            )
        )

    @router.post(
        "/forgot-password",
        response_model=ForgotPasswordResponse,
        responses={429: _ERROR, 500: _ERROR},
    )
    async def forgot_password(req: ForgotPasswordRequest) -> ForgotPasswordResponse:
        """Start recovery; the answer does not reveal whether the account exists."""
        ticket = await recovery_flow.request(req.email)
        return ForgotPasswordResponse(session_id=ticket.session_id, message=ticket.message)

    @router.post(
        "/forgot-password/resend",
        response_model=OkResponse,
        responses={401: _ERROR, 429: _ERROR, 500: _ERROR},
    )
    async def forgot_password_resend(req: SessionRequest) -> OkResponse:
        await recovery_flow.resend(req.session_id)
        return OkResponse(message="New verification code sent")

    @router.post(
        "/forgot-password/verify",
        response_model=OkResponse,
        responses={400: _ERROR, 401: _ERROR, 429: _ERROR},
    )
    async def forgot_password_verify(req: VerifyCodeRequest) -> OkResponse:
        await recovery_flow.verify(req.session_id, req.code)
        return OkResponse(message="Code verified successfully")

    @router.post(
        "/forgot-password/reset",
        response_model=OkResponse,
        responses={400: _ERROR, 401: _ERROR},
    )
    async def forgot_password_reset(req: ResetPasswordRequest) -> OkResponse:
        await recovery_flow.reset(req.session_id, req.password)
        return OkResponse(message="Password reset successfully")

    @router.post(
        "/change-password",
        response_model=OkResponse,
        response_model_exclude_none=True,
        responses={400: _ERROR, 401: _ERROR, 404: _ERROR},
    )
    async def change_password(req: ChangePasswordRequest, request: Request) -> OkResponse:
        """Set a new password for the account behind the session cookie."""
        claims = getattr(request.state, "user", None)
        if not claims:
            raise ApiError(
                status_code=401,
                error_code=ApiErrorCode.AUTH_MISSING_TOKEN,
                message="unauthenticated",
            )
        await service.change_password(claims["user_id"], req.password)
        return OkResponse()

    return router
