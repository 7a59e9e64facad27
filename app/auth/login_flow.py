"""Password login with a mandatory emailed one-time code before any session cookie.

States: CREDENTIALS_PENDING -> OTP_PENDING -> VERIFIED, or FAILED/EXPIRED at
either step. A correct password only ever yields a pending login session; the
cookie is issued by ``verify``.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from app.api.errors import (
    ApiError,
    ApiErrorCode,
    CodeExpired,
    CodeMismatch,
    DeliveryFailure,
    InvalidCredentials,
    SessionInvalidOrExpired,
)
from app.auth.email import EmailDeliveryError, EmailSender, login_code_email
from app.auth.models import LoginSession
from app.auth.rate_limiter import RateLimiter
from app.auth.repository import AuthRepository, normalize_email
from app.core.config import AuthConfig, RateLimitPolicies
from app.core.security import (
    SessionTokenCodec,
    build_set_cookie,
    codes_match,
    generate_otp,
    hash_password,
    verify_password,
)

LOGGER = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session"


@dataclass(frozen=True)
class LoginChallenge:
    session_id: str


@dataclass(frozen=True)
class LoginResult:
    user_id: str
    token: str
    set_cookie: str
    must_change_password: bool


class LoginFlow:
    def __init__(
        self,
        *,
        repo: AuthRepository,
        rate_limiter: RateLimiter,
        codec: SessionTokenCodec,
        email_sender: EmailSender,
        config: AuthConfig,
        policies: RateLimitPolicies,
        secure_cookies: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._limiter = rate_limiter
        self._codec = codec
        self._email = email_sender
        self._config = config
        self._policies = policies
        self._secure_cookies = secure_cookies
        self._clock = clock
        # Unknown accounts still pay for one hash check.
        self._decoy_hash = hash_password(uuid.uuid4().hex, rounds=config.password_hash_rounds)

    async def start(self, email: str, password: str) -> LoginChallenge:
        """Check the password and email a code; never grants access by itself."""
        email = normalize_email(email)
        await self._limiter.enforce(self._policies.login, email)

        user = await self._repo.get_user_by_email(email)
        digest = user.password_hash if user is not None else self._decoy_hash
        password_ok = await asyncio.to_thread(verify_password, password, digest)
        if user is None or not password_ok:
            raise InvalidCredentials()

        now = self._clock()
        session = LoginSession(
            session_id=uuid.uuid4().hex,
            user_id=user.user_id,
            email=user.email,
            verification_code=generate_otp(self._config.otp_length),
            code_expires=now + self._config.login_code_ttl_seconds,
            created_at=now,
            expires_at=now + self._config.login_session_ttl_seconds,
        )
        await self._repo.insert_login_session(session)

        try:
            await self._email.send(
                login_code_email(
                    user.email,
                    session.verification_code,
                    ttl_minutes=self._config.login_code_ttl_seconds // 60,
                )
            )
        except EmailDeliveryError as exc:
            await self._repo.delete_login_session(session.session_id)
            LOGGER.error("email_delivery_failed", extra={"user_id": user.user_id})
            raise DeliveryFailure(
                "Failed to send verification email. Please try again."
            ) from exc

        LOGGER.info("login_code_sent", extra={"user_id": user.user_id})
        return LoginChallenge(session_id=session.session_id)

    async def verify(self, session_id: str, code: str) -> LoginResult:
        """Exchange a pending login session and its code for a signed session cookie."""
        session = await self._repo.get_login_session(session_id)
        if session is None:
            raise SessionInvalidOrExpired("invalid session")
        now = self._clock()
        if now >= session.expires_at:
            raise SessionInvalidOrExpired("session expired", expired=True)

        user = await self._repo.get_user_by_id(session.user_id)
        if user is None:
            raise ApiError(
                status_code=404, error_code=ApiErrorCode.USER_NOT_FOUND, message="not found"
            )

        await self._limiter.enforce(self._policies.verify, session.email)

        if now >= session.code_expires:
            raise CodeExpired()
        if not codes_match(session.verification_code, code):
            raise CodeMismatch()

        consumed = await self._repo.consume_login_session(
            session.session_id, session.verification_code
        )
        if consumed is None:
            # Another request already exchanged this session.
            raise SessionInvalidOrExpired("invalid session")

        await self._limiter.reset(self._policies.verify.key_for(session.email))
        await self._limiter.reset(self._policies.login.key_for(session.email))
        await self._repo.update_user(user.user_id, {"email_verified": True})

        token = self._codec.sign({"userId": user.user_id, "role": user.role})
        LOGGER.info("login_verified", extra={"user_id": user.user_id})
        return LoginResult(
            user_id=user.user_id,
            token=token,
            set_cookie=build_set_cookie(
                SESSION_COOKIE_NAME,
                token,
                max_age=self._codec.default_ttl_seconds,
                http_only=True,
                secure=self._secure_cookies,
            ),
            must_change_password=bool(user.must_change_password),
        )

    async def resend(self, session_id: str) -> None:
        """Replace the code of a live login session and email it again."""
        session = await self._repo.get_login_session(session_id)
        if session is None:
            raise SessionInvalidOrExpired("invalid session")
        now = self._clock()
        if now >= session.expires_at:
            raise SessionInvalidOrExpired("session expired", expired=True)

        await self._limiter.enforce(self._policies.resend_login, session.email)

        code = generate_otp(self._config.otp_length)
        code_expires = min(now + self._config.login_code_ttl_seconds, session.expires_at)
        updated = await self._repo.update_login_session_code(
            session.session_id, code=code, code_expires=code_expires
        )
        if not updated:
            raise SessionInvalidOrExpired("invalid session")

        try:
            await self._email.send(
                login_code_email(
                    session.email,
                    code,
                    ttl_minutes=self._config.login_code_ttl_seconds // 60,
                )
            )
        except EmailDeliveryError as exc:
            LOGGER.error("email_delivery_failed", extra={"user_id": session.user_id})
            raise DeliveryFailure(
                "Failed to send verification email. Please try again."
            ) from exc
        LOGGER.info("login_code_resent", extra={"user_id": session.user_id})

    def logout_cookie(self) -> str:
        return build_set_cookie(
            SESSION_COOKIE_NAME,
            "",
            max_age=0,
            http_only=True,
            secure=self._secure_cookies,
        )
