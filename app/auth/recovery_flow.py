"""Password recovery: request -> emailed code -> verified session -> new password.

States: REQUESTED -> CODE_SENT -> VERIFIED -> RESET_COMPLETE, with RESEND
looping on CODE_SENT. Requests for unknown emails get the same answer as
known ones, backed by a session id that no record ever matches.
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
    SessionInvalidOrExpired,
    VerificationRequired,
    WeakPassword,
)
from app.auth.email import EmailDeliveryError, EmailSender, password_reset_email
from app.auth.models import PasswordResetSession
from app.auth.password_policy import validate_password
from app.auth.rate_limiter import RateLimiter
from app.auth.repository import AuthRepository, normalize_email
from app.core.config import AuthConfig, RateLimitPolicies
from app.core.security import codes_match, generate_otp, hash_password

LOGGER = logging.getLogger(__name__)

REQUEST_ACCEPTED_MESSAGE = "If an account exists with this email, you will receive a reset code."
INVALID_SESSION_MESSAGE = "Invalid or expired session"
EXPIRED_SESSION_MESSAGE = "Session expired. Please request a new reset."


@dataclass(frozen=True)
class RecoveryTicket:
    session_id: str
    message: str = REQUEST_ACCEPTED_MESSAGE


class PasswordRecoveryFlow:
    def __init__(
        self,
        *,
        repo: AuthRepository,
        rate_limiter: RateLimiter,
        email_sender: EmailSender,
        config: AuthConfig,
        policies: RateLimitPolicies,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._limiter = rate_limiter
        self._email = email_sender
        self._config = config
        self._policies = policies
        self._clock = clock

    async def _live_session(self, session_id: str) -> PasswordResetSession:
        session = await self._repo.get_reset_session(session_id)
        if session is None:
            raise SessionInvalidOrExpired(INVALID_SESSION_MESSAGE)
        if self._clock() >= session.expires_at:
            await self._repo.delete_reset_session(session.session_id)
            raise SessionInvalidOrExpired(EXPIRED_SESSION_MESSAGE, expired=True)
        return session

    async def _send_code(self, session: PasswordResetSession, name: str) -> None:
        await self._email.send(
            password_reset_email(
                session.email,
                session.verification_code,
                name=name,
                ttl_minutes=self._config.reset_code_ttl_seconds // 60,
            )
        )

    async def request(self, email: str) -> RecoveryTicket:
        email = normalize_email(email)
        await self._limiter.enforce(self._policies.forgot_password, email)

        user = await self._repo.get_user_by_email(email)
        if user is None:
            return RecoveryTicket(session_id=uuid.uuid4().hex)

        now = self._clock()
        session = PasswordResetSession(
            session_id=uuid.uuid4().hex,
            user_id=user.user_id,
            email=user.email,
            verification_code=generate_otp(self._config.otp_length),
            code_expires=now + self._config.reset_code_ttl_seconds,
            created_at=now,
            expires_at=now + self._config.reset_session_ttl_seconds,
            verified=False,
        )
        await self._repo.replace_reset_session(session)

        try:
            await self._send_code(session, user.name)
        except EmailDeliveryError as exc:
            await self._repo.delete_reset_session(session.session_id)
            LOGGER.error("email_delivery_failed", extra={"user_id": user.user_id})
            raise DeliveryFailure() from exc

        LOGGER.info("reset_requested", extra={"user_id": user.user_id})
        return RecoveryTicket(session_id=session.session_id)

    async def resend(self, session_id: str) -> None:
        """Issue a fresh code for the same reset session."""
        session = await self._live_session(session_id)
        await self._limiter.enforce(self._policies.resend_reset, session.email)

        code = generate_otp(self._config.otp_length)
        code_expires = min(
            self._clock() + self._config.reset_code_ttl_seconds, session.expires_at
        )
        if not await self._repo.update_reset_session_code(
            session.session_id, code=code, code_expires=code_expires
        ):
            raise SessionInvalidOrExpired(INVALID_SESSION_MESSAGE)

        user = await self._repo.get_user_by_id(session.user_id)
        refreshed = session.model_copy(
            update={"verification_code": code, "code_expires": code_expires}
        )
        try:
            await self._send_code(refreshed, user.name if user is not None else "")
        except EmailDeliveryError as exc:
            LOGGER.error("email_delivery_failed", extra={"user_id": session.user_id})
            raise DeliveryFailure() from exc

    async def verify(self, session_id: str, code: str) -> None:
        session = await self._live_session(session_id)
        await self._limiter.enforce(self._policies.verify_reset, session.email)

        if self._clock() >= session.code_expires:
            raise CodeExpired("Code expired. Please request a new one.")
        if not codes_match(session.verification_code, code):
            raise CodeMismatch("Invalid verification code")

        if not await self._repo.mark_reset_session_verified(
            session.session_id, session.verification_code
        ):
            # The code was replaced by a resend in the meantime.
            raise CodeMismatch("Invalid verification code")

        await self._limiter.reset(self._policies.verify_reset.key_for(session.email))

    async def reset(self, session_id: str, password: str) -> None:
        violations = validate_password(password)
        if violations:
            raise WeakPassword(violations)

        session = await self._live_session(session_id)
        if not session.verified:
            raise VerificationRequired()

        password_hash = await asyncio.to_thread(
            hash_password, password, rounds=self._config.password_hash_rounds
        )
        consumed = await self._repo.consume_reset_session(session.session_id)
        if consumed is None:
            raise SessionInvalidOrExpired(INVALID_SESSION_MESSAGE)

        updated = await self._repo.update_user(
            consumed.user_id,
            {
                "password_hash": password_hash,
                "must_change_password": False,
                "password_changed_at": self._clock(),
            },
        )
        if not updated:
            raise ApiError(
                status_code=404, error_code=ApiErrorCode.USER_NOT_FOUND, message="User not found"
            )

        for policy in (
            self._policies.forgot_password,
            self._policies.resend_reset,
            self._policies.verify_reset,
        ):
            await self._limiter.reset(policy.key_for(consumed.email))
        LOGGER.info("reset_completed", extra={"user_id": consumed.user_id})
