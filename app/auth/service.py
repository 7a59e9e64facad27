"""Account service: provisioning, session-cookie resolution and password change."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable

from app.api.errors import ApiError, ApiErrorCode, WeakPassword
from app.auth.models import AuthUser
from app.auth.password_policy import validate_password
from app.auth.repository import AuthRepository, normalize_email
from app.core.config import AuthConfig
from app.core.security import SessionTokenCodec, hash_password

LOGGER = logging.getLogger(__name__)


class AuthService:
    def __init__(
        self,
        repo: AuthRepository,
        codec: SessionTokenCodec,
        config: AuthConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repo
        self._codec = codec
        self._config = config
        self._clock = clock

    async def create_user(
        self,
        email: str,
        password: str,
        *,
        role: str = "client",
        name: str = "",
        must_change_password: bool = False,
        email_verified: bool = False,
    ) -> AuthUser:
        """Provision an account, replacing any account with the same email."""
        password_hash = await asyncio.to_thread(
            hash_password, password, rounds=self._config.password_hash_rounds
        )
        existing = await self._repo.get_user_by_email(email)
        user = AuthUser(
            user_id=existing.user_id if existing is not None else uuid.uuid4().hex,
            email=normalize_email(email),
            name=name,
            password_hash=password_hash,
            role=role,
            must_change_password=must_change_password,
            email_verified=email_verified,
        )
        await self._repo.upsert_user(user)
        return user

    async def bootstrap_admin_user(self) -> None:
        """Ensure the configured admin account exists."""
        if not self._config.admin_email or not self._config.admin_password:
            return
        if await self._repo.get_user_by_email(self._config.admin_email) is not None:
            return
        await self.create_user(
            self._config.admin_email,
            self._config.admin_password,
            role="admin",
            must_change_password=True,
        )
        LOGGER.info("bootstrap_admin_created")

    def resolve_session(self, token: str | None) -> dict[str, Any] | None:
        """Return ``{user_id, role}`` for a valid session token, else ``None``."""
        payload = self._codec.verify(token)
        if payload is None or not payload.get("userId"):
            return None
        return {"user_id": str(payload["userId"]), "role": str(payload.get("role") or "")}

    async def current_user(self, token: str | None) -> AuthUser | None:
        claims = self.resolve_session(token)
        if claims is None:
            return None
        return await self._repo.get_user_by_id(claims["user_id"])

    async def change_password(self, user_id: str, password: str) -> None:
        violations = validate_password(password)
        if violations:
            raise WeakPassword(violations)

        user = await self._repo.get_user_by_id(user_id)
        if user is None:
            raise ApiError(
                status_code=404, error_code=ApiErrorCode.USER_NOT_FOUND, message="not found"
            )

        password_hash = await asyncio.to_thread(
            hash_password, password, rounds=self._config.password_hash_rounds
        )
        await self._repo.update_user(
            user.user_id,
            {
                "password_hash": password_hash,
                "must_change_password": False,
                "password_changed_at": self._clock(),
            },
        )
        LOGGER.info("password_changed", extra={"user_id": user.user_id})
