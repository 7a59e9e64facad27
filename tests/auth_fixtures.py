from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from app.auth.email import EmailDeliveryError, OutgoingEmail
from app.auth.login_flow import LoginFlow
from app.auth.models import AuthUser
from app.auth.rate_limiter import RateLimiter
from app.auth.recovery_flow import PasswordRecoveryFlow
from app.auth.repository import AuthRepository
from app.auth.service import AuthService
from app.core.config import (
    AppConfig,
    AuthConfig,
    EmailConfig,
    LoggingConfig,
    SecurityConfig,
    StoreConfig,
)
from app.core.security import SessionTokenCodec

STRONG_PASSWORD = "Str0ng!Pass"
ALLOWED_ORIGIN = "http://localhost:3000"
START_TIME = 1_700_000_000.0

_CODE_RE = re.compile(r"verification code is: (\d+)")


class FakeClock:
    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RecordingEmailSender:
    sent: list[OutgoingEmail] = field(default_factory=list)
    fail: bool = False

    async def send(self, message: OutgoingEmail) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp unavailable")
        self.sent.append(message)

    def last_code(self) -> str:
        match = _CODE_RE.search(self.sent[-1].text)
        assert match is not None
        return match.group(1)


def build_config(*, environment: str = "development") -> AppConfig:
    return AppConfig(
        auth=AuthConfig(
            secret_key="test-secret",
            issuer="portal-auth-test",
            password_hash_rounds=1_000,
            admin_email="admin@test.local",
            admin_password="Adm1n!Pass",
        ),
        store=StoreConfig(),
        email=EmailConfig(),
        logging=LoggingConfig(level="INFO"),
        security=SecurityConfig(
            environment=environment,
            cors_allowed_origins=[ALLOWED_ORIGIN],
            request_max_bytes=1024,
        ),
    )


@dataclass
class AuthStack:
    config: AppConfig
    clock: FakeClock
    repo: AuthRepository
    sender: RecordingEmailSender
    limiter: RateLimiter
    codec: SessionTokenCodec
    service: AuthService
    login: LoginFlow
    recovery: PasswordRecoveryFlow


def build_stack(tmp_path: Path, *, environment: str = "development") -> AuthStack:
    config = build_config(environment=environment)
    clock = FakeClock()
    repo = AuthRepository(tmp_path)
    sender = RecordingEmailSender()
    limiter = RateLimiter(repo, clock=clock)
    codec = SessionTokenCodec(
        config.auth.secret_key,
        issuer=config.auth.issuer,
        default_ttl_seconds=config.auth.session_ttl_seconds,
        clock=clock,
    )
    service = AuthService(repo, codec, config.auth, clock=clock)
    login = LoginFlow(
        repo=repo,
        rate_limiter=limiter,
        codec=codec,
        email_sender=sender,
        config=config.auth,
        policies=config.security.rate_limits,
        secure_cookies=config.security.is_production,
        clock=clock,
    )
    recovery = PasswordRecoveryFlow(
        repo=repo,
        rate_limiter=limiter,
        email_sender=sender,
        config=config.auth,
        policies=config.security.rate_limits,
        clock=clock,
    )
    return AuthStack(config, clock, repo, sender, limiter, codec, service, login, recovery)


async def seed_user(
    stack: AuthStack,
    email: str = "a@example.com",
    *,
    password: str = STRONG_PASSWORD,
    role: str = "client",
    must_change_password: bool = False,
) -> AuthUser:
    return await stack.service.create_user(
        email,
        password,
        role=role,
        name="Ada",
        must_change_password=must_change_password,
    )
