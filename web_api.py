from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.contracts import HealthResponse
from app.api.http_setup import register_exception_handlers, register_http_middleware
from app.auth.email import EmailSender, create_email_sender
from app.auth.login_flow import LoginFlow
from app.auth.middleware import create_auth_middleware
from app.auth.rate_limiter import RateLimiter
from app.auth.recovery_flow import PasswordRecoveryFlow
from app.auth.repository import AuthRepository
from app.auth.router import create_auth_router
from app.auth.service import AuthService
from app.core.config import AppConfig
from app.core.logging import setup_logging
from app.core.security import SessionTokenCodec

APP_ROOT = Path(__file__).resolve().parent
LOGGER = logging.getLogger(__name__)


def build_repository(config: AppConfig, app_root: Path = APP_ROOT) -> AuthRepository:
    return AuthRepository(
        app_root,
        mongo_uri=config.store.mongo_uri,
        mongo_db=config.store.mongo_db,
        fallback_dir=config.store.fallback_dir,
    )


def create_app(
    config: AppConfig | None = None,
    *,
    repo: AuthRepository | None = None,
    email_sender: EmailSender | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Assemble the auth API; run with ``uvicorn web_api:create_app --factory``."""
    if config is None:
        load_dotenv()
        config = AppConfig.from_env()
        setup_logging(config.logging.level)

    repo = repo or build_repository(config)
    email_sender = email_sender or create_email_sender(
        config.email, production=config.security.is_production
    )
    codec = SessionTokenCodec(
        config.auth.secret_key,
        issuer=config.auth.issuer,
        default_ttl_seconds=config.auth.session_ttl_seconds,
        clock=clock,
    )
    rate_limiter = RateLimiter(repo, clock=clock)
    service = AuthService(repo, codec, config.auth, clock=clock)
    login_flow = LoginFlow(
        repo=repo,
        rate_limiter=rate_limiter,
        codec=codec,
        email_sender=email_sender,
        config=config.auth,
        policies=config.security.rate_limits,
        secure_cookies=config.security.is_production,
        clock=clock,
    )
    recovery_flow = PasswordRecoveryFlow(
        repo=repo,
        rate_limiter=rate_limiter,
        email_sender=email_sender,
        config=config.auth,
        policies=config.security.rate_limits,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await repo.ensure_indexes()
        await service.bootstrap_admin_user()
        try:
            yield
        finally:
            await repo.close()

    app = FastAPI(title="Portal Auth API", version="1.0.0", lifespan=lifespan)
    app.middleware("http")(create_auth_middleware(service))
    register_http_middleware(app, config=config, logger=LOGGER)
    # Last added runs first; preflights must reach CORS before the cookie check.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    register_exception_handlers(app, logger=LOGGER)

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    app.include_router(
        create_auth_router(
            login_flow=login_flow, recovery_flow=recovery_flow, service=service
        )
    )
    return app
