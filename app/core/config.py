"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

FIFTEEN_MINUTES = 15 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RateLimitPolicy:
    """Fixed-window attempt budget for one sensitive concern."""

    prefix: str
    max_attempts: int
    window_seconds: int = FIFTEEN_MINUTES

    def key_for(self, subject: str) -> str:
        """Return the limiter key for a subject such as a normalized email."""
        return f"{self.prefix}:{subject}"


@dataclass(frozen=True)
class RateLimitPolicies:
    """Per-endpoint rate-limit policies."""

    login: RateLimitPolicy = RateLimitPolicy("login", 5)
    verify: RateLimitPolicy = RateLimitPolicy("verify", 10)
    resend_login: RateLimitPolicy = RateLimitPolicy("resend-login", 3)
    forgot_password: RateLimitPolicy = RateLimitPolicy("forgot-password", 5)
    resend_reset: RateLimitPolicy = RateLimitPolicy("resend-reset", 3)
    verify_reset: RateLimitPolicy = RateLimitPolicy("verify-reset", 10)


@dataclass(frozen=True)
class AuthConfig:
    """Authentication-related configuration."""

    secret_key: str
    issuer: str = "portal-auth"
    session_ttl_seconds: int = 7 * 24 * 60 * 60
    otp_length: int = 6
    login_code_ttl_seconds: int = 10 * 60
    login_session_ttl_seconds: int = FIFTEEN_MINUTES
    reset_code_ttl_seconds: int = 10 * 60
    reset_session_ttl_seconds: int = 30 * 60
    password_hash_rounds: int = 120_000
    admin_email: str = ""
    admin_password: str = ""


@dataclass(frozen=True)
class StoreConfig:
    """Document store connection settings."""

    mongo_uri: str = ""
    mongo_db: str = "portal"
    fallback_dir: str = "runtime/auth_store"


@dataclass(frozen=True)
class EmailConfig:
    """Outgoing mail (SMTP) settings."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "Portal"
    use_tls: bool = True

    @property
    def configured(self) -> bool:
        """Return whether enough SMTP settings exist to deliver real mail."""
        return bool(self.smtp_host and (self.from_email or self.smtp_username))


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "INFO"


@dataclass(frozen=True)
class SecurityConfig:
    """API perimeter security settings."""

    environment: str = "development"
    cors_allowed_origins: list[str] = field(default_factory=list)
    request_max_bytes: int = 64 * 1024
    rate_limits: RateLimitPolicies = field(default_factory=RateLimitPolicies)

    @property
    def is_production(self) -> bool:
        """Return whether the app runs with production delivery settings."""
        return self.environment == "production"


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    auth: AuthConfig
    store: StoreConfig
    email: EmailConfig
    logging: LoggingConfig
    security: SecurityConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build app config from process environment."""
        secret_key = os.getenv("AUTH_SECRET_KEY", "").strip()
        if not secret_key:
            raise RuntimeError("AUTH_SECRET_KEY must be set to sign session tokens")

        window = _env_int("RATE_LIMIT_WINDOW_SECONDS", FIFTEEN_MINUTES)
        rate_limits = RateLimitPolicies(
            login=RateLimitPolicy(
                "login", _env_int("LOGIN_RATE_LIMIT_MAX_ATTEMPTS", 5), window
            ),
            verify=RateLimitPolicy(
                "verify", _env_int("VERIFY_RATE_LIMIT_MAX_ATTEMPTS", 10), window
            ),
            resend_login=RateLimitPolicy(
                "resend-login", _env_int("RESEND_LOGIN_RATE_LIMIT_MAX_ATTEMPTS", 3), window
            ),
            forgot_password=RateLimitPolicy(
                "forgot-password",
                _env_int("FORGOT_PASSWORD_RATE_LIMIT_MAX_ATTEMPTS", 5),
                window,
            ),
            resend_reset=RateLimitPolicy(
                "resend-reset", _env_int("RESEND_RESET_RATE_LIMIT_MAX_ATTEMPTS", 3), window
            ),
            verify_reset=RateLimitPolicy(
                "verify-reset", _env_int("VERIFY_RESET_RATE_LIMIT_MAX_ATTEMPTS", 10), window
            ),
        )
        cors_allowed_origins = [
            origin.strip()
            for origin in os.getenv(
                "CORS_ALLOWED_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if origin.strip()
        ]
        smtp_username = os.getenv("SMTP_USERNAME", "").strip()

        return AppConfig(
            auth=AuthConfig(
                secret_key=secret_key,
                issuer=os.getenv("AUTH_ISSUER", "portal-auth").strip() or "portal-auth",
                session_ttl_seconds=_env_int("AUTH_SESSION_TTL_SECONDS", 7 * 24 * 60 * 60),
                otp_length=_env_int("AUTH_OTP_LENGTH", 6),
                password_hash_rounds=_env_int("AUTH_PASSWORD_HASH_ROUNDS", 120_000),
                admin_email=os.getenv("AUTH_ADMIN_EMAIL", "").strip().lower(),
                admin_password=os.getenv("AUTH_ADMIN_PASSWORD", "").strip(),
            ),
            store=StoreConfig(
                mongo_uri=os.getenv("MONGODB_URI", "").strip(),
                mongo_db=os.getenv("MONGODB_DB", "portal").strip() or "portal",
                fallback_dir=os.getenv("AUTH_STORE_DIR", "runtime/auth_store").strip()
                or "runtime/auth_store",
            ),
            email=EmailConfig(
                smtp_host=os.getenv("SMTP_HOST", "").strip(),
                smtp_port=_env_int("SMTP_PORT", 587),
                smtp_username=smtp_username,
                smtp_password=os.getenv("SMTP_PASSWORD", "").strip(),
                from_email=os.getenv("EMAIL_FROM", "").strip() or smtp_username,
                from_name=os.getenv("EMAIL_FROM_NAME", "Portal").strip() or "Portal",
                use_tls=_env_flag("SMTP_USE_TLS", "1"),
            ),
            logging=LoggingConfig(level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"),
            security=SecurityConfig(
                environment=os.getenv("APP_ENV", "development").strip().lower()
                or "development",
                cors_allowed_origins=cors_allowed_origins,
                request_max_bytes=_env_int("REQUEST_MAX_BYTES", 64 * 1024),
                rate_limits=rate_limits,
            ),
        )
