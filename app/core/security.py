"""Security primitives: password hashing, one-time codes, signed tokens, cookies."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
import time
from typing import Any, Callable

DEFAULT_HASH_ROUNDS = 120_000
_HASH_ALGORITHM = "pbkdf2_sha256"


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def hash_password(password: str, *, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """Hash password with PBKDF2-HMAC-SHA256, a random salt and ``rounds`` cost."""
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return f"{_HASH_ALGORITHM}${rounds}${_b64url_encode(salt)}${_b64url_encode(derived)}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Check a password against a stored digest; malformed digests never match."""
    try:
        algo, rounds_raw, salt_b64, digest_b64 = stored_hash.split("$", 3)
        if algo != _HASH_ALGORITHM:
            return False
        rounds = int(rounds_raw)
        salt = _b64url_decode(salt_b64)
        expected = _b64url_decode(digest_b64)
    except (AttributeError, ValueError):
        return False

    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(derived, expected)


def generate_otp(length: int = 6) -> str:
    """Return a numeric code drawn uniformly from [10^(length-1), 10^length - 1]."""
    if length < 1:
        raise ValueError("OTP length must be positive")
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))


def codes_match(expected: Any, submitted: Any) -> bool:
    """Compare a stored and a submitted code as strings in constant time."""
    return hmac.compare_digest(str(expected).encode("utf-8"), str(submitted).encode("utf-8"))


def build_signed_token(payload: dict[str, Any], secret_key: str) -> str:
    """Create compact signed token using JWT-like 3-part structure."""
    header = {"alg": "HS256", "typ": "JWT"}
    header_part = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    signature = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    return f"{header_part}.{payload_part}.{_b64url_encode(signature)}"


def decode_signed_token(
    token: str, secret_key: str, *, now: float | None = None
) -> dict[str, Any]:
    """Decode and verify compact signed token, raising ``ValueError`` on failure."""
    try:
        header_part, payload_part, signature_part = token.split(".", 2)
        got_sig = _b64url_decode(signature_part)
    except (AttributeError, ValueError) as exc:
        raise ValueError("Malformed token") from exc

    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    expected_sig = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, got_sig):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    except ValueError as exc:
        raise ValueError("Invalid token payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid token payload")

    try:
        exp = float(payload.get("exp") or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token expiry") from exc
    current = time.time() if now is None else now
    if not exp or exp <= current:
        raise ValueError("Token expired")

    return payload


class SessionTokenCodec:
    """Signs and verifies the long-lived session credential kept in the cookie.

    The secret is injected at construction; nothing here reads the
    environment. ``verify`` swallows every decoding problem and answers
    ``None`` so callers only ever branch on presence.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        issuer: str,
        default_ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self._issuer = issuer
        self._default_ttl = int(default_ttl_seconds)
        self._clock = clock

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl

    def sign(self, payload: dict[str, Any], ttl_seconds: int | None = None) -> str:
        now_ts = int(self._clock())
        ttl = self._default_ttl if ttl_seconds is None else int(ttl_seconds)
        claims = {
            **payload,
            "iss": self._issuer,
            "iat": now_ts,
            "exp": now_ts + ttl,
        }
        return build_signed_token(claims, self._secret_key)

    def verify(self, token: str | None) -> dict[str, Any] | None:
        if not token:
            return None
        try:
            payload = decode_signed_token(token, self._secret_key, now=self._clock())
        except ValueError:
            return None
        if payload.get("iss") != self._issuer:
            return None
        return payload


def build_set_cookie(
    name: str,
    value: str,
    *,
    max_age: int | None = None,
    path: str = "/",
    http_only: bool = False,
    secure: bool = False,
) -> str:
    """Render a ``Set-Cookie`` header value; ``SameSite=Lax`` is always set."""
    parts = [f"{name}={value}"]
    if max_age is not None:
        parts.append(f"Max-Age={int(max_age)}")
    parts.append(f"Path={path or '/'}")
    if http_only:
        parts.append("HttpOnly")
    if secure:
        parts.append("Secure")
    parts.append("SameSite=Lax")
    return "; ".join(parts)
