from __future__ import annotations

from app.core.security import (
    SessionTokenCodec,
    build_set_cookie,
    codes_match,
    generate_otp,
    hash_password,
    verify_password,
)
from tests.auth_fixtures import FakeClock


def test_hash_password_round_trip_and_salting() -> None:
    first = hash_password("Secr3t!pw", rounds=1_000)
    second = hash_password("Secr3t!pw", rounds=1_000)

    assert first != second
    assert first.startswith("pbkdf2_sha256$1000$")
    assert verify_password("Secr3t!pw", first)
    assert not verify_password("secr3t!pw", first)


def test_verify_password_rejects_malformed_digest() -> None:
    assert not verify_password("anything", "")
    assert not verify_password("anything", "bcrypt$10$abc$def")
    assert not verify_password("anything", "pbkdf2_sha256$notanumber$abc$def")


def test_generate_otp_has_exact_length_and_no_leading_zero() -> None:
    codes = [generate_otp(6) for _ in range(200)]

    assert all(len(code) == 6 and code.isdigit() for code in codes)
    assert all(100_000 <= int(code) <= 999_999 for code in codes)
    assert len(generate_otp(4)) == 4


def test_codes_match_compares_as_text() -> None:
    assert codes_match("123456", "123456")
    assert codes_match(123456, "123456")
    assert not codes_match("012345", "12345")


def test_session_token_codec_round_trip() -> None:
    clock = FakeClock()
    codec = SessionTokenCodec("k", issuer="portal", clock=clock)

    payload = codec.verify(codec.sign({"userId": "u1", "role": "admin"}))

    assert payload is not None
    assert payload["userId"] == "u1"
    assert payload["role"] == "admin"
    assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60


def test_session_token_codec_returns_none_on_any_failure() -> None:
    clock = FakeClock()
    codec = SessionTokenCodec("k", issuer="portal", clock=clock)
    token = codec.sign({"userId": "u1", "role": "client"}, ttl_seconds=60)
    header, payload, signature = token.split(".")

    assert codec.verify("") is None
    assert codec.verify("not-a-token") is None
    assert codec.verify(f"{header}.{payload}x.{signature}") is None
    assert SessionTokenCodec("other", issuer="portal", clock=clock).verify(token) is None
    assert SessionTokenCodec("k", issuer="elsewhere", clock=clock).verify(token) is None

    clock.advance(61)
    assert codec.verify(token) is None


def test_build_set_cookie_renders_requested_attributes() -> None:
    cookie = build_set_cookie("session", "abc", max_age=604800, http_only=True, secure=True)

    assert cookie == "session=abc; Max-Age=604800; Path=/; HttpOnly; Secure; SameSite=Lax"


def test_build_set_cookie_omits_flags_unless_requested() -> None:
    cookie = build_set_cookie("session", "abc")

    assert cookie == "session=abc; Path=/; SameSite=Lax"
