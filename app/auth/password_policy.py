"""Password acceptance rules applied before any password is hashed."""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")


def validate_password(password: str) -> list[str]:
    """Return every violated rule; an empty list means the password is acceptable."""
    if not isinstance(password, str):
        return ["Password must be a string"]

    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not _UPPER.search(password):
        errors.append("Password must contain at least one uppercase letter")
    if not _LOWER.search(password):
        errors.append("Password must contain at least one lowercase letter")
    if not _DIGIT.search(password):
        errors.append("Password must contain at least one number")
    if not _SYMBOL.search(password):
        errors.append("Password must contain at least one special character")
    return errors
