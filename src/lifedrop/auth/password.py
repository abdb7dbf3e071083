"""Argon2id password hashing and the account password policy."""

from __future__ import annotations

from collections.abc import Callable

import argon2

from lifedrop.config import get_settings

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)


class PasswordStrengthError(ValueError):
    """Raised when a password does not meet strength requirements."""


def hash_password(password: str) -> str:
    """Hash a password using argon2id. Returns the full hash string."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """True on a match. Mismatches and unreadable hashes both give False."""
    try:
        return _hasher.verify(password_hash, password)
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def check_needs_rehash(password_hash: str) -> bool:
    return _hasher.check_needs_rehash(password_hash)


_CHARACTER_RULES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (str.isupper, "one uppercase letter"),
    (str.islower, "one lowercase letter"),
    (str.isdigit, "one digit"),
)


def validate_password_strength(password: str) -> None:
    """
    Enforce the password policy.

    Length bounds come from settings. Every rule in ``_CHARACTER_RULES`` must
    match at least one character. Raises PasswordStrengthError naming the
    first rule that fails.
    """
    settings = get_settings()
    if not password or not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if not settings.password_min_length <= len(password) <= settings.password_max_length:
        msg = (
            f"Password must be between {settings.password_min_length} "
            f"and {settings.password_max_length} characters"
        )
        raise PasswordStrengthError(msg)
    for predicate, requirement in _CHARACTER_RULES:
        if not any(predicate(c) for c in password):
            msg = f"Password must contain at least {requirement}"
            raise PasswordStrengthError(msg)
