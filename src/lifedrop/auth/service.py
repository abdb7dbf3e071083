"""
Authentication business logic.

Handles user creation, e-mail verification, login lockout and password
reset. Verification and reset tokens are stored on the user row as SHA-256
hashes; only the raw token ever leaves the server (by e-mail).
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from lifedrop.auth.password import (
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from lifedrop.config import get_settings
from lifedrop.db.models import BloodType, User

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class DuplicateAccountError(ValueError):
    """Raised when the e-mail or phone number is already registered."""


class EmailNotVerifiedError(PermissionError):
    """Raised on login before the e-mail address has been verified."""


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower().strip()))
    return result.scalar_one_or_none()


async def get_user_by_phone(db: AsyncSession, contact_phone: str) -> User | None:
    """Fetch a user by contact phone."""
    result = await db.execute(select(User).where(User.contact_phone == contact_phone))
    return result.scalar_one_or_none()


async def get_blood_type(db: AsyncSession, blood_type_id: int) -> BloodType | None:
    """Fetch a blood type by ID."""
    result = await db.execute(select(BloodType).where(BloodType.id == blood_type_id))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def register_user(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    password: str,
    date_of_birth: date,
    blood_type_id: int,
    contact_phone: str,
    city: str,
) -> User:
    """
    Register a new, unverified user.

    Raises:
        PasswordStrengthError: If the password is too weak.
        DuplicateAccountError: If the e-mail or phone is already registered.
        ValueError: If the blood type does not exist.
    """
    validate_password_strength(password)

    if await get_blood_type(db, blood_type_id) is None:
        msg = "Invalid blood type"
        raise ValueError(msg)

    if await get_user_by_email(db, email) is not None:
        msg = "Email already registered"
        raise DuplicateAccountError(msg)
    if await get_user_by_phone(db, contact_phone) is not None:
        msg = "Phone number already registered"
        raise DuplicateAccountError(msg)

    user = User(
        name=name.strip(),
        email=email.lower().strip(),
        password_hash=hash_password(password),
        date_of_birth=date_of_birth,
        blood_type_id=blood_type_id,
        contact_phone=contact_phone,
        city=city.strip(),
        email_verified=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as e:
        # A concurrent registration took the e-mail or phone after the checks above.
        await db.rollback()
        msg = "Email or phone number already registered"
        raise DuplicateAccountError(msg) from e
    logger.info("user_created", user_id=user.id, email=user.email)
    return user


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


async def authenticate_user(
    db: AsyncSession,
    redis: Redis | None,
    email: str,
    password: str,
) -> User:
    """
    Authenticate a user with email + password.

    Raises:
        ValueError: If credentials are invalid.
        PermissionError: If the account is locked.
        EmailNotVerifiedError: If the e-mail address is not verified yet.
    """
    user = await get_user_by_email(db, email)
    if user is None:
        msg = "Invalid email or password"
        raise ValueError(msg)

    if redis is not None and await check_account_lockout(redis, user.id):
        msg = "Account temporarily locked. Try again later."
        raise PermissionError(msg)

    if not verify_password(password, user.password_hash):
        if redis is not None:
            await increment_failed_login(redis, user.id)
        msg = "Invalid email or password"
        raise ValueError(msg)

    if not user.email_verified:
        msg = "Please verify your email before logging in"
        raise EmailNotVerifiedError(msg)

    if redis is not None:
        await clear_failed_login(redis, user.id)

    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        await db.flush()
        logger.info("password_rehashed", user_id=user.id)

    return user


# ---------------------------------------------------------------------------
# Account lockout
# ---------------------------------------------------------------------------


async def check_account_lockout(redis: Redis, user_id: int) -> bool:
    """Check if the account is locked due to too many failed login attempts."""
    settings = get_settings()
    count_str = await redis.get(f"login_attempts:{user_id}")
    if count_str is None:
        return False
    return int(count_str) >= settings.account_lockout_threshold


async def increment_failed_login(redis: Redis, user_id: int) -> int:
    """Increment failed login counter. Returns the new count."""
    settings = get_settings()
    key = f"login_attempts:{user_id}"
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, settings.account_lockout_duration_minutes * 60)
    return int(count)


async def clear_failed_login(redis: Redis, user_id: int) -> None:
    """Clear the failed login counter after a successful login."""
    await redis.delete(f"login_attempts:{user_id}")


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


async def create_verification_token(db: AsyncSession, user: User) -> str:
    """
    Issue a new verification token, replacing any previous one.

    Returns the raw token to send to the user.
    """
    raw_token = secrets.token_urlsafe(32)
    user.verification_token_hash = hash_token(raw_token)
    await db.flush()
    return raw_token


async def verify_email_token(db: AsyncSession, raw_token: str) -> User:
    """
    Redeem a verification token. The token is cleared after use.

    Raises:
        ValueError: If the token is unknown or was already used.
    """
    result = await db.execute(select(User).where(User.verification_token_hash == hash_token(raw_token)))
    user = result.scalar_one_or_none()
    if user is None:
        msg = "Invalid or expired verification token"
        raise ValueError(msg)

    user.email_verified = True
    user.verification_token_hash = None
    await db.flush()
    logger.info("email_verified", user_id=user.id)
    return user


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


async def create_reset_token(db: AsyncSession, user: User) -> str:
    """
    Issue a password reset token, replacing any previous one.

    Returns the raw token to send to the user.
    """
    settings = get_settings()
    raw_token = secrets.token_urlsafe(32)
    user.reset_token_hash = hash_token(raw_token)
    user.reset_token_expires_at = datetime.now(timezone.utc) + timedelta(
        minutes=settings.password_reset_token_ttl_minutes
    )
    await db.flush()
    return raw_token


async def reset_password(db: AsyncSession, raw_token: str, new_password: str) -> User:
    """
    Set a new password using a reset token.

    Raises:
        PasswordStrengthError: If the new password is too weak.
        ValueError: If the token is invalid or expired.
    """
    validate_password_strength(new_password)

    result = await db.execute(select(User).where(User.reset_token_hash == hash_token(raw_token)))
    user = result.scalar_one_or_none()
    if user is None or user.reset_token_expires_at is None:
        msg = "Invalid or expired reset token"
        raise ValueError(msg)
    if _as_utc(user.reset_token_expires_at) < datetime.now(timezone.utc):
        msg = "Reset token has expired"
        raise ValueError(msg)

    user.password_hash = hash_password(new_password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    await db.flush()
    logger.info("password_reset", user_id=user.id)
    return user
