"""Authentication router: registration, e-mail verification, login and password reset."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from lifedrop.auth.jwt import create_access_token
from lifedrop.auth.password import PasswordStrengthError
from lifedrop.auth.schemas import (
    EmailOnlyRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    TokenUser,
)
from lifedrop.auth.service import (
    DuplicateAccountError,
    EmailNotVerifiedError,
    authenticate_user,
    create_reset_token,
    create_verification_token,
    get_user_by_email,
    register_user,
    reset_password,
    verify_email_token,
)
from lifedrop.config import get_settings
from lifedrop.database import get_session
from lifedrop.email.service import get_email_service
from lifedrop.redis_client import get_optional_redis

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["Authentication"])

_GENERIC_EMAIL_REPLY = "If that email is registered, a message has been sent."


async def _send_email(to: str, template_name: str, context: dict[str, Any]) -> None:
    """Deliver an account e-mail after the response. Failures are logged only."""
    try:
        email_service = get_email_service()
        await email_service.send_template(to=to, template_name=template_name, context=context)
    except Exception:
        logger.exception("account_email_failed", to=to, template=template_name)


def _verify_url(raw_token: str) -> str:
    settings = get_settings()
    return f"{settings.api_base_url}/api/verify-email?token={raw_token}"


@router.post("/register", response_model=MessageResponse, status_code=201)
async def register(
    body: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Create an unverified account and e-mail a verification link."""
    try:
        user = await register_user(
            db,
            name=body.name,
            email=body.email,
            password=body.password,
            date_of_birth=body.date_of_birth,
            blood_type_id=body.blood_type_id,
            contact_phone=body.contact_phone,
            city=body.city,
        )
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except DuplicateAccountError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    raw_token = await create_verification_token(db, user)
    await db.commit()

    background_tasks.add_task(
        _send_email,
        user.email,
        "verify_email",
        {"name": user.name, "verify_url": _verify_url(raw_token)},
    )
    return MessageResponse(message="Registration successful! Please check your email to verify your account.")


@router.get("/verify-email", response_model=MessageResponse)
async def verify_email_endpoint(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Redeem a one-time verification token."""
    try:
        await verify_email_token(db, token)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    body: EmailOnlyRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
) -> MessageResponse:
    """Issue a fresh verification token. Always returns 200."""
    user = await get_user_by_email(db, body.email)
    if user is None or user.email_verified:
        return MessageResponse(message=_GENERIC_EMAIL_REPLY)

    # 1 per 5 minutes
    if redis is not None:
        cooldown_key = f"resend_cooldown:{user.id}"
        if await redis.get(cooldown_key):
            raise HTTPException(status_code=429, detail="Please wait before requesting another verification email")
        await redis.set(cooldown_key, "1", ex=300)

    raw_token = await create_verification_token(db, user)
    await db.commit()

    background_tasks.add_task(
        _send_email,
        user.email,
        "verify_email",
        {"name": user.name, "verify_url": _verify_url(raw_token)},
    )
    return MessageResponse(message=_GENERIC_EMAIL_REPLY)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
) -> TokenResponse:
    """Login with email + password."""
    try:
        user = await authenticate_user(db, redis, body.email, body.password)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except EmailNotVerifiedError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    except PermissionError as e:
        raise HTTPException(status_code=429, detail=str(e)) from e

    await db.commit()
    settings = get_settings()
    logger.info("user_logged_in", user_id=user.id)
    return TokenResponse(
        token=create_access_token(user.id, user.name, user.email),
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=TokenUser(id=user.id, name=user.name, email=user.email),
    )


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: EmailOnlyRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Request a password reset e-mail. Always returns 200."""
    user = await get_user_by_email(db, body.email)
    if user is not None:
        settings = get_settings()
        raw_token = await create_reset_token(db, user)
        await db.commit()
        reset_url = f"{settings.frontend_base_url}/reset-password.html?token={raw_token}"
        background_tasks.add_task(
            _send_email,
            user.email,
            "password_reset",
            {"reset_url": reset_url, "expires_minutes": settings.password_reset_token_ttl_minutes},
        )

    return MessageResponse(message=_GENERIC_EMAIL_REPLY)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password_endpoint(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Set a new password with a valid reset token."""
    try:
        await reset_password(db, body.token, body.new_password)
    except ValueError as e:
        # PasswordStrengthError is a ValueError too
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return MessageResponse(message="Password has been reset. You can now log in.")
