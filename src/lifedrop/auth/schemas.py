"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

import re
from datetime import date

from pydantic import BaseModel, EmailStr, Field, field_validator

# Bangladeshi 11-digit mobile numbers: 013x..019x
BD_PHONE_PATTERN = re.compile(r"^01[3-9]\d{8}$")


class RegisterRequest(BaseModel):
    """Account registration. New accounts start unverified."""

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    date_of_birth: date
    blood_type_id: int
    contact_phone: str
    city: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()

    @field_validator("contact_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Require an 11-digit Bangladeshi mobile number (e.g. 017...)."""
        v = v.strip()
        if not BD_PHONE_PATTERN.match(v):
            msg = "Please enter a valid 11-digit phone number (e.g., 017...)"
            raise ValueError(msg)
        return v

    @field_validator("name", "city")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return v.strip()


class LoginRequest(BaseModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class EmailOnlyRequest(BaseModel):
    """Body for forgot-password and resend-verification."""

    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class ResetPasswordRequest(BaseModel):
    """Reset password with a valid token."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class TokenUser(BaseModel):
    """Identity embedded in the login response."""

    id: int
    name: str
    email: str


class TokenResponse(BaseModel):
    """Token response returned after a successful login."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: TokenUser


class MessageResponse(BaseModel):
    message: str
