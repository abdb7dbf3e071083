"""Response schemas for user endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class ProfileResponse(BaseModel):
    """The caller's own profile. Never includes the password hash."""

    user_id: int
    name: str
    email: str
    date_of_birth: date
    contact_phone: str
    city: str
    blood_type_id: int
    blood_type: str
    email_verified: bool
    last_donation_date: date | None = None
    is_eligible: bool
    next_eligible_date: date | None = None
    created_at: datetime | None = None
