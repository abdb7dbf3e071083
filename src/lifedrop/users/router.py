"""User router: the caller's own profile."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from lifedrop.auth.dependencies import get_current_user
from lifedrop.db.models import User
from lifedrop.requests.eligibility import is_eligible, next_eligible_date
from lifedrop.users.schemas import ProfileResponse

router = APIRouter(prefix="/api", tags=["Users"])


def _profile_response(user: User) -> ProfileResponse:
    return ProfileResponse(
        user_id=user.id,
        name=user.name,
        email=user.email,
        date_of_birth=user.date_of_birth,
        contact_phone=user.contact_phone,
        city=user.city,
        blood_type_id=user.blood_type_id,
        blood_type=user.blood_type.type,
        email_verified=user.email_verified,
        last_donation_date=user.last_donation_date,
        is_eligible=is_eligible(user.last_donation_date, datetime.now(timezone.utc).date()),
        next_eligible_date=next_eligible_date(user.last_donation_date),
        created_at=user.created_at,
    )


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Get own profile, including donation eligibility."""
    return _profile_response(user)
