"""
Donor matching.

Finds the donors a new blood request should reach and records one
``sent`` notification per donor. Runs inside the caller's transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, or_, select

from lifedrop.db.models import BloodRequest, RequestNotification, User
from lifedrop.requests.eligibility import eligibility_cutoff

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def normalize_city(city: str) -> str:
    return city.strip().lower()


async def find_eligible_donors(
    db: AsyncSession,
    city: str,
    blood_type_id: int,
    exclude_user_id: int | None = None,
    as_of: date | datetime | None = None,
) -> list[User]:
    """
    Verified users in the same city with the same blood type who may donate now.

    City comparison ignores case and surrounding whitespace. No ranking or limit.
    """
    cutoff = eligibility_cutoff(as_of or datetime.now(timezone.utc).date())
    stmt = (
        select(User)
        .where(
            func.lower(func.trim(User.city)) == normalize_city(city),
            User.blood_type_id == blood_type_id,
            User.email_verified.is_(True),
            or_(User.last_donation_date.is_(None), User.last_donation_date <= cutoff),
        )
        .order_by(User.id)
    )
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)

    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


async def upsert_notification(
    db: AsyncSession,
    request: BloodRequest,
    donor: User,
    status: str,
) -> RequestNotification:
    """Set the (request, donor) notification to ``status``, creating it if needed."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(RequestNotification).where(
            RequestNotification.request_id == request.id,
            RequestNotification.donor_id == donor.id,
        )
    )
    notification = result.scalars().unique().one_or_none()
    if notification is None:
        notification = RequestNotification(
            request_id=request.id,
            donor=donor,
            status=status,
            created_at=now,
            updated_at=now,
        )
        db.add(notification)
    else:
        notification.status = status
        notification.updated_at = now
    await db.flush()
    return notification


async def record_match_notifications(
    db: AsyncSession,
    request: BloodRequest,
    donors: Sequence[User],
) -> int:
    """Record a ``sent`` notification for every matched donor. Returns the count."""
    for donor in donors:
        await upsert_notification(db, request, donor, "sent")
    logger.info("donors_matched", request_id=request.id, donor_count=len(donors))
    return len(donors)
