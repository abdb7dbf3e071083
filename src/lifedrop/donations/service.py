"""Donation history queries."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from lifedrop.db.models import Donation

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def list_donor_history(db: AsyncSession, donor_id: int) -> list[Donation]:
    """A donor's recorded donations, newest first."""
    result = await db.execute(
        select(Donation)
        .where(Donation.donor_id == donor_id)
        .order_by(Donation.donation_date.desc(), Donation.id.desc())
    )
    return list(result.scalars().unique().all())
