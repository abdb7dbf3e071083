"""Blood type reference data."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifedrop.db.models import BloodType

logger = logging.getLogger(__name__)

BLOOD_TYPES: tuple[str, ...] = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")


async def seed_blood_types(db: AsyncSession) -> int:
    """Insert any missing blood types. Idempotent; returns the number inserted."""
    result = await db.execute(select(BloodType.type))
    existing = set(result.scalars().all())

    inserted = 0
    for label in BLOOD_TYPES:
        if label not in existing:
            db.add(BloodType(type=label))
            inserted += 1

    if inserted:
        await db.commit()
        logger.info("Seeded %d blood types", inserted)
    return inserted
