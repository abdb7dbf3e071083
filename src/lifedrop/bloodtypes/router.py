"""Blood type reference data."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lifedrop.database import get_session
from lifedrop.db.models import BloodType

router = APIRouter(prefix="/api", tags=["Reference"])


class BloodTypeResponse(BaseModel):
    blood_type_id: int
    type: str


@router.get("/bloodtypes", response_model=list[BloodTypeResponse])
async def list_blood_types(
    db: AsyncSession = Depends(get_session),
) -> list[BloodTypeResponse]:
    """All blood types, for registration and request forms."""
    result = await db.execute(select(BloodType).order_by(BloodType.id))
    return [BloodTypeResponse(blood_type_id=bt.id, type=bt.type) for bt in result.scalars().all()]
