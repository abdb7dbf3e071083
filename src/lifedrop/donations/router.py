"""Donation history router."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lifedrop.auth.dependencies import get_current_user
from lifedrop.database import get_session
from lifedrop.db.models import Donation, User
from lifedrop.donations.schemas import DonationResponse
from lifedrop.donations.service import list_donor_history

router = APIRouter(prefix="/api/donations", tags=["Donations"])


def _donation_response(donation: Donation) -> DonationResponse:
    # The originating request may have been deleted since.
    request = donation.request
    return DonationResponse(
        donation_id=donation.id,
        request_id=donation.request_id,
        recipient_name=donation.recipient.name,
        blood_type_donated=request.blood_type.type if request else None,
        request_city=request.city if request else None,
        donation_date=donation.donation_date,
    )


@router.get("/myhistory", response_model=list[DonationResponse])
async def my_history(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[DonationResponse]:
    """Donations the caller has made, newest first."""
    donations = await list_donor_history(db, user.id)
    return [_donation_response(d) for d in donations]
