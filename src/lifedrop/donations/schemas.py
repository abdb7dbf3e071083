"""Response schemas for donation history."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class DonationResponse(BaseModel):
    donation_id: int
    request_id: int | None = None
    recipient_name: str
    blood_type_donated: str | None = None
    request_city: str | None = None
    donation_date: date
