"""Request/response schemas for blood request endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator


class CreateRequestBody(BaseModel):
    """Post a new blood request."""

    blood_type_id: int
    city: str = Field(..., min_length=1, max_length=100)
    reason: str | None = Field(None, max_length=1000)
    date_needed: date | None = None

    @field_validator("city")
    @classmethod
    def city_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "City is required"
            raise ValueError(msg)
        return v.strip()

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class RequestResponse(BaseModel):
    """A blood request as shown on the dashboard and landing page."""

    request_id: int
    recipient_id: int
    recipient_name: str
    recipient_phone: str | None = None
    blood_type_id: int
    blood_type: str
    city: str
    reason: str | None = None
    date_requested: datetime
    date_needed: date | None = None
    status: str
    donor_name: str | None = None
    donor_phone: str | None = None


class CreateRequestResponse(BaseModel):
    message: str
    request: RequestResponse
    notified_donors: int


class RequestActionResponse(BaseModel):
    """Result of a lifecycle transition."""

    message: str
    request_id: int
    status: str
