"""
Blood request lifecycle.

A request moves ``active -> on_hold`` when a donor accepts it, back to
``active`` when either side cancels, and ``on_hold -> fulfilled`` when the
recipient confirms the donation. Every operation runs inside the caller's
session transaction; routers commit once on success and the session
dependency rolls back on any exception.

The accept path is a conditional ``UPDATE ... WHERE status = 'active'`` so
that two concurrent acceptors cannot both win. The partial unique index on
accepted notifications is the database backstop.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from lifedrop.config import get_settings
from lifedrop.db.models import BloodRequest, BloodType, Donation, RequestNotification, User
from lifedrop.requests.matching import (
    find_eligible_donors,
    normalize_city,
    record_match_notifications,
    upsert_notification,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class RequestNotFoundError(LookupError):
    """The blood request (or its accepted donor) does not exist."""


class NotRequestOwnerError(PermissionError):
    """The caller is not the recipient who owns the request."""


class RequestConflictError(ValueError):
    """The request is not in a state that allows the operation."""


class InvalidTransitionError(RequestConflictError):
    """A status change not present in VALID_TRANSITIONS."""


VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"on_hold"}),
    "on_hold": frozenset({"active", "fulfilled"}),
    "fulfilled": frozenset(),
}


def validate_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        msg = f"Cannot move a request from {current} to {target}"
        raise InvalidTransitionError(msg)


@dataclass
class RequestListing:
    """A request plus the counterpart the caller is allowed to see."""

    request: BloodRequest
    donor: User | None = None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_request(db: AsyncSession, request_id: int, *, for_update: bool = False) -> BloodRequest:
    """
    Fetch a request by ID.

    Raises:
        RequestNotFoundError: If no such request exists.
    """
    stmt = select(BloodRequest).where(BloodRequest.id == request_id)
    if for_update:
        stmt = stmt.with_for_update(of=BloodRequest)
    result = await db.execute(stmt)
    request = result.scalars().unique().one_or_none()
    if request is None:
        msg = "Request not found"
        raise RequestNotFoundError(msg)
    return request


async def _get_owned_request(db: AsyncSession, request_id: int, recipient: User) -> BloodRequest:
    request = await get_request(db, request_id, for_update=True)
    if request.recipient_id != recipient.id:
        msg = "You do not own this request"
        raise NotRequestOwnerError(msg)
    return request


async def get_notification(
    db: AsyncSession,
    request_id: int,
    donor_id: int,
    *,
    for_update: bool = False,
) -> RequestNotification | None:
    stmt = select(RequestNotification).where(
        RequestNotification.request_id == request_id,
        RequestNotification.donor_id == donor_id,
    )
    if for_update:
        stmt = stmt.with_for_update(of=RequestNotification)
    result = await db.execute(stmt)
    return result.scalars().unique().one_or_none()


async def get_accepted_notification(
    db: AsyncSession,
    request_id: int,
    *,
    for_update: bool = False,
) -> RequestNotification | None:
    """The single ``accepted`` notification of a request, if any."""
    stmt = select(RequestNotification).where(
        RequestNotification.request_id == request_id,
        RequestNotification.status == "accepted",
    )
    if for_update:
        stmt = stmt.with_for_update(of=RequestNotification)
    result = await db.execute(stmt)
    return result.scalars().unique().first()


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_request(
    db: AsyncSession,
    recipient: User,
    *,
    blood_type_id: int,
    city: str,
    reason: str | None = None,
    date_needed: date | None = None,
) -> tuple[BloodRequest, list[User]]:
    """
    Create an active request and match donors to it.

    Returns the request and the donors who were sent a notification.

    Raises:
        ValueError: If the blood type does not exist or the city is blank.
    """
    blood_type = await db.get(BloodType, blood_type_id)
    if blood_type is None:
        msg = "Invalid blood type"
        raise ValueError(msg)
    city = city.strip()
    if not city:
        msg = "City is required"
        raise ValueError(msg)

    now = datetime.now(timezone.utc)
    request = BloodRequest(
        recipient=recipient,
        blood_type=blood_type,
        city=city,
        reason=reason,
        date_requested=now,
        date_needed=date_needed,
        status="active",
    )
    db.add(request)
    await db.flush()

    donors = await find_eligible_donors(
        db,
        city=city,
        blood_type_id=blood_type_id,
        exclude_user_id=recipient.id,
        as_of=now.date(),
    )
    await record_match_notifications(db, request, donors)

    logger.info(
        "request_created",
        request_id=request.id,
        recipient_id=recipient.id,
        blood_type=blood_type.type,
        city=city,
        notified_donors=len(donors),
    )
    return request, donors


# ---------------------------------------------------------------------------
# Donor actions
# ---------------------------------------------------------------------------


async def accept_request(db: AsyncSession, request_id: int, donor: User) -> BloodRequest:
    """
    Accept an active request on behalf of ``donor``.

    Raises:
        RequestNotFoundError: If the request does not exist.
        RequestConflictError: If the donor owns it or it is no longer active.
    """
    request = await get_request(db, request_id)
    if request.recipient_id == donor.id:
        msg = "You cannot accept your own request"
        raise RequestConflictError(msg)

    result = await db.execute(
        update(BloodRequest)
        .where(BloodRequest.id == request_id, BloodRequest.status == "active")
        .values(status="on_hold")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        msg = "This request is no longer active"
        raise RequestConflictError(msg)
    request.status = "on_hold"

    try:
        await upsert_notification(db, request, donor, "accepted")
    except IntegrityError as e:
        msg = "This request is no longer active"
        raise RequestConflictError(msg) from e

    logger.info("request_accepted", request_id=request_id, donor_id=donor.id)
    return request


async def cancel_acceptance(db: AsyncSession, request_id: int, donor: User) -> BloodRequest:
    """
    Withdraw the donor's acceptance and reopen the request.

    Raises:
        RequestNotFoundError: If the request does not exist.
        RequestConflictError: If this donor does not currently hold the request.
    """
    request = await get_request(db, request_id, for_update=True)
    notification = await get_notification(db, request_id, donor.id, for_update=True)
    if notification is None or notification.status != "accepted" or request.status != "on_hold":
        msg = "You have not accepted this request"
        raise RequestConflictError(msg)

    validate_transition(request.status, "active")
    notification.status = "cancelled_by_donor"
    notification.updated_at = datetime.now(timezone.utc)
    request.status = "active"
    await db.flush()

    logger.info("acceptance_cancelled", request_id=request_id, donor_id=donor.id)
    return request


# ---------------------------------------------------------------------------
# Recipient actions
# ---------------------------------------------------------------------------


async def cancel_donor(db: AsyncSession, request_id: int, recipient: User) -> tuple[BloodRequest, User | None]:
    """
    Release the donor holding the request and reopen it.

    Returns the request and the released donor (None if no accepted row was found).

    Raises:
        RequestNotFoundError: If the request does not exist.
        NotRequestOwnerError: If the caller does not own the request.
        RequestConflictError: If the request is not on hold.
    """
    request = await _get_owned_request(db, request_id, recipient)
    if request.status != "on_hold":
        msg = "This request has no accepted donor to cancel"
        raise RequestConflictError(msg)

    validate_transition(request.status, "active")
    notification = await get_accepted_notification(db, request_id, for_update=True)
    donor: User | None = None
    if notification is None:
        logger.warning("accepted_notification_missing", request_id=request_id)
    else:
        notification.status = "cancelled_by_recipient"
        notification.updated_at = datetime.now(timezone.utc)
        donor = notification.donor
    request.status = "active"
    await db.flush()

    logger.info("donor_cancelled", request_id=request_id, donor_id=donor.id if donor else None)
    return request, donor


async def fulfill_request(
    db: AsyncSession,
    request_id: int,
    recipient: User,
) -> tuple[BloodRequest, Donation, User]:
    """
    Confirm the donation: close the request and record it in the donor's history.

    Returns the request, the new donation and the donor.

    Raises:
        RequestNotFoundError: If the request or its accepted donor does not exist.
        NotRequestOwnerError: If the caller does not own the request.
        RequestConflictError: If the request is not on hold.
    """
    request = await _get_owned_request(db, request_id, recipient)
    if request.status != "on_hold":
        msg = "Only requests with an accepted donor can be fulfilled"
        raise RequestConflictError(msg)

    notification = await get_accepted_notification(db, request_id, for_update=True)
    if notification is None:
        msg = "No accepted donor found for this request"
        raise RequestNotFoundError(msg)

    validate_transition(request.status, "fulfilled")
    today = datetime.now(timezone.utc).date()
    donor = notification.donor

    request.status = "fulfilled"
    notification.status = "fulfilled"
    notification.updated_at = datetime.now(timezone.utc)
    donation = Donation(
        donor_id=donor.id,
        recipient_id=recipient.id,
        request_id=request.id,
        donation_date=today,
    )
    db.add(donation)
    donor.last_donation_date = today
    await db.flush()

    logger.info("request_fulfilled", request_id=request_id, donor_id=donor.id, donation_id=donation.id)
    return request, donation, donor


async def delete_request(db: AsyncSession, request_id: int, recipient: User) -> None:
    """
    Delete a request together with its notifications and donation records.

    Raises:
        RequestNotFoundError: If the request does not exist.
        NotRequestOwnerError: If the caller does not own the request.
    """
    request = await _get_owned_request(db, request_id, recipient)

    await db.execute(delete(RequestNotification).where(RequestNotification.request_id == request_id))
    await db.execute(delete(Donation).where(Donation.request_id == request_id))
    await db.delete(request)
    await db.flush()

    logger.info("request_deleted", request_id=request_id, recipient_id=recipient.id)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def list_public_requests(db: AsyncSession, limit: int | None = None) -> list[BloodRequest]:
    """Latest active requests, newest first. No authentication required."""
    if limit is None:
        limit = get_settings().public_requests_limit
    result = await db.execute(
        select(BloodRequest)
        .where(BloodRequest.status == "active")
        .order_by(BloodRequest.date_requested.desc(), BloodRequest.id.desc())
        .limit(limit)
    )
    return list(result.scalars().unique().all())


async def list_my_requests(db: AsyncSession, recipient: User) -> list[RequestListing]:
    """Every request the user has posted, with the accepted donor while on hold."""
    result = await db.execute(
        select(BloodRequest)
        .where(BloodRequest.recipient_id == recipient.id)
        .order_by(BloodRequest.date_requested.desc(), BloodRequest.id.desc())
    )
    requests = list(result.scalars().unique().all())

    on_hold_ids = [r.id for r in requests if r.status == "on_hold"]
    donors: dict[int, User] = {}
    if on_hold_ids:
        accepted = await db.execute(
            select(RequestNotification).where(
                RequestNotification.request_id.in_(on_hold_ids),
                RequestNotification.status == "accepted",
            )
        )
        donors = {n.request_id: n.donor for n in accepted.scalars().unique().all()}

    return [RequestListing(request=r, donor=donors.get(r.id)) for r in requests]


async def list_available_requests(db: AsyncSession, donor: User) -> list[BloodRequest]:
    """
    Active requests in the donor's city posted by someone else.

    Blood type is not filtered here; matching by blood type happens when
    notifications are sent.
    """
    result = await db.execute(
        select(BloodRequest)
        .where(
            BloodRequest.status == "active",
            func.lower(func.trim(BloodRequest.city)) == normalize_city(donor.city),
            BloodRequest.recipient_id != donor.id,
        )
        .order_by(BloodRequest.date_requested.desc(), BloodRequest.id.desc())
    )
    return list(result.scalars().unique().all())


async def list_accepted_requests(db: AsyncSession, donor: User) -> list[BloodRequest]:
    """On-hold requests this donor has accepted."""
    result = await db.execute(
        select(BloodRequest)
        .join(RequestNotification, RequestNotification.request_id == BloodRequest.id)
        .where(
            BloodRequest.status == "on_hold",
            RequestNotification.donor_id == donor.id,
            RequestNotification.status == "accepted",
        )
        .order_by(BloodRequest.date_requested.desc(), BloodRequest.id.desc())
    )
    return list(result.scalars().unique().all())
