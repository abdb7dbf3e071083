"""Blood request router: all /api/requests/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from lifedrop.auth.dependencies import get_current_user
from lifedrop.database import get_session
from lifedrop.db.models import BloodRequest, User
from lifedrop.requests import notifier
from lifedrop.requests.eligibility import next_eligible_date
from lifedrop.requests.schemas import (
    CreateRequestBody,
    CreateRequestResponse,
    RequestActionResponse,
    RequestResponse,
)
from lifedrop.requests.service import (
    NotRequestOwnerError,
    RequestConflictError,
    RequestNotFoundError,
    accept_request,
    cancel_acceptance,
    cancel_donor,
    create_request,
    delete_request,
    fulfill_request,
    get_accepted_notification,
    get_request,
    list_accepted_requests,
    list_available_requests,
    list_my_requests,
    list_public_requests,
)

router = APIRouter(prefix="/api/requests", tags=["Blood Requests"])

_LIFECYCLE_ERRORS = (RequestNotFoundError, NotRequestOwnerError, RequestConflictError)


def _http_error(exc: Exception) -> HTTPException:
    """Map a lifecycle error onto its HTTP status."""
    if isinstance(exc, RequestNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotRequestOwnerError):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _request_response(
    request: BloodRequest,
    *,
    donor: User | None = None,
    show_recipient_phone: bool = False,
) -> RequestResponse:
    return RequestResponse(
        request_id=request.id,
        recipient_id=request.recipient_id,
        recipient_name=request.recipient.name,
        recipient_phone=request.recipient.contact_phone if show_recipient_phone else None,
        blood_type_id=request.blood_type_id,
        blood_type=request.blood_type.type,
        city=request.city,
        reason=request.reason,
        date_requested=request.date_requested,
        date_needed=request.date_needed,
        status=request.status,
        donor_name=donor.name if donor else None,
        donor_phone=donor.contact_phone if donor else None,
    )


def _contact(user: User) -> notifier.Recipient:
    return notifier.Recipient(email=user.email, name=user.name)


# ---------------------------------------------------------------------------
# Listings (declared before /{request_id})
# ---------------------------------------------------------------------------


@router.get("/public", response_model=list[RequestResponse])
async def public_requests(
    db: AsyncSession = Depends(get_session),
) -> list[RequestResponse]:
    """Latest active requests for the landing page. No authentication."""
    requests = await list_public_requests(db)
    return [_request_response(r) for r in requests]


@router.get("/myrequests", response_model=list[RequestResponse])
async def my_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[RequestResponse]:
    """Requests posted by the caller, with the accepted donor's contact while on hold."""
    listings = await list_my_requests(db, user)
    return [_request_response(item.request, donor=item.donor, show_recipient_phone=True) for item in listings]


@router.get("/available", response_model=list[RequestResponse])
async def available_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[RequestResponse]:
    """Active requests in the caller's city, excluding their own."""
    requests = await list_available_requests(db, user)
    return [_request_response(r) for r in requests]


@router.get("/accepted", response_model=list[RequestResponse])
async def accepted_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[RequestResponse]:
    """Requests the caller has accepted, with the recipient's phone number."""
    requests = await list_accepted_requests(db, user)
    return [_request_response(r, show_recipient_phone=True) for r in requests]


# ---------------------------------------------------------------------------
# Create / read / delete
# ---------------------------------------------------------------------------


@router.post("", response_model=CreateRequestResponse, status_code=201)
async def create(
    body: CreateRequestBody,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CreateRequestResponse:
    """Post a blood request and notify every eligible donor nearby."""
    try:
        request, donors = await create_request(
            db,
            user,
            blood_type_id=body.blood_type_id,
            city=body.city,
            reason=body.reason,
            date_needed=body.date_needed,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()

    if donors:
        background_tasks.add_task(
            notifier.notify_matched_donors,
            [_contact(d) for d in donors],
            request_id=request.id,
            blood_type=request.blood_type.type,
            city=request.city,
            reason=request.reason,
            date_needed=request.date_needed,
        )
    return CreateRequestResponse(
        message="Blood request created successfully!",
        request=_request_response(request, show_recipient_phone=True),
        notified_donors=len(donors),
    )


@router.get("/{request_id}", response_model=RequestResponse)
async def get_one(
    request_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestResponse:
    """Request detail. Contact details are shown only to the two parties involved."""
    try:
        request = await get_request(db, request_id)
    except RequestNotFoundError as e:
        raise _http_error(e) from e

    notification = await get_accepted_notification(db, request_id)
    holder = notification.donor if notification else None
    is_owner = request.recipient_id == user.id
    is_holder = holder is not None and holder.id == user.id
    return _request_response(
        request,
        donor=holder if is_owner else None,
        show_recipient_phone=is_owner or is_holder,
    )


@router.delete("/{request_id}", response_model=RequestActionResponse)
async def delete_one(
    request_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestActionResponse:
    """Delete an own request with its notifications and donation records."""
    try:
        await delete_request(db, request_id, user)
    except _LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    await db.commit()
    return RequestActionResponse(message="Request deleted", request_id=request_id, status="deleted")


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{request_id}/accept", response_model=RequestActionResponse)
async def accept(
    request_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestActionResponse:
    """Accept an active request as donor."""
    try:
        request = await accept_request(db, request_id, user)
    except _LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    await db.commit()

    background_tasks.add_task(
        notifier.notify_recipient_accepted,
        _contact(request.recipient),
        donor_name=user.name,
        donor_phone=user.contact_phone,
        blood_type=request.blood_type.type,
    )
    return RequestActionResponse(
        message="Thank you! The recipient has been notified.",
        request_id=request.id,
        status=request.status,
    )


@router.post("/{request_id}/cancel-acceptance", response_model=RequestActionResponse)
async def cancel_my_acceptance(
    request_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestActionResponse:
    """Withdraw as donor; the request becomes active again."""
    try:
        request = await cancel_acceptance(db, request_id, user)
    except _LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    await db.commit()

    background_tasks.add_task(
        notifier.notify_recipient_withdrawn,
        _contact(request.recipient),
        donor_name=user.name,
        blood_type=request.blood_type.type,
    )
    return RequestActionResponse(
        message="You have withdrawn from this request.",
        request_id=request.id,
        status=request.status,
    )


@router.post("/{request_id}/cancel-donor", response_model=RequestActionResponse)
async def cancel_accepted_donor(
    request_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestActionResponse:
    """Release the donor holding an own request; the request becomes active again."""
    try:
        request, donor = await cancel_donor(db, request_id, user)
    except _LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    await db.commit()

    if donor is not None:
        background_tasks.add_task(
            notifier.notify_donor_released,
            _contact(donor),
            blood_type=request.blood_type.type,
            city=request.city,
        )
    return RequestActionResponse(
        message="The donor has been removed and will be notified.",
        request_id=request.id,
        status=request.status,
    )


@router.post("/{request_id}/fulfill", response_model=RequestActionResponse)
async def fulfill(
    request_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RequestActionResponse:
    """Confirm the donation was received."""
    try:
        request, donation, donor = await fulfill_request(db, request_id, user)
    except _LIFECYCLE_ERRORS as e:
        raise _http_error(e) from e
    await db.commit()

    background_tasks.add_task(
        notifier.notify_donor_thanked,
        _contact(donor),
        recipient_name=user.name,
        next_eligible=next_eligible_date(donation.donation_date),
    )
    return RequestActionResponse(
        message="Donation confirmed. Thank you for using LifeDrop!",
        request_id=request.id,
        status=request.status,
    )
