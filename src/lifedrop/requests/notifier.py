"""
Best-effort e-mail notifications for the request lifecycle.

Routers schedule these with ``BackgroundTasks`` so they run after the
transaction has committed. Every function logs its own failures and never
raises.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog

from lifedrop.config import get_settings
from lifedrop.email.service import get_email_service

logger = structlog.get_logger()


@dataclass(frozen=True)
class Recipient:
    """Plain contact details, detached from the ORM session."""

    email: str
    name: str


async def _send(to: str, template_name: str, context: dict[str, Any]) -> bool:
    try:
        return await get_email_service().send_template(to=to, template_name=template_name, context=context)
    except Exception:
        logger.exception("notification_email_failed", to=to, template=template_name)
        return False


async def notify_matched_donors(
    donors: Sequence[Recipient],
    *,
    request_id: int,
    blood_type: str,
    city: str,
    reason: str | None,
    date_needed: date | None,
) -> int:
    """E-mail every matched donor. Returns how many sends succeeded."""
    dashboard_url = f"{get_settings().frontend_base_url}/dashboard.html"
    sent = 0
    for donor in donors:
        ok = await _send(
            donor.email,
            "donation_request",
            {
                "donor_name": donor.name,
                "blood_type": blood_type,
                "city": city,
                "reason": reason,
                "date_needed": date_needed,
                "dashboard_url": dashboard_url,
            },
        )
        sent += int(ok)
    logger.info("donor_emails_dispatched", request_id=request_id, matched=len(donors), sent=sent)
    return sent


async def notify_recipient_accepted(
    recipient: Recipient,
    *,
    donor_name: str,
    donor_phone: str,
    blood_type: str,
) -> None:
    await _send(
        recipient.email,
        "request_accepted",
        {
            "recipient_name": recipient.name,
            "donor_name": donor_name,
            "donor_phone": donor_phone,
            "blood_type": blood_type,
        },
    )


async def notify_recipient_withdrawn(recipient: Recipient, *, donor_name: str, blood_type: str) -> None:
    await _send(
        recipient.email,
        "acceptance_withdrawn",
        {"recipient_name": recipient.name, "donor_name": donor_name, "blood_type": blood_type},
    )


async def notify_donor_released(donor: Recipient, *, blood_type: str, city: str) -> None:
    await _send(
        donor.email,
        "donor_released",
        {"donor_name": donor.name, "blood_type": blood_type, "city": city},
    )


async def notify_donor_thanked(donor: Recipient, *, recipient_name: str, next_eligible: date | None) -> None:
    await _send(
        donor.email,
        "donation_thanks",
        {"donor_name": donor.name, "recipient_name": recipient_name, "next_eligible": next_eligible},
    )
