"""Integration tests: blood request lifecycle via API."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

from httpx import AsyncClient
from sqlalchemy import func, select, update

from lifedrop.db.models import BloodRequest, Donation, RequestNotification, User
from tests.conftest import blood_type_id, open_session, sent_templates


async def _create_request(client: AsyncClient, recipient, *, blood_type: str = "A+", city: str = "Dhaka", **extra):
    response = await client.post(
        "/api/requests",
        json={"blood_type_id": await blood_type_id(blood_type), "city": city, **extra},
        headers=recipient.headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _notification_status(request_id: int, donor_id: int) -> str | None:
    async with open_session() as session:
        result = await session.execute(
            select(RequestNotification.status).where(
                RequestNotification.request_id == request_id,
                RequestNotification.donor_id == donor_id,
            )
        )
        return result.scalar_one_or_none()


async def _request_status(request_id: int) -> str | None:
    async with open_session() as session:
        result = await session.execute(select(BloodRequest.status).where(BloodRequest.id == request_id))
        return result.scalar_one_or_none()


class TestCreateRequest:
    """Recipient R and donor D in Dhaka, both A+."""

    async def test_matching_donor_gets_sent_notification(self, client: AsyncClient, make_user, mock_email_service):
        recipient = await make_user(name="R")
        donor = await make_user(name="D")

        data = await _create_request(client, recipient, reason="Surgery", date_needed="2026-12-01")
        request_id = data["request"]["request_id"]
        assert data["notified_donors"] == 1
        assert data["request"]["status"] == "active"
        assert data["request"]["blood_type"] == "A+"
        assert data["request"]["reason"] == "Surgery"
        assert data["request"]["date_needed"] == "2026-12-01"
        assert await _notification_status(request_id, donor.id) == "sent"

        donor_emails = [c for c in sent_templates(mock_email_service) if c[1] == "donation_request"]
        assert [to for to, _, _ in donor_emails] == [donor.email]
        assert donor_emails[0][2]["city"] == "Dhaka"

    async def test_recipient_is_never_matched(self, client: AsyncClient, make_user):
        recipient = await make_user()
        data = await _create_request(client, recipient)
        assert data["notified_donors"] == 0
        assert await _notification_status(data["request"]["request_id"], recipient.id) is None

    async def test_city_match_ignores_case_and_whitespace(self, client: AsyncClient, make_user):
        recipient = await make_user(city="Dhaka")
        donor = await make_user(city="dhaka ")
        data = await _create_request(client, recipient, city="  DHAKA")
        assert data["notified_donors"] == 1
        assert await _notification_status(data["request"]["request_id"], donor.id) == "sent"

    async def test_non_matching_donors_skipped(self, client: AsyncClient, make_user):
        recipient = await make_user()
        await make_user(city="Sylhet")  # wrong city
        await make_user(blood_type="B+")  # wrong type
        await make_user(verified=False)  # unverified
        await make_user(last_donation_date=date.today() - timedelta(days=30))  # not eligible yet
        eligible_again = await make_user(last_donation_date=date.today() - timedelta(days=200))

        data = await _create_request(client, recipient)
        assert data["notified_donors"] == 1
        assert await _notification_status(data["request"]["request_id"], eligible_again.id) == "sent"

    async def test_email_failure_does_not_fail_request(self, client: AsyncClient, make_user, mock_email_service):
        mock_email_service.send_template.side_effect = RuntimeError("smtp down")
        recipient = await make_user()
        await make_user()

        data = await _create_request(client, recipient)
        assert data["notified_donors"] == 1
        assert await _request_status(data["request"]["request_id"]) == "active"

    async def test_unknown_blood_type_rejected(self, client: AsyncClient, make_user):
        recipient = await make_user()
        response = await client.post(
            "/api/requests", json={"blood_type_id": 999, "city": "Dhaka"}, headers=recipient.headers
        )
        assert response.status_code == 400

    async def test_blank_city_rejected(self, client: AsyncClient, make_user):
        recipient = await make_user()
        response = await client.post(
            "/api/requests",
            json={"blood_type_id": await blood_type_id("A+"), "city": "   "},
            headers=recipient.headers,
        )
        assert response.status_code == 400

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/requests", json={"blood_type_id": 1, "city": "Dhaka"})
        assert response.status_code == 401


class TestAcceptRequest:
    async def test_accept_puts_request_on_hold(self, client: AsyncClient, make_user, mock_email_service):
        recipient = await make_user(name="R")
        donor = await make_user(name="D")
        request_id = (await _create_request(client, recipient))["request"]["request_id"]

        response = await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        assert response.status_code == 200
        assert response.json()["status"] == "on_hold"
        assert await _request_status(request_id) == "on_hold"
        assert await _notification_status(request_id, donor.id) == "accepted"

        to, template, context = sent_templates(mock_email_service)[-1]
        assert to == recipient.email
        assert template == "request_accepted"
        assert context["donor_phone"] == donor.contact_phone

    async def test_second_acceptor_gets_conflict(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        donor2 = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]

        first = await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        second = await client.post(f"/api/requests/{request_id}/accept", headers=donor2.headers)
        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["detail"] == "This request is no longer active"
        assert await _notification_status(request_id, donor.id) == "accepted"
        assert await _notification_status(request_id, donor2.id) == "sent"

    async def test_simultaneous_accepts_one_wins(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        donor2 = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]

        responses = await asyncio.gather(
            client.post(f"/api/requests/{request_id}/accept", headers=donor.headers),
            client.post(f"/api/requests/{request_id}/accept", headers=donor2.headers),
        )
        assert sorted(r.status_code for r in responses) == [200, 400]
        assert await _request_status(request_id) == "on_hold"

        statuses = {
            await _notification_status(request_id, donor.id),
            await _notification_status(request_id, donor2.id),
        }
        assert statuses == {"accepted", "sent"}

    async def test_second_accepted_row_is_rejected_by_index(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        donor2 = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        # Reopen the request while the first donor's row still says accepted.
        async with open_session() as session:
            await session.execute(update(BloodRequest).where(BloodRequest.id == request_id).values(status="active"))
            await session.commit()

        response = await client.post(f"/api/requests/{request_id}/accept", headers=donor2.headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "This request is no longer active"
        assert await _request_status(request_id) == "active"
        assert await _notification_status(request_id, donor.id) == "accepted"
        assert await _notification_status(request_id, donor2.id) == "sent"

    async def test_unnotified_donor_can_accept(self, client: AsyncClient, make_user):
        recipient = await make_user()
        other_type = await make_user(blood_type="O-")
        request_id = (await _create_request(client, recipient))["request"]["request_id"]

        response = await client.post(f"/api/requests/{request_id}/accept", headers=other_type.headers)
        assert response.status_code == 200
        assert await _notification_status(request_id, other_type.id) == "accepted"

    async def test_cannot_accept_own_request(self, client: AsyncClient, make_user):
        recipient = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        response = await client.post(f"/api/requests/{request_id}/accept", headers=recipient.headers)
        assert response.status_code == 400
        assert await _request_status(request_id) == "active"

    async def test_accept_missing_request_is_404(self, client: AsyncClient, make_user):
        donor = await make_user()
        response = await client.post("/api/requests/424242/accept", headers=donor.headers)
        assert response.status_code == 404


class TestCancellation:
    async def test_donor_cancels_acceptance(self, client: AsyncClient, make_user, mock_email_service):
        recipient = await make_user()
        donor = await make_user(name="D")
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/cancel-acceptance", headers=donor.headers)
        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert await _request_status(request_id) == "active"
        assert await _notification_status(request_id, donor.id) == "cancelled_by_donor"

        to, template, _ = sent_templates(mock_email_service)[-1]
        assert (to, template) == (recipient.email, "acceptance_withdrawn")

    async def test_cancel_acceptance_without_accepting_is_conflict(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        donor2 = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/cancel-acceptance", headers=donor2.headers)
        assert response.status_code == 400
        assert await _request_status(request_id) == "on_hold"

    async def test_recipient_cancels_donor(self, client: AsyncClient, make_user, mock_email_service):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/cancel-donor", headers=recipient.headers)
        assert response.status_code == 200
        assert await _request_status(request_id) == "active"
        assert await _notification_status(request_id, donor.id) == "cancelled_by_recipient"

        to, template, _ = sent_templates(mock_email_service)[-1]
        assert (to, template) == (donor.email, "donor_released")

    async def test_released_request_can_be_accepted_again(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        donor2 = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        await client.post(f"/api/requests/{request_id}/cancel-donor", headers=recipient.headers)

        response = await client.post(f"/api/requests/{request_id}/accept", headers=donor2.headers)
        assert response.status_code == 200
        assert await _notification_status(request_id, donor2.id) == "accepted"

    async def test_cancel_donor_by_non_owner_is_403(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/cancel-donor", headers=donor.headers)
        assert response.status_code == 403
        assert await _request_status(request_id) == "on_hold"

    async def test_cancel_donor_on_active_request_is_conflict(self, client: AsyncClient, make_user):
        recipient = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        response = await client.post(f"/api/requests/{request_id}/cancel-donor", headers=recipient.headers)
        assert response.status_code == 400

    async def test_cancel_donor_tolerates_missing_accepted_row(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        async with open_session() as session:
            notification = (
                await session.execute(
                    select(RequestNotification).where(
                        RequestNotification.request_id == request_id,
                        RequestNotification.donor_id == donor.id,
                    )
                )
            ).scalar_one()
            notification.status = "sent"
            await session.commit()

        response = await client.post(f"/api/requests/{request_id}/cancel-donor", headers=recipient.headers)
        assert response.status_code == 200
        assert await _request_status(request_id) == "active"


class TestFulfillRequest:
    async def test_fulfill_records_donation(self, client: AsyncClient, make_user, mock_email_service):
        recipient = await make_user(name="R")
        donor = await make_user(name="D")
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)
        assert response.status_code == 200
        assert response.json()["status"] == "fulfilled"
        assert await _request_status(request_id) == "fulfilled"
        assert await _notification_status(request_id, donor.id) == "fulfilled"

        async with open_session() as session:
            donations = (
                await session.execute(select(Donation).where(Donation.request_id == request_id))
            ).scalars().unique().all()
            donor_row = (await session.execute(select(User).where(User.id == donor.id))).scalar_one()
        assert len(donations) == 1
        assert donations[0].donor_id == donor.id
        assert donations[0].recipient_id == recipient.id
        assert donations[0].donation_date == datetime.now(timezone.utc).date()
        assert donor_row.last_donation_date == datetime.now(timezone.utc).date()

        to, template, context = sent_templates(mock_email_service)[-1]
        assert (to, template) == (donor.email, "donation_thanks")
        assert context["recipient_name"] == "R"

    async def test_donation_date_is_utc_calendar_day(self, client: AsyncClient, make_user, monkeypatch):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        late_evening_utc = datetime(2026, 3, 31, 23, 30, tzinfo=timezone.utc)

        class _FrozenClock(datetime):
            @classmethod
            def now(cls, tz=None):
                return late_evening_utc.replace(tzinfo=None) if tz is None else late_evening_utc.astimezone(tz)

        monkeypatch.setattr("lifedrop.requests.service.datetime", _FrozenClock)
        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)
        assert response.status_code == 200

        async with open_session() as session:
            donation = (
                await session.execute(select(Donation).where(Donation.request_id == request_id))
            ).scalars().unique().one()
            donor_row = await session.get(User, donor.id)
        assert donation.donation_date == date(2026, 3, 31)
        assert donor_row.last_donation_date == date(2026, 3, 31)

    async def test_fulfilled_donor_no_longer_matched(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)

        profile = (await client.get("/api/profile", headers=donor.headers)).json()
        assert profile["is_eligible"] is False

        data = await _create_request(client, recipient)
        assert data["notified_donors"] == 0

    async def test_fulfill_active_request_is_conflict(self, client: AsyncClient, make_user):
        recipient = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)
        assert response.status_code == 400
        async with open_session() as session:
            count = (await session.execute(select(func.count()).select_from(Donation))).scalar_one()
        assert count == 0

    async def test_fulfill_twice_is_conflict(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)

        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)
        assert response.status_code == 400

    async def test_fulfill_by_non_owner_is_403(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=donor.headers)
        assert response.status_code == 403
        assert await _request_status(request_id) == "on_hold"

    async def test_fulfill_without_accepted_row_is_404(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)

        async with open_session() as session:
            notification = (
                await session.execute(
                    select(RequestNotification).where(RequestNotification.request_id == request_id)
                    .where(RequestNotification.donor_id == donor.id)
                )
            ).scalar_one()
            notification.status = "cancelled_by_donor"
            await session.commit()

        response = await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)
        assert response.status_code == 404
        assert await _request_status(request_id) == "on_hold"


class TestDeleteRequest:
    async def test_delete_active_request(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        assert await _notification_status(request_id, donor.id) == "sent"

        response = await client.delete(f"/api/requests/{request_id}", headers=recipient.headers)
        assert response.status_code == 200

        detail = await client.get(f"/api/requests/{request_id}", headers=recipient.headers)
        assert detail.status_code == 404
        async with open_session() as session:
            remaining = (
                await session.execute(
                    select(func.count()).select_from(RequestNotification)
                    .where(RequestNotification.request_id == request_id)
                )
            ).scalar_one()
        assert remaining == 0

    async def test_delete_fulfilled_request_removes_donations(self, client: AsyncClient, make_user):
        recipient = await make_user()
        donor = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]
        await client.post(f"/api/requests/{request_id}/accept", headers=donor.headers)
        await client.post(f"/api/requests/{request_id}/fulfill", headers=recipient.headers)

        response = await client.delete(f"/api/requests/{request_id}", headers=recipient.headers)
        assert response.status_code == 200

        async with open_session() as session:
            donations = (
                await session.execute(
                    select(func.count()).select_from(Donation).where(Donation.request_id == request_id)
                )
            ).scalar_one()
            notifications = (
                await session.execute(
                    select(func.count()).select_from(RequestNotification)
                    .where(RequestNotification.request_id == request_id)
                )
            ).scalar_one()
        assert donations == 0
        assert notifications == 0

    async def test_delete_by_non_owner_is_403(self, client: AsyncClient, make_user):
        recipient = await make_user()
        other = await make_user()
        request_id = (await _create_request(client, recipient))["request"]["request_id"]

        response = await client.delete(f"/api/requests/{request_id}", headers=other.headers)
        assert response.status_code == 403
        assert await _request_status(request_id) == "active"

    async def test_delete_missing_request_is_404(self, client: AsyncClient, make_user):
        recipient = await make_user()
        response = await client.delete("/api/requests/424242", headers=recipient.headers)
        assert response.status_code == 404
