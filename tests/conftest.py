"""Shared test fixtures."""

from __future__ import annotations

import itertools
import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Settings are cached on first use, so the test environment must be in place
# before anything from lifedrop is imported.
os.environ["LIFEDROP_REDIS_URL"] = ""
os.environ["LIFEDROP_JWT_SECRET_KEY"] = "test-secret-key-with-at-least-32-bytes!"
os.environ["LIFEDROP_LOG_FORMAT"] = "console"
os.environ["LIFEDROP_ENVIRONMENT"] = "test"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from lifedrop.auth.jwt import create_access_token  # noqa: E402
from lifedrop.config import get_settings  # noqa: E402
from lifedrop.database import close_db, create_tables, get_engine, init_db  # noqa: E402
from lifedrop.db.models import BloodType, User  # noqa: E402
from lifedrop.db.seed import seed_blood_types  # noqa: E402
from lifedrop.main import create_app  # noqa: E402

get_settings.cache_clear()

DEFAULT_PASSWORD = "SecureP@ss1"


def open_session() -> AsyncSession:
    """A fresh session on the test engine, for arranging data and asserting on it."""
    return AsyncSession(get_engine(), expire_on_commit=False)


@pytest_asyncio.fixture
async def client(tmp_path: Path) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against a fresh SQLite database with seeded blood types."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'lifedrop_test.db'}")
    await create_tables()
    async with open_session() as session:
        await seed_blood_types(session)

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()


@pytest.fixture(autouse=True)
def mock_email_service(monkeypatch):
    """Mock the email service to prevent actual email sending."""
    mock_service = MagicMock()
    mock_service.send_template = AsyncMock(return_value=True)
    mock_service.send_email = AsyncMock(return_value=True)

    monkeypatch.setattr("lifedrop.auth.router.get_email_service", lambda *a, **kw: mock_service)
    monkeypatch.setattr("lifedrop.requests.notifier.get_email_service", lambda *a, **kw: mock_service)
    return mock_service


def sent_templates(mock_service: MagicMock) -> list[tuple[str, str, dict]]:
    """(to, template_name, context) for every send_template call so far."""
    return [
        (c.kwargs["to"], c.kwargs["template_name"], c.kwargs["context"])
        for c in mock_service.send_template.call_args_list
    ]


async def blood_type_id(label: str) -> int:
    async with open_session() as session:
        result = await session.execute(select(BloodType.id).where(BloodType.type == label))
        return result.scalar_one()


@dataclass
class TestUser:
    __test__ = False

    id: int
    name: str
    email: str
    contact_phone: str
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


MakeUser = Callable[..., Awaitable[TestUser]]


@pytest_asyncio.fixture
async def make_user(client: AsyncClient) -> MakeUser:
    """Factory: register a user through the API, then adjust it directly in the database."""
    counter = itertools.count(1)

    async def _make(
        *,
        name: str | None = None,
        city: str = "Dhaka",
        blood_type: str = "A+",
        verified: bool = True,
        last_donation_date: date | None = None,
    ) -> TestUser:
        n = next(counter)
        name = name or f"User {n}"
        email = f"user{n}@example.com"
        phone = f"0171{n:07d}"
        response = await client.post("/api/register", json={
            "name": name,
            "email": email,
            "password": DEFAULT_PASSWORD,
            "date_of_birth": "1995-04-12",
            "blood_type_id": await blood_type_id(blood_type),
            "contact_phone": phone,
            "city": city,
        })
        assert response.status_code == 201, response.text

        async with open_session() as session:
            user = (await session.execute(select(User).where(User.email == email))).scalar_one()
            user.email_verified = verified
            user.last_donation_date = last_donation_date
            await session.commit()
            user_id = user.id

        return TestUser(
            id=user_id,
            name=name,
            email=email,
            contact_phone=phone,
            token=create_access_token(user_id, name, email),
        )

    return _make
