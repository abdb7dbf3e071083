"""ORM models for donors, blood requests, notifications and donations."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifedrop.db.base import Base

# BIGINT on PostgreSQL; SQLite only auto-increments INTEGER primary keys.
BigId = BigInteger().with_variant(Integer, "sqlite")

REQUEST_STATUSES = ("active", "on_hold", "fulfilled")
NOTIFICATION_STATUSES = (
    "sent",
    "accepted",
    "fulfilled",
    "cancelled_by_donor",
    "cancelled_by_recipient",
)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class BloodType(Base):
    """Static blood type reference table (A+, O-, ...)."""

    __tablename__ = "blood_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Account holder. Every user can both request blood and donate."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    blood_type_id: Mapped[int] = mapped_column(Integer, ForeignKey("blood_types.id"), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    verification_token_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    reset_token_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_donation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    blood_type: Mapped[BloodType] = relationship("BloodType", lazy="joined")


# ---------------------------------------------------------------------------
# Blood requests
# ---------------------------------------------------------------------------


class BloodRequest(Base):
    """A recipient's open need for blood."""

    __tablename__ = "blood_requests"
    __table_args__ = (
        CheckConstraint(_in_list("status", REQUEST_STATUSES), name="ck_blood_requests_status"),
        Index("ix_blood_requests_status_city", "status", "city"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    recipient_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    blood_type_id: Mapped[int] = mapped_column(Integer, ForeignKey("blood_types.id"), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_requested: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    date_needed: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")

    recipient: Mapped[User] = relationship("User", lazy="joined")
    blood_type: Mapped[BloodType] = relationship("BloodType", lazy="joined")


class RequestNotification(Base):
    """Link between a blood request and a candidate (or accepting) donor."""

    __tablename__ = "request_notifications"
    __table_args__ = (
        UniqueConstraint("request_id", "donor_id", name="uq_request_notifications_request_donor"),
        CheckConstraint(_in_list("status", NOTIFICATION_STATUSES), name="ck_request_notifications_status"),
        Index(
            "uq_request_notifications_one_accepted",
            "request_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=False
    )
    donor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="sent", server_default="sent")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    donor: Mapped[User] = relationship("User", lazy="joined")


# ---------------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------------


class Donation(Base):
    """Immutable record of a fulfilled donation."""

    __tablename__ = "donations"

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    donor_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    request_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=True
    )
    donation_date: Mapped[date] = mapped_column(Date, nullable=False)

    recipient: Mapped[User] = relationship("User", foreign_keys=[recipient_id], lazy="joined")
    request: Mapped[BloodRequest | None] = relationship("BloodRequest", lazy="joined")
