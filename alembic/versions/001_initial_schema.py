"""Initial schema: users, blood types, requests, notifications, donations.

Seeds the eight blood types.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")

# BIGINT on PostgreSQL; SQLite only auto-increments INTEGER primary keys.
BigId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create all tables and seed reference data."""
    blood_types = op.create_table(
        "blood_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(3), nullable=False, unique=True),
    )

    op.create_table(
        "users",
        sa.Column("id", BigId, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("blood_type_id", sa.Integer(), sa.ForeignKey("blood_types.id"), nullable=False),
        sa.Column("contact_phone", sa.String(20), nullable=False, unique=True),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("email_verified", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("verification_token_hash", sa.String(128), nullable=True),
        sa.Column("reset_token_hash", sa.String(128), nullable=True),
        sa.Column("reset_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_donation_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_verification_token_hash", "users", ["verification_token_hash"])
    op.create_index("ix_users_reset_token_hash", "users", ["reset_token_hash"])

    op.create_table(
        "blood_requests",
        sa.Column("id", BigId, primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blood_type_id", sa.Integer(), sa.ForeignKey("blood_types.id"), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("date_requested", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_needed", sa.Date(), nullable=True),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.CheckConstraint("status IN ('active', 'on_hold', 'fulfilled')", name="ck_blood_requests_status"),
    )
    op.create_index("ix_blood_requests_recipient_id", "blood_requests", ["recipient_id"])
    op.create_index("ix_blood_requests_status_city", "blood_requests", ["status", "city"])

    op.create_table(
        "request_notifications",
        sa.Column("id", BigId, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id", sa.BigInteger(), sa.ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("donor_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(32), server_default="sent", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("request_id", "donor_id", name="uq_request_notifications_request_donor"),
        sa.CheckConstraint(
            "status IN ('sent', 'accepted', 'fulfilled', 'cancelled_by_donor', 'cancelled_by_recipient')",
            name="ck_request_notifications_status",
        ),
    )
    op.create_index("ix_request_notifications_donor_id", "request_notifications", ["donor_id"])
    # At most one accepted donor per request
    op.create_index(
        "uq_request_notifications_one_accepted",
        "request_notifications",
        ["request_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
        sqlite_where=sa.text("status = 'accepted'"),
    )

    op.create_table(
        "donations",
        sa.Column("id", BigId, primary_key=True, autoincrement=True),
        sa.Column("donor_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipient_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "request_id", sa.BigInteger(), sa.ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=True
        ),
        sa.Column("donation_date", sa.Date(), nullable=False),
    )
    op.create_index("ix_donations_donor_id", "donations", ["donor_id"])

    op.bulk_insert(blood_types, [{"type": label} for label in BLOOD_TYPES])


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    op.drop_table("donations")
    op.drop_index("uq_request_notifications_one_accepted", table_name="request_notifications")
    op.drop_table("request_notifications")
    op.drop_table("blood_requests")
    op.drop_table("users")
    op.drop_table("blood_types")
