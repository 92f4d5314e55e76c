"""Create users, credentials and rate_limit_counters.

Revision ID: 001_passwordless_auth
Revises:
Create Date: 2026-10-19

users: one row per normalized identifier (email or E.164 phone).
credentials: hashed single-use secrets; the conditional consume relies on
    used_at staying NULL until the single successful verification.
rate_limit_counters: fixed-window attempt counts per action:identifier.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_passwordless_auth"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("identifier", sa.String(255), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "is_new", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("identifier", name="uq_users_identifier"),
    )

    op.create_table(
        "credentials",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("secret_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("expires_at > created_at", name="ck_credentials_expiry"),
        sa.CheckConstraint(
            "kind IN ('magic_link', 'otp')", name="ck_credentials_kind"
        ),
    )
    op.create_index("ix_credentials_user_kind", "credentials", ["user_id", "kind"])
    op.create_index(
        "ix_credentials_user_kind_hash",
        "credentials",
        ["user_id", "kind", "secret_hash"],
    )
    op.create_index("ix_credentials_expires_at", "credentials", ["expires_at"])

    op.create_table(
        "rate_limit_counters",
        sa.Column("key", sa.String(320), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_rate_limit_counters_expires_at", "rate_limit_counters", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index(
        "ix_rate_limit_counters_expires_at", table_name="rate_limit_counters"
    )
    op.drop_table("rate_limit_counters")
    op.drop_index("ix_credentials_expires_at", table_name="credentials")
    op.drop_index("ix_credentials_user_kind_hash", table_name="credentials")
    op.drop_index("ix_credentials_user_kind", table_name="credentials")
    op.drop_table("credentials")
    op.drop_table("users")
