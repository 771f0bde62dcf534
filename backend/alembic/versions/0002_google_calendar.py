"""add google calendar integration

Revision ID: 0002_google_calendar
Revises: 0001_initial
Create Date: 2026-10-18 10:05:00.000000
"""
from alembic import op
import sqlalchemy as sa


revision = "0002_google_calendar"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_integrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False, server_default="google_calendar"),
        sa.Column("provider_user_id", sa.String(), nullable=True),
        sa.Column("provider_email", sa.String(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("calendar_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "provider", name="uq_user_integrations_user_provider"),
    )
    op.create_index("ix_user_integrations_id", "user_integrations", ["id"])
    op.create_index("ix_user_integrations_user_id", "user_integrations", ["user_id"])

    op.create_table(
        "calendar_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("calendar_id", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "calendar_id", name="uq_calendar_settings_user_calendar"),
    )
    op.create_index("ix_calendar_settings_id", "calendar_settings", ["id"])
    op.create_index("ix_calendar_settings_user_id", "calendar_settings", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_calendar_settings_user_id", table_name="calendar_settings")
    op.drop_index("ix_calendar_settings_id", table_name="calendar_settings")
    op.drop_table("calendar_settings")
    op.drop_index("ix_user_integrations_user_id", table_name="user_integrations")
    op.drop_index("ix_user_integrations_id", table_name="user_integrations")
    op.drop_table("user_integrations")
