# alembic/versions/0001_event_series.py

"""Event series, instances and exceptions

Revision ID: 0001_event_series
Revises:
Create Date: 2025-01-06 12:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_event_series"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _template_columns() -> list[sa.Column]:
    """Поля шаблона, общие для серии и её вхождений."""
    return [
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("location_name", sa.String(length=255), nullable=True),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("google_maps_url", sa.String(length=1024), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("external_chat_url", sa.String(length=1024), nullable=True),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("online_link", sa.String(length=1024), nullable=True),
        sa.Column("title_position", sa.String(length=16), nullable=False, server_default="bottom"),
        sa.Column("image_fit", sa.String(length=16), nullable=False, server_default="cover"),
        sa.Column("focal_point", sa.String(length=32), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("price_type", sa.String(length=16), nullable=True),
        sa.Column("ticket_tiers", sa.JSON(), nullable=True),
        sa.Column("tribe_id", sa.String(length=64), nullable=True),
        sa.Column("organizer_id", sa.String(length=64), nullable=True),
        sa.Column("venue_id", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "event_series",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("slug", sa.String(length=80), nullable=False),
        *_template_columns(),
        sa.Column("rrule", sa.String(length=255), nullable=False),
        sa.Column("starts_at_time", sa.String(length=8), nullable=False, comment="HH:MM:SS, local"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("first_occurrence", sa.Date(), nullable=False),
        sa.Column("rrule_until", sa.Date(), nullable=True),
        sa.Column("rrule_count", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column(
            "instances_generated_until", sa.DateTime(timezone=True), nullable=True,
            comment="UTC watermark of materialized instances",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_event_series_slug", "event_series", ["slug"], unique=True)
    op.create_index("ix_event_series_organizer_id", "event_series", ["organizer_id"])
    op.create_index("ix_event_series_created_by", "event_series", ["created_by"])
    op.create_index("ix_event_series_status", "event_series", ["status"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("slug", sa.String(length=96), nullable=False),
        sa.Column(
            "series_id", sa.String(length=36),
            sa.ForeignKey("event_series.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("series_instance_date", sa.Date(), nullable=True),
        *_template_columns(),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="published"),
        sa.Column("is_exception", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("series_id", "series_instance_date", name="uq_events_series_instance_date"),
    )
    op.create_index("ix_events_slug", "events", ["slug"], unique=True)
    op.create_index("ix_events_series_id", "events", ["series_id"])
    op.create_index("ix_events_starts_at", "events", ["starts_at"])
    op.create_index("ix_events_status", "events", ["status"])
    op.create_index("ix_events_series_starts_at", "events", ["series_id", "starts_at"])

    op.create_table(
        "series_exceptions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "series_id", sa.String(length=36),
            sa.ForeignKey("event_series.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("original_date", sa.Date(), nullable=False),
        sa.Column("exception_type", sa.String(length=16), nullable=False, comment="modified | cancelled | rescheduled"),
        sa.Column("new_event_id", sa.String(length=36), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("series_id", "original_date", name="uq_series_exceptions_date"),
    )
    op.create_index("ix_series_exceptions_series_id", "series_exceptions", ["series_id"])


def downgrade() -> None:
    op.drop_table("series_exceptions")
    op.drop_table("events")
    op.drop_table("event_series")
