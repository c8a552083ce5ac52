"""Create diary_entries table

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  The single document table holding every user's diary entries.
How:   Lists and nested objects are JSONB; all timestamps are timezone-aware.

Rollback: downgrade() drops the table (destructive; stored media is untouched).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "diary_entries",
        sa.Column(
            "id",
            sa.String(64),
            nullable=False,
            comment="Entry identifier, shared with object storage keys",
        ),
        sa.Column(
            "user_id",
            sa.String(128),
            nullable=False,
            comment="Owning user identifier from the auth provider",
        ),
        sa.Column("title", sa.String(500), nullable=False, server_default=sa.text("''")),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "date",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="User-chosen entry date",
        ),
        sa.Column(
            "tags",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "media_urls",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Download URLs: existing, then non-audio, then audio uploads",
        ),
        sa.Column(
            "emotional_rating",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("3"),
            comment="1=very happy, 2=happy, 3=neutral, 4=sad, 5=very sad",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("location", postgresql.JSONB(), nullable=True),
        sa.Column("weather", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_diary_entries"),
        sa.CheckConstraint(
            "emotional_rating BETWEEN 1 AND 5",
            name="ck_diary_entries_emotional_rating",
        ),
    )

    op.create_index(
        "idx_diary_entries_user_date",
        "diary_entries",
        ["user_id", sa.text("date DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_diary_entries_user_date", table_name="diary_entries")
    op.drop_table("diary_entries")
