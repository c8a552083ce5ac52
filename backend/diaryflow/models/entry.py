"""
DiaryFlow Backend — DiaryEntry SQLAlchemy Model
=================================================

What:  ORM model representing the `diary_entries` table.
How:   A flat document per entry. Lists and nested objects (tags, media URLs,
       location, weather) are JSON columns, JSONB on PostgreSQL.
Who:   EntryService for CRUD and queries, Alembic for schema management.

Table Design Rationale:
    - id: 32-char uuid hex generated before the media upload so that object
      storage keys and the row share the same identifier
    - user_id: every query is scoped by it; an entry belongs to exactly one user
    - media_urls: remote download URLs, ordered existing → non-audio → audio
    - emotional_rating: 1 (very happy) .. 5 (very sad), default 3 (neutral)

    Index on (user_id, date DESC):
        Serves the list, calendar, search and recent-tags queries, which all
        read one user's entries newest first.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from diaryflow.database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_entry_id() -> str:
    return uuid.uuid4().hex


class DiaryEntry(Base):
    """
    One diary record: text, media references and capture-time metadata.

    Lifecycle:
        1. Created by a draft save (id reserved when the draft was opened)
        2. Overwritten by later saves of an edit draft (last write wins)
        3. Deleted together with its stored media (best effort)
    """

    __tablename__ = "diary_entries"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_entry_id,
        comment="Entry identifier, shared with object storage keys",
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Owning user identifier from the auth provider",
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="User-chosen entry date",
    )

    tags: Mapped[List[str]] = mapped_column(JSONDocument, nullable=False, default=list)

    media_urls: Mapped[List[str]] = mapped_column(
        JSONDocument,
        nullable=False,
        default=list,
        comment="Download URLs: existing, then non-audio, then audio uploads",
    )

    emotional_rating: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
        comment="1=very happy, 2=happy, 3=neutral, 4=sad, 5=very sad",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    location: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)

    weather: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONDocument, nullable=True)

    __table_args__ = (
        Index("idx_diary_entries_user_date", "user_id", date.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<DiaryEntry(id={self.id}, user_id='{self.user_id}', "
            f"date='{self.date}', media={len(self.media_urls or [])})>"
        )
