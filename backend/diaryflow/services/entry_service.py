"""
DiaryFlow Backend — Entry Service (Business Logic)
====================================================

What:  Persistence and queries for diary entries, plus change notifications.
How:   SQLAlchemy async queries scoped by user id. Every write commits and
       then publishes an EntryEvent on the user's channel, so SSE clients
       only hear about changes that are durable.
Who:   Entry routes, DraftService.save() and SearchService.

Error Handling Strategy:
    NotFoundError propagates as-is. SQLAlchemy failures are logged with
    their type and wrapped in DatabaseError (hides internal details).
    Media deletion after an entry delete is best-effort and never fails
    the request.

Pagination Strategy (Cursor-Based):
    Entries are listed by `date` DESC. The cursor is the ISO date of the last
    item of the page; the next page is WHERE date < :cursor. One extra row is
    fetched to compute has_more without a COUNT query.
"""

import calendar
import logging
from datetime import date as date_cls
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from diaryflow.exceptions import DatabaseError, NotFoundError, ValidationError
from diaryflow.models.entry import DiaryEntry
from diaryflow.schemas.entry import EntryEvent, EntryListResponse, EntryResponse
from diaryflow.services.events import ChannelRegistry, Subscription
from diaryflow.services.storage_service import ObjectStorage, object_storage

logger = logging.getLogger(__name__)

RECENT_TAGS_WINDOW = 100

ENTRY_FIELDS = (
    "title",
    "content",
    "date",
    "tags",
    "media_urls",
    "emotional_rating",
    "location",
    "weather",
)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_cursor(cursor: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(cursor))
    except ValueError:
        raise ValidationError(
            message="Invalid cursor. Use the next_cursor value of the previous page.",
            field="cursor",
            context={"cursor": cursor},
        )


class EntryService:
    """
    Business logic layer for diary entries.

    Stateless apart from the per-user event channels, which must be shared
    by every request of the process.
    """

    def __init__(self, storage: ObjectStorage = object_storage):
        self.storage = storage
        self.events: ChannelRegistry[EntryEvent] = ChannelRegistry("entries")

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def to_response(entry: DiaryEntry) -> EntryResponse:
        return EntryResponse(
            id=entry.id,
            user_id=entry.user_id,
            title=entry.title,
            content=entry.content,
            date=as_utc(entry.date),
            tags=list(entry.tags or []),
            media_urls=list(entry.media_urls or []),
            emotional_rating=entry.emotional_rating,
            created_at=as_utc(entry.created_at),
            updated_at=as_utc(entry.updated_at) if entry.updated_at else None,
            location=entry.location,
            weather=entry.weather,
        )

    @staticmethod
    def _normalise(fields: Dict[str, Any]) -> Dict[str, Any]:
        values = {k: v for k, v in fields.items() if k in ENTRY_FIELDS}
        if isinstance(values.get("date"), datetime):
            values["date"] = as_utc(values["date"])
        for key in ("location", "weather"):
            value = values.get(key)
            if value is not None and hasattr(value, "model_dump"):
                values[key] = value.model_dump(mode="json")
        return values

    async def _get_row(self, db: AsyncSession, user_id: str, entry_id: str) -> DiaryEntry:
        result = await db.execute(
            select(DiaryEntry).where(
                DiaryEntry.id == entry_id,
                DiaryEntry.user_id == user_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError(resource="entry", resource_id=entry_id)
        return entry

    def _publish(self, user_id: str, kind: str, entry_id: str,
                 entry: Optional[EntryResponse] = None) -> None:
        self.events.publish(user_id, EntryEvent(kind=kind, entry_id=entry_id, entry=entry))

    # ── Writes ────────────────────────────────────────────────────────────

    async def create_entry(
        self,
        db: AsyncSession,
        user_id: str,
        entry_id: str,
        fields: Dict[str, Any],
    ) -> EntryResponse:
        """Inserts a new entry under a pre-reserved id."""
        entry = DiaryEntry(id=entry_id, user_id=user_id, **self._normalise(fields))
        try:
            db.add(entry)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error creating entry %s: %s", entry_id, type(e).__name__)
            raise DatabaseError(
                message="Could not save the entry. Please try again.",
                context={"entry_id": entry_id},
                retry_action="save_entry",
            ) from e

        response = self.to_response(entry)
        logger.info("Entry %s created for user %s", entry_id, user_id)
        self._publish(user_id, "created", entry_id, response)
        return response

    async def update_entry(
        self,
        db: AsyncSession,
        user_id: str,
        entry_id: str,
        fields: Dict[str, Any],
    ) -> EntryResponse:
        """
        Overwrites the given fields of an existing entry (last write wins).

        created_at is never touched; updated_at is refreshed by the model.
        """
        try:
            entry = await self._get_row(db, user_id, entry_id)
            for key, value in self._normalise(fields).items():
                setattr(entry, key, value)
            entry.updated_at = datetime.now(timezone.utc)
            await db.commit()
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error updating entry %s: %s", entry_id, type(e).__name__)
            raise DatabaseError(
                message="Could not save the entry. Please try again.",
                context={"entry_id": entry_id},
                retry_action="save_entry",
            ) from e

        response = self.to_response(entry)
        logger.info("Entry %s updated", entry_id)
        self._publish(user_id, "updated", entry_id, response)
        return response

    async def delete_entry(self, db: AsyncSession, user_id: str, entry_id: str) -> None:
        """Deletes the entry, then its stored media (best effort)."""
        try:
            entry = await self._get_row(db, user_id, entry_id)
            media_urls = list(entry.media_urls or [])
            await db.delete(entry)
            await db.commit()
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error deleting entry %s: %s", entry_id, type(e).__name__)
            raise DatabaseError(
                message="Could not delete the entry. Please try again.",
                context={"entry_id": entry_id},
            ) from e

        await self._delete_media(user_id, entry_id, media_urls)
        self._publish(user_id, "deleted", entry_id)
        logger.info("Entry %s deleted", entry_id)

    async def delete_entries(
        self,
        db: AsyncSession,
        user_id: str,
        entry_ids: Sequence[str],
    ) -> List[str]:
        """Deletes several entries in one statement. Unknown ids are skipped."""
        ids = list(dict.fromkeys(entry_ids))
        try:
            result = await db.execute(
                select(DiaryEntry.id, DiaryEntry.media_urls).where(
                    DiaryEntry.user_id == user_id,
                    DiaryEntry.id.in_(ids),
                )
            )
            found = {row.id: list(row.media_urls or []) for row in result}
            if found:
                await db.execute(
                    delete(DiaryEntry).where(
                        DiaryEntry.user_id == user_id,
                        DiaryEntry.id.in_(list(found)),
                    )
                )
                await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error in bulk delete: %s", type(e).__name__)
            raise DatabaseError(
                message="Could not delete the entries. Please try again.",
                context={"requested": len(ids)},
            ) from e

        deleted = [entry_id for entry_id in ids if entry_id in found]
        for entry_id in deleted:
            await self._delete_media(user_id, entry_id, found[entry_id])
            self._publish(user_id, "deleted", entry_id)
        logger.info("Bulk delete removed %d of %d entries", len(deleted), len(ids))
        return deleted

    async def _delete_media(self, user_id: str, entry_id: str, media_urls: List[str]) -> None:
        # Media of an edited entry can live under another entry's prefix
        await self.storage.delete_files(media_urls)
        await self.storage.delete_all_for_entry(user_id, entry_id)

    # ── Queries ───────────────────────────────────────────────────────────

    async def get_entry(self, db: AsyncSession, user_id: str, entry_id: str) -> EntryResponse:
        try:
            return self.to_response(await self._get_row(db, user_id, entry_id))
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error fetching entry %s: %s", entry_id, type(e).__name__)
            raise DatabaseError(
                message="Could not retrieve the entry. Please try again.",
                context={"entry_id": entry_id},
            ) from e

    async def list_entries(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> EntryListResponse:
        query = select(DiaryEntry).where(DiaryEntry.user_id == user_id)
        if cursor:
            query = query.where(DiaryEntry.date < parse_cursor(cursor))
        query = query.order_by(desc(DiaryEntry.date), desc(DiaryEntry.id)).limit(limit + 1)

        entries = await self._fetch(db, query, "list entries")
        has_more = len(entries) > limit
        entries = entries[:limit]
        next_cursor = as_utc(entries[-1].date).isoformat() if has_more and entries else None

        return EntryListResponse(
            entries=[self.to_response(e) for e in entries],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def recent_entries(self, db: AsyncSession, user_id: str, limit: int) -> List[DiaryEntry]:
        """The user's `limit` newest entries as ORM rows (search and tag scans)."""
        query = (
            select(DiaryEntry)
            .where(DiaryEntry.user_id == user_id)
            .order_by(desc(DiaryEntry.date), desc(DiaryEntry.id))
            .limit(limit)
        )
        return await self._fetch(db, query, "recent entries")

    async def entries_between(
        self,
        db: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> List[EntryResponse]:
        """Entries with start <= date < end, newest first."""
        query = (
            select(DiaryEntry)
            .where(
                DiaryEntry.user_id == user_id,
                DiaryEntry.date >= as_utc(start),
                DiaryEntry.date < as_utc(end),
            )
            .order_by(desc(DiaryEntry.date))
        )
        return [self.to_response(e) for e in await self._fetch(db, query, "calendar range")]

    async def entries_for_day(self, db: AsyncSession, user_id: str, day: date_cls) -> List[EntryResponse]:
        start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        return await self.entries_between(db, user_id, start, start + timedelta(days=1))

    async def entries_for_month(
        self, db: AsyncSession, user_id: str, year: int, month: int
    ) -> List[EntryResponse]:
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        days = calendar.monthrange(year, month)[1]
        return await self.entries_between(db, user_id, start, start + timedelta(days=days))

    async def count_entries(self, db: AsyncSession, user_id: str) -> int:
        try:
            result = await db.execute(
                select(func.count(DiaryEntry.id)).where(DiaryEntry.user_id == user_id)
            )
            return result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error("Database error counting entries: %s", type(e).__name__)
            raise DatabaseError(message="Could not count entries. Please try again.") from e

    async def recent_tags(self, db: AsyncSession, user_id: str, limit: int = 10) -> List[str]:
        """Distinct tags of the newest entries, most recently used first."""
        tags: List[str] = []
        for entry in await self.recent_entries(db, user_id, RECENT_TAGS_WINDOW):
            for tag in entry.tags or []:
                if tag not in tags:
                    tags.append(tag)
                    if len(tags) >= limit:
                        return tags
        return tags

    async def _fetch(self, db: AsyncSession, query, what: str) -> List[DiaryEntry]:
        try:
            result = await db.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error (%s): %s", what, type(e).__name__, exc_info=True)
            raise DatabaseError(
                message="Could not retrieve entries. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

    # ── Notifications ─────────────────────────────────────────────────────

    def subscribe(self, user_id: str) -> Subscription[EntryEvent]:
        return self.events.get(user_id).subscribe()


# ── Singleton Instance ────────────────────────────────────────────────────
entry_service = EntryService()
