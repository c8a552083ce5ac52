"""
DiaryFlow Backend — Entry Search
==================================

What:  Case-insensitive text search over a user's newest entries.
How:   Loads a window of the newest entries and filters them in Python.
       Diaries are small per user, and matching has to look inside the
       JSON tag list, which a portable SQL LIKE cannot do.

Strategies:
    smart    (default) whole query in title/content; otherwise, for queries
             with several words longer than 2 characters, at least half of
             those words (rounded up) must appear in title, content or a tag;
             otherwise the query must appear in title, content or a tag.
             Scans the newest 2 × limit entries.
    title    query in title       (scans the newest `limit` entries)
    content  query in content     (scans the newest `limit` entries)
    tags     query in any tag     (scans the newest `limit` entries)
"""

import enum
import logging
import math
from typing import List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from diaryflow.models.entry import DiaryEntry
from diaryflow.schemas.entry import EntryResponse
from diaryflow.services.entry_service import EntryService, entry_service

logger = logging.getLogger(__name__)


class SearchStrategy(str, enum.Enum):
    SMART = "smart"
    TITLE = "title"
    CONTENT = "content"
    TAGS = "tags"


def _in_tags(word: str, tags: Sequence[str]) -> bool:
    return any(word in tag.lower() for tag in tags)


def smart_match(entry: DiaryEntry, query: str) -> bool:
    """`query` must already be stripped and lower-cased."""
    title = (entry.title or "").lower()
    content = (entry.content or "").lower()
    tags = entry.tags or []

    if query in title or query in content:
        return True

    words = [word for word in query.split(" ") if len(word) > 2]
    if len(words) > 1:
        matched = sum(
            1 for word in words
            if word in title or word in content or _in_tags(word, tags)
        )
        return matched >= math.ceil(len(words) / 2)

    return _in_tags(query, tags)


def matches(entry: DiaryEntry, query: str, strategy: SearchStrategy) -> bool:
    if strategy is SearchStrategy.TITLE:
        return query in (entry.title or "").lower()
    if strategy is SearchStrategy.CONTENT:
        return query in (entry.content or "").lower()
    if strategy is SearchStrategy.TAGS:
        return _in_tags(query, entry.tags or [])
    return smart_match(entry, query)


class SearchService:
    def __init__(self, entries: EntryService = entry_service):
        self.entries = entries

    async def search(
        self,
        db: AsyncSession,
        user_id: str,
        query: str,
        strategy: SearchStrategy = SearchStrategy.SMART,
        limit: int = 50,
    ) -> List[EntryResponse]:
        """Matching entries, newest first. A blank query matches nothing."""
        needle = query.strip().lower()
        if not needle:
            return []

        window = limit * 2 if strategy is SearchStrategy.SMART else limit
        candidates = await self.entries.recent_entries(db, user_id, window)

        results = []
        for entry in candidates:
            if matches(entry, needle, strategy):
                results.append(self.entries.to_response(entry))
                if len(results) >= limit:
                    break

        logger.info(
            "Search (%s) matched %d of %d entries",
            strategy.value,
            len(results),
            len(candidates),
        )
        return results


# ── Singleton Instance ────────────────────────────────────────────────────
search_service = SearchService()
