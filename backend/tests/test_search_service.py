"""
DiaryFlow Backend — Search Tests
==================================

What:  Matching rules of every search strategy and the scan window.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from diaryflow.services.entry_service import EntryService
from diaryflow.services.search_service import SearchService, SearchStrategy, matches, smart_match

from conftest import USER, FakeStorage


def entry(title="", content="", tags=None):
    return SimpleNamespace(title=title, content=content, tags=tags or [])


class TestSmartMatch:
    def test_whole_query_in_title_or_content(self):
        assert smart_match(entry(title="Trip to Porto"), "to porto")
        assert smart_match(entry(content="We went to the market"), "the market")

    def test_half_of_the_words_rounded_up(self):
        e = entry(title="Hiking", content="mountain lake", tags=["friends"])
        # 3 words longer than 2 chars: 2 needed
        assert smart_match(e, "mountain friends castle")
        assert not smart_match(e, "mountain castle river")

    def test_short_words_are_ignored_when_counting(self):
        e = entry(content="sunset at the pier")
        # "at" and "a" drop out, leaving "sunset pier city": 2 of 3
        assert smart_match(e, "sunset a pier at city")

    def test_single_word_falls_back_to_tags(self):
        assert smart_match(entry(tags=["Birthday"]), "birthday")
        assert not smart_match(entry(title="nothing"), "birthday")


class TestStrategies:
    def test_title_only(self):
        e = entry(title="Coffee", content="tea", tags=["tea"])
        assert matches(e, "coffee", SearchStrategy.TITLE)
        assert not matches(e, "tea", SearchStrategy.TITLE)

    def test_content_only(self):
        e = entry(title="Coffee", content="tea")
        assert matches(e, "tea", SearchStrategy.CONTENT)
        assert not matches(e, "coffee", SearchStrategy.CONTENT)

    def test_tags_substring(self):
        e = entry(tags=["Family Dinner"])
        assert matches(e, "family", SearchStrategy.TAGS)
        assert not matches(e, "work", SearchStrategy.TAGS)


class TestSearchService:
    def setup_method(self):
        self.entries = EntryService(storage=FakeStorage())
        self.service = SearchService(entries=self.entries)

    async def _create(self, db, entry_id, days, **values):
        values.setdefault("title", "")
        values.setdefault("content", "")
        values["date"] = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=days)
        await self.entries.create_entry(db, USER, entry_id, values)

    @pytest.mark.asyncio
    async def test_blank_query_matches_nothing(self, db_session):
        await self._create(db_session, "e1", 0, title="Anything")
        assert await self.service.search(db_session, USER, "   ") == []

    @pytest.mark.asyncio
    async def test_results_newest_first_and_case_insensitive(self, db_session):
        await self._create(db_session, "old", 0, title="Rainy walk")
        await self._create(db_session, "new", 1, content="another RAINY day")
        await self._create(db_session, "other", 2, title="Sunny")

        results = await self.service.search(db_session, USER, "Rainy")

        assert [r.id for r in results] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_title_strategy_scans_only_limit_newest(self, db_session):
        await self._create(db_session, "match", 0, title="Garden")
        await self._create(db_session, "n1", 1, title="x")
        await self._create(db_session, "n2", 2, title="y")

        assert await self.service.search(db_session, USER, "garden", SearchStrategy.TITLE, limit=2) == []
        found = await self.service.search(db_session, USER, "garden", SearchStrategy.TITLE, limit=3)
        assert [r.id for r in found] == ["match"]

    @pytest.mark.asyncio
    async def test_smart_strategy_scans_twice_the_limit(self, db_session):
        await self._create(db_session, "match", 0, title="Garden")
        await self._create(db_session, "n1", 1, title="x")
        await self._create(db_session, "n2", 2, title="y")

        found = await self.service.search(db_session, USER, "garden", limit=2)
        assert [r.id for r in found] == ["match"]
