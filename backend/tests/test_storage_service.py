"""
DiaryFlow Backend — Local Object Storage Tests
================================================

What:  Key layout, chunked uploads with progress, URL resolution and the
       best-effort delete paths of LocalObjectStorage.
"""

from pathlib import Path

import pytest

from diaryflow.exceptions import NotFoundError
from diaryflow.services.storage_service import safe_filename
from diaryflow.services.upload_orchestrator import UploadOrchestrator


class TestSafeFilename:
    def test_strips_directories(self):
        assert safe_filename("/home/me/../photos/beach.jpg") == "beach.jpg"

    def test_replaces_unsafe_characters(self):
        assert safe_filename("my summer (1).jpg") == "my_summer_1_.jpg"

    def test_never_empty(self):
        assert safe_filename("...") == "file"


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_stores_under_entry_prefix(self, temp_storage, make_file):
        path = make_file("beach.jpg", size=10_000)

        url = await temp_storage.upload_file(path, "alice", "entry1")

        assert url.startswith("http://test/api/media/alice/entry1/image_")
        assert url.endswith("_beach.jpg")
        stored = temp_storage.resolve(temp_storage.key_from_url(url))
        assert stored.read_bytes() == Path(path).read_bytes()
        assert not list(stored.parent.glob("*.part"))

    @pytest.mark.asyncio
    async def test_progress_reported_per_chunk(self, temp_storage, make_file):
        path = make_file("clip.mp4", size=10_000)
        calls = []

        await temp_storage.upload_file(
            path, "alice", "entry1", on_progress=lambda sent, total: calls.append((sent, total))
        )

        assert calls == [(4096, 10_000), (8192, 10_000), (10_000, 10_000)]

    @pytest.mark.asyncio
    async def test_same_file_twice_gets_distinct_keys(self, temp_storage, make_file):
        path = make_file("voice.m4a")
        first = await temp_storage.upload_file(path, "alice", "entry1")
        second = await temp_storage.upload_file(path, "alice", "entry1")
        assert first != second
        assert "/audio_" in first

    @pytest.mark.asyncio
    async def test_same_name_in_one_batch_gets_distinct_keys(self, temp_storage, tmp_path):
        recordings = []
        for i, size in enumerate((5000, 7000)):
            folder = tmp_path / f"stage{i}"
            folder.mkdir()
            path = folder / "recording.m4a"
            path.write_bytes(bytes([i + 1]) * size)
            recordings.append(str(path))

        result = await UploadOrchestrator(temp_storage).run(
            user_id="alice", entry_id="e1", selected=[], recorded=recordings
        )

        assert len(set(result.media_urls)) == 2
        stored = [temp_storage.resolve(temp_storage.key_from_url(url)) for url in result.media_urls]
        assert sorted(p.stat().st_size for p in stored) == [5000, 7000]
        assert not list(stored[0].parent.glob("*.part"))


class TestResolve:
    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, temp_storage):
        await temp_storage.initialize()
        with pytest.raises(NotFoundError):
            temp_storage.resolve("../../etc/passwd")

    def test_unknown_key(self, temp_storage):
        with pytest.raises(NotFoundError):
            temp_storage.resolve("alice/entry1/missing.jpg")

    def test_foreign_url_has_no_key(self, temp_storage):
        assert temp_storage.key_from_url("https://elsewhere.example/x.jpg") is None


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_file(self, temp_storage, make_file):
        url = await temp_storage.upload_file(make_file("a.jpg"), "alice", "e1")
        assert await temp_storage.delete_file(url) is True
        assert await temp_storage.delete_file(url) is False

    @pytest.mark.asyncio
    async def test_delete_foreign_url_is_ignored(self, temp_storage):
        assert await temp_storage.delete_file("https://elsewhere.example/x.jpg") is False

    @pytest.mark.asyncio
    async def test_delete_files_counts_successes(self, temp_storage, make_file):
        urls = [
            await temp_storage.upload_file(make_file("a.jpg"), "alice", "e1"),
            await temp_storage.upload_file(make_file("b.jpg"), "alice", "e1"),
        ]
        deleted = await temp_storage.delete_files(urls + ["http://test/api/media/alice/e1/nope.jpg"])
        assert deleted == 2

    @pytest.mark.asyncio
    async def test_delete_all_for_entry(self, temp_storage, make_file):
        await temp_storage.upload_file(make_file("a.jpg"), "alice", "e1")
        await temp_storage.upload_file(make_file("b.m4a"), "alice", "e1")
        keep = await temp_storage.upload_file(make_file("c.jpg"), "alice", "e2")

        assert await temp_storage.delete_all_for_entry("alice", "e1") == 2
        assert not (temp_storage.storage_root / "alice" / "e1").exists()
        assert temp_storage.resolve(temp_storage.key_from_url(keep)).exists()

    @pytest.mark.asyncio
    async def test_delete_all_for_unknown_entry(self, temp_storage):
        assert await temp_storage.delete_all_for_entry("alice", "nothing") == 0


class TestConnection:
    @pytest.mark.asyncio
    async def test_initialize_and_probe(self, temp_storage):
        await temp_storage.initialize()
        assert await temp_storage.test_connection() is True
        assert list(temp_storage.storage_root.iterdir()) == []
