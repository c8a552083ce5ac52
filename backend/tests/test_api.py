"""
DiaryFlow Backend — API Endpoint Tests
========================================

What:  The HTTP surface end to end: auth, the draft → save flow, media
       download, entry queries, error envelopes and health.
How:   httpx AsyncClient over ASGITransport (conftest.test_client) with a
       per-test SQLite database; storage and staging live in the session's
       temp directory.
"""

import pytest

from diaryflow.services.draft_service import draft_service

from conftest import OTHER_USER, USER, FakeStorage

AUTH = {"X-User-ID": USER}
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


async def open_draft(client, **body):
    response = await client.post("/api/drafts", json=body, headers=AUTH)
    assert response.status_code == 201
    return response.json()


class TestAuthAndEnvelope:
    @pytest.mark.asyncio
    async def test_missing_user_is_401(self, test_client):
        response = await test_client.get("/api/entries")

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "authentication_error"
        assert body["request_id"] == response.headers["X-Request-ID"]
        assert "retry" not in body

    @pytest.mark.asyncio
    async def test_client_request_id_is_echoed(self, test_client):
        response = await test_client.get("/api/entries", headers={**AUTH, "X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"

    @pytest.mark.asyncio
    async def test_unknown_entry_is_404(self, test_client):
        response = await test_client.get("/api/entries/nope", headers=AUTH)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestDraftFlow:
    @pytest.mark.asyncio
    async def test_create_save_read_delete(self, test_client):
        draft = await open_draft(test_client, title="Picnic", tags=["park"], emotional_rating=2)
        draft_id = draft["id"]

        staged = await test_client.post(
            f"/api/drafts/{draft_id}/files",
            files=[("files", ("photo.jpg", JPEG, "image/jpeg"))],
            headers=AUTH,
        )
        assert staged.status_code == 200
        assert len(staged.json()["selected_files"]) == 1

        recorded = await test_client.post(
            f"/api/drafts/{draft_id}/recordings",
            files={"audio": ("voice.m4a", b"\x00\x00\x00\x18ftypM4A ", "audio/mp4")},
            headers=AUTH,
        )
        assert recorded.status_code == 201
        assert recorded.json()["transcription_status"] == "idle"
        assert len(recorded.json()["recorded_audio"]) == 1

        saved = await test_client.post(f"/api/drafts/{draft_id}/save", headers=AUTH)
        assert saved.status_code == 201
        entry = saved.json()["entry"]
        assert entry["id"] == draft_id
        assert entry["tags"] == ["park"]
        assert entry["mood"] == "happy"
        assert len(entry["media_urls"]) == 2
        assert "/image_" in entry["media_urls"][0]
        assert "/audio_" in entry["media_urls"][1]

        media = await test_client.get(entry["media_urls"][0])
        assert media.status_code == 200
        assert media.content == JPEG
        assert media.headers["content-type"] == "image/jpeg"

        listed = await test_client.get("/api/entries", headers=AUTH)
        assert [e["id"] for e in listed.json()["entries"]] == [draft_id]

        count = await test_client.get("/api/entries/count", headers=AUTH)
        assert count.json() == {"count": 1}

        found = await test_client.get("/api/entries/search", params={"q": "picnic"}, headers=AUTH)
        assert [e["id"] for e in found.json()] == [draft_id]

        tags = await test_client.get("/api/entries/tags/recent", headers=AUTH)
        assert tags.json() == {"tags": ["park"]}

        deleted = await test_client.delete(f"/api/entries/{draft_id}", headers=AUTH)
        assert deleted.status_code == 204
        assert (await test_client.get(entry["media_urls"][0])).status_code == 404
        assert (await test_client.get(f"/api/entries/{draft_id}", headers=AUTH)).status_code == 404

    @pytest.mark.asyncio
    async def test_second_save_updates_entry(self, test_client):
        draft = await open_draft(test_client, title="Once")
        first = await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)
        assert first.status_code == 201

        await test_client.patch(f"/api/drafts/{draft['id']}", json={"title": "Twice"}, headers=AUTH)
        second = await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)

        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["entry"]["title"] == "Twice"

    @pytest.mark.asyncio
    async def test_edit_draft_for_existing_entry(self, test_client):
        draft = await open_draft(test_client, content="Original")
        await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)

        response = await test_client.post(f"/api/entries/{draft['id']}/draft", headers=AUTH)

        assert response.status_code == 201
        assert response.json()["entry_id"] == draft["id"]
        assert response.json()["content"] == "Original"

    @pytest.mark.asyncio
    async def test_remove_staged_file(self, test_client):
        draft = await open_draft(test_client, title="x")
        staged = await test_client.post(
            f"/api/drafts/{draft['id']}/files",
            files=[("files", ("a.jpg", JPEG, "image/jpeg"))],
            headers=AUTH,
        )
        path = staged.json()["selected_files"][0]

        response = await test_client.request(
            "DELETE", f"/api/drafts/{draft['id']}/files", json={"path": path}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["selected_files"] == []

    @pytest.mark.asyncio
    async def test_edit_draft_drops_existing_media(self, test_client):
        draft = await open_draft(test_client, title="Beach")
        await test_client.post(
            f"/api/drafts/{draft['id']}/files",
            files=[("files", ("a.jpg", JPEG, "image/jpeg"))],
            headers=AUTH,
        )
        saved = await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)
        url = saved.json()["entry"]["media_urls"][0]

        edit = (await test_client.post(f"/api/entries/{draft['id']}/draft", headers=AUTH)).json()
        removed = await test_client.request(
            "DELETE", f"/api/drafts/{edit['id']}/files", json={"path": url}, headers=AUTH
        )
        assert removed.json()["existing_media_urls"] == []

        resaved = await test_client.post(f"/api/drafts/{edit['id']}/save", headers=AUTH)

        assert resaved.status_code == 200
        assert resaved.json()["entry"]["media_urls"] == []
        entry = await test_client.get(f"/api/entries/{draft['id']}", headers=AUTH)
        assert entry.json()["media_urls"] == []
        assert (await test_client.get(url)).status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_cannot_see_draft(self, test_client):
        draft = await open_draft(test_client)
        response = await test_client.get(f"/api/drafts/{draft['id']}", headers={"X-User-ID": OTHER_USER})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_discard(self, test_client):
        draft = await open_draft(test_client)
        assert (await test_client.delete(f"/api/drafts/{draft['id']}", headers=AUTH)).status_code == 204
        assert (await test_client.get(f"/api/drafts/{draft['id']}", headers=AUTH)).status_code == 404


class TestSaveErrors:
    @pytest.mark.asyncio
    async def test_empty_draft_is_400_without_retry(self, test_client):
        draft = await open_draft(test_client)
        response = await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert "retry" not in body

    @pytest.mark.asyncio
    async def test_zero_byte_file_is_400(self, test_client):
        draft = await open_draft(test_client, title="x")
        await test_client.post(
            f"/api/drafts/{draft['id']}/files",
            files=[("files", ("empty.jpg", b"", "image/jpeg"))],
            headers=AUTH,
        )

        response = await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)

        assert response.status_code == 400
        assert "empty" in response.json()["message"]
        assert response.json()["details"]["filename"] == "empty.jpg"

    @pytest.mark.asyncio
    async def test_upload_failure_offers_retry_of_whole_save(self, test_client, monkeypatch):
        monkeypatch.setattr(draft_service.orchestrator, "storage", FakeStorage(fail_on={"a.jpg"}))
        draft = await open_draft(test_client, title="x")
        await test_client.post(
            f"/api/drafts/{draft['id']}/files",
            files=[("files", ("a.jpg", JPEG, "image/jpeg"))],
            headers=AUTH,
        )
        save_path = f"/api/drafts/{draft['id']}/save"

        response = await test_client.post(save_path, headers=AUTH)

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "upload_batch_error"
        assert body["details"]["failed_files"] == ["a.jpg"]
        assert body["retry"] == {"action": "save_entry", "method": "POST", "path": save_path}

        state = await test_client.get(f"/api/drafts/{draft['id']}", headers=AUTH)
        assert len(state.json()["selected_files"]) == 1
        assert (await test_client.get("/api/entries/count", headers=AUTH)).json() == {"count": 0}


class TestEntryQueries:
    @pytest.mark.asyncio
    async def test_calendar_and_bulk_delete(self, test_client):
        ids = []
        for day in (1, 2, 30):
            draft = await open_draft(test_client, title=f"Day {day}", date=f"2024-04-{day:02d}T09:00:00Z")
            await test_client.post(f"/api/drafts/{draft['id']}/save", headers=AUTH)
            ids.append(draft["id"])

        day = await test_client.get("/api/entries/calendar/day", params={"day": "2024-04-02"}, headers=AUTH)
        assert [e["title"] for e in day.json()] == ["Day 2"]

        month = await test_client.get(
            "/api/entries/calendar/month", params={"year": 2024, "month": 4}, headers=AUTH
        )
        assert [e["title"] for e in month.json()] == ["Day 30", "Day 2", "Day 1"]

        deleted = await test_client.post(
            "/api/entries/delete", json={"entry_ids": ids[:2] + ["unknown"]}, headers=AUTH
        )
        assert deleted.json() == {"deleted": ids[:2]}

    @pytest.mark.asyncio
    async def test_invalid_cursor_is_400(self, test_client):
        response = await test_client.get("/api/entries", params={"cursor": "soon"}, headers=AUTH)
        assert response.status_code == 400


class TestIntegrations:
    @pytest.mark.asyncio
    async def test_weather_unconfigured_is_retryable_503(self, test_client):
        response = await test_client.get("/api/weather", params={"lat": 1, "lon": 2}, headers=AUTH)

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "weather_service_error"
        assert body["retry"]["action"] == "fetch_weather"

    @pytest.mark.asyncio
    async def test_transcription_health_without_key(self, test_client):
        response = await test_client.get("/api/transcriptions/health", headers=AUTH)
        assert response.json() == {"service": "assemblyai", "reachable": False, "circuit": "closed"}

    @pytest.mark.asyncio
    async def test_transcription_rejects_unsupported_format(self, test_client):
        response = await test_client.post(
            "/api/transcriptions",
            files={"audio": ("voice.ogg", b"OggS", "audio/ogg")},
            headers=AUTH,
        )
        assert response.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["storage"] == "available"
