"""
DiaryFlow Backend — Transcription Service Unit Tests
======================================================

What:  The AssemblyAI upload → transcript → poll flow, status notifications,
       failure mapping and the connection test.
How:   A scripted httpx.MockTransport plays AssemblyAI; the poll sleep is a
       recording no-op so no test waits.
"""

from unittest.mock import patch

import httpx
import pytest

from diaryflow.exceptions import (
    EmptyMediaFileError,
    MediaFileNotFoundError,
    TranscriptionServiceError,
    UnsupportedMediaError,
)
from diaryflow.services.transcription_service import (
    TranscriptionService,
    TranscriptionStatus,
    poll_interval,
)


class FakeAssemblyAI:
    """Answers the three endpoints; `polls` is the sequence of poll bodies."""

    def __init__(self, polls, upload_status=200):
        self.polls = list(polls)
        self.upload_status = upload_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/upload"):
            if self.upload_status != 200:
                return httpx.Response(self.upload_status)
            return httpx.Response(200, json={"upload_url": "https://cdn.assemblyai.test/abc"})
        if path.endswith("/transcript") and request.method == "POST":
            return httpx.Response(200, json={"id": "tr_1", "status": "queued"})
        if "/transcript/" in path:
            return httpx.Response(200, json=self.polls.pop(0))
        return httpx.Response(404)


class TestTranscribeFile:
    def setup_method(self):
        self.sleeps = []

    async def _sleep(self, seconds):
        self.sleeps.append(seconds)

    def service_for(self, fake, api_key="test-key") -> TranscriptionService:
        return TranscriptionService(
            api_key=api_key,
            base_url="https://assemblyai.test/v2",
            transport=httpx.MockTransport(fake),
            sleep=self._sleep,
        )

    @pytest.mark.asyncio
    async def test_success_reports_every_status(self, make_file):
        fake = FakeAssemblyAI(
            [
                {"status": "queued"},
                {"status": "processing"},
                {"status": "completed", "text": "  Dear diary, today was good.  "},
            ]
        )
        statuses = []

        result = await self.service_for(fake).transcribe_file(
            make_file("rec.m4a", content=b"audio"), on_status=statuses.append
        )

        assert result.text == "Dear diary, today was good."
        assert result.transcript_id == "tr_1"
        assert statuses == [
            TranscriptionStatus.UPLOADING,
            TranscriptionStatus.PROCESSING,
            TranscriptionStatus.COMPLETED,
        ]
        upload, create = fake.requests[0], fake.requests[1]
        assert upload.content == b"audio"
        assert upload.headers["authorization"] == "test-key"
        assert b'"audio_url"' in create.content

    @pytest.mark.asyncio
    async def test_empty_transcript_is_no_speech(self, make_file):
        fake = FakeAssemblyAI([{"status": "completed", "text": "   "}])
        statuses = []

        with pytest.raises(TranscriptionServiceError, match="No speech detected"):
            await self.service_for(fake).transcribe_file(
                make_file("rec.m4a"), on_status=statuses.append
            )
        assert statuses[-1] is TranscriptionStatus.FAILED

    @pytest.mark.asyncio
    async def test_provider_error_status(self, make_file):
        fake = FakeAssemblyAI([{"status": "error", "error": "Audio too short"}])
        with pytest.raises(TranscriptionServiceError) as exc_info:
            await self.service_for(fake).transcribe_file(make_file("rec.wav"))
        assert exc_info.value.context["provider_error"] == "Audio too short"

    @pytest.mark.asyncio
    async def test_upload_failure_after_retries(self, make_file):
        fake = FakeAssemblyAI([], upload_status=500)
        service = self.service_for(fake)

        with pytest.raises(TranscriptionServiceError):
            await service.transcribe_file(make_file("rec.mp3"))

        assert service.circuit_breaker.failure_count == 1
        assert len(fake.requests) > 1

    @pytest.mark.asyncio
    async def test_poll_timeout(self, make_file):
        fake = FakeAssemblyAI([{"status": "processing"}] * 5)
        service = self.service_for(fake)
        with patch("diaryflow.services.transcription_service.settings") as mock_settings:
            mock_settings.transcription_max_polls = 5
            mock_settings.assemblyai_language_code = "en"
            mock_settings.assemblyai_upload_timeout = 30.0
            with pytest.raises(TranscriptionServiceError, match="too long"):
                await service.transcribe_file(make_file("rec.m4a"))

        # Attempts 0-2 poll immediately, 3 waits 1 s, the last poll does not wait
        assert self.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_missing_key(self, make_file):
        statuses = []
        service = self.service_for(FakeAssemblyAI([]), api_key="")
        with pytest.raises(TranscriptionServiceError, match="not configured"):
            await service.transcribe_file(make_file("rec.m4a"), on_status=statuses.append)
        assert statuses == [TranscriptionStatus.FAILED]


class TestValidateAudio:
    def setup_method(self):
        self.service = TranscriptionService(api_key="k")

    @pytest.mark.asyncio
    async def test_supported(self, make_file):
        assert await self.service.validate_audio(make_file("a.flac", size=10)) == 10

    @pytest.mark.asyncio
    async def test_unsupported_format(self, make_file):
        with pytest.raises(UnsupportedMediaError, match="M4A"):
            await self.service.validate_audio(make_file("a.ogg"))

    @pytest.mark.asyncio
    async def test_missing_and_empty(self, make_file, tmp_path):
        with pytest.raises(MediaFileNotFoundError):
            await self.service.validate_audio(str(tmp_path / "none.m4a"))
        with pytest.raises(EmptyMediaFileError):
            await self.service.validate_audio(make_file("empty.m4a", size=0))


class TestConnection:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("code, expected", [(200, True), (404, True), (401, False), (403, False), (500, False)])
    async def test_status_mapping(self, code, expected):
        service = TranscriptionService(
            api_key="k",
            base_url="https://assemblyai.test/v2",
            transport=httpx.MockTransport(lambda r: httpx.Response(code)),
        )
        assert await service.test_connection() is expected

    @pytest.mark.asyncio
    async def test_without_key(self):
        assert await TranscriptionService(api_key="").test_connection() is False


class TestPollInterval:
    def test_schedule(self):
        assert [poll_interval(a) for a in (0, 2, 3, 9, 10, 29, 30, 119)] == [
            0.0, 0.0, 1.0, 1.0, 2.0, 2.0, 4.0, 4.0,
        ]


class TestStatus:
    def test_in_progress(self):
        assert TranscriptionStatus.UPLOADING.in_progress
        assert TranscriptionStatus.PROCESSING.in_progress
        assert not TranscriptionStatus.COMPLETED.in_progress
        assert TranscriptionStatus.FAILED.display_name == "Error occurred"
