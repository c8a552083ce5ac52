"""
DiaryFlow Backend — Transcription Service (AssemblyAI)
========================================================

What:  Speech-to-text for voice recordings attached to a draft.
How:   Three REST steps against AssemblyAI:
           1. POST /upload           raw audio bytes → upload_url
           2. POST /transcript       {"audio_url": upload_url} → transcript id
           3. GET  /transcript/{id}  polled until completed or error
       Each HTTP call runs under the tenacity retry policy; the whole flow is
       guarded by a circuit breaker.
Who:   DraftService (recordings posted with transcribe=true) and the
       POST /api/transcriptions route.

Polling Schedule (attempt is 0-based, at most transcription_max_polls):
    attempts 0-2   no wait (short clips are often done immediately)
    attempts 3-9   1 s
    attempts 10-29 2 s
    attempts 30+   4 s

Status Flow:
    idle → uploading → processing → completed
                 └────────────┴──────→ failed
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import aiofiles
import aiofiles.os
import httpx

from diaryflow.config import settings
from diaryflow.exceptions import (
    EmptyMediaFileError,
    MediaFileNotFoundError,
    TranscriptionServiceError,
    UnsupportedMediaError,
)
from diaryflow.services.media import extension_of
from diaryflow.services.resilience import CircuitBreaker, http_retrying

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ["m4a", "mp3", "wav", "flac", "aac"]


class TranscriptionStatus(str, enum.Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def in_progress(self) -> bool:
        return self in (TranscriptionStatus.UPLOADING, TranscriptionStatus.PROCESSING)

    @property
    def display_name(self) -> str:
        return {
            TranscriptionStatus.IDLE: "Ready",
            TranscriptionStatus.UPLOADING: "Uploading audio...",
            TranscriptionStatus.PROCESSING: "Processing transcription...",
            TranscriptionStatus.COMPLETED: "Transcription completed",
            TranscriptionStatus.FAILED: "Error occurred",
        }[self]


StatusCallback = Callable[[TranscriptionStatus], None]


@dataclass
class TranscriptionResult:
    text: str
    transcript_id: str


def poll_interval(attempt: int) -> float:
    """Seconds to wait after poll `attempt` came back still in progress."""
    if attempt < 3:
        return 0.0
    if attempt < 10:
        return 1.0
    if attempt < 30:
        return 2.0
    return 4.0


class TranscriptionService:
    """AssemblyAI client. One instance per process so the breaker state is shared."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            api_key:   Override settings.assemblyai_api_key
            base_url:  Override settings.assemblyai_base_url
            transport: httpx transport (tests pass an httpx.MockTransport)
            sleep:     Poll wait coroutine (tests pass a no-op)
        """
        self.api_key = settings.assemblyai_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.assemblyai_base_url).rstrip("/")
        self.transport = transport
        self._sleep = sleep
        self.circuit_breaker = CircuitBreaker(
            service="transcription service",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"authorization": self.api_key},
            timeout=settings.assemblyai_upload_timeout,
            transport=self.transport,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def validate_audio(self, path: str) -> int:
        """
        Checks a local recording before it is sent. Returns its size in bytes.

        Raises:
            MediaFileNotFoundError, EmptyMediaFileError, UnsupportedMediaError
        """
        filename = Path(path).name
        if not await aiofiles.os.path.isfile(path):
            raise MediaFileNotFoundError(filename)
        size = (await aiofiles.os.stat(path)).st_size
        if size == 0:
            raise EmptyMediaFileError(filename)
        if extension_of(path) not in SUPPORTED_FORMATS:
            raise UnsupportedMediaError(filename, SUPPORTED_FORMATS)
        return size

    async def transcribe_file(
        self,
        path: str,
        on_status: Optional[StatusCallback] = None,
    ) -> TranscriptionResult:
        """
        Transcribes one local audio file.

        on_status receives every status change, ending with COMPLETED or FAILED.

        Raises:
            ValidationError subclasses:  bad local file (status FAILED)
            TranscriptionServiceError:   provider failure, timeout, no speech
            CircuitBreakerOpenError:     too many recent provider failures
        """
        notify = on_status or (lambda status: None)

        try:
            size = await self.validate_audio(path)
            if not self.api_key:
                raise TranscriptionServiceError(
                    message="Voice transcription is not configured on this server",
                    context={"reason": "missing_api_key"},
                )
            self.circuit_breaker.can_execute()
        except Exception:
            notify(TranscriptionStatus.FAILED)
            raise

        logger.info("Transcribing %s (%.1f KB)", Path(path).name, size / 1024)

        try:
            async with self._client() as client:
                notify(TranscriptionStatus.UPLOADING)
                upload_url = await self._upload(client, path)

                notify(TranscriptionStatus.PROCESSING)
                transcript_id = await self._request_transcript(client, upload_url)
                body = await self._poll(client, transcript_id)
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            notify(TranscriptionStatus.FAILED)
            logger.error("AssemblyAI request failed: %s", e)
            raise TranscriptionServiceError(
                context={"error_type": type(e).__name__},
            ) from e
        except TranscriptionServiceError:
            notify(TranscriptionStatus.FAILED)
            raise

        self.circuit_breaker.record_success()

        if body.get("status") == "error":
            notify(TranscriptionStatus.FAILED)
            raise TranscriptionServiceError(
                message="Transcription failed. Please try recording again.",
                context={"transcript_id": transcript_id, "provider_error": body.get("error")},
            )

        text = (body.get("text") or "").strip()
        if not text:
            notify(TranscriptionStatus.FAILED)
            raise TranscriptionServiceError(
                message="No speech detected in the recording",
                context={"transcript_id": transcript_id, "reason": "empty_transcript"},
            )

        notify(TranscriptionStatus.COMPLETED)
        logger.info("Transcript %s completed: %d chars", transcript_id, len(text))
        return TranscriptionResult(text=text, transcript_id=transcript_id)

    async def test_connection(self) -> bool:
        """
        True when the API accepts our key.

        401/403 mean the key is wrong; any other status below 500 means the
        API is reachable and authorised.
        """
        if not self.api_key:
            return False
        try:
            async with self._client() as client:
                response = await client.get("/transcript", timeout=10.0)
        except httpx.HTTPError as e:
            logger.warning("AssemblyAI connection test failed: %s", e)
            return False

        if response.status_code in (401, 403):
            logger.warning("AssemblyAI rejected the API key (%d)", response.status_code)
            return False
        return response.status_code < 500

    # ── Steps ─────────────────────────────────────────────────────────────

    async def _upload(self, client: httpx.AsyncClient, path: str) -> str:
        async with aiofiles.open(path, "rb") as f:
            audio = await f.read()

        async for attempt in http_retrying(logger):
            with attempt:
                response = await client.post(
                    "/upload",
                    content=audio,
                    headers={"content-type": "application/octet-stream"},
                )
                response.raise_for_status()

        upload_url = response.json().get("upload_url")
        if not upload_url:
            raise TranscriptionServiceError(
                message="Audio upload was not accepted. Please try again.",
                context={"reason": "missing_upload_url"},
            )
        return upload_url

    async def _request_transcript(self, client: httpx.AsyncClient, upload_url: str) -> str:
        payload: Dict[str, Any] = {
            "audio_url": upload_url,
            "language_code": settings.assemblyai_language_code,
            "punctuate": True,
            "format_text": True,
        }
        async for attempt in http_retrying(logger):
            with attempt:
                response = await client.post("/transcript", json=payload)
                response.raise_for_status()

        transcript_id = response.json().get("id")
        if not transcript_id:
            raise TranscriptionServiceError(
                message="Transcription could not be started. Please try again.",
                context={"reason": "missing_transcript_id"},
            )
        return transcript_id

    async def _poll(self, client: httpx.AsyncClient, transcript_id: str) -> Dict[str, Any]:
        """Returns the final transcript body (status 'completed' or 'error')."""
        max_polls = settings.transcription_max_polls

        for attempt in range(max_polls):
            async for retry in http_retrying(logger):
                with retry:
                    response = await client.get(f"/transcript/{transcript_id}")
                    response.raise_for_status()

            body = response.json()
            status = body.get("status")
            logger.debug("Transcript %s poll %d: %s", transcript_id, attempt, status)

            if status in ("completed", "error"):
                return body
            if status not in ("queued", "processing"):
                logger.warning("Transcript %s has unknown status %r", transcript_id, status)

            if attempt < max_polls - 1:
                wait = poll_interval(attempt)
                if wait:
                    await self._sleep(wait)

        logger.error("Transcript %s still pending after %d polls", transcript_id, max_polls)
        raise TranscriptionServiceError(
            message="Transcription is taking too long. Please try again.",
            context={"transcript_id": transcript_id, "reason": "timeout", "polls": max_polls},
        )


# ── Singleton Instance ────────────────────────────────────────────────────
transcription_service = TranscriptionService()
