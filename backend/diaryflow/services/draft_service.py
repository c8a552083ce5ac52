"""
DiaryFlow Backend — Draft Service (New-Entry Workflow)
========================================================

What:  Owns the in-progress state of entries being written or edited, and
       turns a draft into a stored entry.
How:   Each draft is a DraftState held in memory for its user. Picked files
       and recordings are staged on local disk until the draft is saved.
Who:   Draft routes; the only caller of UploadOrchestrator.

Save Flow (POST /api/drafts/{id}/save):
    ┌──────────┐    ┌───────────────┐    ┌──────────────┐    ┌───────────────┐
    │  Checks  │───▶│   Upload      │───▶│  Write entry │───▶│ Clear staged  │
    │ (text,   │    │  Orchestrator │    │ (create or   │    │ files, draft  │
    │  busy)   │    │  (one batch)  │    │  update)     │    │ becomes edit) │
    └──────────┘    └───────────────┘    └──────────────┘    └───────────────┘

    Any failure before the entry is written leaves the draft exactly as it
    was, so the retry action simply runs the whole save again.

Recordings:
    A recording is staged, then announced on the draft's audio-ready channel.
    The draft's own listener appends the path unless it is already present.
    Transcription status changes go out on the draft's status channel; the
    completed text is appended to the content on a new line.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import aiofiles
import aiofiles.os
from sqlalchemy.ext.asyncio import AsyncSession

from diaryflow.config import settings
from diaryflow.exceptions import (
    CircuitBreakerOpenError,
    ConflictError,
    DiaryFlowError,
    NotFoundError,
    ValidationError,
    WeatherServiceError,
)
from diaryflow.schemas.draft import (
    DraftCreate,
    DraftResponse,
    DraftUpdate,
    FileProgress,
    ProgressResponse,
    SaveResponse,
)
from diaryflow.schemas.entry import Location, WeatherSnapshot
from diaryflow.services.entry_service import EntryService, entry_service
from diaryflow.services.events import EventChannel
from diaryflow.services.storage_service import ObjectStorage, object_storage, safe_filename
from diaryflow.services.transcription_service import (
    TranscriptionResult,
    TranscriptionService,
    TranscriptionStatus,
    transcription_service,
)
from diaryflow.services.upload_orchestrator import BatchProgress, UploadOrchestrator
from diaryflow.services.weather_service import WeatherService, weather_service

logger = logging.getLogger(__name__)


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


def append_transcript(content: str, text: str) -> str:
    """Adds transcribed text on its own line after the existing content."""
    if not content:
        return text
    if content.endswith("\n"):
        return content + text
    return f"{content}\n{text}"


@dataclass
class DraftState:
    """Everything the new-entry screen holds between opening and saving."""

    id: str
    user_id: str
    staging_dir: str
    title: str = ""
    content: str = ""
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tags: List[str] = field(default_factory=list)
    emotional_rating: int = 3
    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None
    selected_files: List[str] = field(default_factory=list)
    recorded_audio: List[str] = field(default_factory=list)
    existing_media_urls: List[str] = field(default_factory=list)
    removed_media_urls: List[str] = field(default_factory=list)
    entry_id: Optional[str] = None
    created_at: Optional[datetime] = None
    transcription_status: TranscriptionStatus = TranscriptionStatus.IDLE
    is_saving: bool = False
    last_active: float = field(default_factory=time.monotonic)
    progress: BatchProgress = field(default_factory=BatchProgress)
    audio_ready: EventChannel = field(default_factory=lambda: EventChannel("audio-ready"))
    status_channel: EventChannel = field(
        default_factory=lambda: EventChannel("transcription-status")
    )

    def __post_init__(self) -> None:
        self.audio_ready.listen(self._on_audio_ready)
        self.status_channel.listen(self._on_transcription_status)

    def _on_audio_ready(self, path: str) -> None:
        if path not in self.recorded_audio:
            self.recorded_audio.append(path)

    def _on_transcription_status(self, status: TranscriptionStatus) -> None:
        self.transcription_status = status

    @property
    def is_edit(self) -> bool:
        return self.entry_id is not None

    @property
    def target_entry_id(self) -> str:
        """New drafts reserve their own id as the id of the entry they create."""
        return self.entry_id or self.id

    def entry_fields(self, media_urls: List[str]) -> dict:
        return {
            "title": self.title,
            "content": self.content,
            "date": self.date,
            "tags": list(self.tags),
            "media_urls": media_urls,
            "emotional_rating": self.emotional_rating,
            "location": self.location,
            "weather": self.weather,
        }

    def close(self) -> None:
        self.audio_ready.close()
        self.status_channel.close()


class DraftService:
    """Creates, edits and saves drafts; one instance per process."""

    def __init__(
        self,
        storage: ObjectStorage = object_storage,
        entries: EntryService = entry_service,
        weather: WeatherService = weather_service,
        transcription: TranscriptionService = transcription_service,
        staging_root: Optional[str] = None,
    ):
        self.entries = entries
        self.weather = weather
        self.transcription = transcription
        self.orchestrator = UploadOrchestrator(storage)
        self.staging_root = Path(staging_root or settings.staging_root).resolve()
        self._drafts: Dict[str, DraftState] = {}

    # ── Lookup ────────────────────────────────────────────────────────────

    def get(self, user_id: str, draft_id: str) -> DraftState:
        draft = self._drafts.get(draft_id)
        if draft is None or draft.user_id != user_id:
            raise NotFoundError(resource="draft", resource_id=draft_id)
        draft.last_active = time.monotonic()
        return draft

    async def evict_idle(self, now: Optional[float] = None) -> int:
        """
        Drops drafts untouched for longer than settings.draft_idle_ttl,
        together with their staged files. Drafts being saved are kept.

        Returns:
            Number of drafts evicted
        """
        now = time.monotonic() if now is None else now
        cutoff = now - settings.draft_idle_ttl
        idle = [
            draft
            for draft in self._drafts.values()
            if draft.last_active < cutoff and not draft.is_saving
        ]
        for draft in idle:
            del self._drafts[draft.id]
            draft.close()
            await self._remove_tree(Path(draft.staging_dir))
        if idle:
            logger.info("Evicted %d idle drafts", len(idle))
        return len(idle)

    @staticmethod
    def to_response(draft: DraftState) -> DraftResponse:
        return DraftResponse(
            id=draft.id,
            entry_id=draft.entry_id,
            title=draft.title,
            content=draft.content,
            date=draft.date,
            tags=draft.tags,
            emotional_rating=draft.emotional_rating,
            location=draft.location,
            weather=draft.weather,
            selected_files=draft.selected_files,
            recorded_audio=draft.recorded_audio,
            existing_media_urls=draft.existing_media_urls,
            transcription_status=draft.transcription_status.value,
            is_saving=draft.is_saving,
            created_at=draft.created_at,
        )

    @staticmethod
    def progress(draft: DraftState) -> ProgressResponse:
        return ProgressResponse(
            is_saving=draft.is_saving,
            overall=draft.progress.overall,
            files=[FileProgress(**item) for item in draft.progress.snapshot()],
        )

    # ── Open / update / discard ───────────────────────────────────────────

    def _new_draft(self, user_id: str, **values) -> DraftState:
        draft_id = uuid.uuid4().hex
        draft = DraftState(
            id=draft_id,
            user_id=user_id,
            staging_dir=str(self.staging_root / draft_id),
            **values,
        )
        self._drafts[draft_id] = draft
        return draft

    async def create_draft(self, user_id: str, data: DraftCreate) -> DraftState:
        await self.evict_idle()
        draft = self._new_draft(
            user_id,
            title=data.title,
            content=data.content,
            date=data.date or datetime.now(timezone.utc),
            tags=list(data.tags),
            emotional_rating=data.emotional_rating,
            location=data.location,
            weather=data.weather,
        )
        if data.fetch_weather and data.location and draft.weather is None:
            draft.weather = await self._lookup_weather(data.location)
        logger.info("Draft %s opened for user %s", draft.id, user_id)
        return draft

    async def edit_entry(self, db: AsyncSession, user_id: str, entry_id: str) -> DraftState:
        """Opens a draft prefilled from a stored entry; saving overwrites that entry."""
        await self.evict_idle()
        entry = await self.entries.get_entry(db, user_id, entry_id)
        draft = self._new_draft(
            user_id,
            title=entry.title,
            content=entry.content,
            date=entry.date,
            tags=list(entry.tags),
            emotional_rating=entry.emotional_rating,
            location=entry.location,
            weather=entry.weather,
            existing_media_urls=list(entry.media_urls),
            entry_id=entry.id,
            created_at=entry.created_at,
        )
        logger.info("Draft %s opened to edit entry %s", draft.id, entry_id)
        return draft

    async def _lookup_weather(self, location: Location) -> Optional[WeatherSnapshot]:
        # A draft without weather is still a valid draft
        try:
            return await self.weather.get_current_weather(location.latitude, location.longitude)
        except (WeatherServiceError, CircuitBreakerOpenError) as e:
            logger.warning("Draft opened without weather: %s", e.message)
            return None

    def update_draft(self, user_id: str, draft_id: str, data: DraftUpdate) -> DraftState:
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("The draft is being saved; try again when the save completes")

        changes = data.model_dump(exclude_unset=True, exclude={"clear_location", "clear_weather"})
        for key, value in changes.items():
            if value is None:
                continue
            if key == "location":
                value = data.location
            elif key == "weather":
                value = data.weather
            setattr(draft, key, value)

        if data.clear_location:
            draft.location = None
        if data.clear_weather:
            draft.weather = None
        return draft

    async def discard(self, user_id: str, draft_id: str) -> None:
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("The draft is being saved and cannot be discarded now")
        del self._drafts[draft_id]
        draft.close()
        await self._remove_tree(Path(draft.staging_dir))
        logger.info("Draft %s discarded", draft_id)

    # ── Files ─────────────────────────────────────────────────────────────

    async def _stage(self, draft: DraftState, filename: str, source: AsyncReadable) -> str:
        """Copies an incoming upload into the draft's staging folder, chunk by chunk."""
        folder = Path(draft.staging_dir) / uuid.uuid4().hex[:8]
        target = folder / safe_filename(filename)
        await aiofiles.os.makedirs(folder, exist_ok=True)

        size = 0
        async with aiofiles.open(target, "wb") as f:
            while True:
                chunk = await source.read(settings.upload_chunk_size)
                if not chunk:
                    break
                await f.write(chunk)
                size += len(chunk)

        logger.debug("Staged %s for draft %s (%d bytes)", target.name, draft.id, size)
        return str(target)

    async def stage_file(
        self, user_id: str, draft_id: str, filename: str, source: AsyncReadable
    ) -> str:
        """Stages a picked file and appends it to the draft's selection."""
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("The draft is being saved; add files after the save completes")
        path = await self._stage(draft, filename, source)
        draft.selected_files.append(path)
        return path

    async def remove_file(self, user_id: str, draft_id: str, path: str) -> DraftState:
        """
        Removes a staged file, a recording, or a media URL of the entry being
        edited. Removed media is deleted from storage once the save succeeds.
        """
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("The draft is being saved; remove files after the save completes")

        if path in draft.existing_media_urls:
            draft.existing_media_urls = [u for u in draft.existing_media_urls if u != path]
            draft.removed_media_urls.append(path)
            return draft

        if path not in draft.selected_files and path not in draft.recorded_audio:
            raise NotFoundError(resource="staged file", resource_id=Path(path).name)

        draft.selected_files = [p for p in draft.selected_files if p != path]
        draft.recorded_audio = [p for p in draft.recorded_audio if p != path]
        await self._remove_staged(draft, path)
        return draft

    async def add_recording(
        self,
        user_id: str,
        draft_id: str,
        filename: str,
        source: AsyncReadable,
        transcribe: bool = False,
    ) -> Tuple[str, Optional[TranscriptionResult], Optional[str]]:
        """
        Stages a voice recording and announces it on the audio-ready channel.

        Returns:
            (staged path, transcription result or None, transcription error or None)
        """
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("The draft is being saved; record after the save completes")

        path = await self._stage(draft, filename, source)
        draft.audio_ready.publish(path)

        if not transcribe:
            return path, None, None
        try:
            return path, await self.transcribe(draft, path), None
        except DiaryFlowError as e:
            # The recording stays attached; only the transcript is missing
            logger.warning("Transcription for draft %s failed: %s", draft.id, e.message)
            return path, None, e.message

    async def transcribe(self, draft: DraftState, path: str) -> TranscriptionResult:
        """Transcribes one recording and appends the text to the draft content."""
        result = await self.transcription.transcribe_file(
            path, on_status=draft.status_channel.publish
        )
        draft.content = append_transcript(draft.content, result.text)
        return result

    # ── Save ──────────────────────────────────────────────────────────────

    async def save(self, db: AsyncSession, user_id: str, draft_id: str) -> SaveResponse:
        """
        Uploads the draft's files and writes the entry.

        Raises:
            ConflictError:               a save of this draft is already running
            ValidationError (+ subclasses): no text, or a file failed validation
            UploadBatchError:            an upload failed (draft untouched)
            DatabaseError:               the entry write failed (draft untouched)
        """
        draft = self.get(user_id, draft_id)
        if draft.is_saving:
            raise ConflictError("This draft is already being saved")
        if not draft.title.strip() and not draft.content.strip():
            raise ValidationError(message="Please add a title or content", field="content")

        draft.is_saving = True
        try:
            result = await self.orchestrator.run(
                user_id=user_id,
                entry_id=draft.target_entry_id,
                selected=draft.selected_files,
                recorded=draft.recorded_audio,
                existing_urls=draft.existing_media_urls,
                progress=draft.progress,
            )

            fields = draft.entry_fields(result.media_urls)
            if draft.is_edit:
                entry = await self.entries.update_entry(db, user_id, draft.target_entry_id, fields)
            else:
                entry = await self.entries.create_entry(db, user_id, draft.target_entry_id, fields)
        finally:
            draft.is_saving = False

        staged = draft.selected_files + draft.recorded_audio
        removed = [u for u in draft.removed_media_urls if u not in entry.media_urls]
        created = not draft.is_edit

        # The saved entry is now what this draft edits
        draft.selected_files = []
        draft.recorded_audio = []
        draft.existing_media_urls = list(entry.media_urls)
        draft.removed_media_urls = []
        draft.entry_id = entry.id
        draft.created_at = entry.created_at
        draft.progress.reset()

        for path in staged:
            await self._remove_staged(draft, path)
        if removed:
            await self.orchestrator.storage.delete_files(removed)

        logger.info(
            "Draft %s saved as entry %s (%d media, %d uploaded)",
            draft.id,
            entry.id,
            len(entry.media_urls),
            len(result.uploaded),
        )
        return SaveResponse(entry=entry, created=created, uploaded=result.uploaded)

    # ── Staging cleanup (best effort) ─────────────────────────────────────

    async def _remove_staged(self, draft: DraftState, path: str) -> None:
        target = Path(path)
        if Path(draft.staging_dir) not in target.parents:
            return
        try:
            await aiofiles.os.remove(target)
            await aiofiles.os.rmdir(target.parent)
        except OSError as e:
            logger.debug("Could not remove staged %s: %s", target.name, e)

    async def _remove_tree(self, root: Path) -> None:
        if not await aiofiles.os.path.isdir(root):
            return
        try:
            for name in await aiofiles.os.listdir(root):
                child = root / name
                if await aiofiles.os.path.isdir(child):
                    await self._remove_tree(child)
                else:
                    await aiofiles.os.remove(child)
            await aiofiles.os.rmdir(root)
        except OSError as e:
            logger.warning("Could not remove staging folder %s: %s", root, e)


# ── Singleton Instance ────────────────────────────────────────────────────
draft_service = DraftService()
