"""
DiaryFlow Backend — Upload Orchestrator
=========================================

What:  Turns a draft's local files into download URLs for one entry save.
How:   Plan (de-duplicate) → validate every file → upload all of them as one
       concurrent batch → assemble the media list in a fixed group order.
Who:   DraftService.save(); the entry document is written only after run()
       returns, so a failed batch never reaches the database.

Orchestration Flow:
    ┌──────────┐    ┌────────────┐    ┌──────────────────┐    ┌─────────────┐
    │  Plan    │───▶│  Validate  │───▶│  asyncio.gather  │───▶│ Media list  │
    │ (dedup)  │    │ (all files)│    │  (one batch)     │    │ (ordered)   │
    └──────────┘    └────────────┘    └──────────────────┘    └─────────────┘

    Validation fails → the matching ValidationError, no network call made
    Any upload fails → UploadBatchError; blobs the batch did store are
                       logged and left in place (a retry uploads again)

Media list order:
    existing references + non-audio uploads (selection order)
    + audio uploads (picked audio in selection order, then recordings in
    arrival order)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from diaryflow.exceptions import UploadBatchError
from diaryflow.services.media import MediaFile, is_audio, validate_media_file
from diaryflow.services.storage_service import ObjectStorage, ProgressCallback

logger = logging.getLogger(__name__)


def _unique(paths: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            result.append(path)
    return result


@dataclass
class UploadPlan:
    """
    The files of one save, de-duplicated and split into upload groups.

    A recording whose path is also in the selection is uploaded once, as
    part of the selection. Duplicates within either list collapse onto their
    first occurrence.
    """

    non_audio: List[str] = field(default_factory=list)
    picked_audio: List[str] = field(default_factory=list)
    recorded_audio: List[str] = field(default_factory=list)

    @classmethod
    def build(cls, selected: Sequence[str], recorded: Sequence[str]) -> "UploadPlan":
        selected = _unique(selected)
        in_selection = set(selected)
        recorded = [p for p in _unique(recorded) if p not in in_selection]
        return cls(
            non_audio=[p for p in selected if not is_audio(p)],
            picked_audio=[p for p in selected if is_audio(p)],
            recorded_audio=recorded,
        )

    @property
    def paths(self) -> List[str]:
        """Every file of the batch, in media list order."""
        return self.non_audio + self.picked_audio + self.recorded_audio

    def __len__(self) -> int:
        return len(self.non_audio) + len(self.picked_audio) + len(self.recorded_audio)


@dataclass
class FileProgressState:
    bytes_sent: int = 0
    total_bytes: int = 0

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(1.0, self.bytes_sent / self.total_bytes)


class BatchProgress:
    """
    Per-file and overall progress of the current upload batch.

    Overall progress is weighted by file size.
    """

    def __init__(self) -> None:
        self.files: Dict[str, FileProgressState] = {}

    def start(self, files: Sequence[MediaFile]) -> None:
        self.files = {f.path: FileProgressState(0, f.size) for f in files}

    def reset(self) -> None:
        self.files = {}

    def update(self, path: str, bytes_sent: int, total_bytes: int) -> None:
        state = self.files.setdefault(path, FileProgressState())
        state.bytes_sent = bytes_sent
        state.total_bytes = total_bytes

    def callback_for(self, path: str) -> ProgressCallback:
        def _on_progress(bytes_sent: int, total_bytes: int) -> None:
            self.update(path, bytes_sent, total_bytes)

        return _on_progress

    @property
    def overall(self) -> float:
        total = sum(s.total_bytes for s in self.files.values())
        if total <= 0:
            return 0.0
        sent = sum(min(s.bytes_sent, s.total_bytes) for s in self.files.values())
        return sent / total

    def snapshot(self) -> List[dict]:
        return [
            {
                "path": path,
                "bytes_sent": s.bytes_sent,
                "total_bytes": s.total_bytes,
                "fraction": s.fraction,
            }
            for path, s in self.files.items()
        ]


@dataclass
class UploadResult:
    media_urls: List[str]
    uploaded: Dict[str, str]


class UploadOrchestrator:
    """Validates and uploads the files of one save against an ObjectStorage."""

    def __init__(self, storage: ObjectStorage):
        self.storage = storage

    async def validate(self, plan: UploadPlan) -> List[MediaFile]:
        """
        Checks every file of the plan; the first failure is raised.

        Runs before any upload starts, so an invalid file costs no bandwidth.
        """
        return [await validate_media_file(path) for path in plan.paths]

    async def run(
        self,
        user_id: str,
        entry_id: str,
        selected: Sequence[str],
        recorded: Sequence[str],
        existing_urls: Sequence[str] = (),
        progress: Optional[BatchProgress] = None,
    ) -> UploadResult:
        """
        Uploads the draft's files and returns the entry's new media list.

        Raises:
            ValidationError subclasses: a file is missing, empty or too large
            UploadBatchError:           at least one upload failed
        """
        plan = UploadPlan.build(selected, recorded)
        files = await self.validate(plan)
        progress = progress or BatchProgress()
        progress.start(files)

        if not files:
            return UploadResult(media_urls=list(existing_urls), uploaded={})

        logger.info(
            "Uploading %d files for entry %s (%d non-audio, %d picked audio, %d recorded)",
            len(files),
            entry_id,
            len(plan.non_audio),
            len(plan.picked_audio),
            len(plan.recorded_audio),
        )

        results = await asyncio.gather(
            *(
                self.storage.upload_file(
                    f.path, user_id, entry_id, on_progress=progress.callback_for(f.path)
                )
                for f in files
            ),
            return_exceptions=True,
        )

        uploaded: Dict[str, str] = {}
        failed: List[str] = []
        for media_file, result in zip(files, results):
            if isinstance(result, BaseException):
                logger.warning("Upload of %s failed: %s", media_file.filename, result)
                failed.append(media_file.filename)
            else:
                uploaded[media_file.path] = result

        if failed:
            if uploaded:
                # Not reused by the retry; the retry uploads every file again
                logger.warning(
                    "Upload batch for entry %s failed; %d stored blobs left orphaned: %s",
                    entry_id,
                    len(uploaded),
                    list(uploaded.values()),
                )
            raise UploadBatchError(
                message=(
                    f"{len(failed)} of {len(files)} files failed to upload. "
                    "Please try saving again."
                ),
                failed_files=failed,
                context={"entry_id": entry_id},
            )

        media_urls = list(existing_urls) + [uploaded[path] for path in plan.paths]
        return UploadResult(media_urls=media_urls, uploaded=uploaded)
