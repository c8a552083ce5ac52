"""
DiaryFlow Backend — Media Classification & Validation
=======================================================

What:  Decides what kind of media a local file is and whether it may be uploaded.
How:   Classification is by extension only. Validation checks existence,
       non-zero size and the per-kind size ceiling with async stat calls.
Who:   UploadOrchestrator (before any network call), LocalObjectStorage
       (object keys and content types), TranscriptionService (format check).

Ceilings (MB = 1024 * 1024 bytes, a file exactly at the ceiling passes):
    image  10 MB
    audio  50 MB
    video 100 MB
    file  max_upload_size_mb (no type ceiling, only the overall bound)
"""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path

import aiofiles.os

from diaryflow.config import MEGABYTE, settings
from diaryflow.exceptions import (
    EmptyMediaFileError,
    MediaFileNotFoundError,
    MediaFileTooLargeError,
)

logger = logging.getLogger(__name__)


class MediaKind(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg"}
VIDEO_EXTENSIONS = {"mp4", "avi", "mov", "wmv", "flv", "3gp", "mkv", "webm"}
AUDIO_EXTENSIONS = {"mp3", "wav", "flac", "aac", "m4a", "ogg", "wma"}

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def extension_of(path: str) -> str:
    """Lower-case extension without the dot ('' when there is none)."""
    return Path(path).suffix.lower().lstrip(".")


def classify(path: str) -> MediaKind:
    ext = extension_of(path)
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    return MediaKind.FILE


def content_type(path: str) -> str:
    return CONTENT_TYPES.get(extension_of(path), DEFAULT_CONTENT_TYPE)


def is_audio(path: str) -> bool:
    return classify(path) is MediaKind.AUDIO


@dataclass(frozen=True)
class MediaFile:
    """A local file that passed validation."""
    path: str
    kind: MediaKind
    size: int

    @property
    def filename(self) -> str:
        return Path(self.path).name


async def validate_media_file(path: str) -> MediaFile:
    """
    Checks one local file before it may join an upload batch.

    Raises:
        MediaFileNotFoundError: the path no longer points to a regular file
        EmptyMediaFileError:    zero bytes, whatever the extension
        MediaFileTooLargeError: above the ceiling of its kind
    """
    filename = Path(path).name

    if not await aiofiles.os.path.isfile(path):
        raise MediaFileNotFoundError(filename)

    size = (await aiofiles.os.stat(path)).st_size
    if size == 0:
        raise EmptyMediaFileError(filename)

    kind = classify(path)
    ceiling_mb = settings.size_ceiling_mb(kind.value)
    if size > ceiling_mb * MEGABYTE:
        raise MediaFileTooLargeError(
            filename=filename,
            kind=kind.value,
            size_mb=size / MEGABYTE,
            ceiling_mb=ceiling_mb,
        )

    logger.debug("Validated %s (%s, %d bytes)", filename, kind.value, size)
    return MediaFile(path=path, kind=kind, size=size)
