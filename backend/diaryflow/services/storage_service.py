"""
DiaryFlow Backend — Object Storage
====================================

What:  Blob storage for entry media behind a provider-neutral interface.
How:   ObjectStorage is the contract; LocalObjectStorage keeps blobs on the
       local file system and serves them through GET /api/media/{key}.
Who:   UploadOrchestrator uploads, EntryService deletes, health route tests.

Object Layout:
    storage_root/
    └── <user_id>/
        └── <entry_id>/
            ├── image_1718000000000_beach.jpg
            └── audio_1718000000412_recording.m4a

    Key = "{user_id}/{entry_id}/{kind}_{timestamp_ms}_{filename}"
    Download URL = "{public_base_url}/api/media/{key}"

Deletion is best-effort: failures are logged and never raised, because a
stray blob must not block removing the entry that referenced it.
"""

import logging
import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional, Set

import aiofiles
import aiofiles.os

from diaryflow.config import settings
from diaryflow.exceptions import NotFoundError, StorageConnectionError
from diaryflow.services.media import classify

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Strips directories and characters that do not belong in an object key."""
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "file"


class ObjectStorage(ABC):
    """
    Contract for media blob storage.

    Implementations translate their own errors: initialisation and upload
    failures become StorageConnectionError; deletes never raise.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepares the backend. Raises StorageConnectionError when unusable."""

    @abstractmethod
    async def upload_file(
        self,
        path: str,
        user_id: str,
        entry_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Stores one local file under the entry's prefix.

        on_progress is called with (bytes_sent, total_bytes) as data is
        written, ending with bytes_sent == total_bytes.

        Returns:
            The download URL to store in the entry's media list.
        """

    @abstractmethod
    async def delete_file(self, url: str) -> bool:
        """Deletes the blob behind a download URL. Returns False if nothing was deleted."""

    async def delete_files(self, urls: Iterable[str]) -> int:
        deleted = 0
        for url in urls:
            if await self.delete_file(url):
                deleted += 1
        return deleted

    @abstractmethod
    async def delete_all_for_entry(self, user_id: str, entry_id: str) -> int:
        """Deletes every blob stored under the entry's prefix."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Lightweight check that the backend accepts writes."""


class LocalObjectStorage(ObjectStorage):
    """File-system implementation of ObjectStorage, written with aiofiles."""

    URL_PREFIX = "/api/media/"

    def __init__(
        self,
        storage_root: Optional[str] = None,
        public_base_url: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ):
        """
        Args:
            storage_root:    Override settings.storage_root (used in tests)
            public_base_url: Override settings.public_base_url
            chunk_size:      Bytes per write; progress is reported per chunk
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.chunk_size = chunk_size or settings.upload_chunk_size
        # Keys handed out but not yet written; two uploads in one batch can share a millisecond
        self._reserved: Set[str] = set()

    # ── Keys and URLs ─────────────────────────────────────────────────────

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}{self.URL_PREFIX}{key}"

    def key_from_url(self, url: str) -> Optional[str]:
        prefix = f"{self.public_base_url}{self.URL_PREFIX}"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    def resolve(self, key: str) -> Path:
        """
        Absolute path of a stored object.

        Raises:
            NotFoundError: key escapes the storage root or names no file
        """
        target = (self.storage_root / key).resolve()
        if self.storage_root not in target.parents or not target.is_file():
            raise NotFoundError(resource="media", resource_id=key)
        return target

    async def _new_key(self, user_id: str, entry_id: str, path: str) -> str:
        kind = classify(path).value
        filename = safe_filename(path)
        timestamp_ms = int(time.time() * 1000)
        while True:
            key = f"{safe_filename(user_id)}/{safe_filename(entry_id)}/{kind}_{timestamp_ms}_{filename}"
            if key in self._reserved:
                timestamp_ms += 1
                continue
            # Claimed before the await so a sibling upload cannot pick the same key
            self._reserved.add(key)
            if not await aiofiles.os.path.exists(self.storage_root / key):
                return key
            self._reserved.discard(key)
            timestamp_ms += 1

    # ── ObjectStorage ─────────────────────────────────────────────────────

    async def initialize(self) -> None:
        try:
            await aiofiles.os.makedirs(self.storage_root, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create storage root %s: %s", self.storage_root, e)
            raise StorageConnectionError(
                context={"storage_root": str(self.storage_root), "os_error": str(e)},
            ) from e

        if not await self.test_connection():
            raise StorageConnectionError(
                context={"storage_root": str(self.storage_root)},
            )
        logger.info("LocalObjectStorage ready at %s", self.storage_root)

    async def upload_file(
        self,
        path: str,
        user_id: str,
        entry_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        key = await self._new_key(user_id, entry_id, path)
        destination = self.storage_root / key
        partial = destination.with_name(destination.name + ".part")

        try:
            total = (await aiofiles.os.stat(path)).st_size
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)

            sent = 0
            async with aiofiles.open(path, "rb") as src, aiofiles.open(partial, "wb") as dst:
                while True:
                    chunk = await src.read(self.chunk_size)
                    if not chunk:
                        break
                    await dst.write(chunk)
                    sent += len(chunk)
                    if on_progress:
                        on_progress(sent, total)

            await aiofiles.os.replace(partial, destination)

        except OSError as e:
            logger.error("Upload of %s failed: %s", Path(path).name, e)
            await self._remove_quietly(partial)
            raise StorageConnectionError(
                message=f"Failed to upload {Path(path).name}. Please try again.",
                context={"filename": Path(path).name, "os_error": str(e)},
            ) from e
        finally:
            self._reserved.discard(key)

        logger.info("Stored %s (%d bytes)", key, sent)
        return self.url_for(key)

    async def delete_file(self, url: str) -> bool:
        key = self.key_from_url(url)
        if key is None:
            logger.warning("Not deleting %s: not a URL of this storage", url)
            return False
        target = (self.storage_root / key).resolve()
        if self.storage_root not in target.parents:
            logger.warning("Not deleting %s: outside the storage root", url)
            return False
        return await self._remove_quietly(target)

    async def delete_all_for_entry(self, user_id: str, entry_id: str) -> int:
        prefix = self.storage_root / safe_filename(user_id) / safe_filename(entry_id)
        if not await aiofiles.os.path.isdir(prefix):
            return 0

        deleted = 0
        try:
            names = await aiofiles.os.listdir(prefix)
        except OSError as e:
            logger.warning("Could not list %s for deletion: %s", prefix, e)
            return 0

        for name in names:
            if await self._remove_quietly(prefix / name):
                deleted += 1
        try:
            await aiofiles.os.rmdir(prefix)
        except OSError as e:
            logger.warning("Could not remove entry folder %s: %s", prefix, e)

        logger.info("Deleted %d blobs for entry %s", deleted, entry_id)
        return deleted

    async def test_connection(self) -> bool:
        probe = self.storage_root / f".probe-{uuid.uuid4().hex}"
        try:
            async with aiofiles.open(probe, "wb") as f:
                await f.write(b"ok")
            await aiofiles.os.remove(probe)
            return True
        except OSError as e:
            logger.warning("Storage connection test failed: %s", e)
            return False

    @staticmethod
    async def _remove_quietly(target: Path) -> bool:
        try:
            await aiofiles.os.remove(target)
            logger.debug("Removed %s", target.name)
            return True
        except FileNotFoundError:
            logger.debug("Already gone: %s", target.name)
            return False
        except OSError as e:
            logger.warning("Failed to remove %s: %s", target.name, e)
            return False


# ── Singleton Instance ────────────────────────────────────────────────────
object_storage = LocalObjectStorage()
