"""
DiaryFlow Backend — Media Download Route
==========================================

What:  Serves blobs stored by LocalObjectStorage at their download URLs.
How:   GET /api/media/{user_id}/{entry_id}/{object}. Keys contain the entry's
       random id, so a URL is only known to whoever holds the entry, the same
       way hosted object storage hands out tokenised download links.

Caching: objects are never rewritten under the same key, so responses
can be cached for a long time.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import FileResponse

from diaryflow.schemas.common import ErrorResponse
from diaryflow.services.media import content_type
from diaryflow.services.storage_service import object_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Media"])


@router.get(
    "/media/{key:path}",
    response_class=FileResponse,
    responses={404: {"description": "No such object", "model": ErrorResponse}},
    summary="Download a stored media object",
)
async def get_media(key: str) -> FileResponse:
    path = object_storage.resolve(key)
    return FileResponse(
        path,
        media_type=content_type(path.name),
        headers={"Cache-Control": "private, max-age=31536000, immutable"},
    )
