"""
DiaryFlow Backend — Draft Route Handlers
==========================================

What:  The new-entry workflow over HTTP: open a draft, fill it in, attach
       files and recordings, watch upload progress, save.
How:   Thin handlers; DraftService owns all state and rules.

Route Inventory:
    POST   /api/drafts                      open a blank draft
    POST   /api/entries/{entry_id}/draft    open a draft to edit an entry
    GET    /api/drafts/{id}                 current draft state
    PATCH  /api/drafts/{id}                 update text, tags, rating, location, weather
    DELETE /api/drafts/{id}                 discard
    POST   /api/drafts/{id}/files           stage picked files (multipart)
    DELETE /api/drafts/{id}/files           unstage a file or drop existing media
    POST   /api/drafts/{id}/recordings      attach a voice recording (multipart)
    GET    /api/drafts/{id}/progress        upload progress of the running save
    POST   /api/drafts/{id}/save            upload media and write the entry
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from diaryflow.auth import get_current_user
from diaryflow.database import get_db_session
from diaryflow.schemas.common import ErrorResponse
from diaryflow.schemas.draft import (
    DraftCreate,
    DraftResponse,
    DraftUpdate,
    ProgressResponse,
    RecordingResponse,
    RemoveFileRequest,
    SaveResponse,
)
from diaryflow.services.draft_service import draft_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Drafts"])

ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Not signed in", "model": ErrorResponse},
    404: {"description": "Unknown draft", "model": ErrorResponse},
    409: {"description": "Draft is being saved", "model": ErrorResponse},
}


@router.post(
    "/drafts",
    response_model=DraftResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
    summary="Open a new draft",
)
async def create_draft(
    body: DraftCreate,
    user_id: str = Depends(get_current_user),
) -> DraftResponse:
    draft = await draft_service.create_draft(user_id, body)
    return draft_service.to_response(draft)


@router.post(
    "/entries/{entry_id}/draft",
    response_model=DraftResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
    summary="Open a draft to edit an existing entry",
)
async def edit_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> DraftResponse:
    draft = await draft_service.edit_entry(db, user_id, entry_id)
    return draft_service.to_response(draft)


@router.get("/drafts/{draft_id}", response_model=DraftResponse, responses=ERRORS)
async def get_draft(draft_id: str, user_id: str = Depends(get_current_user)) -> DraftResponse:
    return draft_service.to_response(draft_service.get(user_id, draft_id))


@router.patch("/drafts/{draft_id}", response_model=DraftResponse, responses=ERRORS)
async def update_draft(
    draft_id: str,
    body: DraftUpdate,
    user_id: str = Depends(get_current_user),
) -> DraftResponse:
    return draft_service.to_response(draft_service.update_draft(user_id, draft_id, body))


@router.delete(
    "/drafts/{draft_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERRORS,
    summary="Discard a draft and its staged files",
)
async def discard_draft(draft_id: str, user_id: str = Depends(get_current_user)) -> Response:
    await draft_service.discard(user_id, draft_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/drafts/{draft_id}/files",
    response_model=DraftResponse,
    responses=ERRORS,
    summary="Stage picked photos, videos, audio or other files",
    description=(
        "Files are kept on the server until the draft is saved. Size limits are "
        "checked at save time: images 10 MB, audio 50 MB, video 100 MB."
    ),
)
async def stage_files(
    draft_id: str,
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_current_user),
) -> DraftResponse:
    for upload in files:
        try:
            await draft_service.stage_file(
                user_id, draft_id, upload.filename or "file", upload
            )
        finally:
            await upload.close()
    return draft_service.to_response(draft_service.get(user_id, draft_id))


@router.delete("/drafts/{draft_id}/files", response_model=DraftResponse, responses=ERRORS)
async def remove_file(
    draft_id: str,
    body: RemoveFileRequest,
    user_id: str = Depends(get_current_user),
) -> DraftResponse:
    draft = await draft_service.remove_file(user_id, draft_id, body.path)
    return draft_service.to_response(draft)


@router.post(
    "/drafts/{draft_id}/recordings",
    response_model=RecordingResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
    summary="Attach a voice recording, optionally transcribing it into the content",
)
async def add_recording(
    draft_id: str,
    audio: UploadFile = File(...),
    transcribe: bool = Form(default=False),
    user_id: str = Depends(get_current_user),
) -> RecordingResponse:
    try:
        path, result, error = await draft_service.add_recording(
            user_id, draft_id, audio.filename or "recording.m4a", audio, transcribe=transcribe
        )
    finally:
        await audio.close()

    draft = draft_service.get(user_id, draft_id)
    return RecordingResponse(
        path=path,
        recorded_audio=draft.recorded_audio,
        transcription_status=draft.transcription_status.value,
        transcript=result.text if result else None,
        transcription_error=error,
        content=draft.content,
    )


@router.get("/drafts/{draft_id}/progress", response_model=ProgressResponse, responses=ERRORS)
async def get_progress(draft_id: str, user_id: str = Depends(get_current_user)) -> ProgressResponse:
    return draft_service.progress(draft_service.get(user_id, draft_id))


@router.post(
    "/drafts/{draft_id}/save",
    response_model=SaveResponse,
    responses={
        **ERRORS,
        500: {"description": "Entry could not be written (retryable)", "model": ErrorResponse},
        503: {"description": "An upload failed (retryable)", "model": ErrorResponse},
    },
    summary="Upload the draft's media and write the entry",
    description=(
        "Validates every file, uploads them in parallel and writes the entry once "
        "all uploads succeeded. Returns 201 for a new entry and 200 when an "
        "existing entry was overwritten. On failure the draft is unchanged and the "
        "error carries a retry action that repeats this request."
    ),
)
async def save_draft(
    draft_id: str,
    response: Response,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SaveResponse:
    result = await draft_service.save(db, user_id, draft_id)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return result
