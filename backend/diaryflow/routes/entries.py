"""
DiaryFlow Backend — Entry Route Handlers
==========================================

What:  Reading, searching and deleting a user's diary entries, plus a live
       change stream.
How:   Thin handlers over EntryService and SearchService. Entries are only
       written through drafts (see routes/drafts.py).

Route Inventory:
    GET    /api/entries                   newest first, cursor pagination
    GET    /api/entries/search            text search (smart/title/content/tags)
    GET    /api/entries/tags/recent       tags of the newest entries
    GET    /api/entries/calendar/day      entries of one day (UTC)
    GET    /api/entries/calendar/month    entries of one month (UTC)
    GET    /api/entries/count             number of entries
    GET    /api/entries/stream            server-sent events for changes
    POST   /api/entries/delete            bulk delete
    GET    /api/entries/{id}              one entry
    DELETE /api/entries/{id}              delete entry and its media
"""

import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from diaryflow.auth import get_current_user
from diaryflow.database import get_db_session
from diaryflow.schemas.common import ErrorResponse
from diaryflow.schemas.entry import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    EntryCountResponse,
    EntryListResponse,
    EntryResponse,
    RecentTagsResponse,
)
from diaryflow.services.entry_service import entry_service
from diaryflow.services.search_service import SearchStrategy, search_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/entries", tags=["Entries"])

KEEPALIVE_SECONDS = 15.0

ERRORS = {
    401: {"description": "Not signed in", "model": ErrorResponse},
    500: {"description": "Server error", "model": ErrorResponse},
}


@router.get(
    "",
    response_model=EntryListResponse,
    responses=ERRORS,
    summary="List entries, newest first",
)
async def list_entries(
    limit: int = Query(default=20, ge=1, le=100, description="Items per page"),
    cursor: str | None = Query(
        default=None,
        description="next_cursor of the previous page; omit for the first page",
    ),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> EntryListResponse:
    return await entry_service.list_entries(db, user_id, limit=limit, cursor=cursor)


@router.get("/search", response_model=List[EntryResponse], responses=ERRORS)
async def search_entries(
    q: str = Query(default="", max_length=200, description="Search text"),
    strategy: SearchStrategy = Query(default=SearchStrategy.SMART),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[EntryResponse]:
    return await search_service.search(db, user_id, q, strategy=strategy, limit=limit)


@router.get("/tags/recent", response_model=RecentTagsResponse, responses=ERRORS)
async def recent_tags(
    limit: int = Query(default=10, ge=1, le=50),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> RecentTagsResponse:
    return RecentTagsResponse(tags=await entry_service.recent_tags(db, user_id, limit=limit))


@router.get("/calendar/day", response_model=List[EntryResponse], responses=ERRORS)
async def entries_for_day(
    day: date = Query(description="YYYY-MM-DD"),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[EntryResponse]:
    return await entry_service.entries_for_day(db, user_id, day)


@router.get("/calendar/month", response_model=List[EntryResponse], responses=ERRORS)
async def entries_for_month(
    year: int = Query(ge=1970, le=9999),
    month: int = Query(ge=1, le=12),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[EntryResponse]:
    return await entry_service.entries_for_month(db, user_id, year, month)


@router.get("/count", response_model=EntryCountResponse, responses=ERRORS)
async def count_entries(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> EntryCountResponse:
    return EntryCountResponse(count=await entry_service.count_entries(db, user_id))


@router.get(
    "/stream",
    summary="Live entry changes (server-sent events)",
    description=(
        "Each message has the event name created, updated or deleted and an "
        "EntryEvent JSON body. A comment line is sent every 15 s to keep "
        "proxies from closing the connection."
    ),
)
async def stream_entries(
    request: Request,
    user_id: str = Depends(get_current_user),
) -> StreamingResponse:
    subscription = entry_service.subscribe(user_id)

    async def event_stream():
        try:
            yield "retry: 3000\n\n"
            while not subscription.finished:
                if await request.is_disconnected():
                    break
                event = await subscription.get(timeout=KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {event.kind}\ndata: {event.model_dump_json()}\n\n"
        finally:
            subscription.close()
            logger.debug("Entry stream closed for user %s", user_id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/delete", response_model=BulkDeleteResponse, responses=ERRORS)
async def delete_entries(
    body: BulkDeleteRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> BulkDeleteResponse:
    deleted = await entry_service.delete_entries(db, user_id, body.entry_ids)
    return BulkDeleteResponse(deleted=deleted)


@router.get(
    "/{entry_id}",
    response_model=EntryResponse,
    responses={**ERRORS, 404: {"description": "Entry not found", "model": ErrorResponse}},
)
async def get_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> EntryResponse:
    return await entry_service.get_entry(db, user_id, entry_id)


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**ERRORS, 404: {"description": "Entry not found", "model": ErrorResponse}},
)
async def delete_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await entry_service.delete_entry(db, user_id, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
