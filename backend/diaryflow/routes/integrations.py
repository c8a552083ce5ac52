"""
DiaryFlow Backend — Weather & Transcription Routes
====================================================

What:  Direct access to the two third-party integrations, for clients that
       want weather or a transcript outside of a draft.

Route Inventory:
    GET  /api/weather?lat=..&lon=..     current conditions
    POST /api/transcriptions            transcribe an uploaded audio file
    GET  /api/transcriptions/health     AssemblyAI key/connectivity check
"""

import logging
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import APIRouter, Depends, File, Query, UploadFile

from diaryflow.auth import get_current_user
from diaryflow.config import settings
from diaryflow.schemas.common import (
    ConnectionCheckResponse,
    ErrorResponse,
    TranscriptionResponse,
    WeatherResponse,
)
from diaryflow.services.storage_service import safe_filename
from diaryflow.services.transcription_service import TranscriptionStatus, transcription_service
from diaryflow.services.weather_service import WeatherService, weather_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Integrations"])

UNAVAILABLE = {503: {"description": "Provider unavailable (retryable)", "model": ErrorResponse}}


@router.get("/weather", response_model=WeatherResponse, responses=UNAVAILABLE)
async def current_weather(
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
    user_id: str = Depends(get_current_user),
) -> WeatherResponse:
    snapshot = await weather_service.get_current_weather(lat, lon)
    snapshot.icon = WeatherService.icon_url(snapshot.icon)
    return WeatherResponse(
        weather=snapshot,
        description=WeatherService.describe(snapshot),
        summary=WeatherService.summary(snapshot),
    )


@router.post(
    "/transcriptions",
    response_model=TranscriptionResponse,
    responses={
        400: {"description": "Unsupported or empty audio", "model": ErrorResponse},
        **UNAVAILABLE,
    },
    summary="Transcribe an audio file (M4A, MP3, WAV, FLAC or AAC)",
)
async def transcribe_audio(
    audio: UploadFile = File(...),
    user_id: str = Depends(get_current_user),
) -> TranscriptionResponse:
    folder = Path(settings.staging_root).resolve() / "transcriptions" / uuid.uuid4().hex
    target = folder / safe_filename(audio.filename or "recording.m4a")

    await aiofiles.os.makedirs(folder, exist_ok=True)
    try:
        async with aiofiles.open(target, "wb") as f:
            while chunk := await audio.read(settings.upload_chunk_size):
                await f.write(chunk)
        await audio.close()

        result = await transcription_service.transcribe_file(str(target))
    finally:
        if await aiofiles.os.path.exists(target):
            await aiofiles.os.remove(target)
        await aiofiles.os.rmdir(folder)

    return TranscriptionResponse(
        status=TranscriptionStatus.COMPLETED.value,
        text=result.text,
        transcript_id=result.transcript_id,
    )


@router.get("/transcriptions/health", response_model=ConnectionCheckResponse)
async def transcription_health(
    user_id: str = Depends(get_current_user),
) -> ConnectionCheckResponse:
    reachable = await transcription_service.test_connection()
    return ConnectionCheckResponse(
        service="assemblyai",
        reachable=reachable,
        circuit=transcription_service.circuit_breaker.state,
    )
