"""
DiaryFlow Backend — Health Check Route
========================================

What:  Health endpoint for container probes and monitoring.
How:   Probes the critical dependencies (database, media storage) and
       reports the circuit breaker state of the third-party APIs.

Status levels:
    healthy:   database and storage reachable, both breakers closed (200)
    degraded:  a third-party breaker is open; entries still work (200)
    unhealthy: database or storage down (503)
"""

import logging
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from diaryflow import __version__
from diaryflow.database import engine
from diaryflow.schemas.common import HealthResponse
from diaryflow.services.resilience import CircuitBreaker
from diaryflow.services.storage_service import object_storage
from diaryflow.services.transcription_service import transcription_service
from diaryflow.services.weather_service import weather_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "A critical dependency is down", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check():
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    storage_status = "available"
    if not await object_storage.test_connection():
        storage_status = "unavailable"
        overall = "unhealthy"

    weather_status = weather_service.circuit_breaker.state
    transcription_status = transcription_service.circuit_breaker.state
    if overall == "healthy" and CircuitBreaker.OPEN in (weather_status, transcription_status):
        overall = "degraded"

    report = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        storage=storage_status,
        weather=weather_status,
        transcription=transcription_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=report.model_dump())
    return report
