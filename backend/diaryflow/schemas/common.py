"""
DiaryFlow Backend — Shared API Schemas
========================================

What:  Error envelope, health report and the integration responses
       (weather, transcription) that are not tied to an entry or draft.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from diaryflow.schemas.entry import WeatherSnapshot


class RetryAction(BaseModel):
    """How a client replays the whole operation that failed."""
    action: str = Field(description="Operation name, e.g. 'save_entry'")
    method: str
    path: str


class ErrorResponse(BaseModel):
    """
    Standardized error response returned by every exception handler.

    Example:
        {
            "error": "upload_batch_error",
            "message": "Some files failed to upload. Please try again.",
            "details": {"failed_files": ["clip.mp4"]},
            "request_id": "a1b2c3d4",
            "retry": {"action": "save_entry", "method": "POST",
                      "path": "/api/drafts/9f.../save"}
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable message, safe to display")
    details: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
    retry: Optional[RetryAction] = None


class HealthResponse(BaseModel):
    """
    Overall status is "healthy" only when database and storage are up.
    Third-party integrations report their circuit breaker state.
    """
    status: str
    database: str
    storage: str
    weather: str
    transcription: str
    version: str
    uptime_seconds: float


class WeatherResponse(BaseModel):
    weather: WeatherSnapshot
    description: str = Field(description="e.g. 'Lisbon: 21.5°C, Sunny'")
    summary: str


class TranscriptionResponse(BaseModel):
    status: str
    text: str
    transcript_id: Optional[str] = None


class ConnectionCheckResponse(BaseModel):
    service: str
    reachable: bool
    circuit: str
