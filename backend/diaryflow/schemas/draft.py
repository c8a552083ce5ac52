"""
DiaryFlow Backend — Draft Schemas
===================================

What:  Request/response models for the draft endpoints (the new-entry screen).
Who:   routes/drafts.py; DraftService builds DraftResponse from DraftState.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from diaryflow.schemas.entry import EntryResponse, Location, WeatherSnapshot


def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    # Tags are stored verbatim apart from surrounding whitespace; blanks are dropped
    if tags is None:
        return None
    return [tag.strip() for tag in tags if tag and tag.strip()]


class DraftCreate(BaseModel):
    """Fields a client may prefill when opening a new draft. Everything is optional."""
    title: str = Field(default="", max_length=500)
    content: str = Field(default="")
    date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    emotional_rating: int = Field(default=3, ge=1, le=5)
    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None
    fetch_weather: bool = Field(
        default=False,
        description="Look up current weather for `location` when the draft is opened",
    )

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v):
        return _clean_tags(v)


class DraftUpdate(BaseModel):
    """
    Partial update of a draft. Only fields that are present are applied;
    `clear_location` / `clear_weather` remove the snapshots.
    """
    title: Optional[str] = Field(default=None, max_length=500)
    content: Optional[str] = None
    date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    emotional_rating: Optional[int] = Field(default=None, ge=1, le=5)
    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None
    clear_location: bool = False
    clear_weather: bool = False

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v):
        return _clean_tags(v)


class RemoveFileRequest(BaseModel):
    path: str = Field(
        description="A staged path from `selected_files` or `recorded_audio`, "
        "or a URL from `existing_media_urls`"
    )


class FileProgress(BaseModel):
    path: str
    bytes_sent: int
    total_bytes: int
    fraction: float


class ProgressResponse(BaseModel):
    """Upload progress of the draft's current (or last) save."""
    is_saving: bool
    overall: float = Field(ge=0, le=1)
    files: List[FileProgress]


class DraftResponse(BaseModel):
    id: str
    entry_id: Optional[str] = Field(default=None, description="Set when editing an entry")
    title: str
    content: str
    date: datetime
    tags: List[str]
    emotional_rating: int
    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None
    selected_files: List[str]
    recorded_audio: List[str]
    existing_media_urls: List[str]
    transcription_status: str
    is_saving: bool
    created_at: Optional[datetime] = None


class SaveResponse(BaseModel):
    """Result of a successful save: the stored entry and what was uploaded."""
    entry: EntryResponse
    created: bool = Field(description="False when an existing entry was overwritten")
    uploaded: Dict[str, str] = Field(
        default_factory=dict,
        description="Local staged path → download URL, for every file uploaded",
    )


class RecordingResponse(BaseModel):
    """
    A recording attached to a draft. When transcription was requested the
    outcome is reported here; a failed transcription does not undo the recording.
    """
    path: str
    recorded_audio: List[str]
    transcription_status: str
    transcript: Optional[str] = None
    transcription_error: Optional[str] = None
    content: str = Field(description="Draft content after the transcript was appended")
