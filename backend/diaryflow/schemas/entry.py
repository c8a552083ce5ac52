"""
DiaryFlow Backend — Entry Schemas
===================================

What:  Pydantic models for diary entries and the snapshots stored inside them.
How:   FastAPI validates requests and serializes responses with these models;
       EntryService also uses Location/WeatherSnapshot to normalise the JSON
       documents it writes.

Schemas are separate from the SQLAlchemy model so the API contract can
evolve independently of the table (e.g. the computed `mood` label).
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

EMOTIONAL_RATING_LABELS = {
    1: "very happy",
    2: "happy",
    3: "neutral",
    4: "sad",
    5: "very sad",
}


# ══════════════════════════════════════════════════════════════════════════
# Embedded snapshots
# ══════════════════════════════════════════════════════════════════════════


class Location(BaseModel):
    """Where an entry was written. The address comes from the client's geocoder."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = Field(default=None, description="Readable address, if known")
    accuracy: Optional[float] = Field(default=None, ge=0, description="Accuracy radius in meters")


class WeatherSnapshot(BaseModel):
    """
    Current conditions at the entry's location when it was written.

    temperature/description/icon are the fields every entry view shows; the
    rest are kept for the weather summary line.
    """
    temperature: Optional[float] = Field(default=None, description="Degrees Celsius")
    description: str = Field(default="")
    icon: str = Field(default="", description="Icon URL")
    feels_like: Optional[float] = None
    humidity: Optional[int] = Field(default=None, description="Percent")
    wind_speed: Optional[float] = Field(default=None, description="km/h")
    wind_direction: Optional[int] = Field(default=None, description="Degrees")
    pressure: Optional[float] = Field(default=None, description="Millibars")
    uv: Optional[float] = None
    visibility: Optional[float] = Field(default=None, description="Kilometers")
    precipitation: Optional[float] = Field(default=None, description="Millimeters")
    city: str = ""
    region: str = ""
    country: str = ""
    observed_at: Optional[datetime] = None


# ══════════════════════════════════════════════════════════════════════════
# Response models
# ══════════════════════════════════════════════════════════════════════════


class EntryResponse(BaseModel):
    """Full representation of one diary entry."""
    id: str
    user_id: str
    title: str
    content: str
    date: datetime
    tags: List[str]
    media_urls: List[str]
    emotional_rating: int = Field(ge=1, le=5)
    created_at: datetime
    updated_at: Optional[datetime] = None
    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def mood(self) -> str:
        return EMOTIONAL_RATING_LABELS.get(self.emotional_rating, "neutral")


class EntryListResponse(BaseModel):
    """
    Paginated list of a user's entries, newest entry date first.

    next_cursor: ISO date of the last item; pass it back as `cursor`.
    """
    entries: List[EntryResponse]
    next_cursor: Optional[str] = None
    has_more: bool


class EntryCountResponse(BaseModel):
    count: int


class RecentTagsResponse(BaseModel):
    tags: List[str] = Field(description="Distinct tags, most recently used first")


class BulkDeleteRequest(BaseModel):
    entry_ids: List[str] = Field(min_length=1, max_length=500)


class BulkDeleteResponse(BaseModel):
    deleted: List[str] = Field(description="IDs that existed and were removed")


class EntryEvent(BaseModel):
    """
    Change notification on a user's entry channel (sent as one SSE message).

    `entry` is omitted for deletions.
    """
    kind: str = Field(description="created | updated | deleted")
    entry_id: str
    entry: Optional[EntryResponse] = None
