"""Local entity contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Source(str, Enum):
    """Provenance of a restaurant row."""

    LOCAL = "local"
    REMOTE = "remote"


class Origin(str, Enum):
    """Provenance of a curator row."""

    LOCAL = "local"
    REMOTE = "remote"


class Curator(BaseModel):
    id: int
    name: str
    last_active: datetime | None = None
    origin: Origin = Origin.LOCAL
    server_id: str | None = None

    @property
    def identity_key(self) -> str:
        return curator_identity_key(self.name)


class Concept(BaseModel):
    id: int
    category: str
    value: str
    timestamp: datetime | None = None


class ConceptInput(BaseModel):
    category: str = ""
    value: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.category) and bool(self.value)


class Location(BaseModel):
    latitude: float
    longitude: float
    address: str | None = None


class Photo(BaseModel):
    id: int
    restaurant_id: int
    photo_data: str


class Restaurant(BaseModel):
    """A raw ``restaurants`` row."""

    id: int
    name: str
    curator_id: int | None = None
    timestamp: datetime | None = None
    transcription: str = ""
    description: str = ""
    source: Source = Source.LOCAL
    server_id: str | None = None
    last_synced: datetime | None = None

    @property
    def is_unsynced(self) -> bool:
        return self.source == Source.LOCAL and not self.server_id


class RestaurantSummary(Restaurant):
    """Row returned by list views: restaurant enriched for display."""

    curator_name: str = "Unknown"
    concepts: list[ConceptInput] = Field(default_factory=list)
    location: Location | None = None
    photo_count: int = 0


class RestaurantDetail(Restaurant):
    """Full restaurant aggregate."""

    curator: Curator | None = None
    concepts: list[Concept] = Field(default_factory=list)
    location: Location | None = None
    photos: list[Photo] = Field(default_factory=list)


def curator_identity_key(name: str | None) -> str:
    return (name or "").strip().lower()
