"""In-memory aggregate exchanged with import/export format adapters.

Format adapters (JSON, ZIP, ...) live outside this package; they only ever see
:class:`Aggregate` and never the local schema.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from curatorsync.contracts.models import Origin, Source


class AggregateCurator(BaseModel):
    id: int
    name: str
    last_active: datetime | None = None
    origin: Origin = Origin.LOCAL
    server_id: str | None = None


class AggregateConcept(BaseModel):
    id: int
    category: str
    value: str
    timestamp: datetime | None = None


class AggregateRestaurant(BaseModel):
    id: int
    name: str
    curator_id: int | None = None
    timestamp: datetime | None = None
    transcription: str = ""
    description: str = ""
    source: Source = Source.LOCAL
    server_id: str | None = None
    concept_ids: list[int] = Field(default_factory=list)


class AggregateLocation(BaseModel):
    restaurant_id: int
    latitude: float
    longitude: float
    address: str | None = None


class AggregatePhoto(BaseModel):
    restaurant_id: int
    photo_data: str


class Aggregate(BaseModel):
    restaurants: list[AggregateRestaurant] = Field(default_factory=list)
    concepts: list[AggregateConcept] = Field(default_factory=list)
    curators: list[AggregateCurator] = Field(default_factory=list)
    locations: list[AggregateLocation] = Field(default_factory=list)
    photos: list[AggregatePhoto] = Field(default_factory=list)


class ValidationReport(BaseModel):
    is_valid: bool
    message: str = ""


class FormatAdapter(ABC):
    """Converts between a serialized format and :class:`Aggregate`."""

    @abstractmethod
    def import_data(self, raw: Any, opts: dict[str, Any] | None = None) -> Aggregate:
        """Parse *raw* into an aggregate."""
        ...  # pragma: no cover

    @abstractmethod
    def export_data(self, aggregate: Aggregate, opts: dict[str, Any] | None = None) -> Any:
        """Serialize *aggregate*."""
        ...  # pragma: no cover

    @abstractmethod
    def validate(self, raw: Any) -> ValidationReport:
        """Check *raw* before import."""
        ...  # pragma: no cover


class ImportSummary(BaseModel):
    curators_added: int = 0
    curators_mapped: int = 0
    concepts_added: int = 0
    concepts_mapped: int = 0
    restaurants_added: int = 0
    restaurants_updated: int = 0
