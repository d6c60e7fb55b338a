"""Wire contracts for the remote restaurant API.

Inbound records are parsed leniently: the server is authoritative but its
payloads are not always complete, so absent or malformed optional parts
degrade to ``None``/empty instead of failing the whole record.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from curatorsync.contracts.models import ConceptInput, Location


class RemoteCurator(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    name: str | None = None

    @property
    def server_id(self) -> str | None:
        return None if self.id in (None, "") else str(self.id)

    @property
    def clean_name(self) -> str:
        return (self.name or "").strip()


class RemoteConcept(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str | None = None
    value: str | None = None


class RemoteLocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    latitude: float | str | None = None
    longitude: float | str | None = None
    address: str | None = None


class RemoteRestaurant(BaseModel):
    """A restaurant as returned by ``GET {api_base}/restaurants``."""

    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    name: str | None = None
    description: str | None = None
    transcription: str | None = None
    curator: RemoteCurator | None = None
    concepts: list[RemoteConcept] = Field(default_factory=list)
    location: RemoteLocation | None = None

    @field_validator("concepts", mode="before")
    @classmethod
    def _concepts_list(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("curator", "location", mode="before")
    @classmethod
    def _object_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @property
    def server_id(self) -> str | None:
        return None if self.id in (None, "") else str(self.id)

    def local_concepts(self) -> list[ConceptInput]:
        return [ConceptInput(category=c.category or "", value=c.value or "") for c in self.concepts]

    def local_location(self) -> Location | None:
        loc = self.location
        if loc is None or not loc.latitude or not loc.longitude:
            return None
        try:
            return Location(
                latitude=float(loc.latitude),
                longitude=float(loc.longitude),
                address=loc.address or "",
            )
        except ValueError:
            return None


class RemoteCuratorRef(BaseModel):
    name: str
    id: str | None = None


class RemoteConceptPayload(BaseModel):
    category: str
    value: str


class RemoteLocationPayload(BaseModel):
    latitude: float
    longitude: float
    address: str = ""


class RemoteRestaurantPayload(BaseModel):
    """Body of ``POST {api_base}/restaurants``."""

    name: str
    description: str = ""
    transcription: str = ""
    timestamp: str | None = None
    curator: RemoteCuratorRef
    concepts: list[RemoteConceptPayload] = Field(default_factory=list)
    location: RemoteLocationPayload | None = None
