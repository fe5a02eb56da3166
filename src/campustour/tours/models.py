"""
Tour data model.

Persistent shape (stored as JSON on the university row):
  UniversityTour -> up to three TourSource slots + available_sources + primary_source

Transient shapes (never persisted):
  ExtractedLink, MapUrl        -- link extractor output
  FoundTourCandidate           -- AI analyzer output (advisory only)
  LinkCandidate                -- merged input to the link validator
  LinkValidationResult         -- link validator output
  ScanOutcome                  -- one per university, owned by the batch processor

TourSource carries no range checks: a slot that failed validation can still
be stored for debugging, it just never makes it into available_sources.
See campustour.tours.validator.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Literal, NamedTuple, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class TourProvider(str, Enum):
    GOOGLE = "google"
    YANDEX = "yandex"
    TWOGIS = "twogis"

    @classmethod
    def parse(cls, value: Any) -> "TourProvider | None":
        """Lenient lookup: accepts members, '2gis', slot names and any casing. None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        return _PROVIDER_ALIASES.get(key)


_PROVIDER_ALIASES: dict[str, TourProvider] = {
    "google": TourProvider.GOOGLE,
    "google_maps": TourProvider.GOOGLE,
    "yandex": TourProvider.YANDEX,
    "yandex_panorama": TourProvider.YANDEX,
    "twogis": TourProvider.TWOGIS,
    "2gis": TourProvider.TWOGIS,
}


def _coerce_provider(v: Any) -> Any:
    provider = TourProvider.parse(v)
    return provider if provider is not None else v


class Coordinates(NamedTuple):
    lat: float
    lng: float


class ExtractedLink(BaseModel):
    href: str
    text: str = ""
    kind: Literal["link", "iframe"] = "link"


class MapUrl(BaseModel):
    url: str
    provider: TourProvider


class TourSource(BaseModel):
    url: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    available: bool = False
    last_validated: Optional[datetime] = None


class UniversityTour(BaseModel):
    available_sources: list[TourProvider] = Field(default_factory=list)
    primary_source: Optional[TourProvider] = None
    google_maps: Optional[TourSource] = None
    yandex_panorama: Optional[TourSource] = None
    twogis: Optional[TourSource] = None
    last_updated: Optional[datetime] = None

    @field_validator("primary_source", mode="before")
    @classmethod
    def _primary_alias(cls, v: Any) -> Any:
        return _coerce_provider(v) if v is not None else None

    @field_validator("available_sources", mode="before")
    @classmethod
    def _sources_alias(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return [_coerce_provider(item) for item in v]
        return v

    def slot(self, provider: TourProvider) -> Optional[TourSource]:
        from campustour.tours.providers import SLOT_BY_PROVIDER
        return getattr(self, SLOT_BY_PROVIDER[provider])


class FoundTourCandidate(BaseModel):
    provider: TourProvider = Field(validation_alias=AliasChoices("provider", "source"))
    url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    confidence: float = Field(default=50, ge=0, le=100)
    reason: str = ""

    @field_validator("provider", mode="before")
    @classmethod
    def _provider_alias(cls, v: Any) -> Any:
        return _coerce_provider(v)

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class BestCandidate(BaseModel):
    provider: Optional[str] = Field(default=None, validation_alias=AliasChoices("provider", "source"))
    url: Optional[str] = None
    reason: str = ""


class TourAnalysisResult(BaseModel):
    found_tours: list[FoundTourCandidate] = Field(default_factory=list)
    best_candidate: Optional[BestCandidate] = None
    analysis: str = ""


class LinkCandidate(BaseModel):
    url: str
    provider: TourProvider
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    origin: Literal["extractor", "ai"] = "extractor"


class LinkValidationResult(BaseModel):
    valid: bool
    url: str
    provider: Optional[TourProvider] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    error: Optional[str] = None


class ScanOutcome(BaseModel):
    university_id: str
    university_name: str = ""
    success: bool
    sources_found: int = 0
    sources: list[TourProvider] = Field(default_factory=list)
    error: Optional[str] = None
