"""
Tour aggregation: candidates -> one UniversityTour per university.

merge_candidates()     -- extractor + AI candidates, deduplicated by URL
build_partial_tour()   -- first valid link per provider becomes that provider's slot
sanitize()             -- drops slots that fail source-level checks, derives
                          available_sources, picks or preserves primary_source,
                          stamps last_updated
validate_full_tour()   -- structural check of an assembled tour (e.g. loaded
                          from storage) before it is accepted

sanitize() guarantees:
  - primary_source is unset or a member of available_sources
  - a slot that failed validation is not in the output and not in available_sources
  - sanitize(sanitize(x)) == sanitize(x) for a fixed clock
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, NamedTuple, Optional, Union

from pydantic import ValidationError

from campustour.tours.models import LinkCandidate, LinkValidationResult, TourProvider, TourSource, UniversityTour
from campustour.tours.providers import PROVIDER_PRIORITY, PROVIDERS, SLOT_BY_PROVIDER
from campustour.tours.validator import validate_coordinates, validate_source_url, validate_tour_source, validate_url

logger = logging.getLogger("campustour.tours")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TourCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)


class SelectedSource(NamedTuple):
    provider: Optional[TourProvider]
    source: Optional[TourSource]


def merge_candidates(extracted: list[LinkCandidate], ai: list[LinkCandidate]) -> list[LinkCandidate]:
    """Extractor candidates first, then AI ones. Duplicate URLs keep the first, AI fills missing coordinates."""
    merged: dict[str, LinkCandidate] = {}
    for candidate in [*extracted, *ai]:
        existing = merged.get(candidate.url)
        if existing is None:
            merged[candidate.url] = candidate
            continue
        if existing.latitude is None and existing.longitude is None and candidate.latitude is not None:
            merged[candidate.url] = existing.model_copy(update={
                "latitude": candidate.latitude,
                "longitude": candidate.longitude,
                "address": existing.address or candidate.address,
            })
    return list(merged.values())


def build_partial_tour(
    valid_results: list[LinkValidationResult],
    *,
    primary_source: Optional[TourProvider] = None,
    now: Optional[datetime] = None,
) -> UniversityTour:
    """
    Keep the first valid link per provider, in discovery order.

    Links without recoverable coordinates cannot become a TourSource and are
    skipped. primary_source is carried through so sanitize() can preserve it.
    """
    now = now or _utcnow()
    tour = UniversityTour(primary_source=primary_source)
    for result in valid_results:
        if not result.valid or result.provider is None:
            continue
        if tour.slot(result.provider) is not None:
            continue
        if result.latitude is None or result.longitude is None:
            logger.info(f"Skipping {result.url}: no coordinates in URL or AI answer")
            continue
        setattr(tour, SLOT_BY_PROVIDER[result.provider], TourSource(
            url=result.url,
            latitude=result.latitude,
            longitude=result.longitude,
            address=result.address,
            available=True,
            last_validated=now,
        ))
        tour.available_sources.append(result.provider)
    return tour


def _coerce_tour(raw: Union[UniversityTour, dict, None]) -> UniversityTour:
    """Lenient dict -> UniversityTour: bad slots and unknown providers are dropped, not raised."""
    if raw is None:
        return UniversityTour()
    if isinstance(raw, UniversityTour):
        return raw

    tour = UniversityTour()
    for provider, slot in SLOT_BY_PROVIDER.items():
        value = raw.get(slot)
        if not isinstance(value, dict):
            continue
        try:
            setattr(tour, slot, TourSource.model_validate(value))
        except ValidationError:
            logger.debug(f"Dropping malformed {slot} slot")
    sources = raw.get("available_sources")
    if isinstance(sources, list):
        for item in sources:
            provider = TourProvider.parse(item)
            if provider is not None and provider not in tour.available_sources:
                tour.available_sources.append(provider)
    tour.primary_source = TourProvider.parse(raw.get("primary_source"))
    return tour


def sanitize(
    partial: Union[UniversityTour, dict, None],
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> UniversityTour:
    """
    Return a clean UniversityTour built from a partial one.

    A slot survives only with a non-empty URL that passes source-level
    validation (URL, provider host, coordinate range; liveness was checked
    upstream). A surviving slot marked available joins available_sources,
    ordered by the partial's own available_sources first (discovery order),
    then provider priority. primary_source is kept if it survived, otherwise
    the first available provider, otherwise unset. last_updated is always
    stamped, including when nothing survived.
    """
    tour = _coerce_tour(partial)
    order = list(dict.fromkeys([*tour.available_sources, *PROVIDER_PRIORITY]))

    clean = UniversityTour()
    for provider in PROVIDER_PRIORITY:
        source = tour.slot(provider)
        if source is None or not source.url:
            continue
        if not validate_tour_source(source, provider):
            logger.info(f"Sanitize dropped invalid {provider.value} slot: {source.url}")
            continue
        setattr(clean, SLOT_BY_PROVIDER[provider], source.model_copy())

    clean.available_sources = [
        p for p in order
        if clean.slot(p) is not None and clean.slot(p).available
    ]
    if tour.primary_source in clean.available_sources:
        clean.primary_source = tour.primary_source
    elif clean.available_sources:
        clean.primary_source = clean.available_sources[0]
    clean.last_updated = clock()
    return clean


def validate_full_tour(tour: Union[UniversityTour, dict, None]) -> TourCheck:
    """
    Structural check of an assembled tour.

    Re-validates every populated slot, requires available_sources to be a
    list of known providers each backed by a populated slot, and rejects a
    primary_source that is not in available_sources. An absent tour is valid.
    """
    if tour is None:
        return TourCheck(valid=True)
    data: Any = tour.model_dump(mode="json") if isinstance(tour, UniversityTour) else tour
    if not isinstance(data, dict):
        return TourCheck(valid=False, errors=["Tour must be an object"])

    errors: list[str] = []
    populated: set[TourProvider] = set()

    for provider, slot in SLOT_BY_PROVIDER.items():
        value = data.get(slot)
        if not value:
            continue
        label = PROVIDERS[provider].label
        if not isinstance(value, dict):
            errors.append(f"Invalid {label} tour source")
            continue
        populated.add(provider)
        url = value.get("url")
        if not validate_url(url):
            errors.append(f"Invalid {label} tour source: bad URL")
        elif not validate_source_url(url, provider):
            errors.append(f"{label} URL domain is not valid")
        if not validate_coordinates(value.get("latitude"), value.get("longitude")):
            errors.append(f"Invalid {label} tour source: coordinates out of range")

    sources = data.get("available_sources", [])
    parsed_sources: list[TourProvider] = []
    if not isinstance(sources, list):
        errors.append("available_sources must be an array")
    else:
        for item in sources:
            provider = TourProvider.parse(item)
            if provider is None:
                errors.append(f"Unknown provider in available_sources: {item!r}")
                continue
            if provider not in populated:
                errors.append(f"available_sources lists {provider.value} but its slot is empty")
            parsed_sources.append(provider)

    primary = data.get("primary_source")
    if primary:
        provider = TourProvider.parse(primary)
        if provider is None:
            errors.append(f"Invalid primary_source value: {primary!r}")
        elif provider not in parsed_sources:
            errors.append(f"primary_source {provider.value} is not in available_sources")

    return TourCheck(valid=not errors, errors=errors)


def has_available_tour(tour: Union[UniversityTour, dict, None]) -> bool:
    if tour is None:
        return False
    if isinstance(tour, UniversityTour):
        return bool(tour.available_sources)
    sources = tour.get("available_sources") if isinstance(tour, dict) else None
    return isinstance(sources, list) and len(sources) > 0


def has_validated_tour(tour: Union[UniversityTour, dict, None]) -> bool:
    """True if the tour lists at least one available source and passes validate_full_tour()."""
    if not has_available_tour(tour):
        return False
    return validate_full_tour(tour).valid


def get_fallback_chain(tour: UniversityTour) -> list[TourProvider]:
    """Available providers in display priority (google > yandex > twogis)."""
    return [
        p for p in PROVIDER_PRIORITY
        if tour.slot(p) is not None and tour.slot(p).available
    ]


def select_best_source(tour: UniversityTour) -> SelectedSource:
    """Highest-priority available slot, else the first of available_sources, else nothing."""
    chain = get_fallback_chain(tour)
    if chain:
        return SelectedSource(chain[0], tour.slot(chain[0]))
    if tour.available_sources:
        first = tour.available_sources[0]
        return SelectedSource(first, tour.slot(first))
    return SelectedSource(None, None)
