"""
Record store used by the tour scanner.

TourStore: typing.Protocol the batch processor depends on. Any backend with
these two methods works (tests use in-memory fakes).
SqlTourStore: the SQLAlchemy implementation over the universities table.

Rows are detached into UniversityRecord snapshots before the session closes,
so the batch processor never holds a database session across network calls.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session, sessionmaker

from campustour.db.models import University
from campustour.tours.aggregator import has_validated_tour
from campustour.tours.models import UniversityTour


class UnknownUniversityError(RuntimeError):
    """Raised when a tour is written for a university id that does not exist."""


@dataclass(frozen=True)
class UniversityRecord:
    id: str
    name: str
    website_url: Optional[str]
    city: Optional[str] = None
    country: Optional[str] = None
    tour: Optional[dict[str, Any]] = None


class TourStore(Protocol):
    def get_universities(
        self, limit: int, offset: int = 0, *, has_tour: Optional[bool] = None
    ) -> list[UniversityRecord]:
        """Active universities with a website, ordered by name. has_tour filters on a validated, non-empty tour."""
        ...

    def upsert_tour(self, university_id: str, tour: UniversityTour) -> None:
        """Replace the university's tour in one transaction."""
        ...


def _snapshot(u: University) -> UniversityRecord:
    return UniversityRecord(
        id=u.id,
        name=u.name,
        website_url=u.website_url,
        city=u.city,
        country=u.country,
        tour=dict(u.tour_3d) if isinstance(u.tour_3d, dict) else None,
    )


class SqlTourStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_universities(
        self, limit: int, offset: int = 0, *, has_tour: Optional[bool] = None
    ) -> list[UniversityRecord]:
        db: Session = self._session_factory()
        try:
            query = (
                db.query(University)
                .filter(University.is_active.is_(True), University.website_url.isnot(None))
                .order_by(University.name)
            )
            if has_tour is None:
                return [_snapshot(u) for u in query.offset(offset).limit(limit).all()]

            # JSON shape differs across backends; filter on the decoded value instead
            matching = [u for u in query.all() if has_validated_tour(u.tour_3d) == has_tour]
            return [_snapshot(u) for u in matching[offset:offset + limit]]
        finally:
            db.close()

    def upsert_tour(self, university_id: str, tour: UniversityTour) -> None:
        db: Session = self._session_factory()
        try:
            university = db.get(University, university_id)
            if university is None:
                raise UnknownUniversityError(f"University {university_id} not found")
            university.tour_3d = tour.model_dump(mode="json")
            university.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
