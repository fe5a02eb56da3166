"""
Tests for TourBatchProcessor -- the per-university pipeline and the batch loop.

All collaborators at the network edge are fakes: an in-memory store, a fetcher
serving canned HTML, a validator whose liveness probe always answers "alive",
and an analyzer with a canned answer. The pipeline logic in between
(extraction, merge, partial build, sanitize, structural check) is real.

Covers:
  - one failing university does not stop the batch
  - skip_existing never touches the network for universities with a valid tour
  - subpage second pass from the redirected homepage, AI merge, primary preservation
  - structural check failure -> failed outcome, nothing persisted
"""
from datetime import datetime, timezone
from typing import Optional

import pytest

from campustour.scheduler.batch import BatchResult, TourBatchProcessor
from campustour.store import UniversityRecord
from campustour.tours.aggregator import TourCheck
from campustour.tours.analyzer import TourAnalyzer
from campustour.tours.fetcher import FetchedPage, FetchHTTPStatus, FetchTimeout
from campustour.tours.models import FoundTourCandidate, TourAnalysisResult, TourProvider, UniversityTour
from campustour.tours.validator import LinkValidator

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

GOOGLE_URL = "https://www.google.com/maps/@43.24,76.95,17z"
YANDEX_URL = "https://yandex.kz/maps/?ll=69.58,42.34&z=17&l=pano"
TWOGIS_URL = "https://2gis.kz/almaty?m=76.95,43.24/17"

TOUR_HOMEPAGE = f'<html><body><a href="{YANDEX_URL}">Виртуальный тур кампуса</a></body></html>'
PLAIN_HOMEPAGE = '<html><body><a href="/about">About</a></body></html>'


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStore:
    """Returns every university regardless of has_tour so the processor's own skip is exercised."""

    def __init__(self, universities: list[UniversityRecord]):
        self.universities = universities
        self.saved: dict[str, UniversityTour] = {}
        self.queries: list[tuple] = []

    def get_universities(self, limit, offset=0, *, has_tour=None):
        self.queries.append((limit, offset, has_tour))
        return self.universities[offset:offset + limit]

    def upsert_tour(self, university_id, tour):
        self.saved[university_id] = tour


class FakeFetcher:
    def __init__(self, pages: dict[str, object], redirects: Optional[dict[str, str]] = None):
        self.pages = pages
        self.redirects = redirects or {}
        self.calls: list[str] = []

    def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        page = self.pages.get(url, PLAIN_HOMEPAGE)
        if isinstance(page, Exception):
            raise page
        return FetchedPage(url=self.redirects.get(url, url), html=page)


class AliveValidator(LinkValidator):
    """Real static checks, no network: every probe answers alive."""

    def probe(self, url, provider):
        return None


class CannedAnalyzer(TourAnalyzer):
    def __init__(self, found: list[FoundTourCandidate]):
        super().__init__("http://ollama.test", "llama3")
        self.found = found
        self.calls = 0

    def analyze(self, html, university_name):
        self.calls += 1
        return TourAnalysisResult(found_tours=self.found, analysis="canned")


def _university(i: int, tour: Optional[dict] = None) -> UniversityRecord:
    return UniversityRecord(
        id=f"u{i}",
        name=f"University {i:02d}",
        website_url=f"https://uni{i}.edu.kz/",
        tour=tour,
    )


def _processor(store, fetcher, analyzer=None, sleeps=None) -> TourBatchProcessor:
    return TourBatchProcessor(
        store,
        fetcher,
        AliveValidator(pause=0),
        analyzer,
        university_pause=2.0,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        clock=lambda: NOW,
    )


# ---------------------------------------------------------------------------
# Batch loop
# ---------------------------------------------------------------------------

class TestProcessAll:
    def test_one_timeout_does_not_stop_batch(self):
        universities = [_university(i) for i in range(1, 11)]
        pages = {u.website_url: TOUR_HOMEPAGE for u in universities}
        pages["https://uni4.edu.kz/"] = FetchTimeout("https://uni4.edu.kz/", "Timed out after 30s")
        store = FakeStore(universities)
        sleeps: list[float] = []

        result = _processor(store, FakeFetcher(pages), sleeps=sleeps).process_all(limit=10, use_ai=False)

        assert result.processed == 10
        assert result.failed == 1
        assert result.succeeded == 9
        failed = [o for o in result.outcomes if not o.success]
        assert failed[0].university_id == "u4"
        assert failed[0].error.startswith("[FetchTimeout]")
        assert set(store.saved) == {u.id for u in universities} - {"u4"}
        assert sleeps == [2.0] * 9

    def test_skip_existing_makes_no_network_calls(self):
        google_tour = {
            "available_sources": ["google"],
            "primary_source": "google",
            "google_maps": {"url": GOOGLE_URL, "latitude": 43.24, "longitude": 76.95, "available": True},
        }
        store = FakeStore([_university(1, tour=google_tour)])
        fetcher = FakeFetcher({})
        analyzer = CannedAnalyzer([])

        result = _processor(store, fetcher, analyzer).process_all(limit=5, skip_existing=True)

        assert fetcher.calls == []
        assert analyzer.calls == 0
        assert result.skipped == 1
        assert result.processed == 0
        assert store.saved == {}
        assert store.queries == [(5, 0, False)]

    def test_skip_existing_rescans_tour_that_fails_validation(self):
        broken_tour = {"available_sources": ["google"], "primary_source": "google", "google_maps": None}
        store = FakeStore([_university(1, tour=broken_tour)])
        fetcher = FakeFetcher({"https://uni1.edu.kz/": TOUR_HOMEPAGE})

        result = _processor(store, fetcher).process_all(limit=5, skip_existing=True, use_ai=False)

        assert fetcher.calls == ["https://uni1.edu.kz/"]
        assert result.skipped == 0
        assert store.saved["u1"].available_sources == [TourProvider.YANDEX]

    def test_include_existing_rescans(self):
        google_tour = {"available_sources": ["google"], "primary_source": "google"}
        store = FakeStore([_university(1, tour=google_tour)])
        fetcher = FakeFetcher({})

        result = _processor(store, fetcher).process_all(limit=5, skip_existing=False, use_ai=False)

        assert fetcher.calls == ["https://uni1.edu.kz/"]
        assert result.processed == 1
        assert store.queries == [(5, 0, None)]

    def test_no_tours_counted_and_empty_tour_written(self):
        store = FakeStore([_university(1)])
        result = _processor(store, FakeFetcher({})).process_all(use_ai=False)

        assert result.succeeded == 1
        assert result.no_tours == 1
        saved = store.saved["u1"]
        assert saved.available_sources == []
        assert saved.last_updated == NOW

    def test_http_error_recorded(self):
        store = FakeStore([_university(1)])
        fetcher = FakeFetcher({"https://uni1.edu.kz/": FetchHTTPStatus("https://uni1.edu.kz/", 503)})
        result = _processor(store, fetcher).process_all(use_ai=False)
        assert result.outcomes[0].error == "[FetchHTTPStatus] HTTP 503 for https://uni1.edu.kz/"

    def test_ai_disabled_when_no_analyzer(self):
        store = FakeStore([_university(1)])
        result = _processor(store, FakeFetcher({})).process_all(use_ai=True)
        assert result.use_ai is False

    def test_report_attached(self):
        universities = [_university(1), _university(2)]
        pages = {"https://uni2.edu.kz/": FetchTimeout("https://uni2.edu.kz/", "Timed out after 30s")}
        result = _processor(FakeStore(universities), FakeFetcher(pages)).process_all(use_ai=False)
        assert isinstance(result, BatchResult)
        assert "## Failures" in result.report
        assert "University 02" in result.report


# ---------------------------------------------------------------------------
# Single university
# ---------------------------------------------------------------------------

class TestProcessUniversity:
    def test_homepage_link_becomes_yandex_slot(self):
        store = FakeStore([])
        fetcher = FakeFetcher({"https://uni1.edu.kz/": TOUR_HOMEPAGE})

        outcome = _processor(store, fetcher).process_university(_university(1), use_ai=False)

        assert outcome.success
        assert outcome.sources == [TourProvider.YANDEX]
        tour = store.saved["u1"]
        assert tour.primary_source == TourProvider.YANDEX
        assert (tour.yandex_panorama.latitude, tour.yandex_panorama.longitude) == (42.34, 69.58)
        assert tour.yandex_panorama.available is True

    def test_subpage_second_pass(self):
        homepage = '<html><a href="/campus/virtual-tour">Virtual campus tour</a></html>'
        subpage = f'<html><iframe src="{TWOGIS_URL}"></iframe></html>'
        fetcher = FakeFetcher({
            "https://uni1.edu.kz/": homepage,
            "https://uni1.edu.kz/campus/virtual-tour": subpage,
        })
        store = FakeStore([])

        outcome = _processor(store, fetcher).process_university(_university(1), use_ai=False)

        assert fetcher.calls == ["https://uni1.edu.kz/", "https://uni1.edu.kz/campus/virtual-tour"]
        assert outcome.sources == [TourProvider.TWOGIS]

    def test_relative_links_resolved_against_redirected_homepage(self):
        homepage = '<html><a href="campus">Кампус</a></html>'
        subpage = f'<html><iframe src="{TWOGIS_URL}"></iframe></html>'
        fetcher = FakeFetcher(
            {"https://uni1.edu.kz/": homepage, "https://uni1.edu.kz/ru/campus": subpage},
            redirects={"https://uni1.edu.kz/": "https://uni1.edu.kz/ru/"},
        )

        outcome = _processor(FakeStore([]), fetcher).process_university(_university(1), use_ai=False)

        assert fetcher.calls == ["https://uni1.edu.kz/", "https://uni1.edu.kz/ru/campus"]
        assert outcome.sources == [TourProvider.TWOGIS]

    def test_non_object_stored_tour_does_not_fail_scan(self):
        store = FakeStore([])
        university = _university(1, tour=["google"])

        outcome = _processor(store, FakeFetcher({"https://uni1.edu.kz/": TOUR_HOMEPAGE})).process_university(
            university, use_ai=False
        )

        assert outcome.success
        assert store.saved["u1"].primary_source == TourProvider.YANDEX

    def test_failed_subpage_is_skipped(self):
        homepage = f'<html><a href="/tour">Tour</a><a href="{GOOGLE_URL}">Map</a></html>'
        fetcher = FakeFetcher({
            "https://uni1.edu.kz/": homepage,
            "https://uni1.edu.kz/tour": FetchHTTPStatus("https://uni1.edu.kz/tour", 404),
        })
        outcome = _processor(FakeStore([]), fetcher).process_university(_university(1), use_ai=False)
        assert outcome.sources == [TourProvider.GOOGLE]

    def test_ai_candidates_merged_after_extracted(self):
        analyzer = CannedAnalyzer([
            FoundTourCandidate(provider="2gis", url=TWOGIS_URL, confidence=90),
            FoundTourCandidate(provider="yandex", url=YANDEX_URL, confidence=100),
        ])
        fetcher = FakeFetcher({"https://uni1.edu.kz/": TOUR_HOMEPAGE})
        store = FakeStore([])

        outcome = _processor(store, fetcher, analyzer).process_university(_university(1), use_ai=True)

        assert analyzer.calls == 1
        assert outcome.sources == [TourProvider.YANDEX, TourProvider.TWOGIS]
        assert store.saved["u1"].twogis.latitude == 43.24

    def test_ai_candidate_on_foreign_host_rejected(self):
        analyzer = CannedAnalyzer([
            FoundTourCandidate(provider="google", url="https://tour.example.com/pano", latitude=43.2, longitude=76.9),
        ])
        outcome = _processor(FakeStore([]), FakeFetcher({}), analyzer).process_university(
            _university(1), use_ai=True
        )
        assert outcome.sources_found == 0

    def test_previous_primary_preserved(self):
        homepage = f'<html><a href="{GOOGLE_URL}">Map</a><a href="{YANDEX_URL}">Панорама</a></html>'
        store = FakeStore([])
        university = _university(1, tour={"available_sources": ["yandex"], "primary_source": "yandex"})

        _processor(store, FakeFetcher({"https://uni1.edu.kz/": homepage})).process_university(
            university, use_ai=False
        )

        tour = store.saved["u1"]
        assert tour.available_sources == [TourProvider.GOOGLE, TourProvider.YANDEX]
        assert tour.primary_source == TourProvider.YANDEX

    def test_structural_failure_not_persisted(self, monkeypatch):
        monkeypatch.setattr(
            "campustour.scheduler.batch.validate_full_tour",
            lambda tour: TourCheck(valid=False, errors=["primary_source google is not in available_sources"]),
        )
        store = FakeStore([_university(1)])
        fetcher = FakeFetcher({"https://uni1.edu.kz/": TOUR_HOMEPAGE})

        result = _processor(store, fetcher).process_all(use_ai=False)

        assert result.failed == 1
        assert result.outcomes[0].error.startswith("[TourStructureError]")
        assert store.saved == {}

    def test_missing_website_fails(self):
        university = UniversityRecord(id="u1", name="Nowhere", website_url=None)
        with pytest.raises(ValueError):
            _processor(FakeStore([]), FakeFetcher({})).process_university(university, use_ai=False)
