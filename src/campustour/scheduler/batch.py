"""Batch tour scan orchestrator: store -> per-university scan -> upsert -> report."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from campustour.config import OLLAMA_MODEL, OLLAMA_URL
from campustour.scheduler.report import generate_report
from campustour.store import TourStore, UniversityRecord
from campustour.tours.aggregator import (
    build_partial_tour,
    has_validated_tour,
    merge_candidates,
    sanitize,
    validate_full_tour,
)
from campustour.tours.analyzer import TourAnalyzer
from campustour.tours.extractor import build_candidates, extract_links, find_map_urls, find_tour_subpages
from campustour.tours.fetcher import FetchError, PageFetcher
from campustour.tours.models import LinkCandidate, MapUrl, ScanOutcome, TourProvider
from campustour.tours.settings import ScannerSettings, get_settings
from campustour.tours.validator import LinkValidator

logger = logging.getLogger("campustour.scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TourStructureError(RuntimeError):
    """Raised when an assembled tour breaks the primary/available invariant."""


@dataclass
class BatchResult:
    limit: int
    skip_existing: bool
    use_ai: bool
    started_at: datetime
    finished_at: datetime
    outcomes: list[ScanOutcome] = field(default_factory=list)
    skipped: int = 0
    report: str = ""

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def no_tours(self) -> int:
        return sum(1 for o in self.outcomes if o.success and o.sources_found == 0)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class TourBatchProcessor:
    """
    Sequential tour scanner.

    Universities are processed one at a time: the fetcher's per-domain delay
    and the validator's probe pause are the throttle, and the inference
    service only ever sees one request at a time. Each university's tour is
    persisted as soon as it is built, so an interrupted run keeps its progress.
    """

    def __init__(
        self,
        store: TourStore,
        fetcher: PageFetcher,
        validator: LinkValidator,
        analyzer: Optional[TourAnalyzer] = None,
        *,
        subpage_limit: int = 3,
        university_pause: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.fetcher = fetcher
        self.validator = validator
        self.analyzer = analyzer
        self.subpage_limit = subpage_limit
        self.university_pause = university_pause
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: TourStore,
        settings: Optional[ScannerSettings] = None,
        *,
        ollama_url: str = OLLAMA_URL,
        ollama_model: str = OLLAMA_MODEL,
    ) -> "TourBatchProcessor":
        settings = settings or get_settings()
        return cls(
            store,
            PageFetcher(min_delay=settings.fetch_min_delay, timeout=settings.fetch_timeout),
            LinkValidator(
                timeout=settings.probe_timeout,
                pause=settings.probe_pause,
                live_status_overrides=settings.live_statuses,
            ),
            TourAnalyzer(
                ollama_url,
                ollama_model,
                timeout=settings.ai_timeout,
                excerpt_chars=settings.ai_excerpt_chars,
                temperature=settings.ai_temperature,
                max_tokens=settings.ai_max_tokens,
            ),
            subpage_limit=settings.subpage_limit,
            university_pause=settings.university_pause,
        )

    def _collect_map_urls(self, html: str, base_url: str) -> list[MapUrl]:
        """Map URLs from the homepage plus a bounded set of keyword-matched subpages."""
        links = extract_links(html, base_url=base_url)
        map_urls = find_map_urls(links)

        for subpage in find_tour_subpages(links, base_url, limit=self.subpage_limit):
            try:
                sub = self.fetcher.fetch(subpage)
            except FetchError as e:
                logger.info(f"  subpage skipped: {e}")
                continue
            map_urls.extend(find_map_urls(extract_links(sub.html, base_url=sub.url)))

        seen: set[str] = set()
        unique = []
        for item in map_urls:
            if item.url not in seen:
                seen.add(item.url)
                unique.append(item)
        return unique

    def process_university(self, university: UniversityRecord, *, use_ai: bool = True) -> ScanOutcome:
        """
        Scan one university and persist its tour.

        Raises FetchError if the homepage cannot be fetched and
        TourStructureError if the assembled tour is inconsistent; the caller
        turns both into a failed ScanOutcome. Finding nothing is a success
        with zero sources, and the empty tour is still written.
        """
        if not university.website_url:
            raise ValueError(f"{university.name} has no website URL")

        page = self.fetcher.fetch(university.website_url)
        html = page.html
        # relative links resolve against where the site redirected to
        map_urls = self._collect_map_urls(html, page.url)
        extracted = build_candidates(map_urls)

        ai_candidates: list[LinkCandidate] = []
        if use_ai and self.analyzer is not None:
            analysis = self.analyzer.analyze(html, university.name)
            ai_candidates = self.analyzer.to_candidates(analysis)
            logger.info(f"  AI: {len(analysis.found_tours)} candidates ({analysis.analysis[:120]})")

        candidates = merge_candidates(extracted, ai_candidates)
        logger.info(f"  {len(extracted)} extracted + {len(ai_candidates)} AI -> {len(candidates)} candidates")

        valid = self.validator.filter_valid_links(candidates) if candidates else []

        stored = university.tour if isinstance(university.tour, dict) else {}
        previous_primary = TourProvider.parse(stored.get("primary_source"))
        now = self._clock()
        partial = build_partial_tour(valid, primary_source=previous_primary, now=now)
        tour = sanitize(partial, clock=lambda: now)

        check = validate_full_tour(tour)
        if not check.valid:
            raise TourStructureError("; ".join(check.errors))

        self.store.upsert_tour(university.id, tour)

        return ScanOutcome(
            university_id=university.id,
            university_name=university.name,
            success=True,
            sources_found=len(tour.available_sources),
            sources=list(tour.available_sources),
        )

    def process_all(self, *, limit: int = 50, skip_existing: bool = True, use_ai: bool = True) -> BatchResult:
        """
        Scan up to `limit` universities and return the aggregate result with its report.

        An exception for one university is recorded as a failed outcome and
        the loop moves on. With skip_existing, universities that already have
        a validated, non-empty tour are skipped before any network call. A stored
        tour that fails validate_full_tour() is re-scanned.
        """
        started_at = self._clock()
        use_ai = use_ai and self.analyzer is not None
        logger.info(
            f"=== Tour scan starting: limit={limit}, skip_existing={skip_existing}, ai={use_ai} ==="
        )

        universities = self.store.get_universities(limit, 0, has_tour=False if skip_existing else None)
        total = len(universities)
        logger.info(f"{total} universities to scan")

        result = BatchResult(
            limit=limit,
            skip_existing=skip_existing,
            use_ai=use_ai,
            started_at=started_at,
            finished_at=started_at,
        )

        for i, university in enumerate(universities, 1):
            if skip_existing and has_validated_tour(university.tour):
                logger.info(f"[{i}/{total}] {university.name}: tour exists, skipped")
                result.skipped += 1
                continue

            if result.outcomes and self.university_pause > 0:
                self._sleep(self.university_pause)

            logger.info(f"[{i}/{total}] {university.name}")
            try:
                outcome = self.process_university(university, use_ai=use_ai)
            except Exception as e:
                error_msg = f"[{type(e).__name__}] {str(e)[:500]}"
                outcome = ScanOutcome(
                    university_id=university.id,
                    university_name=university.name,
                    success=False,
                    error=error_msg,
                )
                logger.warning(f"FAIL {university.name}: {error_msg}")
            else:
                if outcome.sources_found:
                    sources = ", ".join(p.value for p in outcome.sources)
                    logger.info(f"OK   {university.name}: {sources}")
                else:
                    logger.info(f"NONE {university.name}: no valid tours")
            result.outcomes.append(outcome)

        result.finished_at = self._clock()
        logger.info(
            f"=== Tour scan complete: {result.succeeded} ok ({result.no_tours} without tours), "
            f"{result.failed} failed, {result.skipped} skipped, {result.duration_seconds:.0f}s elapsed ==="
        )
        result.report = generate_report(result)
        return result
