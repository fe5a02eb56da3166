"""
Batch virtual-tour scan CLI entrypoint.

Usage:
    scan-tours                        # Scan up to 50 universities without a tour
    scan-tours --limit=10             # Smaller batch
    scan-tours --no-ai                # Heuristic extraction only
    scan-tours --include-existing     # Re-scan universities that already have a tour
    scan-tours --report-dir reports   # Where TOUR_SCAN_RESULTS_<date>.md goes

Requires DATABASE_URL. OLLAMA_URL / OLLAMA_MODEL select the inference
service; if it does not answer the startup ping the run continues without AI.

Exit code: 0 if no university failed, 1 otherwise (or on a fatal setup error).

Entrypoint: campustour.scan_tours:main (registered as `scan-tours` in pyproject.toml)
"""
import argparse
import logging
import sys

from campustour.config import DATABASE_URL, LOG_DIR, REPORT_DIR
from campustour.db.session import get_session_factory
from campustour.scheduler.batch import TourBatchProcessor
from campustour.scheduler.log_config import configure_logging
from campustour.scheduler.report import write_report
from campustour.store import SqlTourStore


def _build_processor(database_url: str) -> TourBatchProcessor:
    store = SqlTourStore(get_session_factory(database_url))
    return TourBatchProcessor.from_settings(store)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scan-tours",
        description="Scan university websites for Google / Yandex / 2GIS virtual campus tours.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        metavar="N",
        help="Maximum number of universities to process (default: 50)",
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        default=False,
        help="Disable the AI analysis stage (heuristic extraction only)",
    )
    parser.add_argument(
        "--include-existing",
        action="store_true",
        default=False,
        help="Also re-scan universities that already have a tour",
    )
    parser.add_argument(
        "--report-dir",
        default=REPORT_DIR,
        metavar="DIR",
        help=f"Directory for the Markdown report (default: {REPORT_DIR})",
    )
    args = parser.parse_args(argv)
    if args.limit < 1:
        parser.error("--limit must be a positive integer")
    return args


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    # Configure logging: rotating file + console
    configure_logging(LOG_DIR)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )

    if not DATABASE_URL:
        print("ERROR: DATABASE_URL is not set. Add it to your .env file or environment.")
        raise SystemExit(1)

    processor = _build_processor(DATABASE_URL)

    use_ai = not args.no_ai
    if use_ai:
        if processor.analyzer is not None and processor.analyzer.check_availability():
            print(f"Inference service reachable at {processor.analyzer.base_url}")
        else:
            print("WARNING: inference service unreachable, AI analysis disabled for this run")
            use_ai = False

    try:
        result = processor.process_all(
            limit=args.limit,
            skip_existing=not args.include_existing,
            use_ai=use_ai,
        )
    except Exception as e:
        print(f"ERROR: [{type(e).__name__}] {e}")
        raise SystemExit(1)

    path = write_report(result.report, args.report_dir, result.started_at)
    if path:
        print(f"\nReport saved: {path}")

    print(
        f"\nTour scan complete: {result.succeeded} ok "
        f"({result.no_tours} without tours), {result.failed} failed, {result.skipped} skipped"
    )
    if result.failed > 0:
        print("\nFailed universities:")
        for o in result.outcomes:
            if not o.success:
                print(f"  {o.university_name}: {o.error or 'unknown error'}")

    raise SystemExit(1 if result.failed > 0 else 0)


if __name__ == "__main__":
    main()
