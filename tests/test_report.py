"""
Tests for the Markdown run report and the log file setup.

write_report() must never raise: an unwritable directory falls back to stdout.
"""
import logging
import os
from datetime import datetime, timezone

from campustour.scheduler.batch import BatchResult
from campustour.scheduler.log_config import configure_logging
from campustour.scheduler.report import generate_report, report_filename, write_report
from campustour.tours.models import ScanOutcome, TourProvider

STARTED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
FINISHED = datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)


def _result() -> BatchResult:
    return BatchResult(
        limit=10,
        skip_existing=True,
        use_ai=False,
        started_at=STARTED,
        finished_at=FINISHED,
        outcomes=[
            ScanOutcome(university_id="u1", university_name="KBTU", success=True,
                        sources_found=2, sources=[TourProvider.GOOGLE, TourProvider.TWOGIS]),
            ScanOutcome(university_id="u2", university_name="Satbayev | University", success=True),
            ScanOutcome(university_id="u3", university_name="KazNU", success=False,
                        error="[FetchTimeout] Timed out after 30s"),
        ],
        skipped=4,
    )


class TestGenerateReport:
    def test_summary_counts(self):
        report = generate_report(_result())
        assert "| Processed | 3 |" in report
        assert "| Succeeded | 2 |" in report
        assert "| With tours | 1 |" in report
        assert "| No tours | 1 |" in report
        assert "| Failed | 1 |" in report
        assert "| Skipped (existing tour) | 4 |" in report
        assert "**Duration:** 300 s" in report

    def test_rows_and_failures(self):
        report = generate_report(_result())
        assert "| 1 | KBTU | ok | google, twogis |" in report
        assert "| 2 | Satbayev \\| University | no tours | - |" in report
        assert "- **KazNU** (`u3`): [FetchTimeout] Timed out after 30s" in report

    def test_parameters(self):
        report = generate_report(_result())
        assert "| Skip existing tours | yes |" in report
        assert "| AI analysis | disabled |" in report

    def test_no_failures(self):
        result = _result()
        result.outcomes = result.outcomes[:1]
        assert "## Failures\n\nNone." in generate_report(result)


class TestWriteReport:
    def test_written_under_dated_name(self, tmp_path):
        path = write_report("# report", str(tmp_path / "docs"), STARTED)
        assert path == os.path.join(str(tmp_path / "docs"), "TOUR_SCAN_RESULTS_2026-03-01.md")
        with open(path, encoding="utf-8") as f:
            assert f.read() == "# report"

    def test_unwritable_dir_falls_back_to_stdout(self, tmp_path, capsys):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file, not a directory")
        path = write_report("# fallback report", str(blocker), STARTED)
        assert path is None
        assert "# fallback report" in capsys.readouterr().out

    def test_filename(self):
        assert report_filename(STARTED) == "TOUR_SCAN_RESULTS_2026-03-01.md"


def test_configure_logging_creates_rotating_file(tmp_path):
    log_dir = tmp_path / "logs"
    logger = logging.getLogger("campustour")
    before = list(logger.handlers)
    try:
        configure_logging(str(log_dir))
        logging.getLogger("campustour.scheduler").info("OK   KBTU: google")
        added = [h for h in logger.handlers if h not in before]
        assert len(added) == 1
        added[0].flush()
        assert "OK   KBTU: google" in (log_dir / "tour_scan.log").read_text(encoding="utf-8")
    finally:
        for handler in [h for h in logger.handlers if h not in before]:
            logger.removeHandler(handler)
            handler.close()
