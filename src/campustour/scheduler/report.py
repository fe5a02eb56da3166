"""Markdown run report for tour scans."""
import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from campustour.scheduler.batch import BatchResult

logger = logging.getLogger("campustour.scheduler")


def _cell(value: str) -> str:
    """Make a value safe for a Markdown table cell."""
    return str(value).replace("|", "\\|").replace("\n", " ")


def report_filename(run_date: datetime) -> str:
    return f"TOUR_SCAN_RESULTS_{run_date.strftime('%Y-%m-%d')}.md"


def generate_report(result: "BatchResult") -> str:
    """
    Render a batch result as Markdown.

    Layout:
    - Run date and duration
    - Parameters table (limit, skip existing, AI)
    - Summary table (processed / succeeded / with tours / no tours / failed / skipped)
    - One row per processed university
    - Failures section: one line per failed university with its error
    """
    with_tours = sum(1 for o in result.outcomes if o.success and o.sources_found > 0)
    lines = [
        "# Virtual Tour Scan Report",
        "",
        f"**Date:** {result.started_at.strftime('%Y-%m-%d %H:%M UTC')}",
        f"**Duration:** {result.duration_seconds:.0f} s",
        "",
        "## Parameters",
        "",
        "| Parameter | Value |",
        "|-----------|-------|",
        f"| Limit | {result.limit} |",
        f"| Skip existing tours | {'yes' if result.skip_existing else 'no'} |",
        f"| AI analysis | {'enabled' if result.use_ai else 'disabled'} |",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Processed | {result.processed} |",
        f"| Succeeded | {result.succeeded} |",
        f"| With tours | {with_tours} |",
        f"| No tours | {result.no_tours} |",
        f"| Failed | {result.failed} |",
        f"| Skipped (existing tour) | {result.skipped} |",
        "",
        "## Results",
        "",
        "| # | University | Status | Sources |",
        "|---|------------|--------|---------|",
    ]

    for i, o in enumerate(result.outcomes, 1):
        if not o.success:
            status = "failed"
        elif o.sources_found:
            status = "ok"
        else:
            status = "no tours"
        sources = ", ".join(p.value for p in o.sources) if o.sources else "-"
        lines.append(f"| {i} | {_cell(o.university_name or o.university_id)} | {status} | {sources} |")

    lines += ["", "## Failures", ""]
    failures = [o for o in result.outcomes if not o.success]
    if failures:
        for o in failures:
            lines.append(f"- **{_cell(o.university_name)}** (`{o.university_id}`): {_cell(o.error or 'unknown error')}")
    else:
        lines.append("None.")

    lines += ["", "---", "*Generated automatically by scan-tours*", ""]
    return "\n".join(lines)


def write_report(report: str, report_dir: str, run_date: datetime) -> Optional[str]:
    """
    Write the report to <report_dir>/TOUR_SCAN_RESULTS_<date>.md and return the path.

    Falls back to printing the report to stdout when the file cannot be
    written; returns None in that case. Never raises on I/O errors.
    """
    path = os.path.join(report_dir, report_filename(run_date))
    try:
        os.makedirs(report_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(report)
    except OSError as e:
        logger.warning(f"Could not write report to {path}: {e}")
        print("\nReport:")
        print(report)
        return None
    return path
