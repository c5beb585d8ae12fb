"""JSON report output: one file per analyzed component."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from heapwatch.models.analysis import LeakReport

logger = logging.getLogger(__name__)


def report_path(output_dir: str | Path, component: str) -> Path:
    return Path(output_dir) / f"{component}.json"


def generate_json_report(report: LeakReport, output_dir: str | Path) -> Path:
    """Write a machine-readable JSON report and return its path."""
    path = report_path(output_dir, report.component)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(report.model_dump(by_alias=True), f, indent=2, default=str)
    logger.debug("Wrote leak report to %s", path)
    return path


def load_reports(reports_dir: str | Path) -> list[LeakReport]:
    """Load every component report in a reports directory, skipping unreadable files."""
    reports_dir = Path(reports_dir)
    if not reports_dir.exists():
        return []

    reports = []
    for path in sorted(reports_dir.glob("*.json")):
        try:
            with open(path) as f:
                reports.append(LeakReport.model_validate(json.load(f)))
        except Exception as e:
            logger.debug("Could not load report from %s: %s", path, e)
    return reports
