"""Baseline store: persists last-known leak results and a capped history.

The document is read-modify-written once per analysis with no locking; a
single writer per baseline file is assumed. ``save_baseline`` writes the file
in place (no temp-file-and-rename), so a crash mid-write can truncate it.
``load_baseline`` then degrades to "no baseline" rather than failing the run.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from heapwatch.models.analysis import AnalysisResult, LeakReport
from heapwatch.models.baseline import (
    BASELINE_FORMAT_VERSION,
    MAX_HISTORY_ENTRIES,
    BaselineDocument,
    BaselineEntry,
    ComparisonResult,
    HistoryEntry,
    HistoryMeasurement,
)
from heapwatch.utils.formatting import format_bytes, signed

logger = logging.getLogger(__name__)

DEFAULT_BASELINE_PATH = ".memlab-baseline.json"
# Retained-size drift, relative to the baseline, that counts as a change
RETAINED_DRIFT_RATIO = 0.1

Measurement = Union[AnalysisResult, LeakReport]


def _utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def load_baseline(path: str | Path = DEFAULT_BASELINE_PATH) -> Optional[BaselineDocument]:
    """Load the baseline document. Missing or unreadable files yield None."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return BaselineDocument.model_validate(data)
    # ValueError covers undecodable bytes as well as malformed JSON
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Failed to load baseline from %s: %s", path, e)
        return None


def save_baseline(document: BaselineDocument, path: str | Path = DEFAULT_BASELINE_PATH) -> None:
    """Write the baseline document. Failures are logged, never raised."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document.to_json_dict(), f, indent=2)
        logger.info("Baseline saved to %s", path)
    except OSError as e:
        logger.error("Failed to save baseline to %s: %s", path, e)


def update_baseline(
    report: LeakReport,
    existing: Optional[BaselineDocument] = None,
    commit_hash: Optional[str] = None,
    now: Optional[str] = None,
) -> BaselineDocument:
    """Return a new document with ``report`` recorded. ``existing`` is not mutated.

    A measurement on the same commit and calendar day as an existing history
    row is merged into that row; otherwise a row is appended and the oldest
    rows beyond MAX_HISTORY_ENTRIES are dropped.
    """
    now = now or _utc_now()
    document = (
        existing.model_copy(deep=True)
        if existing is not None
        else BaselineDocument(format_version=BASELINE_FORMAT_VERSION, last_updated=now)
    )

    document.components[report.component] = BaselineEntry(
        component=report.component,
        timestamp=now,
        commit_hash=commit_hash,
        leak_count=report.leak_count,
        total_retained_bytes=report.total_retained_size,
        passed=report.passed,
    )
    document.last_updated = now

    measurement = HistoryMeasurement(
        leak_count=report.leak_count,
        total_retained_bytes=report.total_retained_size,
    )
    day = now[:10]
    row = next((h for h in document.history if h.matches(commit_hash, day)), None)

    if row is not None:
        row.components[report.component] = measurement
    else:
        document.history.append(HistoryEntry(
            timestamp=now,
            commit_hash=commit_hash,
            components={report.component: measurement},
        ))
        if len(document.history) > MAX_HISTORY_ENTRIES:
            document.history = document.history[-MAX_HISTORY_ENTRIES:]

    return document


def compare_with_baseline(
    current: Measurement,
    component: str,
    baseline: Optional[BaselineDocument],
) -> Optional[ComparisonResult]:
    """Compare a measurement with the component's baseline entry.

    None means the component was never measured, which is distinct from a
    baseline of zero leaks.
    """
    if baseline is None or component not in baseline.components:
        return None

    entry = baseline.components[component]
    leak_delta = current.leak_count - entry.leak_count
    bytes_delta = current.total_retained_size - entry.total_retained_bytes
    drift = entry.total_retained_bytes * RETAINED_DRIFT_RATIO

    is_regression = leak_delta > 0 or bytes_delta > drift
    # Regression wins when leaks grew while retained size shrank
    is_improvement = not is_regression and (leak_delta < 0 or bytes_delta < -drift)

    return ComparisonResult(
        component=component,
        current_leak_count=current.leak_count,
        baseline_leak_count=entry.leak_count,
        leak_count_delta=leak_delta,
        current_retained_bytes=current.total_retained_size,
        baseline_retained_bytes=entry.total_retained_bytes,
        retained_bytes_delta=bytes_delta,
        is_regression=is_regression,
        is_improvement=is_improvement,
    )


def _trend(delta: int) -> str:
    if delta > 0:
        return "up"
    if delta < 0:
        return "down"
    return "flat"


def format_comparison(comparison: ComparisonResult) -> str:
    """Multi-line console summary of one comparison."""
    size_delta = comparison.retained_bytes_delta
    lines = [
        f"Baseline comparison for {comparison.component}:",
        f"   [{_trend(comparison.leak_count_delta)}] Leaks: {comparison.current_leak_count} "
        f"(baseline: {comparison.baseline_leak_count}, "
        f"delta: {signed(comparison.leak_count_delta)})",
        f"   [{_trend(size_delta)}] Retained: {format_bytes(comparison.current_retained_bytes)} "
        f"(baseline: {format_bytes(comparison.baseline_retained_bytes)}, "
        f"delta: {'+' if size_delta >= 0 else '-'}{format_bytes(abs(size_delta))})",
    ]
    if comparison.is_regression:
        lines.append("   REGRESSION DETECTED")
    elif comparison.is_improvement:
        lines.append("   IMPROVEMENT DETECTED")
    else:
        lines.append("   No significant change")
    return "\n".join(lines)


def summarize_comparisons(comparisons: list[ComparisonResult]) -> str:
    """Group comparisons for several components into regressions / improvements / unchanged."""
    regressions = [c for c in comparisons if c.is_regression]
    improvements = [c for c in comparisons if c.is_improvement]
    unchanged = [c for c in comparisons if not (c.is_regression or c.is_improvement)]

    lines = ["=" * 60, "BASELINE COMPARISON REPORT", "=" * 60]
    if regressions:
        lines.append(f"Regressions: {len(regressions)}")
        for c in regressions:
            lines.append(
                f"   - {c.component}: {signed(c.leak_count_delta)} leaks, "
                f"{format_bytes(abs(c.retained_bytes_delta))}"
            )
    if improvements:
        lines.append(f"Improvements: {len(improvements)}")
        for c in improvements:
            lines.append(
                f"   - {c.component}: {signed(c.leak_count_delta)} leaks, "
                f"{format_bytes(abs(c.retained_bytes_delta))}"
            )
    if unchanged:
        lines.append(f"Unchanged: {len(unchanged)}")
        for c in unchanged:
            lines.append(f"   - {c.component}")
    lines.append("=" * 60)
    return "\n".join(lines)


def get_git_commit_hash() -> Optional[str]:
    """HEAD commit of the working directory, or None outside a git checkout."""
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, check=True, timeout=10,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Could not determine git commit: %s", e)
        return None
    return completed.stdout.strip() or None
