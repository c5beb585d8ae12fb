"""Analysis orchestrator. Runs the external leak analyzer and applies policy.

Given a finalized snapshot directory it asks the analyzer for leaks,
normalizes them, checks the component threshold, writes the JSON report, and
compares against (and optionally updates) the baseline. Analyzer failures are
returned as ``status="error"`` results and never raised, so one component's
failure does not abort the rest of the suite.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from heapwatch.baseline.store import (
    compare_with_baseline,
    format_comparison,
    get_git_commit_hash,
    load_baseline,
    save_baseline,
    update_baseline,
)
from heapwatch.errors import AnalysisError
from heapwatch.models.analysis import AnalysisResult, AnalysisStatus, LeakInfo, LeakReport
from heapwatch.models.threshold import DEFAULT_THRESHOLD, ComponentThreshold
from heapwatch.reporter.json_report import generate_json_report
from heapwatch.utils.formatting import format_bytes
from heapwatch.validation.thresholds import load_threshold_file

from .leak_parser import parse_leak

logger = logging.getLogger(__name__)

ANALYSIS_TIMEOUT_SECONDS = 120.0
GLOBAL_THRESHOLD_KEY = "global"


class LeakAnalyzer(Protocol):
    """External heap-diffing collaborator.

    ``find_leaks`` reads the baseline / target / final snapshots in
    ``snapshot_dir`` and returns raw leak records. It may be sync or async.
    """

    def find_leaks(self, snapshot_dir: Path) -> Any: ...


@dataclass
class AnalysisOptions:
    component_name: str
    output_dir: str | Path
    threshold_file: Optional[str | Path] = None
    baseline_file: Optional[str | Path] = None
    update_baseline: bool = False
    analysis_timeout: float = ANALYSIS_TIMEOUT_SECONDS
    commit_hash: Optional[str] = None


def resolve_threshold(threshold_file: Optional[str | Path], component: str) -> ComponentThreshold:
    """Threshold for ``component``; the default when the file is absent or invalid."""
    if not threshold_file:
        return DEFAULT_THRESHOLD

    validation = load_threshold_file(threshold_file)
    if not validation.valid:
        logger.warning("Threshold config has errors, using defaults:")
        for error in validation.errors:
            logger.warning("   %s", error)
        return DEFAULT_THRESHOLD
    for warning in validation.warnings:
        logger.warning("   %s", warning)

    thresholds = validation.thresholds or {}
    if component in thresholds:
        return thresholds[component]
    by_lower = {name.lower(): t for name, t in thresholds.items()}
    return by_lower.get(component.lower()) or thresholds.get(GLOBAL_THRESHOLD_KEY) or DEFAULT_THRESHOLD


async def _run_analyzer(
    analyzer: LeakAnalyzer, snapshot_dir: Path, timeout: float,
) -> list[LeakInfo]:
    if inspect.iscoroutinefunction(analyzer.find_leaks):
        raw = await asyncio.wait_for(analyzer.find_leaks(snapshot_dir), timeout=timeout)
    else:
        raw = await asyncio.wait_for(
            asyncio.to_thread(analyzer.find_leaks, snapshot_dir), timeout=timeout,
        )

    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes, Mapping)):
        raise AnalysisError(f"Analyzer returned {type(raw).__name__}, expected a list of leaks")
    return [leak if isinstance(leak, LeakInfo) else parse_leak(leak) for leak in raw]


def _log_summary(
    component: str, leaks: list[LeakInfo], total: int, threshold: ComponentThreshold, passed: bool,
) -> None:
    logger.info("[%s] Memory analysis results:", component)
    logger.info("   Leaks found: %d", len(leaks))
    logger.info("   Retained size: %s", format_bytes(total))
    logger.info(
        "   Threshold: %d leaks / %s",
        threshold.max_leaked_objects, format_bytes(threshold.max_retained_bytes),
    )
    logger.info("   Status: %s", "PASSED" if passed else "FAILED")
    for i, leak in enumerate(leaks[:5], 1):
        logger.info("   %d. %s (%s)", i, leak.name, format_bytes(leak.retained_size))
    if threshold.notes:
        logger.info("   Notes: %s", threshold.notes)


async def analyze(
    snapshot_dir: str | Path,
    options: AnalysisOptions,
    analyzer: LeakAnalyzer,
) -> AnalysisResult:
    """Analyze a captured snapshot directory for one component."""
    start = time.monotonic()
    component = options.component_name
    snapshot_dir = Path(snapshot_dir)

    def elapsed_ms() -> int:
        return int((time.monotonic() - start) * 1000)

    logger.info("[%s] Analyzing heap snapshots in %s", component, snapshot_dir)

    if not snapshot_dir.is_dir():
        logger.error("[%s] Snapshot directory not found: %s", component, snapshot_dir)
        return AnalysisResult.failure(
            "Invalid snapshot directory",
            f"Snapshot directory not found: {snapshot_dir}",
            elapsed_ms(),
        )

    threshold = resolve_threshold(options.threshold_file, component)

    try:
        leaks = await _run_analyzer(analyzer, snapshot_dir, options.analysis_timeout)
    except asyncio.TimeoutError:
        logger.error("[%s] Analysis timed out after %gs", component, options.analysis_timeout)
        return AnalysisResult.failure(
            "Analysis timeout",
            f"Leak analysis for {component} timed out after {options.analysis_timeout:g}s",
            elapsed_ms(),
        )
    except Exception as e:
        logger.error("[%s] Leak detection failed: %s", component, e, exc_info=True)
        return AnalysisResult.failure("Leak detection failed", str(e), elapsed_ms())

    total_retained = sum(leak.retained_size for leak in leaks)
    passed = threshold.allows(len(leaks), total_retained)

    report = LeakReport(
        component=component,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        leak_count=len(leaks),
        total_retained_size=total_retained,
        threshold=threshold,
        passed=passed,
        leaks=leaks,
    )
    try:
        generate_json_report(report, options.output_dir)
    except OSError as e:
        logger.error("[%s] Failed to write leak report: %s", component, e)

    _log_summary(component, leaks, total_retained, threshold, passed)

    result = AnalysisResult(
        status=AnalysisStatus.SUCCESS,
        leaks=leaks,
        total_retained_size=total_retained,
        leak_count=len(leaks),
        passed=passed,
    )

    if options.baseline_file:
        baseline = load_baseline(options.baseline_file)
        result.comparison = compare_with_baseline(result, component, baseline)
        if result.comparison:
            logger.info("%s", format_comparison(result.comparison))
        else:
            logger.info("[%s] No baseline found", component)

        if options.update_baseline:
            commit_hash = options.commit_hash or get_git_commit_hash()
            save_baseline(update_baseline(report, baseline, commit_hash), options.baseline_file)

    result.duration_ms = elapsed_ms()
    return result
