"""Tests for baseline persistence, history, and comparison."""

import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from heapwatch.baseline.store import (
    compare_with_baseline,
    format_comparison,
    get_git_commit_hash,
    load_baseline,
    save_baseline,
    summarize_comparisons,
    update_baseline,
)
from heapwatch.models.analysis import AnalysisResult, LeakReport
from heapwatch.models.baseline import (
    MAX_HISTORY_ENTRIES,
    BaselineDocument,
    BaselineEntry,
    HistoryEntry,
    HistoryMeasurement,
)
from heapwatch.models.threshold import ComponentThreshold


def _report(component="Modal", leaks=0, retained=0) -> LeakReport:
    return LeakReport(
        component=component,
        timestamp="2025-01-01T00:00:00Z",
        leak_count=leaks,
        total_retained_size=retained,
        threshold=ComponentThreshold(),
        passed=leaks == 0,
    )


def _baseline(leaks: int, retained: int) -> BaselineDocument:
    return BaselineDocument(components={
        "Modal": BaselineEntry(
            component="Modal", timestamp="2025-01-01T00:00:00Z",
            leak_count=leaks, total_retained_bytes=retained,
        ),
    })


# ============================================================================
# Load / save
# ============================================================================


class TestLoadSave:
    """Tests for reading and writing the baseline file."""

    def test_missing_file_returns_none(self, tmp_path):
        assert load_baseline(tmp_path / "missing.json") is None

    def test_malformed_file_returns_none(self, tmp_path):
        path = tmp_path / "baseline.json"
        path.write_text("{not json")
        assert load_baseline(path) is None

    def test_undecodable_file_returns_none(self, tmp_path):
        path = tmp_path / "baseline.json"
        path.write_bytes(b'{"version": 1, "lastUpdated": "\xff\xfe"}')
        assert load_baseline(path) is None

    def test_wrong_shape_returns_none(self, tmp_path):
        path = tmp_path / "baseline.json"
        path.write_text(json.dumps({"components": {"Modal": {"leakCount": "many"}}}))
        assert load_baseline(path) is None

    def test_round_trip_uses_camel_case_keys(self, tmp_path, baseline_document):
        path = tmp_path / "nested" / "baseline.json"
        save_baseline(baseline_document, path)

        raw = json.loads(path.read_text())
        assert raw["version"] == 1
        assert raw["lastUpdated"] == "2025-01-01T00:00:00Z"
        assert raw["components"]["Modal"]["leakCount"] == 2
        assert raw["components"]["Modal"]["totalRetainedSize"] == 10_000
        assert raw["components"]["Modal"]["commitHash"] == "abc123"

        loaded = load_baseline(path)
        assert loaded.components["Modal"].total_retained_bytes == 10_000

    def test_loads_document_without_history(self, tmp_path):
        path = tmp_path / "baseline.json"
        path.write_text(json.dumps({
            "version": 1,
            "lastUpdated": "2025-01-01T00:00:00Z",
            "components": {
                "Modal": {
                    "component": "Modal", "timestamp": "2025-01-01T00:00:00Z",
                    "leakCount": 1, "totalRetainedSize": 512, "passed": False,
                },
            },
        }))
        loaded = load_baseline(path)
        assert loaded.history == []
        assert loaded.components["Modal"].commit_hash is None

    def test_save_failure_is_logged_not_raised(self, tmp_path, baseline_document):
        # Parent is a file, so mkdir fails
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        save_baseline(baseline_document, blocker / "baseline.json")
        assert not (blocker / "baseline.json").exists()


# ============================================================================
# Update
# ============================================================================


class TestUpdateBaseline:
    """Tests for recording a report in the baseline."""

    def test_creates_document_when_missing(self):
        doc = update_baseline(_report(leaks=1, retained=100), None, "c1", now="2025-02-01T10:00:00Z")

        assert doc.last_updated == "2025-02-01T10:00:00Z"
        assert doc.components["Modal"].leak_count == 1
        assert doc.components["Modal"].commit_hash == "c1"
        assert len(doc.history) == 1
        assert doc.history[0].components["Modal"].total_retained_bytes == 100

    def test_does_not_mutate_existing(self, baseline_document):
        update_baseline(_report(leaks=9), baseline_document, "c2", now="2025-02-01T10:00:00Z")
        assert baseline_document.components["Modal"].leak_count == 2
        assert baseline_document.history == []

    def test_same_commit_same_day_merges_into_one_row(self):
        doc = update_baseline(_report("Modal", 1), None, "c1", now="2025-02-01T10:00:00Z")
        doc = update_baseline(_report("Tooltip", 2), doc, "c1", now="2025-02-01T18:30:00Z")

        assert len(doc.history) == 1
        assert set(doc.history[0].components) == {"Modal", "Tooltip"}

    def test_same_commit_same_day_overwrites_component(self):
        doc = update_baseline(_report("Modal", 1), None, "c1", now="2025-02-01T10:00:00Z")
        doc = update_baseline(_report("Modal", 4), doc, "c1", now="2025-02-01T11:00:00Z")

        assert len(doc.history) == 1
        assert doc.history[0].components["Modal"].leak_count == 4

    def test_different_commit_appends_row(self):
        doc = update_baseline(_report(), None, "c1", now="2025-02-01T10:00:00Z")
        doc = update_baseline(_report(), doc, "c2", now="2025-02-01T11:00:00Z")
        assert len(doc.history) == 2

    def test_different_day_appends_row(self):
        doc = update_baseline(_report(), None, "c1", now="2025-02-01T23:59:00Z")
        doc = update_baseline(_report(), doc, "c1", now="2025-02-02T00:01:00Z")
        assert len(doc.history) == 2

    def test_missing_commit_merges_with_missing_commit(self):
        doc = update_baseline(_report("Modal"), None, None, now="2025-02-01T10:00:00Z")
        doc = update_baseline(_report("Tooltip"), doc, None, now="2025-02-01T12:00:00Z")
        assert len(doc.history) == 1

    def test_history_is_capped_with_oldest_evicted(self):
        doc = None
        for i in range(MAX_HISTORY_ENTRIES + 5):
            doc = update_baseline(_report(leaks=i), doc, f"commit-{i}", now="2025-02-01T10:00:00Z")

        assert len(doc.history) == MAX_HISTORY_ENTRIES
        assert doc.history[0].commit_hash == "commit-5"
        assert doc.history[-1].commit_hash == f"commit-{MAX_HISTORY_ENTRIES + 4}"

    def test_full_history_still_merges_without_eviction(self):
        history = [
            HistoryEntry(
                timestamp="2025-01-01T00:00:00Z",
                commit_hash=f"commit-{i}",
                components={"Modal": HistoryMeasurement(leak_count=i)},
            )
            for i in range(MAX_HISTORY_ENTRIES)
        ]
        existing = BaselineDocument(history=history)

        doc = update_baseline(_report("Tooltip"), existing, "commit-0", now="2025-01-01T09:00:00Z")

        assert len(doc.history) == MAX_HISTORY_ENTRIES
        assert doc.history[0].commit_hash == "commit-0"
        assert "Tooltip" in doc.history[0].components


# ============================================================================
# Compare
# ============================================================================


class TestCompareWithBaseline:
    """Tests for regression / improvement classification."""

    def test_never_measured_component_returns_none(self, baseline_document):
        assert compare_with_baseline(_report("Tooltip", 1), "Tooltip", baseline_document) is None

    def test_no_baseline_returns_none(self):
        assert compare_with_baseline(_report(), "Modal", None) is None

    def test_zero_leak_baseline_is_compared(self):
        result = compare_with_baseline(_report(leaks=0), "Modal", _baseline(0, 0))
        assert result is not None
        assert result.is_regression is False
        assert result.is_improvement is False

    def test_more_leaks_is_regression(self):
        result = compare_with_baseline(_report(leaks=3, retained=1000), "Modal", _baseline(2, 1000))
        assert result.leak_count_delta == 1
        assert result.is_regression is True
        assert result.is_improvement is False

    def test_retained_growth_within_ten_percent_is_unchanged(self):
        result = compare_with_baseline(_report(leaks=2, retained=1100), "Modal", _baseline(2, 1000))
        assert result.retained_bytes_delta == 100
        assert result.is_regression is False
        assert result.is_improvement is False

    def test_retained_growth_beyond_ten_percent_is_regression(self):
        result = compare_with_baseline(_report(leaks=2, retained=1101), "Modal", _baseline(2, 1000))
        assert result.is_regression is True

    def test_fewer_leaks_is_improvement(self):
        result = compare_with_baseline(_report(leaks=1, retained=1000), "Modal", _baseline(2, 1000))
        assert result.is_improvement is True
        assert result.is_regression is False

    def test_retained_shrink_beyond_ten_percent_is_improvement(self):
        result = compare_with_baseline(_report(leaks=2, retained=899), "Modal", _baseline(2, 1000))
        assert result.is_improvement is True

    def test_mixed_signals_resolve_to_regression(self):
        # Leaks grew while retained size fell sharply
        result = compare_with_baseline(_report(leaks=5, retained=100), "Modal", _baseline(2, 1000))
        assert result.is_regression is True
        assert result.is_improvement is False

    @pytest.mark.parametrize("leaks,retained", [
        (0, 0), (2, 1000), (3, 0), (1, 5000), (10, 10), (0, 2000),
    ])
    def test_flags_are_mutually_exclusive(self, leaks, retained):
        result = compare_with_baseline(_report(leaks=leaks, retained=retained), "Modal", _baseline(2, 1000))
        assert not (result.is_regression and result.is_improvement)

    def test_accepts_analysis_result(self):
        current = AnalysisResult(leak_count=4, total_retained_size=2000)
        result = compare_with_baseline(current, "Modal", _baseline(2, 1000))
        assert result.current_leak_count == 4
        assert result.retained_bytes_delta == 1000


class TestFormatting:
    """Tests for comparison console output."""

    def test_format_regression(self):
        comparison = compare_with_baseline(_report(leaks=3, retained=2048), "Modal", _baseline(1, 1024))
        text = format_comparison(comparison)
        assert "Baseline comparison for Modal" in text
        assert "delta: +2" in text
        assert "delta: +1.00 KB" in text
        assert "REGRESSION DETECTED" in text

    def test_format_negative_size_delta(self):
        comparison = compare_with_baseline(_report(leaks=0, retained=0), "Modal", _baseline(1, 2048))
        text = format_comparison(comparison)
        assert "delta: -1" in text
        assert "delta: -2.00 KB" in text
        assert "IMPROVEMENT DETECTED" in text

    def test_summary_groups_components(self):
        comparisons = [
            compare_with_baseline(_report(leaks=5), "Modal", _baseline(1, 0)),
            compare_with_baseline(_report(leaks=0), "Modal", _baseline(1, 0)),
            compare_with_baseline(_report(leaks=1), "Modal", _baseline(1, 0)),
        ]
        text = summarize_comparisons(comparisons)
        assert "Regressions: 1" in text
        assert "Improvements: 1" in text
        assert "Unchanged: 1" in text


class TestGitCommitHash:
    """Tests for commit hash discovery."""

    def test_returns_stripped_hash(self):
        completed = Mock(stdout="abc123def\n")
        with patch("heapwatch.baseline.store.subprocess.run", return_value=completed):
            assert get_git_commit_hash() == "abc123def"

    def test_returns_none_outside_git(self):
        error = subprocess.CalledProcessError(128, ["git", "rev-parse", "HEAD"])
        with patch("heapwatch.baseline.store.subprocess.run", side_effect=error):
            assert get_git_commit_hash() is None

    def test_returns_none_without_git_binary(self):
        with patch("heapwatch.baseline.store.subprocess.run", side_effect=FileNotFoundError("git")):
            assert get_git_commit_hash() is None
