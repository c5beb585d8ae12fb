"""Pytest configuration and shared fixtures."""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from heapwatch.capture.session import CHUNK_EVENT
from heapwatch.models.analysis import LeakInfo, LeakReport
from heapwatch.models.baseline import BaselineDocument, BaselineEntry
from heapwatch.models.config import HeapwatchConfig
from heapwatch.models.threshold import ComponentThreshold


# ============================================================================
# CDP / Playwright Fixtures
# ============================================================================


DEFAULT_CHUNKS = ['{"snapshot": {"meta": {}, ', '"node_count": 3}, ', '"nodes": []}']


def build_cdp_session(
    chunks: Optional[list[str]] = None,
    used_size: int = 4096,
    snapshot_error: Optional[Exception] = None,
    hang_on: Optional[str] = None,
) -> MagicMock:
    """Fake CDPSession that streams ``chunks`` to registered chunk listeners.

    ``hang_on`` names a protocol method that never returns, for timeout tests.
    """
    chunks = DEFAULT_CHUNKS if chunks is None else chunks
    handlers: dict[str, list[Callable[[Any], None]]] = {}

    cdp = MagicMock()
    cdp.handlers = handlers
    cdp.on = Mock(side_effect=lambda event, cb: handlers.setdefault(event, []).append(cb))
    cdp.remove_listener = Mock(side_effect=lambda event, cb: handlers[event].remove(cb))

    async def send(method: str, params: Optional[dict] = None) -> dict:
        if method == hang_on:
            await asyncio.sleep(3600)
        if method == "Runtime.getHeapUsage":
            return {"usedSize": used_size, "totalSize": used_size * 2}
        if method == "HeapProfiler.takeHeapSnapshot":
            if snapshot_error is not None:
                raise snapshot_error
            for chunk in chunks:
                for cb in list(handlers.get(CHUNK_EVENT, [])):
                    cb({"chunk": chunk})
        return {}

    cdp.send = AsyncMock(side_effect=send)
    cdp.detach = AsyncMock()
    return cdp


@pytest.fixture
def mock_cdp() -> MagicMock:
    """Create a fake CDP session that streams a small heap snapshot."""
    return build_cdp_session()


@pytest.fixture
def mock_page(mock_cdp: MagicMock) -> MagicMock:
    """Create a mock Playwright page whose context hands out ``mock_cdp``."""
    page = MagicMock()
    page.url = "http://localhost:3000/components"
    page.context.new_cdp_session = AsyncMock(return_value=mock_cdp)
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.evaluate = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    return page


# ============================================================================
# Threshold / Report Fixtures
# ============================================================================


@pytest.fixture
def threshold_document() -> dict:
    """Threshold file content with one strict and one tolerant component."""
    return {
        "Modal": {"maxLeakedObjects": 0, "maxRetainedSize": 1048576, "notes": "Strict"},
        "DataGrid": {
            "maxLeakedObjects": 5,
            "maxRetainedBytes": 5242880,
            "knownIssues": ["Virtualized rows keep a row cache"],
        },
    }


@pytest.fixture
def threshold_file(tmp_path: Path, threshold_document: dict) -> Path:
    """Write the threshold document to a temporary file."""
    path = tmp_path / "memlab" / "thresholds.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(threshold_document))
    return path


@pytest.fixture
def leak_report() -> LeakReport:
    """A failing report for the Modal component."""
    return LeakReport(
        component="Modal",
        timestamp="2025-01-01T12:00:00Z",
        leak_count=2,
        total_retained_size=2048,
        threshold=ComponentThreshold(max_leaked_objects=0),
        passed=False,
        leaks=[
            LeakInfo(name="Detached <div>", retained_size=1024, type="detached-dom"),
            LeakInfo(name="EventListener", retained_size=1024, type="closure"),
        ],
    )


@pytest.fixture
def baseline_document() -> BaselineDocument:
    """Baseline with one recorded Modal measurement."""
    return BaselineDocument(
        last_updated="2025-01-01T00:00:00Z",
        components={
            "Modal": BaselineEntry(
                component="Modal",
                timestamp="2025-01-01T00:00:00Z",
                commit_hash="abc123",
                leak_count=2,
                total_retained_bytes=10_000,
                passed=False,
            ),
        },
    )


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def heapwatch_config(tmp_path: Path, threshold_file: Path) -> HeapwatchConfig:
    """Config pointing every path into the temporary directory."""
    return HeapwatchConfig(
        threshold_file=str(threshold_file),
        baseline_file=str(tmp_path / ".memlab-baseline.json"),
        snapshot_dir=str(tmp_path / "snapshots"),
        reports_dir=str(tmp_path / "reports"),
    )
