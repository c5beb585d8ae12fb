"""Heap snapshot capture over a Chrome DevTools Protocol session.

One SnapshotSession belongs to exactly one test. It opens a CDP session on a
Playwright page, captures baseline / target / final heap snapshots one at a
time, writes the snap-seq.json and run-meta.json files the leak analyzer
expects, and detaches.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional

from playwright.async_api import CDPSession, Page

from heapwatch.errors import (
    CaptureError,
    CaptureTimeoutError,
    ConnectionFailed,
    ConnectionTimeout,
    EmptyCaptureError,
    MetadataWriteError,
    NotConnectedError,
)
from heapwatch.models.snapshot import RunMetadata, SnapshotPhase, SnapshotRecord
from heapwatch.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

CONNECTION_TIMEOUT_SECONDS = 10.0
CAPTURE_TIMEOUT_SECONDS = 60.0

CHUNK_EVENT = "HeapProfiler.addHeapSnapshotChunk"
SNAP_SEQ_FILENAME = "snap-seq.json"
RUN_META_FILENAME = "run-meta.json"
HEAP_SNAPSHOT_EXTENSION = ".heapsnapshot"


def session_output_dir(root: str | Path, component_name: str, started_ms: Optional[int] = None) -> Path:
    """Per-test output directory: ``<root>/<component>/<epoch ms>``.

    The millisecond directory name is what the retention cleaner reads back as
    the snapshot's age.
    """
    started_ms = started_ms if started_ms is not None else int(time.time() * 1000)
    return Path(root) / component_name.lower() / str(started_ms)


@contextmanager
def listening(cdp: CDPSession, event: str, handler: Callable[[Any], None]) -> Iterator[None]:
    """Attach ``handler`` for the duration of the block, including on cancellation."""
    cdp.on(event, handler)
    try:
        yield
    finally:
        cdp.remove_listener(event, handler)


async def best_effort(awaitable: Awaitable[Any], action: str) -> None:
    """Await a cleanup step whose failure must never mask the primary result."""
    try:
        await awaitable
    except Exception as e:
        logger.debug("Ignoring failure during %s: %s", action, e)


class SnapshotSession:
    """Collects a heap snapshot triad for one component over CDP."""

    def __init__(
        self,
        output_dir: str | Path,
        component_name: str,
        connection_timeout: float = CONNECTION_TIMEOUT_SECONDS,
        capture_timeout: float = CAPTURE_TIMEOUT_SECONDS,
        run_metadata: Optional[RunMetadata] = None,
    ):
        self.output_dir = Path(output_dir)
        self.data_dir = self.output_dir / "data" / "cur"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.component_name = component_name
        self.connection_timeout = connection_timeout
        self.capture_timeout = capture_timeout
        self.run_metadata = run_metadata or RunMetadata(
            interaction=f"{component_name}-memory-leak-test",
        )
        self._cdp: Optional[CDPSession] = None
        self._connected = False
        self._snapshots: list[SnapshotRecord] = []

    async def __aenter__(self) -> "SnapshotSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._connected and self._cdp is not None

    @property
    def snapshots(self) -> list[SnapshotRecord]:
        return list(self._snapshots)

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    async def open(self, page: Optional[Page]) -> None:
        """Open the CDP session and enable the heap profiler.

        The handshake is raced against ``connection_timeout``. Failure leaves
        the session unconnected; callers should not retry on the same session.
        """
        if page is None:
            raise ConnectionFailed(
                f"CDP connection failed for {self.component_name}: no page handle"
            )

        try:
            await asyncio.wait_for(self._handshake(page), timeout=self.connection_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise ConnectionTimeout(
                f"CDP connection failed for {self.component_name}: "
                f"timed out after {self.connection_timeout:g}s"
            ) from None
        except ConnectionFailed:
            await self.close()
            raise
        except Exception as e:
            await self.close()
            raise ConnectionFailed(
                f"CDP connection failed for {self.component_name}: {e}"
            ) from e

        self._connected = True
        logger.info("[%s] CDP session connected", self.component_name)

    async def _handshake(self, page: Page) -> None:
        cdp = await page.context.new_cdp_session(page)
        if cdp is None:
            raise ConnectionFailed(
                f"CDP connection failed for {self.component_name}: session returned None"
            )
        # Held before enabling so a timeout below still detaches it
        self._cdp = cdp
        await cdp.send("HeapProfiler.enable")

    async def collect_garbage(self) -> None:
        """Ask V8 for a full GC through the profiler domain."""
        if not self.is_connected:
            raise NotConnectedError(
                f"CDP session not connected for {self.component_name}. Call open() first."
            )
        await self._cdp.send("HeapProfiler.collectGarbage")

    async def capture(self, phase: SnapshotPhase | str, label: str) -> SnapshotRecord:
        """Take one heap snapshot and write it to ``s{N}.heapsnapshot``.

        Captures on one session are sequential. Phase ordering is the caller's
        responsibility. Any failure is terminal: the session is closed before
        the error propagates.
        """
        if not self.is_connected:
            raise NotConnectedError(
                f"CDP session not connected for {self.component_name}. Call open() first."
            )

        phase = SnapshotPhase(phase)
        index = len(self._snapshots) + 1
        snapshot_path = self.data_dir / f"s{index}{HEAP_SNAPSHOT_EXTENSION}"
        context = f"{self.component_name} ({phase.value}: {label})"

        try:
            usage = await self._cdp.send("Runtime.getHeapUsage")
            used_size = int(usage.get("usedSize", 0))
            chunks = await asyncio.wait_for(
                self._collect_chunks(self._cdp), timeout=self.capture_timeout,
            )
        except asyncio.TimeoutError:
            await self.close()
            raise CaptureTimeoutError(
                f"Snapshot collection failed for {context}: "
                f"timed out after {self.capture_timeout:g}s"
            ) from None
        except Exception as e:
            await self.close()
            raise CaptureError(f"Snapshot collection failed for {context}: {e}") from e

        if not chunks:
            await self.close()
            raise EmptyCaptureError(
                f"Snapshot collection failed for {context}: no snapshot chunks received from CDP"
            )

        try:
            snapshot_path.write_text("".join(chunks), encoding="utf-8")
        except OSError as e:
            await self.close()
            raise CaptureError(f"Could not write snapshot for {context}: {e}") from e

        record = SnapshotRecord(
            name=label,
            is_capture=True,
            phase=phase,
            sequence_index=index,
            heap_used_bytes=used_size,
        )
        self._snapshots.append(record)
        logger.info(
            "[%s] Captured %s snapshot: %s (%s)",
            self.component_name, phase.value, label, format_bytes(used_size),
        )
        return record

    @staticmethod
    async def _collect_chunks(cdp: CDPSession) -> list[str]:
        chunks: list[str] = []

        def on_chunk(params: dict) -> None:
            chunks.append(params.get("chunk", ""))

        with listening(cdp, CHUNK_EVENT, on_chunk):
            # Resolves after the last chunk event has been delivered
            await cdp.send("HeapProfiler.takeHeapSnapshot", {"reportProgress": True})
        return chunks

    async def finalize(self) -> Path:
        """Write snap-seq.json and run-meta.json, then close the session.

        Returns the directory the analyzer reads (the parent of ``data/cur``).
        The session is closed even when a metadata write fails.
        """
        try:
            with open(self.data_dir / SNAP_SEQ_FILENAME, "w") as f:
                json.dump([s.model_dump(by_alias=True) for s in self._snapshots], f, indent=2)
            with open(self.data_dir / RUN_META_FILENAME, "w") as f:
                json.dump(self.run_metadata.model_dump(by_alias=True), f, indent=2)
        except (OSError, TypeError, ValueError) as e:
            raise MetadataWriteError(
                f"Failed to write snapshot metadata for {self.component_name}: {e}"
            ) from e
        finally:
            await self.close()

        logger.debug(
            "[%s] Wrote metadata for %d snapshots to %s",
            self.component_name, len(self._snapshots), self.data_dir,
        )
        return self.output_dir

    async def close(self) -> None:
        """Detach from CDP. Safe to call any number of times."""
        cdp, self._cdp = self._cdp, None
        self._connected = False
        if cdp is not None:
            await best_effort(cdp.detach(), f"CDP detach for {self.component_name}")
