"""Leak scenarios: drive a page through baseline, target, and final snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

from heapwatch.models.snapshot import SnapshotPhase, SnapshotRecord

from .session import SnapshotSession, session_output_dir

logger = logging.getLogger(__name__)

PageStep = Callable[[Page], Awaitable[None]]

DEFAULT_CLEANUP_DELAY_MS = 500
DEFAULT_STRESS_CYCLES = 10

# window.gc only exists when Chromium runs with --js-flags=--expose-gc
FORCE_GC_SCRIPT = "() => { if (typeof window.gc === 'function') { window.gc(); } }"


@dataclass
class LeakScenario:
    name: str
    action: PageStep
    setup: Optional[PageStep] = None
    cleanup: Optional[PageStep] = None
    description: str = ""
    expected_leaks: int = 0
    action_wait_ms: int = DEFAULT_CLEANUP_DELAY_MS
    cleanup_wait_ms: int = DEFAULT_CLEANUP_DELAY_MS


async def force_gc(page: Page, session: Optional[SnapshotSession] = None) -> None:
    """Request garbage collection, through CDP when a session is connected."""
    if session is not None and session.is_connected:
        await session.collect_garbage()
    else:
        await page.evaluate(FORCE_GC_SCRIPT)


async def wait_for_cleanup(page: Page, delay_ms: int = DEFAULT_CLEANUP_DELAY_MS) -> None:
    await page.wait_for_timeout(delay_ms)


async def run_scenario(
    page: Page, scenario: LeakScenario, session: SnapshotSession,
) -> list[SnapshotRecord]:
    """Run setup / action / cleanup with a snapshot around each step.

    The session must already be open. Returns the three captured records.
    """
    logger.info("[%s] Running scenario: %s", session.component_name, scenario.name)

    if scenario.setup:
        await scenario.setup(page)

    await force_gc(page, session)
    await wait_for_cleanup(page)
    baseline = await session.capture(SnapshotPhase.BASELINE, "before-action")

    await scenario.action(page)
    await wait_for_cleanup(page, scenario.action_wait_ms)
    target = await session.capture(SnapshotPhase.TARGET, "after-action")

    if scenario.cleanup:
        await scenario.cleanup(page)

    await force_gc(page, session)
    await wait_for_cleanup(page, scenario.cleanup_wait_ms)
    final = await session.capture(SnapshotPhase.FINAL, "after-cleanup")

    return [baseline, target, final]


async def capture_scenario(
    page: Page,
    component_name: str,
    scenario: LeakScenario,
    snapshot_root: str | Path,
    page_path: Optional[str] = None,
    ready_selector: Optional[str] = None,
) -> Path:
    """Open a session, optionally navigate, run the scenario, and finalize.

    Returns the snapshot directory to hand to the analyzer. The CDP session is
    released on every path.
    """
    session = SnapshotSession(session_output_dir(snapshot_root, component_name), component_name)
    try:
        await session.open(page)
        if page_path:
            await page.goto(page_path)
        if ready_selector:
            await page.wait_for_selector(ready_selector)
        await run_scenario(page, scenario, session)
        return await session.finalize()
    finally:
        await session.close()


def stress_scenario(
    cycles: int = DEFAULT_STRESS_CYCLES,
    expected_leaks: int = 5,
    trigger_selector: str = '[data-testid="stress-test"]',
) -> LeakScenario:
    """Rapid mount/unmount cycling driven by an in-page stress button."""

    async def action(page: Page) -> None:
        await page.click(trigger_selector)
        await page.wait_for_selector(f"{trigger_selector}:not([disabled])", timeout=30000)

    return LeakScenario(
        name="stress test: rapid mount/unmount cycles",
        description=f"Rapidly toggles component {cycles} times to detect accumulated leaks",
        action=action,
        expected_leaks=expected_leaks,
        action_wait_ms=1000,
        cleanup_wait_ms=1000,
    )


def mount_unmount_scenario(
    toggle_selector: str, content_selector: Optional[str] = None,
) -> LeakScenario:
    """Toggle a component off and back on."""

    async def wait_for_state(page: Page, state: str) -> None:
        if not content_selector:
            return
        try:
            await page.wait_for_selector(content_selector, state=state, timeout=5000)
        except Exception as e:
            # Components that unmount fully never reach "hidden"
            logger.debug("Content %s did not become %s: %s", content_selector, state, e)

    async def action(page: Page) -> None:
        await page.click(toggle_selector)
        await wait_for_state(page, "hidden")
        await page.click(toggle_selector)
        await wait_for_state(page, "visible")

    return LeakScenario(
        name="mount/unmount cycle should not leak memory",
        description="Basic visibility toggle to test component cleanup",
        action=action,
        expected_leaks=0,
    )
