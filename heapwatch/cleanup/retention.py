"""Snapshot retention: deletes snapshot directories older than a retention window.

Snapshot directories are named with their creation time in epoch
milliseconds (see ``session_output_dir``). A name that starts with a positive
integer (``1701234567890-rerun``) is aged by that integer; otherwise the
directory's mtime is used. Entries are processed one at a time and a
failure on one entry is recorded without stopping the sweep.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Optional

from heapwatch.models.cleanup import CleanupResult
from heapwatch.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000
# Leading integer of a directory name, read like parseInt(name, 10)
TIMESTAMP_PREFIX = re.compile(r"\s*([+-]?[0-9]+)")


def _dir_size(path: Path) -> int:
    """Total size of regular files under ``path``. Unreadable entries are skipped."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def _created_at_ms(path: Path) -> Optional[float]:
    """Creation time from a timestamp directory name, else mtime. None if unknown."""
    match = TIMESTAMP_PREFIX.match(path.name)
    if match and int(match.group(1)) > 0:
        return float(int(match.group(1)))
    try:
        return path.stat().st_mtime * 1000
    except OSError:
        return None


def _list_directories(directory: Path) -> list[Path]:
    return sorted(
        Path(entry.path)
        for entry in os.scandir(directory)
        if entry.is_dir(follow_symlinks=False)
    )


def sweep(
    directory: str | Path,
    retention_days: float,
    dry_run: bool = False,
    verbose: bool = False,
    now_ms: Optional[float] = None,
) -> CleanupResult:
    """Delete snapshot directories in ``directory`` older than ``retention_days``.

    A dry run computes the same deleted names and freed bytes without
    touching the filesystem.
    """
    directory = Path(directory)
    result = CleanupResult(dry_run=dry_run)

    if not directory.exists():
        if verbose:
            logger.info("Snapshot directory does not exist: %s", directory)
        return result

    now_ms = now_ms if now_ms is not None else time.time() * 1000
    cutoff_ms = now_ms - retention_days * MS_PER_DAY

    if verbose:
        logger.info(
            "Cleaning up snapshots older than %s days in %s (cutoff %s)%s",
            retention_days, directory,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(cutoff_ms / 1000)),
            " [DRY RUN]" if dry_run else "",
        )

    try:
        entries = _list_directories(directory)
    except OSError as e:
        result.errors.append(f"Failed to read snapshot directory: {e}")
        return result

    for entry in entries:
        created_ms = _created_at_ms(entry)
        if created_ms is None:
            result.errors.append(f"Could not stat {entry.name}")
            continue

        if created_ms < cutoff_ms:
            _delete_entry(entry, dry_run, verbose, result)
        else:
            result.retained.append(entry.name)
            result.retained_bytes += _dir_size(entry)

    if verbose:
        logger.info(
            "Deleted %d directories (%s), retained %d (%s), %d errors",
            len(result.deleted), format_bytes(result.freed_bytes),
            len(result.retained), format_bytes(result.retained_bytes),
            len(result.errors),
        )
    return result


def _delete_entry(entry: Path, dry_run: bool, verbose: bool, result: CleanupResult) -> None:
    # Sized before removal so dry runs report the same freed bytes
    size = _dir_size(entry)
    try:
        if not dry_run:
            shutil.rmtree(entry)
    except OSError as e:
        result.errors.append(f"Failed to delete {entry.name}: {e}")
        return

    result.deleted.append(entry.name)
    result.freed_bytes += size
    if verbose:
        action = "Would delete" if dry_run else "Deleted"
        logger.info("   %s: %s (%s)", action, entry.name, format_bytes(size))


def sweep_component(
    root: str | Path,
    component_name: str,
    retention_days: float,
    dry_run: bool = False,
    verbose: bool = False,
    now_ms: Optional[float] = None,
) -> CleanupResult:
    """Sweep a single component's snapshot directory."""
    return sweep(Path(root) / component_name.lower(), retention_days, dry_run, verbose, now_ms=now_ms)


def sweep_all_components(
    root: str | Path,
    retention_days: float,
    dry_run: bool = False,
    verbose: bool = False,
    now_ms: Optional[float] = None,
) -> CleanupResult:
    """Sweep every component directory under ``root``, one after another.

    Entry names in the combined result are namespaced as ``component/entry``.
    """
    root = Path(root)
    combined = CleanupResult(dry_run=dry_run)
    if not root.exists():
        return combined

    try:
        components = _list_directories(root)
    except OSError as e:
        combined.errors.append(f"Failed to read snapshot directory: {e}")
        return combined

    for component_dir in components:
        child = sweep(component_dir, retention_days, dry_run, verbose, now_ms=now_ms)
        combined.merge(child, prefix=component_dir.name)

    return combined


def format_cleanup_result(result: CleanupResult) -> str:
    lines = [
        f"Snapshot cleanup {'(DRY RUN)' if result.dry_run else 'complete'}",
        f"   Deleted: {len(result.deleted)} directories ({format_bytes(result.freed_bytes)})",
        f"   Retained: {len(result.retained)} directories ({format_bytes(result.retained_bytes)})",
    ]
    if result.errors:
        lines.append("   Errors:")
        for error in result.errors:
            lines.append(f"      - {error}")
    return "\n".join(lines)
