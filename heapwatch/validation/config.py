"""Pre-flight checks for a HeapwatchConfig before the first capture."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from heapwatch.models.config import HeapwatchConfig
from heapwatch.models.threshold import ValidationResult

logger = logging.getLogger(__name__)


def _check_writable(path: Path, label: str, errors: list[str]) -> None:
    if path.exists() and not os.access(path, os.W_OK):
        errors.append(f"{label} is not writable: {path}")


def validate_config(config: HeapwatchConfig) -> ValidationResult:
    """Check files and directories referenced by the config.

    Returns the same {valid, errors, warnings} shape as threshold validation.
    """
    errors: list[str] = []
    warnings: list[str] = []

    threshold_path = Path(config.threshold_file)
    if threshold_path.exists():
        try:
            with open(threshold_path, encoding="utf-8") as f:
                json.load(f)
        except (OSError, ValueError):
            errors.append(f"Threshold file is not valid JSON: {threshold_path}")
    else:
        errors.append(f"Threshold file not found: {threshold_path}")

    baseline_dir = Path(config.baseline_file).parent
    if not baseline_dir.exists():
        warnings.append(
            f"Baseline directory does not exist: {baseline_dir}. Will be created on first run."
        )

    _check_writable(Path(config.snapshot_dir), "Snapshot directory", errors)
    _check_writable(Path(config.reports_dir), "Reports directory", errors)

    if config.snapshot_retention_days <= 0:
        errors.append(
            f"Invalid snapshot retention days: {config.snapshot_retention_days}. "
            "Must be a positive number."
        )

    if errors:
        logger.debug("Configuration has %d errors", len(errors))
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
