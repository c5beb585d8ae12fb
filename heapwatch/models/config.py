"""Runtime configuration for heap snapshot capture, analysis, and cleanup."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel

from heapwatch.errors import ConfigurationError


class HeapwatchConfig(BaseModel):
    # Thresholds / baseline
    threshold_file: str = "memlab/thresholds.json"
    baseline_file: str = ".memlab-baseline.json"
    update_baseline: bool = False

    # Output locations
    snapshot_dir: str = "/tmp/memlab-snapshots"
    reports_dir: str = "./memlab-reports"

    # Retention
    cleanup_snapshots: bool = True
    snapshot_retention_days: int = 7

    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HeapwatchConfig":
        """Build a config from MEMLAB_* environment variables over the defaults.

        Call once at startup and pass the result down; nothing here is cached.
        """
        env = os.environ if environ is None else environ
        overrides: dict = {}

        for key, field_name in (
            ("MEMLAB_THRESHOLD_FILE", "threshold_file"),
            ("MEMLAB_BASELINE_FILE", "baseline_file"),
            ("MEMLAB_SNAPSHOT_DIR", "snapshot_dir"),
            ("MEMLAB_REPORTS_DIR", "reports_dir"),
        ):
            if env.get(key):
                overrides[field_name] = env[key]

        raw_days = env.get("MEMLAB_RETENTION_DAYS")
        if raw_days:
            try:
                overrides["snapshot_retention_days"] = int(raw_days)
            except ValueError:
                raise ConfigurationError(
                    f"MEMLAB_RETENTION_DAYS must be an integer, got '{raw_days}'"
                ) from None

        overrides["cleanup_snapshots"] = env.get("MEMLAB_CLEANUP_SNAPSHOTS") != "false"
        overrides["update_baseline"] = env.get("UPDATE_BASELINE") == "true"
        overrides["debug"] = env.get("DEBUG_MEMLAB") == "1"
        return cls(**overrides)

    @classmethod
    def load(cls, path: str | Path) -> "HeapwatchConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
