"""Baseline document persisted across runs for regression tracking.

On disk the document uses camelCase keys (``lastUpdated``, ``leakCount``,
``totalRetainedSize``) so baselines written by the report tooling load as-is.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

BASELINE_FORMAT_VERSION = 1
MAX_HISTORY_ENTRIES = 50


class BaselineEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    component: str
    timestamp: str  # ISO timestamp
    commit_hash: Optional[str] = Field(default=None, alias="commitHash")
    leak_count: int = Field(default=0, alias="leakCount")
    total_retained_bytes: int = Field(default=0, alias="totalRetainedSize")
    passed: bool = True


class HistoryMeasurement(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    leak_count: int = Field(default=0, alias="leakCount")
    total_retained_bytes: int = Field(default=0, alias="totalRetainedSize")


class HistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    commit_hash: Optional[str] = Field(default=None, alias="commitHash")
    components: dict[str, HistoryMeasurement] = Field(default_factory=dict)

    def matches(self, commit_hash: str | None, day: str) -> bool:
        """Same commit, same calendar day (ISO date prefix)."""
        return self.commit_hash == commit_hash and self.timestamp.startswith(day)


class BaselineDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    format_version: int = Field(default=BASELINE_FORMAT_VERSION, alias="version")
    last_updated: str = Field(default="", alias="lastUpdated")
    components: dict[str, BaselineEntry] = Field(default_factory=dict)
    history: list[HistoryEntry] = Field(default_factory=list)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ComparisonResult(BaseModel):
    """Current measurement against the stored baseline entry. Never persisted."""

    component: str
    current_leak_count: int
    baseline_leak_count: int
    leak_count_delta: int
    current_retained_bytes: int
    baseline_retained_bytes: int
    retained_bytes_delta: int
    is_regression: bool = False
    is_improvement: bool = False
