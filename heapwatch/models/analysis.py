"""Leak records and analysis results produced by the orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from heapwatch.models.baseline import ComparisonResult
from heapwatch.models.threshold import ComponentThreshold


class AnalysisStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class RetainerPathItem(BaseModel):
    """One step on the path from a GC root to a leaked object."""
    node_name: str
    node_type: str
    node_id: int
    retained_size: Optional[int] = None
    edge_name: Optional[str] = None
    edge_type: Optional[str] = None
    edge_retain_size: Optional[int] = None


class AllocationLocation(BaseModel):
    script_id: Optional[int] = None
    line: Optional[int] = None
    column: Optional[int] = None


class LeakInfo(BaseModel):
    name: str = "Unknown"
    retained_size: int = 0
    type: Optional[str] = None
    retainer_path: list[RetainerPathItem] = Field(default_factory=list)
    dominator_id: Optional[int] = None
    allocation_location: Optional[AllocationLocation] = None


class AnalysisResult(BaseModel):
    status: AnalysisStatus = AnalysisStatus.SUCCESS
    leaks: list[LeakInfo] = Field(default_factory=list)
    total_retained_size: int = 0
    leak_count: int = 0
    passed: bool = False
    error: Optional[str] = None
    error_details: Optional[str] = None
    duration_ms: int = 0
    comparison: Optional[ComparisonResult] = None

    @classmethod
    def failure(cls, error: str, details: str, duration_ms: int = 0) -> "AnalysisResult":
        return cls(
            status=AnalysisStatus.ERROR,
            passed=False,
            error=error,
            error_details=details,
            duration_ms=duration_ms,
        )


class LeakReport(BaseModel):
    """Per-component JSON report written to the reports directory."""
    component: str
    timestamp: str
    leak_count: int = 0
    total_retained_size: int = 0
    threshold: ComponentThreshold
    passed: bool = False
    leaks: list[LeakInfo] = Field(default_factory=list)
