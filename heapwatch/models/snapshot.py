"""Snapshot sequence and run metadata written alongside captured heap snapshots."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SnapshotPhase(str, Enum):
    BASELINE = "baseline"
    TARGET = "target"
    FINAL = "final"


class SnapshotRecord(BaseModel):
    """One captured heap snapshot, as listed in snap-seq.json."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=True)

    name: str
    is_capture: bool = Field(default=True, alias="snapshot")
    phase: SnapshotPhase = Field(alias="type")
    sequence_index: int = Field(alias="idx", ge=1)
    heap_used_bytes: int = Field(default=0, alias="JSHeapUsedSize", ge=0)


class ViewportInfo(BaseModel):
    width: int = 1280
    height: int = 720


class LaunchInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    headless: bool = True
    default_viewport: ViewportInfo = Field(default_factory=ViewportInfo, alias="defaultViewport")


class BrowserInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    browser_version: str = Field(default="Chromium (Playwright)", alias="_browserVersion")
    launch_config: LaunchInfo = Field(default_factory=LaunchInfo, alias="_puppeteerConfig")


class RunMetadata(BaseModel):
    """Run descriptor written to run-meta.json for the external analyzer."""

    model_config = ConfigDict(populate_by_name=True)

    app: str = "heapwatch"
    type: str = "playwright-scenario"
    interaction: str
    browser_info: BrowserInfo = Field(default_factory=BrowserInfo, alias="browserInfo")
