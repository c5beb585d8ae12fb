"""Per-component leak thresholds and their validation results."""

from __future__ import annotations

import math
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# 1 MiB
DEFAULT_MAX_RETAINED_BYTES = 1_048_576

# Accepted keys, in lookup order; the threshold validator reads them in the same order
LEAKED_OBJECTS_KEYS = ("maxLeakedObjects", "max_leaked_objects")
RETAINED_BYTES_KEYS = ("maxRetainedBytes", "maxRetainedSize", "max_retained_bytes")
KNOWN_ISSUES_KEYS = ("knownIssues", "known_issues")


class ComponentThreshold(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_leaked_objects: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices(*LEAKED_OBJECTS_KEYS),
        serialization_alias="maxLeakedObjects",
    )
    max_retained_bytes: int = Field(
        default=DEFAULT_MAX_RETAINED_BYTES,
        ge=0,
        validation_alias=AliasChoices(*RETAINED_BYTES_KEYS),
        serialization_alias="maxRetainedSize",
    )
    notes: Optional[str] = None
    known_issues: Optional[list[str]] = Field(
        default=None,
        validation_alias=AliasChoices(*KNOWN_ISSUES_KEYS),
        serialization_alias="knownIssues",
    )

    @field_validator("max_leaked_objects", "max_retained_bytes", mode="before")
    @classmethod
    def floor_fractional_limits(cls, v: Any) -> Any:
        # Non-integer limits only warn during validation; compare against the floor.
        if isinstance(v, float) and math.isfinite(v):
            return math.floor(v)
        return v

    @field_validator("notes", mode="before")
    @classmethod
    def drop_non_string_notes(cls, v: Any) -> Any:
        return v if v is None or isinstance(v, str) else None

    @field_validator("known_issues", mode="before")
    @classmethod
    def keep_string_issues(cls, v: Any) -> Any:
        if v is None:
            return None
        if not isinstance(v, list):
            return None
        return [item for item in v if isinstance(item, str)]

    def allows(self, leak_count: int, retained_bytes: int) -> bool:
        """Whether a measurement is within this threshold."""
        return leak_count <= self.max_leaked_objects and retained_bytes <= self.max_retained_bytes


DEFAULT_THRESHOLD = ComponentThreshold()


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    # Populated by validate_threshold_json when the document is valid
    thresholds: Optional[dict[str, ComponentThreshold]] = None
