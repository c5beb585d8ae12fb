"""Result of one snapshot retention sweep."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CleanupResult(BaseModel):
    deleted: list[str] = Field(default_factory=list)
    retained: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    freed_bytes: int = 0  # actual, or estimated for a dry run
    retained_bytes: int = 0
    dry_run: bool = False

    def merge(self, other: "CleanupResult", prefix: str = "") -> None:
        """Fold a child sweep into this one, namespacing entry names with ``prefix``."""
        self.deleted.extend(f"{prefix}/{name}" if prefix else name for name in other.deleted)
        self.retained.extend(f"{prefix}/{name}" if prefix else name for name in other.retained)
        self.errors.extend(other.errors)
        self.freed_bytes += other.freed_bytes
        self.retained_bytes += other.retained_bytes
