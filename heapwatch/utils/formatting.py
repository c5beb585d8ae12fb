"""Human-readable formatting helpers."""

from __future__ import annotations


def format_bytes(num_bytes: int | float) -> str:
    if num_bytes < 1024:
        return f"{int(num_bytes)} B"
    if num_bytes < 1_048_576:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / 1_048_576:.2f} MB"


def signed(value: int) -> str:
    return f"+{value}" if value >= 0 else str(value)
