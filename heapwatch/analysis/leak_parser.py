"""Normalize raw leak records from the external analyzer into LeakInfo.

The analyzer serializes each leak trace as a dict whose keys describe the
trace, e.g.::

    {
        "0: [Detached <div class=\"x\">](object) @12 $retained-size:4096": {...},
        "1:   --fiber (property)(retaining bytes: 512)--->  [FiberNode](object) @34": {...},
    }

Records that already carry ``name`` / ``retained_size`` keys are accepted
as-is.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from heapwatch.models.analysis import AllocationLocation, LeakInfo, RetainerPathItem

logger = logging.getLogger(__name__)

DETACHED_PATTERN = re.compile(r"\[Detached\s+<([^>]+)>")
OBJECT_PATTERN = re.compile(r"\[([^\]]+)\]\((\w+)\)\s*@(\d+)")
RETAINED_SIZE_PATTERN = re.compile(r"\$retained-size:(\d+)")
TRACE_STEP_PATTERN = re.compile(r"^(\d+):")
TRACE_EDGE_PATTERN = re.compile(
    r"--([^\s(]+)\s+\((\w+)\)(?:\(retaining bytes:\s*(\d+)\))?--->"
)
ALLOCATION_KEY_PATTERN = re.compile(r"allocation location", re.IGNORECASE)
DOMINATOR_PATTERN = re.compile(r"@(\d+)")

_NORMALIZED_KEYS = {"name", "retained_size", "retainedSize"}


def _find_allocation(value: Any) -> Optional[AllocationLocation]:
    if not isinstance(value, Mapping):
        return None
    key = next((k for k in value if ALLOCATION_KEY_PATTERN.search(str(k))), None)
    location = value.get(key) if key is not None else None
    if not isinstance(location, Mapping):
        return None

    def _int(field: str) -> Optional[int]:
        v = location.get(field)
        return v if isinstance(v, int) and not isinstance(v, bool) else None

    return AllocationLocation(script_id=_int("script_id"), line=_int("line"), column=_int("column"))


def _find_dominator(value: Any) -> Optional[int]:
    if not isinstance(value, Mapping):
        return None
    raw = value.get("dominator id (extra)")
    if isinstance(raw, str):
        match = DOMINATOR_PATTERN.search(raw)
        if match:
            return int(match.group(1))
    return None


def _parse_step(key: str) -> Optional[RetainerPathItem]:
    node = OBJECT_PATTERN.search(key)
    if not node:
        return None
    retained = RETAINED_SIZE_PATTERN.search(key)
    edge = TRACE_EDGE_PATTERN.search(key)
    return RetainerPathItem(
        node_name=node.group(1),
        node_type=node.group(2),
        node_id=int(node.group(3)),
        retained_size=int(retained.group(1)) if retained else None,
        edge_name=edge.group(1) if edge else None,
        edge_type=edge.group(2) if edge else None,
        edge_retain_size=int(edge.group(3)) if edge and edge.group(3) else None,
    )


def parse_leak(raw: Mapping[str, Any]) -> LeakInfo:
    """Convert one raw leak record into a LeakInfo."""
    if _NORMALIZED_KEYS & set(raw):
        try:
            return LeakInfo.model_validate({
                **raw,
                "retained_size": raw.get("retained_size", raw.get("retainedSize", 0)),
            })
        except ValidationError as e:
            logger.debug("Leak record is not in normalized form, parsing trace keys: %s", e)

    description = "Unknown"
    leak_type: Optional[str] = None
    retained_size = 0

    for key, value in raw.items():
        key = str(key)
        detached = DETACHED_PATTERN.search(key)
        obj = OBJECT_PATTERN.search(key)
        if detached:
            description = f"Detached <{detached.group(1)}>"
            leak_type = "detached-dom"
        elif obj and not description.startswith("Detached"):
            description = obj.group(1)
            leak_type = obj.group(2) or leak_type

        retained = RETAINED_SIZE_PATTERN.search(key)
        if retained:
            retained_size = max(retained_size, int(retained.group(1)))

        tags = value.get("tags") if isinstance(value, Mapping) else None
        if isinstance(tags, Mapping):
            tag_size = tags.get("retainedSize")
            if isinstance(tag_size, (int, float)) and not isinstance(tag_size, bool):
                retained_size = max(retained_size, int(tag_size))
            if leak_type is None and isinstance(tags.get("type"), str):
                leak_type = tags["type"]

    steps = sorted(
        (str(k) for k in raw if TRACE_STEP_PATTERN.match(str(k))),
        key=lambda k: int(TRACE_STEP_PATTERN.match(k).group(1)),
    )
    path: list[RetainerPathItem] = []
    allocation: Optional[AllocationLocation] = None
    dominator: Optional[int] = None
    for key in steps:
        item = _parse_step(key)
        if item is None:
            continue
        if not path:
            # The first step is the leaked node itself
            allocation = _find_allocation(raw[key])
            dominator = _find_dominator(raw[key])
        path.append(item)

    return LeakInfo(
        name=description,
        retained_size=retained_size,
        type=leak_type,
        retainer_path=path,
        dominator_id=dominator,
        allocation_location=allocation,
    )
