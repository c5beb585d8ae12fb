"""Threshold configuration validation.

Hard errors (wrong type, non-finite, negative) make a component invalid.
Everything else (fractional counts, unusually loose or strict limits,
malformed notes / known issues) is reported as a warning so a typo in
metadata never blocks a CI threshold check.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from heapwatch.models.threshold import (
    KNOWN_ISSUES_KEYS,
    LEAKED_OBJECTS_KEYS,
    RETAINED_BYTES_KEYS,
    ComponentThreshold,
    ValidationResult,
)

logger = logging.getLogger(__name__)

MAX_LEAKED_OBJECTS_WARNING = 100
MAX_RETAINED_BYTES_WARNING = 104_857_600  # 100 MiB
MIN_RETAINED_BYTES_WARNING = 1024  # 1 KiB

_MISSING = object()


@dataclass
class _FieldCheck:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _lookup(config: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in config:
            return config[key]
    return _MISSING


def _check_numeric(
    component: str,
    field_name: str,
    value: Any,
    must_be_integer: bool = False,
    warning_max: Optional[float] = None,
    warning_max_message: Optional[str] = None,
    warning_min: Optional[float] = None,
    warning_min_message: Optional[str] = None,
) -> _FieldCheck:
    check = _FieldCheck()
    if value is _MISSING:
        return check

    # bool is an int subclass but never a meaningful limit
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        check.errors.append(f"{component}: {field_name} must be a number")
        return check

    if isinstance(value, float) and not math.isfinite(value):
        check.errors.append(f"{component}: {field_name} must be a finite number")
        return check

    if value < 0:
        check.errors.append(f"{component}: {field_name} cannot be negative")
        return check

    if must_be_integer and isinstance(value, float) and not value.is_integer():
        check.warnings.append(f"{component}: {field_name} should be an integer (got {value})")

    if warning_max is not None and value > warning_max:
        check.warnings.append(
            warning_max_message or f"{component}: {field_name} > {warning_max} is unusually high"
        )

    if warning_min is not None and 0 < value < warning_min:
        check.warnings.append(
            warning_min_message or f"{component}: {field_name} < {warning_min} may be too strict"
        )

    return check


def _check_notes(component: str, value: Any) -> _FieldCheck:
    check = _FieldCheck()
    if value is not _MISSING and value is not None and not isinstance(value, str):
        check.warnings.append(f"{component}: notes should be a string")
    return check


def _check_known_issues(component: str, value: Any) -> _FieldCheck:
    check = _FieldCheck()
    if value is _MISSING or value is None:
        return check
    if not isinstance(value, list):
        check.warnings.append(f"{component}: knownIssues should be an array")
    elif not all(isinstance(item, str) for item in value):
        check.warnings.append(f"{component}: knownIssues should contain only strings")
    return check


def validate_component(component: str, raw_config: Any) -> ValidationResult:
    """Validate one component's threshold block."""
    if not isinstance(raw_config, Mapping):
        return ValidationResult(
            valid=False,
            errors=[f"{component}: threshold config must be an object"],
        )

    checks = [
        _check_numeric(
            component, "maxLeakedObjects",
            _lookup(raw_config, *LEAKED_OBJECTS_KEYS),
            must_be_integer=True,
            warning_max=MAX_LEAKED_OBJECTS_WARNING,
            warning_max_message=(
                f"{component}: maxLeakedObjects > {MAX_LEAKED_OBJECTS_WARNING} is unusually high"
            ),
        ),
        _check_numeric(
            component, "maxRetainedBytes",
            _lookup(raw_config, *RETAINED_BYTES_KEYS),
            warning_max=MAX_RETAINED_BYTES_WARNING,
            warning_max_message=f"{component}: maxRetainedBytes > 100MB is unusually high",
            warning_min=MIN_RETAINED_BYTES_WARNING,
            warning_min_message=f"{component}: maxRetainedBytes < 1KB may be too strict",
        ),
        _check_notes(component, _lookup(raw_config, "notes")),
        _check_known_issues(component, _lookup(raw_config, *KNOWN_ISSUES_KEYS)),
    ]

    errors = [e for c in checks for e in c.errors]
    warnings = [w for c in checks for w in c.warnings]
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_document(thresholds: Mapping[str, Any]) -> ValidationResult:
    """Validate every component in a threshold document."""
    if not thresholds:
        return ValidationResult(
            valid=True, warnings=["Threshold configuration is empty"],
        )

    errors: list[str] = []
    warnings: list[str] = []
    for component, raw_config in thresholds.items():
        result = validate_component(component, raw_config)
        errors.extend(result.errors)
        warnings.extend(result.warnings)

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_threshold_json(content: str) -> ValidationResult:
    """Parse and validate threshold JSON text. Valid documents carry parsed thresholds."""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        return ValidationResult(valid=False, errors=[f"Invalid JSON: {e}"])

    if not isinstance(parsed, dict):
        return ValidationResult(
            valid=False, errors=["Threshold configuration must be an object"],
        )

    result = validate_document(parsed)
    if not result.valid:
        return result

    try:
        result.thresholds = {
            name: ComponentThreshold.model_validate(raw) for name, raw in parsed.items()
        }
    except ValidationError as e:
        result.valid = False
        result.errors.append(f"Threshold configuration could not be loaded: {e}")
    return result


def load_threshold_file(path: str | Path) -> ValidationResult:
    """Read and validate a threshold file. A missing file is a configuration error."""
    path = Path(path)
    if not path.exists():
        return ValidationResult(
            valid=False, errors=[f"Threshold file not found: {path}"],
        )
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return ValidationResult(
            valid=False, errors=[f"Threshold file could not be read: {path}: {e}"],
        )

    result = validate_threshold_json(content)
    logger.debug(
        "Validated %s: %d errors, %d warnings", path, len(result.errors), len(result.warnings),
    )
    return result


def format_validation_result(result: ValidationResult) -> str:
    lines = []
    if result.valid:
        lines.append("Threshold configuration is valid")
    else:
        lines.append("Threshold configuration has errors:")
    for error in result.errors:
        lines.append(f"   x {error}")
    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        for warning in result.warnings:
            lines.append(f"   ! {warning}")
    return "\n".join(lines)
