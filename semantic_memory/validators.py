"""
Shared validation helpers for semantic memory services.

Validators normalise as they check: each returns the cleaned value so callers
never persist raw input.
"""

from __future__ import annotations

import json
import math
import re
from typing import Optional, Sequence

from semantic_memory.config import (
    MAX_CONTENT_BYTES,
    MAX_DAY_RANGE,
    MAX_METADATA_BYTES,
    MAX_QUERY_LENGTH,
    MAX_RELATION_TYPE_LENGTH,
    MAX_SOURCE_LENGTH,
    MAX_SUMMARY_BYTES,
    MAX_TAG_ITEMS,
    MAX_TAG_LENGTH,
)
from semantic_memory.errors import ValidationIssue

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAG_PATTERN = re.compile(r"^[a-z0-9_-]+$")
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_FORBIDDEN_METADATA_KEYS = {"__proto__", "constructor", "prototype"}

DIRECTIONS = ("outgoing", "incoming", "both")


def strip_control_characters(value: str) -> str:
    # \t and \n survive; \r is dropped along with the rest
    return _CONTROL_CHARS.sub("", value).replace("\r", "")


def _validate_bounded_text(value, field: str, max_bytes: int) -> str:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    cleaned = strip_control_characters(value).strip()
    if not cleaned:
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(cleaned.encode("utf-8")) > max_bytes:
        raise ValidationIssue(
            f"{field} exceeds max size {max_bytes} bytes",
            field=field,
            error_type="max_bytes",
        )
    return cleaned


def validate_content(value) -> str:
    return _validate_bounded_text(value, "content", MAX_CONTENT_BYTES)


def validate_summary(value) -> Optional[str]:
    if value is None:
        return None
    return _validate_bounded_text(value, "summary", MAX_SUMMARY_BYTES)


def validate_source(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationIssue("source must be a string", field="source", error_type="invalid_type")
    cleaned = strip_control_characters(value).strip()[:MAX_SOURCE_LENGTH]
    return cleaned or None


def validate_query(value, field: str = "query") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    cleaned = value.strip()
    if len(cleaned) > MAX_QUERY_LENGTH:
        raise ValidationIssue(
            f"{field} exceeds max length {MAX_QUERY_LENGTH}",
            field=field,
            error_type="max_length",
        )
    return cleaned


def validate_tags(values: Optional[Sequence[str]], field: str = "tags") -> list[str]:
    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list of strings", field=field, error_type="invalid_type")
    if len(values) > MAX_TAG_ITEMS:
        raise ValidationIssue(f"{field} exceeds max items {MAX_TAG_ITEMS}", field=field, error_type="max_items")
    tags: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue(f"{field} must contain only strings", field=field, error_type="invalid_type")
        tag = item.strip().lower()
        if not tag:
            raise ValidationIssue(f"{field} must not contain empty tags", field=field, error_type="required")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationIssue(
                f"{field} item exceeds max length {MAX_TAG_LENGTH}",
                field=field,
                error_type="max_length",
            )
        if not _TAG_PATTERN.match(tag):
            raise ValidationIssue(
                f"{field} items may only contain a-z, 0-9, '_' and '-': {tag!r}",
                field=field,
                error_type="invalid_format",
            )
        if tag not in tags:
            tags.append(tag)
    return tags


def _validate_number(value, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationIssue(f"{field} must be a number", field=field, error_type="invalid_type")
    if not math.isfinite(value):
        raise ValidationIssue(f"{field} must be finite", field=field, error_type="out_of_range")
    return float(value)


def validate_unit_interval(value, field: str) -> float:
    number = _validate_number(value, field)
    if number < 0.0 or number > 1.0:
        raise ValidationIssue(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")
    return number


def validate_boost(value, max_boost: float) -> float:
    number = _validate_number(value, "boost")
    if number < 0.0 or number > max_boost:
        raise ValidationIssue(
            f"boost must be between 0.0 and {max_boost}",
            field="boost",
            error_type="out_of_range",
        )
    return number


def validate_limit(value, field: str, max_value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")
    return value


def validate_memory_id(value, field: str = "memory_id") -> str:
    if not isinstance(value, str) or not _UUID_PATTERN.match(value.strip()):
        raise ValidationIssue(f"{field} must be a valid UUID", field=field, error_type="invalid_id")
    return value.strip().lower()


def _find_forbidden_key(value) -> Optional[str]:
    if isinstance(value, dict):
        for key, nested in value.items():
            if str(key).lower() in _FORBIDDEN_METADATA_KEYS:
                return str(key)
            found = _find_forbidden_key(nested)
            if found:
                return found
    elif isinstance(value, list):
        for nested in value:
            found = _find_forbidden_key(nested)
            if found:
                return found
    return None


def validate_metadata(metadata: Optional[dict], field: str = "metadata") -> dict:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    try:
        encoded = json.dumps(metadata)
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if len(encoded.encode("utf-8")) > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )
    forbidden = _find_forbidden_key(metadata)
    if forbidden:
        raise ValidationIssue(
            f"{field} contains reserved key {forbidden!r}",
            field=field,
            error_type="forbidden_key",
        )
    return json.loads(encoded)


def validate_relation_type(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(
            "relation_type must be a non-empty string",
            field="relation_type",
            error_type="required",
        )
    cleaned = value.strip()
    if len(cleaned) > MAX_RELATION_TYPE_LENGTH:
        raise ValidationIssue(
            f"relation_type exceeds max length {MAX_RELATION_TYPE_LENGTH}",
            field="relation_type",
            error_type="max_length",
        )
    return cleaned


def validate_direction(value) -> str:
    if value not in DIRECTIONS:
        raise ValidationIssue(
            f"direction must be one of {', '.join(DIRECTIONS)}",
            field="direction",
            error_type="invalid_choice",
        )
    return value


def validate_older_than_days(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_DAY_RANGE:
        raise ValidationIssue(
            f"older_than_days must be an integer between 1 and {MAX_DAY_RANGE}",
            field="older_than_days",
            error_type="out_of_range",
        )
    return value


def validate_expires_in_days(value) -> Optional[float]:
    if value is None:
        return None
    number = _validate_number(value, "expires_in_days")
    if not 0 < number <= MAX_DAY_RANGE:
        raise ValidationIssue(
            f"expires_in_days must be greater than 0 and at most {MAX_DAY_RANGE}",
            field="expires_in_days",
            error_type="out_of_range",
        )
    return number
