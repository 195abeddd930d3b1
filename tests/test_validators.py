import math
import uuid

import pytest

from semantic_memory.config import MAX_DAY_RANGE
from semantic_memory.errors import ValidationIssue
from semantic_memory.validators import (
    validate_boost,
    validate_content,
    validate_direction,
    validate_expires_in_days,
    validate_limit,
    validate_memory_id,
    validate_metadata,
    validate_older_than_days,
    validate_query,
    validate_source,
    validate_tags,
    validate_unit_interval,
)


def test_content_is_trimmed_and_cleaned():
    assert validate_content("  hello\x00 world \n") == "hello world"


@pytest.mark.parametrize("value", ["", "   ", None, 42])
def test_content_rejects_blank_or_non_string(value):
    with pytest.raises(ValidationIssue) as excinfo:
        validate_content(value)
    assert excinfo.value.field == "content"


def test_content_rejects_oversized_text():
    with pytest.raises(ValidationIssue) as excinfo:
        validate_content("x" * (10 * 1024 + 1))
    assert excinfo.value.error_type == "max_bytes"


def test_tags_are_lowercased_and_deduplicated():
    assert validate_tags(["Work", "work", "ui-theme", "note_1"]) == ["work", "ui-theme", "note_1"]


@pytest.mark.parametrize("tags", [["has space"], ["semi;colon"], [""], "single-string"])
def test_tags_reject_bad_shapes(tags):
    with pytest.raises(ValidationIssue):
        validate_tags(tags)


def test_tags_item_limit():
    with pytest.raises(ValidationIssue) as excinfo:
        validate_tags([f"t{i}" for i in range(21)])
    assert excinfo.value.error_type == "max_items"


def test_unit_interval():
    assert validate_unit_interval(0, "importance") == 0.0
    assert validate_unit_interval(1, "importance") == 1.0
    for bad in (-0.01, 1.01, math.nan, True, "0.5"):
        with pytest.raises(ValidationIssue):
            validate_unit_interval(bad, "importance")


def test_boost_bounds():
    assert validate_boost(0.5, 0.5) == 0.5
    with pytest.raises(ValidationIssue):
        validate_boost(0.6, 0.5)
    with pytest.raises(ValidationIssue):
        validate_boost(-0.1, 0.5)


def test_limit_bounds():
    assert validate_limit(10, "limit", 100) == 10
    for bad in (0, 101, 2.5, True):
        with pytest.raises(ValidationIssue):
            validate_limit(bad, "limit", 100)


def test_memory_id_normalised():
    value = str(uuid.uuid4())
    assert validate_memory_id(value.upper()) == value
    with pytest.raises(ValidationIssue):
        validate_memory_id("not-a-uuid")


def test_metadata_rejects_reserved_keys_at_depth():
    with pytest.raises(ValidationIssue) as excinfo:
        validate_metadata({"outer": [{"__PROTO__": 1}]})
    assert excinfo.value.error_type == "forbidden_key"


def test_metadata_returns_copy():
    original = {"a": {"b": [1, 2]}}
    cleaned = validate_metadata(original)
    assert cleaned == original
    cleaned["a"]["b"].append(3)
    assert original["a"]["b"] == [1, 2]


def test_metadata_size_limit():
    with pytest.raises(ValidationIssue):
        validate_metadata({"blob": "x" * 70000})


def test_source_truncated_and_blank_dropped():
    assert validate_source("s" * 150) == "s" * 100
    assert validate_source("   ") is None


def test_query_required():
    with pytest.raises(ValidationIssue) as excinfo:
        validate_query("  ", field="task")
    assert excinfo.value.field == "task"


def test_direction_choices():
    assert validate_direction("incoming") == "incoming"
    with pytest.raises(ValidationIssue):
        validate_direction("sideways")


def test_day_criteria():
    assert validate_older_than_days(None) is None
    assert validate_older_than_days(7) == 7
    with pytest.raises(ValidationIssue):
        validate_older_than_days(0)
    assert validate_expires_in_days(None) is None
    with pytest.raises(ValidationIssue):
        validate_expires_in_days(0)


def test_day_criteria_upper_bound():
    assert validate_older_than_days(MAX_DAY_RANGE) == MAX_DAY_RANGE
    assert validate_expires_in_days(MAX_DAY_RANGE) == MAX_DAY_RANGE
    with pytest.raises(ValidationIssue) as excinfo:
        validate_older_than_days(10**6)
    assert excinfo.value.error_type == "out_of_range"
    with pytest.raises(ValidationIssue) as excinfo:
        validate_expires_in_days(10_000_000)
    assert excinfo.value.field == "expires_in_days"
