import pytest
from services.zone_extraction import (
    extract_zone_ids, normalize_zone_id, resolve_json_path, from_deep_scan,
)


@pytest.mark.parametrize("raw, expected", [
    (123, "123"),
    (123.0, "123"),
    ("123.0", "123"),
    (" 456 ", "456"),
    ("abc", "abc"),
    ("", None),
    (None, None),
    (True, None),
    ({"id": 1}, None),
])
def test_normalize_zone_id(raw, expected):
    assert normalize_zone_id(raw) == expected


def test_root_array_of_mixed_primitives():
    result = extract_zone_ids([101, "102", 103.0, "101"])
    assert result.strategy == 'root_list'
    assert result.zones == ["101", "102", "103"]


def test_named_field_zone_objects():
    payload = {"zone": [{"zone_id": 7}, {"zoneId": "8"}, {"id": 9}]}
    result = extract_zone_ids(payload)
    assert result.strategy == 'named_field'
    assert result.zones == ["7", "8", "9"]


def test_named_field_nested_one_level():
    payload = {"data": {"zone_ids": [1, 2]}}
    result = extract_zone_ids(payload)
    assert result.strategy == 'named_field'
    assert result.zones == ["1", "2"]


def test_configured_path_wins_over_conventional_fields():
    payload = {"zones": [1], "meta": {"excluded": [5, 6]}}
    result = extract_zone_ids(payload, json_path='meta.excluded')
    assert result.strategy == 'configured_path'
    assert result.zones == ["5", "6"]


def test_configured_path_missing_falls_through():
    result = extract_zone_ids({"zones": [1]}, json_path='does.not.exist')
    assert result.strategy == 'named_field'
    assert result.zones == ["1"]


def test_resolve_json_path_with_list_index():
    assert resolve_json_path({"items": [{"zones": [3]}]}, 'items.0.zones') == [3]
    assert resolve_json_path({"items": []}, 'items.0') is None


def test_deep_scan_finds_buried_array():
    payload = {"response": {"payload": {"excluded": [{"placementId": 44}, {"placementId": 45}]}}}
    result = extract_zone_ids(payload)
    assert result.strategy == 'deep_scan'
    assert result.zones == ["44", "45"]


def test_empty_named_list_is_recognized_as_no_zones():
    result = extract_zone_ids({"zones": []})
    assert result.recognized
    assert result.zones == []


def test_unrecognized_payload():
    result = extract_zone_ids({"status": "ok", "count": 3})
    assert not result.recognized
    assert result.zones == []


def test_deep_scan_returns_none_without_candidate_arrays():
    assert from_deep_scan({"a": {"b": "c"}}) is None
