from rest_dataset_sync.paths import get_value_by_path, get_values_at_level

RECORD = {
    "id": 1,
    "metrics": {"views": 10, "zero": 0},
    "badges": [{"kind": "a"}, {"kind": "b"}],
    "a": {"b": [{"c": 1}, {"c": 2}, {}]},
    "empty": None,
}


def test_nested_value():
    assert get_value_by_path(RECORD, "metrics.views") == 10


def test_falsy_value_is_returned():
    assert get_value_by_path(RECORD, "metrics.zero") == 0


def test_missing_segments_return_none():
    assert get_value_by_path(RECORD, "metrics.clicks") is None
    assert get_value_by_path(RECORD, "metrics.views.deeper") is None
    assert get_value_by_path(RECORD, "empty.anything") is None
    assert get_value_by_path(None, "id") is None


def test_list_index_segment():
    assert get_value_by_path(RECORD, "badges.1.kind") == "b"
    assert get_value_by_path(RECORD, "badges.5.kind") is None
    assert get_value_by_path(RECORD, "badges.kind") is None


def test_empty_path_returns_object():
    assert get_value_by_path(RECORD, "") is RECORD


def test_jsonpath_expression():
    data = {"response": {"items": [{"id": 1}]}}
    assert get_value_by_path(data, "$.response.items") == [{"id": 1}]
    assert get_value_by_path(data, "$.response.missing") is None


def test_values_of_root_array():
    assert get_values_at_level(RECORD, "badges", 0) == [{"kind": "a"}, {"kind": "b"}]


def test_values_through_suffix():
    assert get_values_at_level(RECORD, "badges.kind", 0) == ["a", "b"]


def test_values_at_nested_level():
    assert get_values_at_level(RECORD, "a.b.c", 1) == [1, 2, None]


def test_values_when_not_an_array():
    assert get_values_at_level(RECORD, "metrics.views", 1) == []
    assert get_values_at_level(RECORD, "missing.path", 0) == []
