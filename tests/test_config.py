import json

import pytest

from rest_dataset_sync.config import ConfigError, ConfigStore, merge_patch, validate_config

COLUMNS = [{"column_path": "id", "column_type": "Integer", "is_primary_key": True}]


def make_config(**overrides):
    config = {
        "api_url": "https://test.com/api/items",
        "dataset_api_url": "https://datasets.test",
        "columns": COLUMNS,
    }
    config.update(overrides)
    return config


def test_defaults_are_applied():
    config = validate_config(make_config())
    assert config["dataset_mode"] == "create"
    assert config["dataset_type"] == "rest"
    assert config["fetch_max_tries"] == 1
    assert config["upload_errors"] == "abort"
    assert config["falsy_as_missing"] is True


def test_null_values_fall_back_to_defaults():
    config = validate_config(make_config(request_timeout=None))
    assert config["request_timeout"] == 300


def test_missing_required_keys():
    with pytest.raises(ConfigError, match="dataset_api_url"):
        validate_config({"api_url": "https://test.com", "columns": COLUMNS})


@pytest.mark.parametrize("overrides, message", [
    ({"dataset_mode": "replace"}, "dataset_mode"),
    ({"dataset_type": "parquet"}, "dataset_type"),
    ({"upload_errors": "ignore"}, "upload_errors"),
    ({"dataset_mode": "update"}, "dataset.id"),
    ({"dataset_type": "file", "detect_schema": True}, "detect_schema"),
    ({"columns": []}, "columns"),
])
def test_invalid_config(overrides, message):
    with pytest.raises(ConfigError, match=message):
        validate_config(make_config(**overrides))


def test_detect_schema_without_columns():
    config = validate_config(make_config(columns=[], detect_schema=True))
    assert config["columns"] == []


def test_merge_patch_is_deep():
    target = {"dataset": {"title": "items", "description": "d"}, "dataset_mode": "create"}
    merge_patch(target, {"dataset_mode": "update", "dataset": {"id": "ds1", "title": "items"}})
    assert target == {
        "dataset_mode": "update",
        "dataset": {"id": "ds1", "title": "items", "description": "d"},
    }


def test_patch_config_rewrites_the_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(make_config(dataset={"title": "items"})), encoding="utf-8")

    store = ConfigStore(str(path))
    store.patch_config({"dataset_mode": "update", "dataset": {"id": "ds1", "title": "items"}})

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["dataset_mode"] == "update"
    assert saved["dataset"] == {"id": "ds1", "title": "items"}
    assert saved["columns"] == COLUMNS
    assert not (tmp_path / "config.json.tmp").exists()
