import pytest
import responses

SOURCE_URL = "https://test.com/api/items"
DATASET_API = "https://datasets.test"
DATASETS_URL = f"{DATASET_API}/api/v1/datasets"


@pytest.fixture
def mocked_responses():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def base_config():
    return {
        "api_url": SOURCE_URL,
        "dataset_api_url": DATASET_API,
        "dataset_api_key": "secret",
        "dataset": {"title": "items"},
        "result_path": "data",
        "finalize_poll_interval": 0,
        "finalize_timeout": 5,
        "columns": [
            {"column_path": "id", "column_name": "Id", "column_type": "Integer",
             "is_primary_key": True},
            {"column_path": "name", "column_name": "Name", "column_type": "Text"},
        ],
    }
