"""Record extraction from source API responses.

API responses come in many shapes:
  - Direct array: [{"id": 1}, {"id": 2}]
  - Wrapped: {"data": [{"id": 1}]}
  - Nested: {"response": {"results": [{"id": 1}]}}
  - Single object: {"id": 1}

The location of the records is given by the "result_path" config
(dotted path or JSONPath). Without it the whole response is used.
"""

import logging

from rest_dataset_sync.paths import get_value_by_path

LOGGER = logging.getLogger(__name__)


class UpstreamShapeError(Exception):
    """The API response does not have the configured shape."""


def extract_records(response_data, result_path=None):
    """Extract the list of records from an API response.

    Args:
        response_data: The parsed JSON response.
        result_path: Optional path to the records inside the response.

    Returns:
        A list of records, empty when the response has no payload.

    Raises:
        UpstreamShapeError: If result_path is configured but absent from
                            the response.
    """
    if response_data is None or response_data == "":
        return []

    if result_path:
        data = get_value_by_path(response_data, result_path)
        if data is None:
            raise UpstreamShapeError(
                f"The path {result_path} does not exist in the API response"
            )
    else:
        data = response_data

    if not isinstance(data, list):
        LOGGER.warning("The API result is not an array, it is used as a single record.")
        data = [data]

    return data
