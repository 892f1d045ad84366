"""Dotted-path navigation over parsed JSON documents.

Paths look like "metrics.views" or "data.items.0.id": each segment is a
dict key, or an integer index when the current value is a list. Lookups never
raise: a missing segment yields None.

Paths starting with "$" are evaluated as JSONPath expressions instead
(e.g. "$.response.results").
"""

import logging

from jsonpath_ng import parse as jsonpath_parse

LOGGER = logging.getLogger(__name__)

PATH_SEPARATOR = "."


def _step(value, segment):
    if isinstance(value, dict):
        return value.get(segment)
    if isinstance(value, list):
        try:
            index = int(segment)
        except ValueError:
            return None
        if 0 <= index < len(value):
            return value[index]
    return None


def _extract_jsonpath(data, expression):
    """Return the first JSONPath match, or None."""
    try:
        matches = jsonpath_parse(expression).find(data)
    except Exception as e:
        LOGGER.debug("JSONPath evaluation failed for '%s': %s", expression, e)
        return None
    if matches:
        return matches[0].value
    return None


def split_path(path):
    return path.split(PATH_SEPARATOR) if path else []


def get_value_by_path(obj, path):
    """Get the value found at a dotted path.

    Args:
        obj: A parsed JSON value (usually a dict).
        path: A dotted path ("a.b.c"), a JSONPath ("$.a.b") or an empty
              string for the object itself.

    Returns:
        The value, or None as soon as a segment is absent or null.
    """
    if path and path.startswith("$"):
        return _extract_jsonpath(obj, path)

    value = obj
    for segment in split_path(path):
        value = _step(value, segment)
    return value


def get_values_at_level(obj, path, level=0):
    """Get every value of a path that traverses an array.

    The segment at index ``level`` of the path must designate an array.
    Each element of that array is then resolved through the rest of the
    path:

        >>> get_values_at_level({"a": {"b": [{"c": 1}, {"c": 2}]}}, "a.b.c", 1)
        [1, 2]

    Returns:
        A list (empty when the array is missing or is not a list).
    """
    segments = split_path(path)
    level = level or 0
    prefix = PATH_SEPARATOR.join(segments[:level + 1])
    suffix = PATH_SEPARATOR.join(segments[level + 1:])

    array = get_value_by_path(obj, prefix)
    if not isinstance(array, list):
        return []
    if not suffix:
        return list(array)
    return [get_value_by_path(item, suffix) for item in array]
