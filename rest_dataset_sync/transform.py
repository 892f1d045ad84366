"""Row transformation: source records into flat dataset lines.

Explicit mode follows the configured columns:

    column {"column_path": "badges", "column_type": "Object", "multivalued": true}
    {"badges": [{"kind": "a"}, {"kind": "b"}]}  ->  {"badges": '{"kind":"a"};{"kind":"b"}'}

Inferred mode keeps every top-level key of the record, registering unseen
keys in the SchemaInferrer as it goes.

A line never contains nested values: objects and arrays are serialized as
compact JSON, arrays joined with ";".
"""

import json
import logging
from datetime import timezone

from rest_dataset_sync.paths import get_value_by_path, get_values_at_level
from rest_dataset_sync.schema import (
    MULTIVALUED_SEPARATOR,
    ColumnType,
    normalize_key,
    parse_iso_datetime,
)

LOGGER = logging.getLogger(__name__)

# In inferred mode, 0, False and "" are written as missing cells.
# Kept for compatibility with datasets built by earlier runs; can be
# disabled with the "falsy_as_missing" config.
FALSY_AS_MISSING = True

DATE_FIELD_FORMATS = ("date", "date-time")


def to_json(value):
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def to_iso_string(parsed):
    """Format an aware datetime as 2024-01-01T10:30:00.000Z."""
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"


def _to_number(value, integer=False):
    try:
        number = float(value)
    except (TypeError, ValueError):
        LOGGER.debug("Value %r is not a number, left empty", value)
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if integer else number


def coerce_value(value, column_type):
    """Convert a source value to the representation of a column type."""
    if column_type is ColumnType.NUMBER:
        return _to_number(value)
    if column_type is ColumnType.INTEGER:
        return _to_number(value, integer=True)
    if column_type is ColumnType.OBJECT or isinstance(value, (dict, list)):
        return to_json(value)
    return value


def _fragment(value):
    """Render one element of a multivalued cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def transform_record(record, columns, blank_missing=False):
    """Convert a source record to a line following configured columns.

    Args:
        record: The source record.
        columns: List of ColumnSpec.
        blank_missing: Write "" for missing values instead of omitting
                       the key (file exports).

    Returns:
        A dict keyed by field key.
    """
    line = {}
    for column in columns:
        key = normalize_key(column.path)

        if column.multivalued:
            values = get_values_at_level(record, column.path, column.level)
            line[key] = MULTIVALUED_SEPARATOR.join(
                _fragment(coerce_value(v, column.type) if v is not None else None)
                for v in values
            )
            continue

        value = get_value_by_path(record, column.path)
        if value is not None and value != "":
            value = coerce_value(value, column.type)

        if value is None or value == "":
            if blank_missing:
                line[key] = ""
            continue
        line[key] = value
    return line


def format_inferred_record(record, inferrer, falsy_as_missing=FALSY_AS_MISSING):
    """Convert a source record to a line, growing the inferred schema.

    Args:
        record: The source record (a dict; anything else yields an empty line).
        inferrer: The run's SchemaInferrer.
        falsy_as_missing: Omit 0, False and "" values.

    Returns:
        A dict keyed by field key.
    """
    line = {}
    if not isinstance(record, dict):
        LOGGER.warning("Skipping a record that is not an object: %r", record)
        return line

    for source_key, value in record.items():
        field = inferrer.observe(source_key, value)
        if field is None or value is None:
            continue
        key = field["key"]

        if field.get("format") in DATE_FIELD_FORMATS:
            if not value:
                continue
            parsed = parse_iso_datetime(value)
            line[key] = to_iso_string(parsed) if parsed is not None else value
        elif isinstance(value, list):
            line[key] = MULTIVALUED_SEPARATOR.join(to_json(v) for v in value)
        elif isinstance(value, dict):
            line[key] = to_json(value)
        elif value or not falsy_as_missing:
            line[key] = value
    return line
