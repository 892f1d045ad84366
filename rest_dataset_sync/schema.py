"""Destination schema building, inference and reconciliation.

A dataset schema is a list of field dicts, in the dataset API's own
representation:

    {"key": "metricsviews", "type": "number", "title": "Views",
     "x-originalName": "metrics.views"}

Two modes exist:
  1. Explicit: every field comes from a configured column (ColumnSpec).
     On update runs the computed schema is reconciled against the schema
     already stored on the dataset.
  2. Inferred: the schema grows as rows are observed. It starts from the
     stored schema (if any) and fields are only ever appended.
"""

import copy
import logging
from collections import namedtuple
from datetime import timezone
from enum import Enum
from types import MappingProxyType

from dateutil.parser import isoparse

LOGGER = logging.getLogger(__name__)

MULTIVALUED_SEPARATOR = ";"

# Attributes that can be patched on an existing field with force_update
COSMETIC_ATTRIBUTES = ("separator", "x-originalName", "dateFormat", "dateTimeFormat")


class SchemaError(Exception):
    """Base error for schema problems."""


class DuplicateColumnError(SchemaError):
    """Two configured columns produce the same field key."""


class SchemaMismatchError(SchemaError):
    """The configuration changed incompatibly since the dataset was created."""


class SchemaOutdatedError(SchemaError):
    """The stored schema is behind the configuration; force_update can fix it."""


class ColumnType(Enum):
    TEXT = "Text"
    NUMBER = "Number"
    INTEGER = "Integer"
    DATE = "Date"
    DATETIME = "DateTime"
    BOOLEAN = "Boolean"
    OBJECT = "Object"


# Accepted spellings for column_type, lowercased
COLUMN_TYPE_LABELS = {
    "text": ColumnType.TEXT,
    "texte": ColumnType.TEXT,
    "string": ColumnType.TEXT,
    "number": ColumnType.NUMBER,
    "nombre": ColumnType.NUMBER,
    "integer": ColumnType.INTEGER,
    "nombre entier": ColumnType.INTEGER,
    "date": ColumnType.DATE,
    "datetime": ColumnType.DATETIME,
    "date et heure": ColumnType.DATETIME,
    "boolean": ColumnType.BOOLEAN,
    "booléen": ColumnType.BOOLEAN,
    "object": ColumnType.OBJECT,
    "objet": ColumnType.OBJECT,
}

COLUMN_TYPE_TABLE = MappingProxyType({
    ColumnType.TEXT: MappingProxyType({"type": "string"}),
    ColumnType.NUMBER: MappingProxyType({"type": "number"}),
    ColumnType.INTEGER: MappingProxyType({"type": "integer"}),
    ColumnType.DATE: MappingProxyType({"type": "string", "format": "date"}),
    ColumnType.DATETIME: MappingProxyType({"type": "string", "format": "date-time"}),
    ColumnType.BOOLEAN: MappingProxyType({"type": "boolean"}),
    ColumnType.OBJECT: MappingProxyType({"type": "string"}),
})


ColumnSpec = namedtuple("ColumnSpec", [
    "path",
    "name",
    "type",
    "multivalued",
    "level",
    "primary_key",
    "date_format",
    "date_time_format",
])


def parse_column_type(label):
    if isinstance(label, ColumnType):
        return label
    if not label:
        return ColumnType.TEXT
    try:
        return COLUMN_TYPE_LABELS[str(label).strip().lower()]
    except KeyError:
        raise SchemaError(
            f"Unknown column_type '{label}'. "
            f"Supported: {', '.join(t.value for t in ColumnType)}"
        ) from None


def parse_columns(columns_config):
    """Build ColumnSpec tuples from the "columns" config entries."""
    columns = []
    for entry in columns_config or []:
        if not entry.get("column_path"):
            raise SchemaError(f"Column without column_path: {entry}")
        columns.append(ColumnSpec(
            path=entry["column_path"],
            name=entry.get("column_name"),
            type=parse_column_type(entry.get("column_type")),
            multivalued=bool(entry.get("multivalued", False)),
            level=int(entry.get("level_of_the_array") or 0),
            primary_key=bool(entry.get("is_primary_key", False)),
            date_format=entry.get("date_format"),
            date_time_format=entry.get("date_time_format"),
        ))
    return columns


def normalize_key(path):
    """Turn a column path into a field key.

    Dots are removed and a single leading underscore is stripped
    ("_source.id" -> "sourceid"), keys starting with "_" being reserved
    for calculated fields.
    """
    key = path.replace(".", "")
    if key.startswith("_"):
        key = key[1:]
    return key


# ----------------------------------------------------------------------
# Explicit mode
# ----------------------------------------------------------------------

def build_field(column, type_table=COLUMN_TYPE_TABLE):
    key = normalize_key(column.path)
    field = {"key": key}

    if column.multivalued:
        field["type"] = "string"
        field["separator"] = MULTIVALUED_SEPARATOR
    else:
        field.update(type_table[column.type])
        if column.type is ColumnType.DATE and column.date_format:
            field["dateFormat"] = column.date_format
        if column.type is ColumnType.DATETIME and column.date_time_format:
            field["dateTimeFormat"] = column.date_time_format

    field["title"] = column.name or column.path
    if key != column.path:
        field["x-originalName"] = column.path
    return field


def build_explicit_schema(columns, type_table=COLUMN_TYPE_TABLE):
    """Build the dataset schema and primary key from configured columns.

    Args:
        columns: List of ColumnSpec.
        type_table: Mapping ColumnType -> field type attributes.

    Returns:
        (schema, primary_key) where schema is a list of field dicts and
        primary_key a list of field keys.

    Raises:
        DuplicateColumnError: If two column paths collapse to the same key.
    """
    schema = []
    primary_key = []
    seen = {}

    for column in columns:
        field = build_field(column, type_table)
        key = field["key"]
        if key in seen:
            raise DuplicateColumnError(
                f"Columns '{seen[key]}' and '{column.path}' both map to the key '{key}'"
            )
        seen[key] = column.path
        schema.append(field)
        if column.primary_key:
            primary_key.append(key)

    if not primary_key:
        LOGGER.warning(
            "No primary key column configured: every run will append lines "
            "instead of updating them."
        )

    return schema, primary_key


def _changed_attributes(field, existing, attributes):
    return [attr for attr in attributes if field.get(attr) != existing.get(attr)]


def reconcile_schema(computed, existing, force_update=False):
    """Compare a computed schema with the schema stored on a dataset.

    Type and format changes are never applied. New fields and cosmetic
    changes (separator, original name, date formats) are applied only when
    force_update is set. Stored fields missing from the computed schema are
    kept as they are.

    Args:
        computed: Schema built from the current configuration.
        existing: Schema currently stored on the dataset.
        force_update: Allow appending new fields and patching cosmetic
                      attributes.

    Returns:
        (schema, changed): the schema to store, and whether it differs from
        the existing one.

    Raises:
        SchemaMismatchError: On a type or format change.
        SchemaOutdatedError: On a fixable change without force_update.
    """
    schema = copy.deepcopy(existing)
    by_key = {field["key"]: field for field in schema}
    changed = False

    for field in computed:
        key = field["key"]
        current = by_key.get(key)

        if current is None:
            if not force_update:
                raise SchemaOutdatedError(
                    "The configuration changed since the dataset was created. "
                    f"The column {key} does not exist. "
                    "The configuration can be applied with force_update."
                )
            LOGGER.info("Adding column %s to the dataset schema", key)
            new_field = dict(field)
            schema.append(new_field)
            by_key[key] = new_field
            changed = True
            continue

        if _changed_attributes(field, current, ("type", "format")):
            raise SchemaMismatchError(
                "The configuration changed since the dataset was created. "
                f"The column {key} changed type."
            )

        patched = _changed_attributes(field, current, COSMETIC_ATTRIBUTES)
        if not patched:
            continue
        if not force_update:
            raise SchemaOutdatedError(
                "The configuration changed since the dataset was created. "
                f"The column {key} changed ({', '.join(patched)}). "
                "The configuration can be applied with force_update."
            )
        LOGGER.info("Updating column %s (%s)", key, ", ".join(patched))
        for attr in patched:
            if attr in field:
                current[attr] = field[attr]
            else:
                current.pop(attr, None)
        changed = True

    return schema, changed


# ----------------------------------------------------------------------
# Inferred mode
# ----------------------------------------------------------------------

def parse_iso_datetime(value):
    """Parse an ISO 8601 string, returning an aware UTC datetime or None."""
    # extended format only: "20240115" is more likely an identifier than a date
    if not isinstance(value, str) or len(value) < 10 or value[4] != "-" or not value[:4].isdigit():
        return None
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _is_midnight(parsed):
    return (parsed.hour, parsed.minute, parsed.second, parsed.microsecond) == (0, 0, 0, 0)


def infer_field_type(value):
    """Infer the field type attributes for a runtime value.

    Returns a dict with "type" and optionally "format" / "separator".
    """
    if isinstance(value, bool):
        return {"type": "boolean"}
    if isinstance(value, int):
        return {"type": "integer"}
    if isinstance(value, float):
        return {"type": "integer"} if value.is_integer() else {"type": "number"}
    if isinstance(value, list):
        return {"type": "string", "separator": MULTIVALUED_SEPARATOR}
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        if parsed is not None:
            return {"type": "string", "format": "date" if _is_midnight(parsed) else "date-time"}
    return {"type": "string"}


class SchemaInferrer:
    """Incrementally grown schema for inferred mode.

    The schema may be seeded with the fields already stored on the dataset.
    Keys seen for the first time are classified from their value and
    appended; a field is never retyped once registered. ``changed`` tells
    whether fields were appended since the last call to mark_persisted().
    """

    def __init__(self, seed=None):
        self.schema = copy.deepcopy(seed) if seed else []
        self.changed = False
        self._by_source_key = {}
        for field in self.schema:
            self._by_source_key[field.get("x-originalName", field["key"])] = field
            self._by_source_key.setdefault(field["key"], field)

    def get(self, source_key):
        return self._by_source_key.get(source_key)

    def observe(self, source_key, value):
        """Return the field for a source key, registering it if needed.

        Returns None while the key has only been seen with null values.
        """
        field = self._by_source_key.get(source_key)
        if field is not None or value is None:
            return field

        key = normalize_key(source_key)
        for existing in self.schema:
            if existing["key"] == key:
                LOGGER.warning("Source keys '%s' and '%s' both map to the field %s",
                               existing.get("x-originalName", key), source_key, key)
                self._by_source_key[source_key] = existing
                return existing

        field = {"key": key, "title": source_key}
        field.update(infer_field_type(value))
        if key != source_key:
            field["x-originalName"] = source_key

        LOGGER.info("New field detected: %s (%s%s)", key, field["type"],
                    f", {field['format']}" if "format" in field else "")
        self.schema.append(field)
        self._by_source_key[source_key] = field
        self.changed = True
        return field

    def observe_record(self, record):
        for source_key, value in record.items():
            self.observe(source_key, value)
        return self.changed

    def mark_persisted(self):
        self.changed = False


def writable_schema(schema):
    """Strip server-calculated fields before sending a schema update."""
    return [field for field in schema if not field.get("x-calculated")]
