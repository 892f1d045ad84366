import copy
import logging

import pytest

from rest_dataset_sync.schema import (
    COLUMN_TYPE_TABLE,
    ColumnType,
    DuplicateColumnError,
    SchemaError,
    SchemaInferrer,
    SchemaMismatchError,
    SchemaOutdatedError,
    build_explicit_schema,
    infer_field_type,
    normalize_key,
    parse_column_type,
    parse_columns,
    reconcile_schema,
    writable_schema,
)


def columns(*entries):
    return parse_columns(list(entries))


def col(path, column_type="Text", **kwargs):
    entry = {"column_path": path, "column_type": column_type}
    entry.update(kwargs)
    return entry


# ----------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------

@pytest.mark.parametrize("path", ["id", "name", "camelCase", "with-dash"])
def test_paths_without_dots_are_kept(path):
    assert normalize_key(path) == path


@pytest.mark.parametrize("path,key", [
    ("metrics.views", "metricsviews"),
    ("a.b.c", "abc"),
    ("_source.id", "sourceid"),
    ("__meta.x", "_metax"),
])
def test_dots_and_one_leading_underscore_are_stripped(path, key):
    assert normalize_key(path) == key


def test_colliding_columns_are_rejected():
    with pytest.raises(DuplicateColumnError, match="a.b"):
        build_explicit_schema(columns(col("a.b"), col("ab")))


# ----------------------------------------------------------------------
# Explicit schema
# ----------------------------------------------------------------------

@pytest.mark.parametrize("column_type,expected", [
    ("Text", {"type": "string"}),
    ("Number", {"type": "number"}),
    ("Integer", {"type": "integer"}),
    ("Date", {"type": "string", "format": "date"}),
    ("DateTime", {"type": "string", "format": "date-time"}),
    ("Boolean", {"type": "boolean"}),
    ("Object", {"type": "string"}),
])
def test_column_type_table(column_type, expected):
    schema, _ = build_explicit_schema(columns(col("value", column_type)))
    field = schema[0]
    assert {k: v for k, v in field.items() if k in ("type", "format")} == expected


def test_type_table_is_immutable():
    with pytest.raises(TypeError):
        COLUMN_TYPE_TABLE[ColumnType.TEXT] = {"type": "number"}


def test_custom_type_table():
    table = dict(COLUMN_TYPE_TABLE)
    table[ColumnType.OBJECT] = {"type": "string", "x-display": "json"}
    schema, _ = build_explicit_schema(columns(col("payload", "Object")), type_table=table)
    assert schema[0]["x-display"] == "json"


@pytest.mark.parametrize("label,expected", [
    ("Texte", ColumnType.TEXT),
    ("Nombre", ColumnType.NUMBER),
    ("objet", ColumnType.OBJECT),
    ("DATETIME", ColumnType.DATETIME),
    (None, ColumnType.TEXT),
])
def test_column_type_labels(label, expected):
    assert parse_column_type(label) is expected


def test_unknown_column_type():
    with pytest.raises(SchemaError, match="Currency"):
        parse_column_type("Currency")


def test_multivalued_is_always_a_delimited_string():
    schema, _ = build_explicit_schema(columns(
        col("dates", "Date", multivalued=True),
        col("counts", "Integer", multivalued=True),
    ))
    for field in schema:
        assert field["type"] == "string"
        assert field["separator"] == ";"
        assert "format" not in field


def test_title_and_original_name():
    schema, _ = build_explicit_schema(columns(
        col("metrics.views", "Number", column_name="Views"),
        col("name"),
    ))
    assert schema[0] == {"key": "metricsviews", "type": "number", "title": "Views",
                         "x-originalName": "metrics.views"}
    assert schema[1] == {"key": "name", "type": "string", "title": "name"}


def test_date_formats_are_carried():
    schema, _ = build_explicit_schema(columns(
        col("day", "Date", date_format="DD/MM/YYYY"),
        col("at", "DateTime", date_time_format="DD/MM/YYYY HH:mm"),
    ))
    assert schema[0]["dateFormat"] == "DD/MM/YYYY"
    assert schema[1]["dateTimeFormat"] == "DD/MM/YYYY HH:mm"


def test_primary_key_uses_field_keys():
    _, primary_key = build_explicit_schema(columns(
        col("ref.id", "Integer", is_primary_key=True),
        col("name"),
    ))
    assert primary_key == ["refid"]


def test_missing_primary_key_only_warns(caplog):
    with caplog.at_level(logging.WARNING):
        schema, primary_key = build_explicit_schema(columns(col("name")))
    assert primary_key == []
    assert len(schema) == 1
    assert "No primary key" in caplog.text


# ----------------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------------

EXISTING = [
    {"key": "_id", "type": "string", "x-calculated": True},
    {"key": "id", "type": "integer", "title": "Id"},
    {"key": "name", "type": "string", "title": "Name"},
]


def computed(*entries):
    schema, _ = build_explicit_schema(columns(*entries))
    return schema


def test_unchanged_configuration_changes_nothing():
    schema, changed = reconcile_schema(
        computed(col("id", "Integer", is_primary_key=True), col("name")), EXISTING
    )
    assert not changed
    assert schema == EXISTING


def test_type_change_is_fatal():
    with pytest.raises(SchemaMismatchError, match="column name changed type"):
        reconcile_schema(
            computed(col("id", "Integer"), col("name", "Integer")), EXISTING, force_update=True
        )


def test_format_change_is_fatal():
    existing = [{"key": "day", "type": "string", "format": "date", "title": "day"}]
    with pytest.raises(SchemaMismatchError, match="day"):
        reconcile_schema(computed(col("day", "DateTime")), existing, force_update=True)


def test_new_column_needs_force_update():
    with pytest.raises(SchemaOutdatedError) as excinfo:
        reconcile_schema(computed(col("id", "Integer"), col("price", "Number")), EXISTING)
    assert "price" in str(excinfo.value)
    assert "force_update" in str(excinfo.value)


def test_new_column_is_appended_with_force_update():
    schema, changed = reconcile_schema(
        computed(col("id", "Integer"), col("price", "Number")), EXISTING, force_update=True
    )
    assert changed
    assert len(schema) == len(EXISTING) + 1
    assert schema[-1] == {"key": "price", "type": "number", "title": "price"}


def test_cosmetic_change_needs_force_update():
    existing = [{"key": "tags", "type": "string", "title": "tags"}]
    with pytest.raises(SchemaOutdatedError, match="separator"):
        reconcile_schema(computed(col("tags", multivalued=True)), existing)


def test_cosmetic_change_is_patched_with_force_update():
    existing = [{"key": "tags", "type": "string", "title": "Tags", "x-originalName": "old.tags"}]
    schema, changed = reconcile_schema(
        computed(col("tags", multivalued=True)), existing, force_update=True
    )
    assert changed
    assert schema == [{"key": "tags", "type": "string", "title": "Tags", "separator": ";"}]


def test_reconciliation_keeps_stored_fields_and_input():
    existing = copy.deepcopy(EXISTING)
    schema, _ = reconcile_schema(computed(col("price", "Number")), existing, force_update=True)
    assert [f["key"] for f in schema] == ["_id", "id", "name", "price"]
    assert existing == EXISTING


def test_writable_schema_drops_calculated_fields():
    assert [f["key"] for f in writable_schema(EXISTING)] == ["id", "name"]


# ----------------------------------------------------------------------
# Inference
# ----------------------------------------------------------------------

@pytest.mark.parametrize("value,expected", [
    (1, {"type": "integer"}),
    (2.0, {"type": "integer"}),
    (1.5, {"type": "number"}),
    (True, {"type": "boolean"}),
    ("abc", {"type": "string"}),
    (["a"], {"type": "string", "separator": ";"}),
    ({"a": 1}, {"type": "string"}),
    ("2024-01-01T00:00:00.000Z", {"type": "string", "format": "date"}),
    ("2024-01-01T10:30:00.000Z", {"type": "string", "format": "date-time"}),
    ("2024-01-01", {"type": "string", "format": "date"}),
    ("2024-01-02T00:00:00+02:00", {"type": "string", "format": "date-time"}),
    ("20240101", {"type": "string"}),
    ("2024-13-45 not a date", {"type": "string"}),
])
def test_infer_field_type(value, expected):
    assert infer_field_type(value) == expected


def test_inferrer_grows_and_never_retypes():
    inferrer = SchemaInferrer()
    inferrer.observe("count", 3)
    inferrer.observe("count", "three")
    assert inferrer.schema == [{"key": "count", "title": "count", "type": "integer"}]
    assert inferrer.changed


def test_inferrer_waits_for_a_non_null_value():
    inferrer = SchemaInferrer()
    assert inferrer.observe("maybe", None) is None
    assert inferrer.schema == []
    assert not inferrer.changed
    assert inferrer.observe("maybe", "x")["type"] == "string"


def test_inferrer_normalizes_source_keys():
    inferrer = SchemaInferrer()
    field = inferrer.observe("_id", "a1")
    assert field == {"key": "id", "title": "_id", "type": "string", "x-originalName": "_id"}


def test_seeded_inferrer_recognizes_stored_fields():
    seed = [
        {"key": "id", "type": "string", "title": "_id", "x-originalName": "_id"},
        {"key": "name", "type": "string", "title": "name"},
    ]
    inferrer = SchemaInferrer(seed)
    assert not inferrer.observe_record({"_id": "a1", "name": "x"})
    assert inferrer.observe_record({"_id": "a2", "price": 3.5})
    assert [f["key"] for f in inferrer.schema] == ["id", "name", "price"]

    inferrer.mark_persisted()
    assert not inferrer.changed
    assert seed[-1]["key"] == "name"
