import pytest

from bulkload.errors import DuplicateColumnError, SchemaError
from bulkload.schema import Column, derive_schema, normalize_column_name


@pytest.mark.parametrize("raw, expected", [
    ("First Name", "first_name"),
    ("Last-Name", "last_name"),
    ("EMAIL", "email"),
    ("zip code - 5", "zip_code___5"),
    ("already_clean", "already_clean"),
])
def test_normalize_column_name(raw, expected):
    assert normalize_column_name(raw) == expected


@pytest.mark.parametrize("raw", ["First Name", "Last-Name", "MiXeD-case Name", "a b-c"])
def test_normalize_is_idempotent(raw):
    once = normalize_column_name(raw)
    assert normalize_column_name(once) == once


def test_derive_schema_keeps_header_order():
    schema = derive_schema(["Name", "Age", "Home Town"])
    assert schema.column_names == ["name", "age", "home_town"]
    assert list(schema)[2] == Column(name="Home Town", normalized_name="home_town")
    assert len(schema) == 3


def test_blank_header_cells_get_positional_names():
    schema = derive_schema(["id", "", "  "])
    assert schema.column_names == ["id", "column_2", "column_3"]


def test_duplicate_after_normalization_fails_fast():
    with pytest.raises(DuplicateColumnError) as exc_info:
        derive_schema(["First Name", "first-name"])
    assert isinstance(exc_info.value, SchemaError)
    assert "first_name" in str(exc_info.value)


def test_duplicate_after_normalization_can_be_suffixed():
    schema = derive_schema(["First Name", "first-name", "FIRST_NAME", "first_name_2"], on_duplicate="suffix")
    assert schema.column_names == ["first_name", "first_name_2", "first_name_3", "first_name_2_2"]


def test_columns_are_immutable():
    column = Column.from_header("Zip Code")
    with pytest.raises(AttributeError):
        column.normalized_name = "zip"
