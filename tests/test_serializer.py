# SASjs Python Adapter
# File: tests/test_serializer.py
# Version: v2

"""Tests for the table -> SAS ingestion format serializer."""

from __future__ import annotations

import logging

import pytest

from sasjs_adapter.errors import SerializationError
from sasjs_adapter.serializer import (
    CHUNK_SIZE,
    LARGE_STRING_MESSAGE,
    MAX_STRING_BYTES,
    convert_to_csv,
    get_byte_size,
    infer_formats,
    serialize_tables,
    split_chunks,
)


def test_header_and_row_for_mixed_columns() -> None:
    table = [{"name": "first col value", "amount": 3.14159265, "missing": None}]

    text, error = convert_to_csv(table)

    assert error is None
    assert text == (
        "name:$15. amount:best. missing:best.\r\n"
        "first col value,3.14159265,."
    )


def test_special_characters_are_quoted_and_escaped() -> None:
    table = [
        {"text": "a,b"},
        {"text": 'say "hi"'},
        {"text": "tab\there"},
        {"text": "line\r\nbreak"},
    ]

    text, error = convert_to_csv(table)

    assert error is None
    header, *rows = text.split("\r\n")
    # widest value is "line\r\nbreak" (11 bytes); quotes count twice
    assert header == "text:$11."
    assert rows == ['"a,b"', '"say ""hi"""', "tab\there", "line\nbreak"]


def test_width_is_measured_in_utf8_bytes() -> None:
    assert get_byte_size("é") == 2
    assert get_byte_size("日本") == 6

    formats = infer_formats([{"city": "Zürich"}, {"city": "Köln"}])
    assert formats[0].descriptor() == "city:$7."


def test_quotes_widen_the_column() -> None:
    formats = infer_formats([{"q": '"x"'}])
    assert formats[0].width == 5


def test_empty_string_column_is_character_with_width_one() -> None:
    text, error = convert_to_csv([{"s": ""}])

    assert error is None
    assert text == "s:$1.\r\n"


def test_zero_does_not_decide_column_type() -> None:
    text, error = convert_to_csv([{"n": 0}, {"n": "abc"}])

    assert error is None
    assert text == "n:$3.\r\n0\r\nabc"


def test_rows_follow_first_row_column_order() -> None:
    text, _ = convert_to_csv([{"a": 1, "b": "x"}, {"b": "y", "a": 2}])
    assert text == "a:best. b:$1.\r\n1,x\r\n2,y"


def test_mixed_types_are_logged_and_read_as_characters(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="sasjs_adapter.serializer"):
        text, error = convert_to_csv([{"a": 1}, {"a": "x"}])

    assert error is None
    assert text == "a:$1.\r\n1\r\nx"
    assert "Row (2), Column (a) has mixed types: ERROR" in caplog.text


def test_backslash_is_sent_unchanged() -> None:
    text, error = convert_to_csv([{"path": "a\\b"}])

    assert error is None
    header, row = text.split("\r\n")
    assert header == "path:$3."
    assert row == "a\\b"


def test_control_characters_are_sent_raw() -> None:
    text, error = convert_to_csv([{"s": "a\x01b"}])

    assert error is None
    assert text == "s:$3.\r\na\x01b"


def test_special_character_row() -> None:
    row = {
        "tab": "a\tb",
        "lf": "a\nb",
        "cr": "a\rb",
        "semi": ";start",
        "euro": "€100",
    }

    text, error = convert_to_csv([row])

    assert error is None
    header, line = text.split("\r\n")
    assert header == "tab:$3. lf:$3. cr:$3. semi:$6. euro:$6."
    assert line == "a\tb,a\nb,a\rb,;start,€100"


def test_string_at_limit_is_accepted() -> None:
    text, error = convert_to_csv([{"big": "x" * MAX_STRING_BYTES}])

    assert error is None
    assert text.startswith(f"big:${MAX_STRING_BYTES}.")


def test_oversized_string_returns_error() -> None:
    text, error = convert_to_csv([{"big": "x" * (MAX_STRING_BYTES + 1)}])

    assert text == ""
    assert isinstance(error, SerializationError)
    assert error.message == LARGE_STRING_MESSAGE
    assert error.to_dict() == {"MESSAGE": LARGE_STRING_MESSAGE}


def test_empty_table_serializes_to_empty_string() -> None:
    assert convert_to_csv([]) == ("", None)


def test_serialize_tables_raises_first_error() -> None:
    data = {
        "ok": [{"a": "fine"}],
        "bad": [{"a": "x" * (MAX_STRING_BYTES + 1)}],
    }

    with pytest.raises(SerializationError):
        serialize_tables(data)


def test_serialize_tables_keeps_table_names() -> None:
    out = serialize_tables({"t1": [{"a": 1}], "t2": [{"b": "z"}]})
    assert out == {"t1": "a:best.\r\n1", "t2": "b:$1.\r\nz"}


def test_split_chunks_respects_chunk_size() -> None:
    text = "a" * (CHUNK_SIZE * 2 + 1)

    chunks = split_chunks(text)

    assert [len(c) for c in chunks] == [CHUNK_SIZE, CHUNK_SIZE, 1]
    assert "".join(chunks) == text
