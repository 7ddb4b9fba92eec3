# SASjs Python Adapter
# File: serializer.py
# Version: v4

"""Conversion of in-memory tables to the SAS ingestion format.

A table is a list of row dicts. The output is a header line of
``name:format.`` descriptors separated by spaces, followed by one
comma-separated line per row, all joined with CRLF. SAS reads the header to
build an INPUT statement: ``$<n>.`` for character columns (n = widest value in
bytes) and ``best.`` for numeric ones.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import SerializationError

logger = logging.getLogger(__name__)

MAX_STRING_BYTES = 32765
CHUNK_SIZE = 16000

LARGE_STRING_MESSAGE = (
    f"The max length of a string value in SASjs is {MAX_STRING_BYTES} characters."
)

Row = Mapping[str, Any]


@dataclass
class ColumnFormat:
    """Inferred INPUT format for one column."""

    name: str
    is_char: bool
    width: int = 0

    @property
    def is_best(self) -> bool:
        return not self.is_char and not self.width

    def descriptor(self) -> str:
        prefix = "$" if self.is_char else ""
        if self.width:
            size = str(self.width)
        else:
            size = "1" if self.is_char else "best"
        return f"{self.name}:{prefix}{size}."


def get_byte_size(value: str) -> int:
    """UTF-8 length of ``value``; lone surrogates count as three bytes."""
    return len(value.encode("utf-8", errors="surrogatepass"))


def _participates(value: Any) -> bool:
    # None, 0 and False carry no type information.
    return value is not None and (bool(value) or value == "")


def _infer_column(name: str, table: Sequence[Row]) -> ColumnFormat:
    first_type: Optional[str] = None
    mixed_row: Optional[int] = None
    has_chars = False
    width = 0

    for index, row in enumerate(table):
        value = row.get(name)
        if not _participates(value):
            continue

        current = "chars" if isinstance(value, str) else "number"
        if first_type is None:
            first_type = current
        elif mixed_row is None and current != first_type:
            mixed_row = index + 1

        if isinstance(value, str):
            has_chars = True
            size = get_byte_size(value) + value.count('"')
            width = max(width, size)

    if mixed_row is not None:
        logger.warning("Row (%s), Column (%s) has mixed types: ERROR", mixed_row, name)

    # any string makes the column character so SAS keeps the text
    return ColumnFormat(name=name, is_char=has_chars, width=width)


def _encode_cell(value: Any, column: ColumnFormat) -> str:
    if value is None:
        text = ""
    elif isinstance(value, (bool, int, float)):
        text = json.dumps(value)
    else:
        # Characters go through as-is; only quoting is added.
        text = str(value)
        if "," in text or '"' in text:
            text = '"' + text.replace('"', '""') + '"'

    text = text.replace("\r\n", "\n")

    if text == "" and column.is_best:
        text = "."

    return text


def infer_formats(table: Sequence[Row]) -> List[ColumnFormat]:
    """Infer one ColumnFormat per column of the first row."""
    if not table:
        return []
    return [_infer_column(name, table) for name in table[0].keys()]


def convert_to_csv(table: Sequence[Row]) -> Tuple[str, Optional[SerializationError]]:
    """Serialize ``table`` for SAS.

    Returns ``(text, None)`` on success. When a character value is wider than
    ``MAX_STRING_BYTES`` the table cannot be read by SAS and the result is
    ``("", SerializationError)``; the error is returned, not raised, so the
    caller decides whether to abort.
    """
    if not table:
        return "", None

    columns = infer_formats(table)

    if any(col.width > MAX_STRING_BYTES for col in columns):
        return "", SerializationError(LARGE_STRING_MESSAGE)

    header = " ".join(col.descriptor() for col in columns)
    lines = [
        ",".join(_encode_cell(row.get(col.name), col) for col in columns)
        for row in table
    ]

    return header + "\r\n" + "\r\n".join(lines), None


def split_chunks(text: str, size: int = CHUNK_SIZE) -> List[str]:
    """Split ``text`` into consecutive pieces of at most ``size`` characters."""
    return [text[i : i + size] for i in range(0, len(text), size)]


def serialize_tables(
    data: Mapping[str, Sequence[Row]],
) -> Dict[str, str]:
    """Serialize every named table, raising on the first unserializable one."""
    out: Dict[str, str] = {}
    for table_name, table in data.items():
        csv, error = convert_to_csv(table)
        if error is not None:
            raise error
        out[table_name] = csv
    return out
