"""
Row Decoder - Typed records from raw result text
"""

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from execution.errors import RowDecodeError

_INTEGER_TYPES = {"tinyint", "smallint", "integer", "int", "bigint"}
_FLOAT_TYPES = {"float", "real", "double"}


def _parse_boolean(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_timestamp(value: str) -> datetime:
    # Athena renders timestamps as "2024-01-31 12:00:00.000"
    return datetime.fromisoformat(value.strip().replace(" ", "T", 1))


def converter_for(db_type: Optional[str]) -> Callable[[str], Any]:
    """Map a backend column type to a text -> value converter"""
    if not db_type:
        return str

    normalized = db_type.strip().lower()
    base = normalized.split("(", 1)[0].strip()

    if base == "boolean":
        return _parse_boolean
    if base in _INTEGER_TYPES:
        return int
    if base in _FLOAT_TYPES:
        return float
    if base == "decimal":
        return Decimal
    if base == "date":
        return date.fromisoformat
    if base.startswith("timestamp"):
        return _parse_timestamp
    if base == "json":
        return json.loads
    return str


class RowDecoder:
    """Decodes raw rows into dicts keyed by column name"""

    def decode(self,
               columns: List[Dict[str, Any]],
               rows: List[List[Optional[str]]]) -> List[Dict[str, Any]]:
        """
        Decode rows using the backend-reported column types

        Args:
            columns: Column info (Name, Type) in result order
            rows: Raw text cells, one list per row

        Returns:
            One dict per row, in row order

        Raises:
            RowDecodeError: If a cell does not parse as its column type
        """
        names = [column.get("Name") for column in columns]
        converters = [converter_for(column.get("Type")) for column in columns]

        records = []
        for row_index, row in enumerate(rows):
            record = {}
            for name, convert, value in zip(names, converters, row):
                record[name] = self._decode_value(convert, value, name, row_index)
            records.append(record)

        return records

    @staticmethod
    def _decode_value(convert, value, name, row_index):
        if value is None:
            return None

        try:
            return convert(value)
        except (ValueError, TypeError, InvalidOperation) as e:
            raise RowDecodeError(
                f"Cannot decode column '{name}' in row {row_index}: {value!r} ({e})"
            ) from e
