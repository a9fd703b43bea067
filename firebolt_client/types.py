"""
Firebolt Client Type Definitions

Error hierarchy, result-set model and response-body parsing.

@version 0.1.0
@author Firebolt SDK Team
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union


class FireboltError(Exception):
    """Base exception for Firebolt client errors."""
    pass


class AuthenticationError(FireboltError):
    """Credential rejection or malformed token response."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(FireboltError):
    """Transport-level failure (DNS, TLS, connection reset, timeout)."""
    pass


class QueryError(FireboltError):
    """Query rejected by the engine, or a missing column lookup."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SerializationError(FireboltError):
    """Value decoding or response-body parsing errors."""
    pass


class ConfigurationError(FireboltError):
    """Missing or invalid client configuration."""
    pass


class HeaderParsingError(FireboltError):
    """Malformed session-update metadata in a server response."""
    pass


class UnknownError(FireboltError):
    """Failures that fit none of the other categories."""
    pass


ColumnRef = Union[str, int]

_NULLABILITY_SUFFIXES = (" not null", " null")
PRECISION_SCALE = re.compile(r"\(\s*(\d+)\s*,\s*(\d+)\s*\)")


def strip_nullability(type_tag: str) -> str:
    """Lower-case a type tag and drop its trailing nullability marker."""
    tag = type_tag.strip().lower()
    for suffix in _NULLABILITY_SUFFIXES:
        if tag.endswith(suffix):
            return tag[: -len(suffix)].rstrip()
    return tag


def normalize_type_tag(type_tag: str) -> str:
    """
    Reduce a server type tag to its family name.

    Example:
        >>> normalize_type_tag("Decimal(10, 3) null")
        'decimal'
        >>> normalize_type_tag("array(int null)")
        'array'
    """
    return strip_nullability(type_tag).split("(", 1)[0].strip()


@dataclass(frozen=True)
class Column:
    """A result column as reported by the engine."""
    name: str
    type_tag: str
    position: int

    @property
    def family(self) -> str:
        return normalize_type_tag(self.type_tag)

    @property
    def nullable(self) -> bool:
        tag = self.type_tag.strip().lower()
        return tag.endswith(" null") and not tag.endswith(" not null")

    @property
    def precision(self) -> Optional[int]:
        match = PRECISION_SCALE.search(self.type_tag)
        return int(match.group(1)) if match else None

    @property
    def scale(self) -> Optional[int]:
        match = PRECISION_SCALE.search(self.type_tag)
        return int(match.group(2)) if match else None


class Row:
    """
    A single row of raw cell values.

    Values stay undecoded until read through get() or get_nullable().

    Example:
        value = row.get("x", int)
        maybe = row.get_nullable(0, str)
    """

    __slots__ = ("_values", "_columns")

    def __init__(self, values: List[Any], columns: List[Column]):
        self._values = values
        self._columns = columns

    def _resolve(self, column: ColumnRef) -> Column:
        if isinstance(column, int) and not isinstance(column, bool):
            if column < 0 or column >= len(self._columns):
                raise QueryError(f"Column index {column} out of bounds")
            return self._columns[column]
        for col in self._columns:
            if col.name == column:
                return col
        raise QueryError(f"Column '{column}' not found")

    def get(self, column: ColumnRef, target: Any) -> Any:
        """Decode a cell into the requested type; null cells are an error."""
        # Import here to avoid circular imports
        from .decoder import decode

        col = self._resolve(column)
        return decode(target, col.type_tag, self._values[col.position], column=col.name)

    def get_nullable(self, column: ColumnRef, target: Any) -> Any:
        """Decode a cell into the requested type, returning None for null cells."""
        from .decoder import decode_nullable

        col = self._resolve(column)
        return decode_nullable(target, col.type_tag, self._values[col.position], column=col.name)

    def __getitem__(self, column: ColumnRef) -> Any:
        return self._values[self._resolve(column).position]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_dict(self) -> Dict[str, Any]:
        """Raw values keyed by column name; the first column wins on duplicates."""
        data: Dict[str, Any] = {}
        for col in self._columns:
            data.setdefault(col.name, self._values[col.position])
        return data

    def __repr__(self) -> str:
        return f"Row({self._values})"


@dataclass
class ResultSet:
    """Result of a query execution."""
    columns: List[Column] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)
    header_error: Optional[HeaderParsingError] = None

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> Row:
        return self.rows[index]

    def column(self, name: str) -> Column:
        """Look up a column by name, first match in declaration order."""
        for col in self.columns:
            if col.name == name:
                return col
        raise QueryError(f"Column '{name}' not found")

    def to_dicts(self) -> List[Dict[str, Any]]:
        """Convert all rows to dictionaries of raw values."""
        return [row.to_dict() for row in self.rows]

    def to_dataframe(self):
        """Convert to pandas DataFrame (requires pandas)."""
        try:
            import pandas as pd
        except ImportError:
            raise ImportError("pandas is required for to_dataframe()")
        return pd.DataFrame(
            [list(row) for row in self.rows],
            columns=[col.name for col in self.columns],
        )


def extract_error_message(body: str) -> str:
    """Pull a human-readable message out of a server error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()

    if isinstance(data, dict):
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            descriptions = [
                str(e.get("description", e)) if isinstance(e, dict) else str(e)
                for e in errors
            ]
            return "; ".join(descriptions)
        for key in ("message", "error", "error_description"):
            if isinstance(data.get(key), str):
                return data[key]
    return body.strip()


def parse_response(body: str) -> ResultSet:
    """
    Build a ResultSet from a JSON_Compact response body.

    Statements without output (SET, USE, DDL) return an empty body and
    produce an empty result.
    """
    if not body.strip():
        return ResultSet()

    try:
        data = json.loads(body)
    except ValueError as e:
        raise SerializationError(f"Failed to parse JSON: {e}") from e

    if not isinstance(data, dict):
        raise SerializationError("Response body is not a JSON object")

    if data.get("errors"):
        raise QueryError(extract_error_message(body))

    meta = data.get("meta")
    rows = data.get("data")
    if not isinstance(meta, list):
        raise SerializationError("Missing or invalid 'meta' field in response")
    if not isinstance(rows, list):
        raise SerializationError("Missing or invalid 'data' field in response")

    columns: List[Column] = []
    for position, entry in enumerate(meta):
        if not isinstance(entry, dict):
            raise SerializationError(f"Invalid column description at position {position}")
        name, type_tag = entry.get("name"), entry.get("type")
        if not isinstance(name, str) or not isinstance(type_tag, str):
            raise SerializationError(f"Column at position {position} lacks a name or type")
        columns.append(Column(name=name, type_tag=type_tag, position=position))

    result_rows: List[Row] = []
    for index, values in enumerate(rows):
        if not isinstance(values, list):
            raise SerializationError(f"Row {index} is not an array")
        if len(values) != len(columns):
            raise SerializationError(
                f"Row {index} has {len(values)} values, expected {len(columns)}"
            )
        result_rows.append(Row(values, columns))

    statistics = data.get("statistics")
    return ResultSet(
        columns=columns,
        rows=result_rows,
        statistics=statistics if isinstance(statistics, dict) else {},
    )
