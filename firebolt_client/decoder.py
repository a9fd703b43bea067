"""
Firebolt Value Decoder

Converts raw JSON cell values, tagged by the server-reported column type,
into caller-requested Python types.

Lookup is two-level: first by the requested type, then by the family of the
column's type tag (see normalize_type_tag). A pair with no entry in the table
is rejected rather than guessed.

Example:
    >>> decode(int, "int", 42)
    42
    >>> decode(Decimal, "decimal(10,3)", "123.456")
    Decimal('123.456')
    >>> decode_nullable(str, "text null", None) is None
    True

@version 0.1.0
@author Firebolt SDK Team
"""

from __future__ import annotations

import decimal
import re
import struct
from decimal import Decimal
from typing import Any, Callable, Dict, NewType, Optional

from .types import SerializationError, normalize_type_tag, PRECISION_SCALE

BigInt = NewType("BigInt", int)
Float32 = NewType("Float32", float)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

INTEGER_LITERAL = re.compile(r"^[+-]?\d+$", re.ASCII)
FIXED_POINT_LITERAL = re.compile(r"^[+-]?\d+(\.\d+)?$", re.ASCII)

Converter = Callable[[Any, str], Any]

_DECODERS: Dict[Any, Dict[str, Converter]] = {}


def _register(target: Any, *families: str) -> Callable[[Converter], Converter]:
    def wrap(fn: Converter) -> Converter:
        table = _DECODERS.setdefault(target, {})
        for family in families:
            table[family] = fn
        return fn
    return wrap


def type_name(target: Any) -> str:
    return getattr(target, "__name__", repr(target))


def _describe(column: Optional[str]) -> str:
    return f"column '{column}'" if column is not None else "value"


def _parse_integer(raw: str) -> int:
    literal = raw.strip()
    if not INTEGER_LITERAL.fullmatch(literal):
        raise ValueError(f"{raw!r} is not an integer literal")
    return int(literal)


# =========================================================================
# Converters
# =========================================================================

@_register(int, "int", "integer")
def _to_int32(raw: Any, type_tag: str) -> int:
    if isinstance(raw, bool):
        raise TypeError(f"expected an integer, got {raw!r}")
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError(f"{raw!r} is not an integer")
        raw = int(raw)
    value = _parse_integer(raw) if isinstance(raw, str) else int(raw)
    if value < INT32_MIN or value > INT32_MAX:
        raise ValueError(f"{value} is out of range for a 32-bit integer")
    return value


@_register(BigInt, "bigint", "long")
def _to_bigint(raw: Any, type_tag: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise TypeError(f"expected an integer or decimal string, got {raw!r}")
    return _parse_integer(raw) if isinstance(raw, str) else raw


def _to_double(raw: Any) -> float:
    # Non-finite values arrive as strings: "inf", "-inf", "nan"
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise TypeError(f"expected a number, got {raw!r}")
    return float(raw)


@_register(Float32, "float4", "float", "real")
def _to_float32(raw: Any, type_tag: str) -> float:
    return struct.unpack("f", struct.pack("f", _to_double(raw)))[0]


@_register(float, "double", "float8", "double precision")
def _to_float64(raw: Any, type_tag: str) -> float:
    return _to_double(raw)


@_register(Decimal, "decimal", "numeric")
def _to_decimal(raw: Any, type_tag: str) -> Decimal:
    if isinstance(raw, bool):
        raise TypeError(f"expected a fixed-point literal, got {raw!r}")
    if isinstance(raw, str):
        literal = raw.strip()
        if not FIXED_POINT_LITERAL.fullmatch(literal):
            raise ValueError(f"{raw!r} is not a fixed-point literal")
        value = Decimal(literal)
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        value = Decimal(repr(raw))
    else:
        raise TypeError(f"expected a fixed-point literal, got {raw!r}")

    if not value.is_finite():
        raise ValueError(f"{raw!r} is not a fixed-point literal")

    match = PRECISION_SCALE.search(type_tag)
    if match:
        scale = int(match.group(2))
        exponent = value.as_tuple().exponent
        if exponent < -scale:
            raise ValueError(f"{raw!r} has more than {scale} fractional digits")
        if exponent > -scale:
            with decimal.localcontext() as ctx:
                ctx.prec = max(ctx.prec, int(match.group(1)) + scale)
                value = value.quantize(Decimal(1).scaleb(-scale))
    return value


@_register(str, "text", "string")
def _to_text(raw: Any, type_tag: str) -> str:
    if not isinstance(raw, str):
        raise TypeError(f"expected a string, got {raw!r}")
    return raw


@_register(bool, "bool", "boolean")
def _to_bool(raw: Any, type_tag: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        literal = raw.strip().lower()
        if literal == "true":
            return True
        if literal == "false":
            return False
    raise ValueError(f"{raw!r} is not a boolean literal")


@_register(
    object,
    "date", "pgdate", "timestamp", "timestampntz", "timestamptz",
    "array", "struct", "geography",
)
def _to_structured(raw: Any, type_tag: str) -> Any:
    return raw


@_register(bytes, "bytea")
def _to_bytes(raw: Any, type_tag: str) -> bytes:
    if not isinstance(raw, str):
        raise TypeError(f"expected an encoded byte string, got {raw!r}")
    if raw.startswith("\\x"):
        return bytes.fromhex(raw[2:])
    return raw.encode("utf-8")


# =========================================================================
# Entry points
# =========================================================================

def supports(target: Any, type_tag: str) -> bool:
    """Whether the (requested type, type tag) pair has a converter."""
    return normalize_type_tag(type_tag) in _DECODERS.get(target, {})


def _convert(target: Any, type_tag: str, raw: Any, column: Optional[str]) -> Any:
    converter = _DECODERS.get(target, {}).get(normalize_type_tag(type_tag))
    if converter is None:
        raise SerializationError(
            f"Cannot decode {_describe(column)} of type '{type_tag}' "
            f"as {type_name(target)}"
        )
    try:
        return converter(raw, type_tag)
    except (ValueError, TypeError, ArithmeticError, struct.error) as e:
        raise SerializationError(
            f"Failed to decode {_describe(column)} of type '{type_tag}' "
            f"as {type_name(target)}: {e}"
        ) from e


def decode(target: Any, type_tag: str, raw: Any, column: Optional[str] = None) -> Any:
    """
    Decode a raw cell into the requested type.

    Args:
        target: Requested type (int, BigInt, Float32, float, Decimal, str,
            bool, object or bytes)
        type_tag: Server-reported column type
        raw: Raw JSON value of the cell
        column: Column name used in error messages

    Raises:
        SerializationError: null cell, unsupported pair, or a value the
            converter rejects
    """
    if raw is None:
        raise SerializationError(
            f"Cannot decode null {_describe(column)} as non-nullable "
            f"{type_name(target)}"
        )
    return _convert(target, type_tag, raw, column)


def decode_nullable(
    target: Any,
    type_tag: str,
    raw: Any,
    column: Optional[str] = None,
) -> Optional[Any]:
    """Like decode(), but a null cell yields None without conversion."""
    if raw is None:
        return None
    return _convert(target, type_tag, raw, column)
