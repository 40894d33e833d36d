"""Render property values as text and encode command-line values into bytes."""

from __future__ import annotations

import re
from typing import Iterable

_VALID_SIZES = (-1, 1, 2, 4)
_INTEGER_TYPES = "diuxo"

_SCAN_PATTERNS = {
    "d": re.compile(r"\s*([+-]?[0-9]+)"),
    "u": re.compile(r"\s*([+-]?[0-9]+)"),
    "i": re.compile(r"\s*([+-]?(?:0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*))"),
    "x": re.compile(r"\s*([+-]?(?:0[xX])?[0-9a-fA-F]+)"),
    "o": re.compile(r"\s*([+-]?[0-7]+)"),
}


class ValueFormatError(ValueError):
    """Raised when a value does not fit the selected type or size."""


def _check_type(type_char: str | None, size: int) -> str | None:
    if size not in _VALID_SIZES:
        raise ValueError(f"invalid data size {size}")
    if not type_char:
        return None
    if type_char != "s" and type_char not in _INTEGER_TYPES:
        raise ValueError(f"invalid data type {type_char!r}")
    return type_char


def _is_printable_string(data: bytes) -> bool:
    """True if data is one or more non-empty printable strings, NUL-terminated."""
    if not data or data[-1] != 0:
        return False
    return all(
        segment and all(0x20 <= byte < 0x7F or byte in b"\t\n\r\v\f" for byte in segment)
        for segment in data[:-1].split(b"\0")
    )


def _format_int(value: int, size: int, type_char: str) -> str:
    if size == 4 and value & 0x80000000:
        signed = value - (1 << 32)
    else:
        signed = value
    if type_char in "di":
        return str(signed)
    unsigned = signed & 0xFFFFFFFF
    if type_char == "u":
        return str(unsigned)
    if type_char == "x":
        return f"{unsigned:x}"
    return f"{unsigned:o}"


def show_data(data: bytes, type_char: str | None = None, size: int = -1) -> str:
    """Render a property value as text.

    With no type the value is shown as strings if it looks like strings,
    otherwise as numbers; with no size, cells are used when the length is
    a multiple of four and bytes otherwise.
    """
    type_char = _check_type(type_char, size)
    data = bytes(data)
    if not data:
        return ""

    if type_char == "s" or (type_char is None and _is_printable_string(data)):
        if data[-1] != 0:
            raise ValueFormatError("Unterminated string")
        return " ".join(
            part.decode("utf-8", errors="replace") for part in data[:-1].split(b"\0")
        )

    if size == -1:
        size = 4 if len(data) % 4 == 0 else 1
    elif len(data) % size:
        raise ValueFormatError(
            "Property length must be a multiple of selected data size"
        )
    fmt = type_char or "d"
    return " ".join(
        _format_int(int.from_bytes(data[i:i + size], "big"), size, fmt)
        for i in range(0, len(data), size)
    )


def _scan_int(text: str, type_char: str) -> int:
    match = _SCAN_PATTERNS[type_char].match(text)
    if match is None:
        raise ValueFormatError(f"cannot read {text!r} as a number")
    token = match.group(1)
    sign = -1 if token.startswith("-") else 1
    digits = token.lstrip("+-")
    if type_char == "x":
        value = int(digits, 16)
    elif type_char == "o":
        value = int(digits, 8)
    elif type_char == "i":
        if digits[:2].lower() == "0x":
            value = int(digits, 16)
        elif digits.startswith("0"):
            value = int(digits, 8)
        else:
            value = int(digits)
    else:
        value = int(digits)
    return sign * value


def encode_value(
    args: Iterable[str], type_char: str | None = None, size: int = -1
) -> bytes:
    """Join command-line arguments into one big-endian property value.

    Strings are stored NUL-terminated; numbers take the selected size,
    four bytes by default.
    """
    type_char = _check_type(type_char, size)
    out = bytearray()
    for arg in args:
        if type_char == "s":
            out += arg.encode("utf-8") + b"\0"
            continue
        width = 4 if size == -1 else size
        value = _scan_int(arg, type_char or "d")
        out += (value & ((1 << (8 * width)) - 1)).to_bytes(width, "big")
    return bytes(out)