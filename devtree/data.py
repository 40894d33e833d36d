"""Property values: byte strings carrying reference and label markers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

_CHUNK_SIZE = 4096
_INTEGER_SIZES = (8, 16, 32, 64)


class MarkerType(enum.Enum):
    """What a marker inside a value stands for."""

    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()


@dataclass(eq=False)
class Marker:
    """A reference or label attached at a byte offset of a value."""

    type: MarkerType
    offset: int
    ref: str | None = None


@dataclass
class Data:
    """A growable big-endian byte string with an ordered list of markers.

    The append methods change the value in place and return it, so calls
    can be chained.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    def append(self, payload: bytes) -> Data:
        """Append raw bytes."""
        self.val += payload
        return self

    def insert_at_marker(self, marker: Marker, payload: bytes) -> Data:
        """Insert bytes at a marker's offset, moving the markers after it."""
        index = next(
            (i for i, m in enumerate(self.markers) if m is marker), None
        )
        if index is None:
            raise ValueError("marker does not belong to this value")
        if not 0 <= marker.offset <= len(self.val):
            raise ValueError(
                f"marker offset {marker.offset} outside value of length {len(self.val)}"
            )
        self.val[marker.offset:marker.offset] = payload
        for later in self.markers[index + 1:]:
            later.offset += len(payload)
        return self

    def merge(self, other: Data) -> Data:
        """Append another value, taking over its markers."""
        shift = len(self.val)
        self.val += other.val
        for marker in other.markers:
            marker.offset += shift
            self.markers.append(marker)
        other.markers = []
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append an unsigned big-endian integer of 8, 16, 32 or 64 bits."""
        if bits not in _INTEGER_SIZES:
            raise ValueError(f"Invalid literal size ({bits})")
        value &= (1 << bits) - 1
        return self.append(value.to_bytes(bits // 8, "big"))

    def append_reserve_entry(self, address: int, size: int) -> Data:
        """Append a memory reservation entry: 64-bit address, 64-bit size."""
        return self.append_integer(address, 64).append_integer(size, 64)

    def append_cell(self, word: int) -> Data:
        """Append a 32-bit cell."""
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> Data:
        """Append a 64-bit address."""
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> Data:
        """Append a single byte."""
        return self.append_integer(byte, 8)

    def append_zeroes(self, length: int) -> Data:
        """Append the given number of zero bytes."""
        if length < 0:
            raise ValueError("length must not be negative")
        return self.append(bytes(length))

    def append_align(self, align: int) -> Data:
        """Pad with zeroes up to a multiple of a power-of-two alignment."""
        if align <= 0 or align & (align - 1):
            raise ValueError(f"alignment {align} is not a power of 2")
        newlen = (len(self.val) + align - 1) & ~(align - 1)
        return self.append_zeroes(newlen - len(self.val))

    def add_marker(self, marker_type: MarkerType, ref: str | None) -> Data:
        """Attach a marker at the current end of the value."""
        self.markers.append(Marker(marker_type, len(self.val), ref))
        return self

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]

    @classmethod
    def from_file(cls, stream: BinaryIO, maxlen: int | None = None) -> Data:
        """Read a binary stream, up to maxlen bytes (None or -1: all of it)."""
        unlimited = maxlen is None or maxlen < 0
        data = cls()
        while unlimited or len(data) < maxlen:
            want = _CHUNK_SIZE if unlimited else maxlen - len(data)
            chunk = stream.read(want)
            if not chunk:
                break
            data.val += chunk
        return data

    def markers_of_type(self, marker_type: MarkerType) -> Iterator[Marker]:
        """Yield the markers of one type, in order."""
        return (m for m in self.markers if m.type is marker_type)