"""Low-level dump of a flattened device tree blob."""

from __future__ import annotations

import argparse
import struct
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

FDT_MAGIC = 0xD00DFEED
FDT_BEGIN_NODE = 0x1
FDT_END_NODE = 0x2
FDT_PROP = 0x3
FDT_NOP = 0x4
FDT_END = 0x9

MAX_VERSION = 17
HEADER_SIZE = 40
_MAGIC_BYTES = FDT_MAGIC.to_bytes(4, "big")
_HEADER = struct.Struct(">10I")
_RESERVE = struct.Struct(">QQ")
_SHIFT = 4

_TAG_NAMES = {
    FDT_BEGIN_NODE: "FDT_BEGIN_NODE",
    FDT_END_NODE: "FDT_END_NODE",
    FDT_PROP: "FDT_PROP",
    FDT_NOP: "FDT_NOP",
    FDT_END: "FDT_END",
}

_BANNER = (
    "\n"
    "**** fdtdump is a low-level debugging tool, not meant for general use.\n"
    "**** If you want to decompile a dtb, you probably want\n"
    "****     dtc -I dtb -O dts <filename>\n\n"
)


@dataclass(frozen=True)
class FdtHeader:
    """The fixed header at the start of a blob."""

    magic: int
    totalsize: int
    off_dt_struct: int
    off_dt_strings: int
    off_mem_rsvmap: int
    version: int
    last_comp_version: int
    boot_cpuid_phys: int
    size_dt_strings: int
    size_dt_struct: int

    @classmethod
    def parse(cls, blob: bytes) -> FdtHeader:
        """Read the header; ValueError if the blob is too short."""
        if len(blob) < HEADER_SIZE:
            raise ValueError("blob too short for an fdt header")
        return cls(*_HEADER.unpack_from(blob, 0))


def valid_header(blob: bytes) -> bool:
    """True if the blob starts with a plausible header for its length."""
    length = len(blob)
    if length < HEADER_SIZE:
        return False
    hdr = FdtHeader.parse(blob)
    return not (
        hdr.magic != FDT_MAGIC
        or hdr.version > MAX_VERSION
        or hdr.last_comp_version > MAX_VERSION
        or hdr.totalsize >= length
        or hdr.off_dt_struct >= length
        or hdr.off_dt_strings >= length
    )


def _candidates(blob: bytes) -> Iterator[tuple[int, bool]]:
    """Yield each offset holding the magic, with whether its header is valid."""
    pos = 0
    while len(blob) - pos >= 4:
        found = blob.find(_MAGIC_BYTES[:1], pos, len(blob) - 4)
        if found < 0:
            return
        if blob[found:found + 4] == _MAGIC_BYTES:
            yield found, valid_header(blob[found:])
        pos = found + 1


def find_embedded(blob: bytes) -> int:
    """Offset of the first valid blob embedded in a larger buffer."""
    for offset, valid in _candidates(blob):
        if valid:
            return offset
    raise ValueError("could not locate fdt magic")


def tag_name(tag: int) -> str:
    """Symbolic name of a structure block tag."""
    return _TAG_NAMES.get(tag, "FDT_???")


def _alt_hex(value: int) -> str:
    return "0" if value == 0 else f"{value:#x}"


def _align(offset: int, alignment: int) -> int:
    return (offset + alignment - 1) & ~(alignment - 1)


def _cell(blob: bytes, offset: int) -> tuple[int, int]:
    if offset + 4 > len(blob):
        raise ValueError(f"structure block truncated at offset {offset:#x}")
    return int.from_bytes(blob[offset:offset + 4], "big"), offset + 4


def _cstring(blob: bytes, offset: int) -> str:
    end = blob.find(b"\0", offset)
    if end < 0 or offset > len(blob):
        raise ValueError(f"unterminated string at offset {offset:#x}")
    return blob[offset:end].decode("utf-8", errors="replace")


def _is_printable_string(data: bytes) -> bool:
    if not data or data[-1] != 0:
        return False
    return all(
        segment and all(0x20 <= byte < 0x7F for byte in segment)
        for segment in data[:-1].split(b"\0")
    )


def _format_value(data: bytes) -> str:
    if not data:
        return ""
    if _is_printable_string(data):
        strings = data[:-1].decode("ascii").split("\0")
        return " = " + ", ".join(f'"{s}"' for s in strings)
    if len(data) % 4 == 0:
        cells = (f"0x{cell:08x}" for (cell,) in struct.iter_unpack(">I", data))
        return " = <" + " ".join(cells) + ">"
    return " = [" + " ".join(f"{byte:02x}" for byte in data) + "]"


def _reserve_entries(blob: bytes, offset: int) -> Iterator[tuple[int, int]]:
    while True:
        if offset + _RESERVE.size > len(blob):
            raise ValueError("memory reservation map truncated")
        address, size = _RESERVE.unpack_from(blob, offset)
        if address == 0 and size == 0:
            return
        yield address, size
        offset += _RESERVE.size


def dump_blob(blob: bytes, debug: bool = False) -> str:
    """Render a blob as annotated source text.

    An unknown tag is reported on stderr and ends the dump.
    """
    hdr = FdtHeader.parse(blob)
    out: list[str] = []
    write = out.append

    write("/dts-v1/;\n")
    write(f"// magic:\t\t0x{hdr.magic:x}\n")
    write(f"// totalsize:\t\t0x{hdr.totalsize:x} ({hdr.totalsize})\n")
    write(f"// off_dt_struct:\t0x{hdr.off_dt_struct:x}\n")
    write(f"// off_dt_strings:\t0x{hdr.off_dt_strings:x}\n")
    write(f"// off_mem_rsvmap:\t0x{hdr.off_mem_rsvmap:x}\n")
    write(f"// version:\t\t{hdr.version}\n")
    write(f"// last_comp_version:\t{hdr.last_comp_version}\n")
    if hdr.version >= 2:
        write(f"// boot_cpuid_phys:\t0x{hdr.boot_cpuid_phys:x}\n")
    if hdr.version >= 3:
        write(f"// size_dt_strings:\t0x{hdr.size_dt_strings:x}\n")
    if hdr.version >= 17:
        write(f"// size_dt_struct:\t0x{hdr.size_dt_struct:x}\n")
    write("\n")

    for address, size in _reserve_entries(blob, hdr.off_mem_rsvmap):
        write(f"/memreserve/ {_alt_hex(address)} {_alt_hex(size)};\n")

    depth = 0
    p = hdr.off_dt_struct
    while True:
        tag, p = _cell(blob, p)
        if tag == FDT_END:
            break
        if debug:
            write(f"// {p - 4:04x}: tag: 0x{tag:08x} ({tag_name(tag)})\n")
        indent = " " * max(0, depth * _SHIFT)

        if tag == FDT_BEGIN_NODE:
            name = _cstring(blob, p)
            p = _align(p + len(name.encode("utf-8", errors="replace")) + 1, 4)
            p = _align(blob.find(b"\0", p - 4 if p >= 4 else 0) + 1, 4) if False else p
            write(f"{indent}{name or '/'} {{\n")
            depth += 1
            continue
        if tag == FDT_END_NODE:
            depth -= 1
            write(" " * max(0, depth * _SHIFT) + "};\n")
            continue
        if tag == FDT_NOP:
            write(f"{indent}// [NOP]\n")
            continue
        if tag != FDT_PROP:
            print(f"{indent} ** Unknown tag 0x{tag:08x}", file=sys.stderr)
            break

        size, p = _cell(blob, p)
        nameoff, p = _cell(blob, p)
        name_at = hdr.off_dt_strings + nameoff
        name = _cstring(blob, name_at)
        if hdr.version < 16 and size >= 8:
            p = _align(p, 8)
        value_at = p
        if value_at + size > len(blob):
            raise ValueError(f"property {name!r} runs past the end of the blob")
        p = _align(p + size, 4)
        if debug:
            write(f"// {name_at:04x}: string: {name}\n")
            write(f"// {value_at:04x}: value\n")
        write(f"{indent}{name}{_format_value(blob[value_at:value_at + size])};\n")
    return "".join(out)


def main(argv: Sequence[str] | None = None) -> int:
    """Dump a blob file to standard output."""
    sys.stderr.write(_BANNER)
    parser = argparse.ArgumentParser(prog="fdtdump", usage="fdtdump [options] <file>")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Dump debug information while decoding the file")
    parser.add_argument("-s", "--scan", action="store_true",
                        help="Scan for an embedded fdt in file")
    parser.add_argument("-V", "--version", action="version",
                        version="Version: DTC 1.4.4", help="Print version and exit")
    parser.add_argument("file", nargs="?")
    args = parser.parse_args(list(sys.argv[1:] if argv is None else argv))
    if args.file is None:
        parser.error("missing input filename")

    try:
        blob = Path(args.file).read_bytes()
    except OSError:
        print(f"could not read: {args.file}", file=sys.stderr)
        return 1

    if args.scan:
        offset = None
        for candidate, valid in _candidates(blob):
            if valid:
                offset = candidate
                break
            if args.debug:
                print(f"{args.file}: skipping fdt magic at offset {_alt_hex(candidate)}")
        if offset is None:
            print(f"{args.file}: could not locate fdt magic", file=sys.stderr)
            return 1
        print(f"{args.file}: found fdt at offset {_alt_hex(offset)}")
        blob = blob[offset:]
    elif not valid_header(blob):
        print(f"{args.file}: header is not valid", file=sys.stderr)
        return 1

    try:
        sys.stdout.write(dump_blob(blob, args.debug))
    except ValueError as exc:
        print(f"{args.file}: {exc}", file=sys.stderr)
        return 1
    return 0