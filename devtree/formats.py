"""Command-line options of the compiler front end and input/output format guessing."""

from __future__ import annotations

import argparse
import os
import re
import stat
import sys
from dataclasses import dataclass, field
from typing import Sequence

from devtree.tree import PhandleFormat

DTC_VERSION = "DTC 1.4.4"
DEFAULT_FDT_VERSION = 17
FDT_MAGIC = 0xD00DFEED

_NUMBER = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")

_PHANDLE_FORMATS = {
    "legacy": PhandleFormat.LEGACY,
    "epapr": PhandleFormat.EPAPR,
    "both": PhandleFormat.BOTH,
}


def _strtol(text: str) -> int:
    """Parse the leading integer of text with C base-0 rules; 0 if there is none."""
    match = _NUMBER.match(text)
    if match is None:
        return 0
    sign, digits = match.groups()
    if digits[:2].lower() == "0x":
        value = int(digits, 16)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits)
    return -value if sign == "-" else value


def is_power_of_2(value: int) -> bool:
    """True for a positive power of two."""
    return value > 0 and value & (value - 1) == 0


def guess_type_by_name(fname: str, fallback: str | None) -> str | None:
    """Guess "dts" or "dtb" from the file extension, else return fallback."""
    dot = fname.rfind(".")
    if dot < 0:
        return fallback
    suffix = fname[dot:].lower()
    if suffix == ".dts":
        return "dts"
    if suffix == ".dtb":
        return "dtb"
    return fallback


def guess_input_format(fname: str, fallback: str) -> str:
    """Guess an input format: "fs" for a directory, "dtb" by magic, else by name."""
    try:
        mode = os.stat(fname).st_mode
    except OSError:
        return fallback
    if stat.S_ISDIR(mode):
        return "fs"
    if not stat.S_ISREG(mode):
        return fallback
    try:
        with open(fname, "rb") as stream:
            magic = stream.read(4)
    except OSError:
        return fallback
    if len(magic) != 4:
        return fallback
    if int.from_bytes(magic, "big") == FDT_MAGIC:
        return "dtb"
    result = guess_type_by_name(fname, fallback)
    return fallback if result is None else result


@dataclass
class DtcOptions:
    """Everything the compiler's command line selects."""

    input: str = "-"
    inform: str | None = None
    outform: str | None = None
    outname: str = "-"
    depname: str | None = None
    outversion: int = DEFAULT_FDT_VERSION
    reservenum: int = 0
    minsize: int = 0
    padsize: int = 0
    alignsize: int = 0
    force: bool = False
    sort: bool = False
    quiet: int = 0
    boot_cpuid: int | None = None
    include_paths: list[str] = field(default_factory=list)
    phandle_format: PhandleFormat = PhandleFormat.EPAPR
    check_options: list[tuple[bool, bool, str]] = field(default_factory=list)
    generate_symbols: bool = False
    auto_label_aliases: bool = False


class _CheckOption(argparse.Action):
    """Record -W/-E options in command-line order as (warn, error, name)."""

    def __call__(self, parser, namespace, values, option_string=None):
        entries = list(getattr(namespace, self.dest) or [])
        warn = self.const == "warn"
        entries.append((warn, not warn, values))
        setattr(namespace, self.dest, entries)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dtc", usage="dtc [options] <input file>"
    )
    parser.add_argument("-q", "--quiet", action="count", default=0,
                        help="Quiet: -q suppress warnings, -qq errors, -qqq all")
    parser.add_argument("-I", "--in-format", dest="inform",
                        help="Input formats are: dts, dtb, fs")
    parser.add_argument("-o", "--out", dest="outname", default="-",
                        help="Output file")
    parser.add_argument("-O", "--out-format", dest="outform",
                        help="Output formats are: dts, dtb, asm")
    parser.add_argument("-V", "--out-version", dest="outversion",
                        help=f"Blob version to produce, defaults to {DEFAULT_FDT_VERSION}")
    parser.add_argument("-d", "--out-dependency", dest="depname",
                        help="Output dependency file")
    parser.add_argument("-R", "--reserve", dest="reservenum",
                        help="Make space for <number> reserve map entries")
    parser.add_argument("-S", "--space", dest="minsize",
                        help="Make the blob at least <bytes> long")
    parser.add_argument("-p", "--pad", dest="padsize",
                        help="Add padding to the blob of <bytes> long")
    parser.add_argument("-a", "--align", dest="alignsize",
                        help="Make the blob align to the <bytes>")
    parser.add_argument("-b", "--boot-cpu", dest="boot_cpu",
                        help="Set the physical boot cpu")
    parser.add_argument("-f", "--force", action="store_true",
                        help="Try to produce output even if the input tree has errors")
    parser.add_argument("-i", "--include", dest="include_paths", action="append",
                        default=[], help="Add a path to search for include files")
    parser.add_argument("-s", "--sort", action="store_true",
                        help="Sort nodes and properties before outputting")
    parser.add_argument("-H", "--phandle", dest="phandle",
                        help="Valid phandle formats are: legacy, epapr, both")
    parser.add_argument("-W", "--warning", dest="check_options", action=_CheckOption,
                        const="warn", help='Enable/disable warnings (prefix with "no-")')
    parser.add_argument("-E", "--error", dest="check_options", action=_CheckOption,
                        const="error", help='Enable/disable errors (prefix with "no-")')
    parser.add_argument("-@", "--symbols", dest="symbols", action="store_true",
                        help="Enable generation of symbols")
    parser.add_argument("-A", "--auto-alias", dest="auto_alias", action="store_true",
                        help="Enable auto-alias of labels")
    parser.add_argument("-v", "--version", action="version",
                        version=f"Version: {DTC_VERSION}",
                        help="Print version and exit")
    parser.add_argument("files", nargs="*", help=argparse.SUPPRESS)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> DtcOptions:
    """Parse a compiler command line and settle the input and output formats.

    Raises ValueError for invalid option values; usage errors exit.
    """
    parser = _build_parser()
    ns = parser.parse_args(list(sys.argv[1:] if argv is None else argv))

    opts = DtcOptions(
        outname=ns.outname,
        inform=ns.inform,
        outform=ns.outform,
        depname=ns.depname,
        force=ns.force,
        sort=ns.sort,
        quiet=ns.quiet,
        include_paths=list(ns.include_paths),
        check_options=list(ns.check_options or []),
        generate_symbols=ns.symbols,
        auto_label_aliases=ns.auto_alias,
    )
    if ns.outversion is not None:
        opts.outversion = _strtol(ns.outversion)
    if ns.reservenum is not None:
        opts.reservenum = _strtol(ns.reservenum)
    if ns.minsize is not None:
        opts.minsize = _strtol(ns.minsize)
    if ns.padsize is not None:
        opts.padsize = _strtol(ns.padsize)
    if ns.alignsize is not None:
        opts.alignsize = _strtol(ns.alignsize)
        if not is_power_of_2(opts.alignsize):
            raise ValueError(f'Invalid argument "{opts.alignsize}" to -a option')
    if ns.boot_cpu is not None:
        cpuid = _strtol(ns.boot_cpu)
        opts.boot_cpuid = None if cpuid == -1 else cpuid
    if ns.phandle is not None:
        try:
            opts.phandle_format = _PHANDLE_FORMATS[ns.phandle]
        except KeyError:
            raise ValueError(f'Invalid argument "{ns.phandle}" to -H option') from None

    if len(ns.files) > 1:
        parser.error("missing files")
    opts.input = ns.files[0] if ns.files else "-"

    if opts.minsize and opts.padsize:
        raise ValueError("Can't set both -p and -S")

    if opts.inform is None:
        opts.inform = guess_input_format(opts.input, "dts")
    if opts.outform is None:
        opts.outform = guess_type_by_name(opts.outname, None)
        if opts.outform is None:
            opts.outform = "dtb" if opts.inform == "dts" else "dts"
    return opts