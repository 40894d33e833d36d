"""Tree checks: the check framework and the structural and reference checks."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable

from devtree.data import Marker, MarkerType
from devtree.tree import DTInfo, DtsFlags, Node, PhandleFormat, Property

LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = LOWERCASE.upper()
DIGITS = "0123456789"
PROPNODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARS_STRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"

_UNRESOLVED = 0xFFFFFFFF


class CheckStatus(enum.Enum):
    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


class CheckError(Exception):
    """Raised when checks cannot run or the tree has errors."""


CheckFn = Callable[["Check", DTInfo, Node, int], None]


@dataclass(eq=False)
class Check:
    """A named test applied to every node of a tree.

    A check reports as a warning, as an error, or not at all, and runs
    only after the checks it depends on have passed.
    """

    name: str
    fn: CheckFn | None = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: list[Check] = field(default_factory=list)
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False
    messages: list[str] = field(default_factory=list)

    def _report(self, dti: DTInfo, quiet: int, message: str) -> None:
        self.messages.append(message)
        if (self.warn and quiet < 1) or (self.error and quiet < 2):
            outname = "<stdout>" if dti.outname == "-" else dti.outname
            level = "ERROR" if self.error else "Warning"
            print(f"{outname}: {level} ({self.name}): {message}", file=sys.stderr)

    def fail(self, dti: DTInfo, quiet: int, message: str) -> None:
        """Mark the check as failed and report the message."""
        self.status = CheckStatus.FAILED
        self._report(dti, quiet, message)

    def run(self, dti: DTInfo, quiet: int = 0) -> bool:
        """Run the check and its prerequisites; True if an error resulted."""
        if self.inprogress:
            raise CheckError(f"check {self.name!r} depends on itself")
        error = False
        try:
            if self.status is CheckStatus.UNCHECKED:
                self.inprogress = True
                for prq in self.prereqs:
                    error = error or prq.run(dti, quiet)
                    if prq.status is not CheckStatus.PASSED:
                        self.status = CheckStatus.PREREQ
                        self._report(
                            dti, quiet, f"Failed prerequisite '{prq.name}'"
                        )
                if self.status is CheckStatus.UNCHECKED:
                    if self.fn is not None:
                        for node in dti.dt.walk():
                            self.fn(self, dti, node, quiet)
                    if self.status is CheckStatus.UNCHECKED:
                        self.status = CheckStatus.PASSED
        finally:
            self.inprogress = False
        if self.status is not CheckStatus.PASSED and self.error:
            error = True
        return error


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of characters drawn from allowed."""
    for index, char in enumerate(text):
        if char not in allowed:
            return index
    return len(text)


def _cstring(raw: bytes | bytearray) -> str:
    return bytes(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def check_always_fail(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """Fail unconditionally; for testing the framework."""
    check.fail(dti, quiet, "always_fail check")


def check_is_string(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """The property named by check.data, if present, must be one string."""
    propname = check.data
    prop = node.get_property(propname)
    if prop is None:
        return
    if not prop.val.is_one_string():
        check.fail(
            dti, quiet, f'"{propname}" property in {node.fullpath} is not a string'
        )


def check_is_cell(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """The property named by check.data, if present, must be one cell."""
    propname = check.data
    prop = node.get_property(propname)
    if prop is None:
        return
    if len(prop.val) != 4:
        check.fail(
            dti,
            quiet,
            f'"{propname}" property in {node.fullpath} is not a single cell',
        )


def check_duplicate_node_names(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    siblings = node.childlist
    for index, child in enumerate(siblings):
        if child.deleted:
            continue
        for other in siblings[index + 1:]:
            if child.name == other.name:
                check.fail(dti, quiet, f"Duplicate node name {child.fullpath}")


def check_duplicate_property_names(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    props = node.proplist
    for index, prop in enumerate(props):
        if prop.deleted:
            continue
        for other in props[index + 1:]:
            if other.deleted:
                continue
            if prop.name == other.name:
                check.fail(
                    dti,
                    quiet,
                    f"Duplicate property name {prop.name} in {node.fullpath}",
                )


def check_node_name_chars(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    n = _span(node.name, check.data)
    if n < len(node.name):
        check.fail(
            dti, quiet, f"Bad character '{node.name[n]}' in node {node.fullpath}"
        )


def check_node_name_chars_strict(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    n = _span(node.name, check.data)
    if n < node.basenamelen:
        check.fail(
            dti,
            quiet,
            f"Character '{node.name[n]}' not recommended in node {node.fullpath}",
        )


def check_node_name_format(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    if "@" in node.unitname():
        check.fail(
            dti, quiet, f"Node {node.fullpath} has multiple '@' characters in name"
        )


def check_unit_address_vs_reg(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    unitname = node.unitname()
    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None
    if prop is not None:
        if not unitname:
            check.fail(
                dti,
                quiet,
                f"Node {node.fullpath} has a reg or ranges property, "
                "but no unit name",
            )
    elif unitname:
        check.fail(
            dti, quiet, f"Node {node.fullpath} has a unit name, but no reg property"
        )


def check_property_name_chars(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    for prop in node.properties():
        n = _span(prop.name, check.data)
        if n < len(prop.name):
            check.fail(
                dti,
                quiet,
                f"Bad character '{prop.name[n]}' in property name "
                f'"{prop.name}", node {node.fullpath}',
            )


def check_property_name_chars_strict(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    for prop in node.properties():
        name = prop.name
        n = _span(name, check.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' may only lead a name, not counting the vendor prefix.
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, check.data)
        if n < len(name):
            check.fail(
                dti,
                quiet,
                f"Character '{name[n]}' not recommended in property name "
                f'"{prop.name}", node {node.fullpath}',
            )


def _describe_label(node: Node, prop: Property | None, mark: Marker | None) -> str:
    text = "value of " if mark is not None else ""
    if prop is not None:
        text += f"'{prop.name}' in "
    return text + node.fullpath


def _check_duplicate_label(
    check: Check,
    dti: DTInfo,
    quiet: int,
    label: str,
    node: Node,
    prop: Property | None,
    mark: Marker | None,
) -> None:
    dt = dti.dt
    othernode = dt.get_node_by_label(label)
    otherprop: Property | None = None
    othermark: Marker | None = None
    if othernode is None:
        found = dt.get_property_by_label(label)
        if found is not None:
            othernode, otherprop = found
    if othernode is None:
        found_mark = dt.get_marker_label(label)
        if found_mark is not None:
            othernode, otherprop, othermark = found_mark
    if othernode is None:
        return
    if othernode is not node or otherprop is not prop or othermark is not mark:
        check.fail(
            dti,
            quiet,
            f"Duplicate label '{label}' on {_describe_label(node, prop, mark)}"
            f" and {_describe_label(othernode, otherprop, othermark)}",
        )


def check_duplicate_label_node(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    for lab in node.labels:
        if not lab.deleted:
            _check_duplicate_label(check, dti, quiet, lab.label, node, None, None)
    for prop in node.properties():
        for lab in prop.labels:
            if not lab.deleted:
                _check_duplicate_label(check, dti, quiet, lab.label, node, prop, None)
        for marker in prop.val.markers_of_type(MarkerType.LABEL):
            _check_duplicate_label(check, dti, quiet, marker.ref, node, prop, marker)


def _check_phandle_prop(
    check: Check, dti: DTInfo, node: Node, propname: str, quiet: int
) -> int:
    prop = node.get_property(propname)
    if prop is None:
        return 0
    if len(prop.val) != 4:
        check.fail(
            dti,
            quiet,
            f"{node.fullpath} has bad length ({len(prop.val)}) {prop.name} property",
        )
        return 0
    for marker in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
        if node is not dti.dt.get_node_by_ref(marker.ref):
            # Making a node's phandle equal to another node's is nonsense.
            check.fail(
                dti,
                quiet,
                f"{prop.name} in {node.fullpath} is a reference to another node",
            )
        # A self-reference asks for a phandle to be allocated later.
        return 0
    phandle = prop.cell()
    if phandle in (0, _UNRESOLVED):
        check.fail(
            dti,
            quiet,
            f"{node.fullpath} has bad value (0x{phandle:x}) in {prop.name} property",
        )
        return 0
    return phandle


def check_explicit_phandles(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    phandle = _check_phandle_prop(check, dti, node, "phandle", quiet)
    linux_phandle = _check_phandle_prop(check, dti, node, "linux,phandle", quiet)
    if not phandle and not linux_phandle:
        return
    if linux_phandle and phandle and phandle != linux_phandle:
        check.fail(
            dti,
            quiet,
            f"{node.fullpath} has mismatching 'phandle' and 'linux,phandle'"
            " properties",
        )
    if linux_phandle and not phandle:
        phandle = linux_phandle
    other = dti.dt.get_node_by_phandle(phandle)
    if other is not None and other is not node:
        check.fail(
            dti,
            quiet,
            f"{node.fullpath} has duplicated phandle 0x{phandle:x} "
            f"(seen before at {other.fullpath})",
        )
        return
    node.phandle = phandle


def check_name_properties(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """A "name" property must match the base name; a correct one is removed."""
    prop = next((p for p in node.proplist if p.name == "name"), None)
    if prop is None:
        return
    base = node.name[: node.basenamelen].encode("utf-8")
    value = bytes(prop.val)
    if len(value) != node.basenamelen + 1 or value[: node.basenamelen] != base:
        check.fail(
            dti,
            quiet,
            f'"name" property in {node.fullpath} is incorrect '
            f'("{_cstring(value)}" instead of base node name)',
        )
    else:
        node.proplist.remove(prop)


def fixup_phandle_references(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    """Fill phandle references with the target's phandle.

    check.data may hold the PhandleFormat used when allocating phandles.
    """
    dt = dti.dt
    fmt = check.data if isinstance(check.data, PhandleFormat) else PhandleFormat.EPAPR
    for prop in node.properties():
        for marker in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
            if marker.offset + 4 > len(prop.val):
                raise CheckError(
                    f"phandle reference past the end of {prop.name} in {node.fullpath}"
                )
            refnode = dt.get_node_by_ref(marker.ref)
            if refnode is None:
                if not dti.dtsflags & DtsFlags.PLUGIN:
                    check.fail(
                        dti,
                        quiet,
                        f'Reference to non-existent node or label "{marker.ref}"',
                    )
                else:
                    prop.val.val[marker.offset:marker.offset + 4] = (
                        _UNRESOLVED.to_bytes(4, "big")
                    )
                continue
            phandle = dt.get_node_phandle(refnode, fmt)
            prop.val.val[marker.offset:marker.offset + 4] = phandle.to_bytes(4, "big")


def fixup_path_references(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """Insert the target's full path, NUL-terminated, at each path reference."""
    dt = dti.dt
    for prop in node.properties():
        for marker in prop.val.markers_of_type(MarkerType.REF_PATH):
            refnode = dt.get_node_by_ref(marker.ref)
            if refnode is None:
                check.fail(
                    dti,
                    quiet,
                    f'Reference to non-existent node or label "{marker.ref}"',
                )
                continue
            prop.val.insert_at_marker(marker, refnode.fullpath.encode("utf-8") + b"\0")