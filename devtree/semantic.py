"""Semantic and style checks, and the registry that runs every check."""

from __future__ import annotations

import string
import struct
import sys
from typing import Iterator

from devtree.structural import (
    PROPNODECHARS,
    PROPNODECHARS_STRICT,
    Check,
    CheckError,
    CheckStatus,
    check_always_fail,
    check_duplicate_label_node,
    check_duplicate_node_names,
    check_duplicate_property_names,
    check_explicit_phandles,
    check_is_cell,
    check_is_string,
    check_name_properties,
    check_node_name_chars,
    check_node_name_chars_strict,
    check_node_name_format,
    check_property_name_chars,
    check_property_name_chars_strict,
    check_unit_address_vs_reg,
    fixup_path_references,
    fixup_phandle_references,
)
from devtree.tree import DTInfo, Node, PhandleFormat, Property

PCI_BUS = "PCI"
SIMPLE_BUS = "simple-bus"

_MASK64 = (1 << 64) - 1


def _addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _size_cells(node: Node) -> int:
    return 1 if node.size_cells == -1 else node.size_cells


def _words(prop: Property) -> list[int]:
    raw = bytes(prop.val)
    usable = len(raw) - len(raw) % 4
    return [word for (word,) in struct.iter_unpack(">I", raw[:usable])]


def _word(words: list[int], index: int) -> int:
    return words[index] if index < len(words) else 0


def _cstring(prop: Property) -> str:
    return bytes(prop.val).split(b"\0", 1)[0].decode("utf-8", errors="replace")


def fixup_addr_size_cells(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    """Record #address-cells and #size-cells on the node (-1 when absent)."""
    node.addr_cells = -1
    node.size_cells = -1
    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell()
    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell()


def check_reg_format(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if node.parent is None:
        check.fail(dti, quiet, 'Root node has a "reg" property')
        return
    if len(prop.val) == 0:
        check.fail(dti, quiet, f'"reg" property in {node.fullpath} is empty')
    addr_cells = _addr_cells(node.parent)
    size_cells = _size_cells(node.parent)
    entrylen = (addr_cells + size_cells) * 4
    if not entrylen or len(prop.val) % entrylen:
        check.fail(
            dti,
            quiet,
            f'"reg" property in {node.fullpath} has invalid length '
            f"({len(prop.val)} bytes) (#address-cells == {addr_cells}, "
            f"#size-cells == {size_cells})",
        )


def check_ranges_format(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    prop = node.get_property("ranges")
    if prop is None:
        return
    if node.parent is None:
        check.fail(dti, quiet, 'Root node has a "ranges" property')
        return
    p_addr_cells = _addr_cells(node.parent)
    p_size_cells = _size_cells(node.parent)
    c_addr_cells = _addr_cells(node)
    c_size_cells = _size_cells(node)
    entrylen = (p_addr_cells + c_addr_cells + c_size_cells) * 4
    length = len(prop.val)
    if length == 0:
        if p_addr_cells != c_addr_cells:
            check.fail(
                dti,
                quiet,
                f'{node.fullpath} has empty "ranges" property but its '
                f"#address-cells ({c_addr_cells}) differs from "
                f"{node.parent.fullpath} ({p_addr_cells})",
            )
        if p_size_cells != c_size_cells:
            check.fail(
                dti,
                quiet,
                f'{node.fullpath} has empty "ranges" property but its '
                f"#size-cells ({c_size_cells}) differs from "
                f"{node.parent.fullpath} ({p_size_cells})",
            )
    elif not entrylen or length % entrylen:
        check.fail(
            dti,
            quiet,
            f'"ranges" property in {node.fullpath} has invalid length '
            f"({length} bytes) (parent #address-cells == {p_addr_cells}, "
            f"child #address-cells == {c_addr_cells}, "
            f"#size-cells == {c_size_cells})",
        )


def check_pci_bridge(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    prop = node.get_property("device_type")
    if prop is None or _cstring(prop) != "pci":
        return
    node.bus = PCI_BUS
    base = node.name[: node.basenamelen]
    n = node.basenamelen
    if base != "pci"[:n] and base != "pcie"[:n]:
        check.fail(
            dti, quiet, f'Node {node.fullpath} node name is not "pci" or "pcie"'
        )
    if node.get_property("ranges") is None:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} missing ranges for PCI bridge (or not a bridge)",
        )
    if _addr_cells(node) != 3:
        check.fail(
            dti, quiet, f"Node {node.fullpath} incorrect #address-cells for PCI bridge"
        )
    if _size_cells(node) != 2:
        check.fail(
            dti, quiet, f"Node {node.fullpath} incorrect #size-cells for PCI bridge"
        )
    prop = node.get_property("bus-range")
    if prop is None:
        check.fail(dti, quiet, f"Node {node.fullpath} missing bus-range for PCI bridge")
        return
    if len(prop.val) != 8:
        check.fail(dti, quiet, f"Node {node.fullpath} bus-range must be 2 cells")
        return
    first, second = _words(prop)
    if first > second:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} bus-range 1st cell must be less than or "
            "equal to 2nd cell",
        )
    if second > 0xFF:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} bus-range maximum bus number must be less than 256",
        )


def check_pci_device_bus_num(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    if node.parent is None or node.parent.bus != PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return
    bus_num = (_word(_words(prop), 0) & 0x00FF0000) >> 16
    bus_range = node.parent.get_property("bus-range")
    if bus_range is None:
        min_bus = max_bus = 0
    else:
        # Both bounds come from the first cell.
        min_bus = max_bus = _word(_words(bus_range), 0)
    if bus_num < min_bus or bus_num > max_bus:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} PCI bus number {bus_num} out of range, "
            f"expected ({min_bus} - {max_bus})",
        )


def check_pci_device_reg(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    if node.parent is None or node.parent.bus != PCI_BUS:
        return
    unitname = node.unitname()
    prop = node.get_property("reg")
    if prop is None:
        check.fail(dti, quiet, f"Node {node.fullpath} missing PCI reg property")
        return
    words = _words(prop)
    if _word(words, 1) or _word(words, 2):
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} PCI reg config space address cells 2 and 3 "
            "must be 0",
        )
    reg = _word(words, 0)
    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8
    if reg & 0xFF000000:
        check.fail(
            dti, quiet, f"Node {node.fullpath} PCI reg address is not configuration space"
        )
    if reg & 0x000000FF:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} PCI reg config space address register "
            "number must be 0",
        )
    if func == 0 and unitname == f"{dev:x}":
        return
    unit_addr = f"{dev:x},{func:x}"
    if unitname == unit_addr:
        return
    check.fail(
        dti,
        quiet,
        f'Node {node.fullpath} PCI unit address format error, expected "{unit_addr}"',
    )


def node_is_compatible(node: Node, compat: str) -> bool:
    """True if one of the node's "compatible" strings equals compat."""
    prop = node.get_property("compatible")
    if prop is None:
        return False
    raw = bytes(prop.val)
    wanted = compat.encode("utf-8")
    start = 0
    while start < len(raw):
        remaining = len(raw) - start
        segment = raw[start:].split(b"\0", 1)[0]
        if segment == wanted[:remaining]:
            return True
        start += len(segment) + 1
    return False


def check_simple_bus_bridge(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    if node_is_compatible(node, "simple-bus"):
        node.bus = SIMPLE_BUS


def check_simple_bus_reg(check: Check, dti: DTInfo, node: Node, quiet: int) -> None:
    if node.parent is None or node.parent.bus != SIMPLE_BUS:
        return
    unitname = node.unitname()
    cells: list[int] | None = None
    prop = node.get_property("reg")
    if prop is not None:
        if len(prop.val):
            cells = _words(prop)
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # Skip over the child address.
            cells = _words(prop)[_addr_cells(node):]
    if cells is None:
        if node.parent.parent is not None and node.bus != SIMPLE_BUS:
            check.fail(
                dti, quiet, f"Node {node.fullpath} missing or empty reg/ranges property"
            )
        return
    reg = 0
    for index in range(_addr_cells(node.parent)):
        reg = ((reg << 32) | _word(cells, index)) & _MASK64
    unit_addr = f"{reg:x}"
    if unitname != unit_addr:
        check.fail(
            dti,
            quiet,
            f"Node {node.fullpath} simple-bus unit address format error, "
            f'expected "{unit_addr}"',
        )


def check_unit_address_format(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    if node.parent is not None and node.parent.bus:
        return
    unitname = node.unitname()
    if not unitname:
        return
    if unitname.startswith("0x"):
        check.fail(
            dti, quiet, f'Node {node.fullpath} unit name should not have leading "0x"'
        )
        unitname = unitname[2:]
    if len(unitname) > 1 and unitname[0] == "0" and unitname[1] in string.hexdigits:
        check.fail(
            dti, quiet, f"Node {node.fullpath} unit name should not have leading 0s"
        )


def check_avoid_default_addr_size(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    if node.parent is None:
        return
    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return
    if node.parent.addr_cells == -1:
        check.fail(
            dti, quiet, f"Relying on default #address-cells value for {node.fullpath}"
        )
    if node.parent.size_cells == -1:
        check.fail(
            dti, quiet, f"Relying on default #size-cells value for {node.fullpath}"
        )


def check_obsolete_chosen_interrupt_controller(
    check: Check, dti: DTInfo, node: Node, quiet: int
) -> None:
    if node is not dti.dt:
        return
    chosen = dti.dt.get_node_by_path("/chosen")
    if chosen is None:
        return
    if chosen.get_property("interrupt-controller") is not None:
        check.fail(
            dti, quiet, '/chosen has obsolete "interrupt-controller" property'
        )


class CheckRegistry:
    """The full, ordered set of checks for one tree, with their levels."""

    def __init__(self, phandle_format: PhandleFormat = PhandleFormat.EPAPR) -> None:
        def warning(name, fn, data=None, *prereqs):
            return Check(name, fn, data, warn=True, prereqs=list(prereqs))

        def error(name, fn, data=None, *prereqs):
            return Check(name, fn, data, error=True, prereqs=list(prereqs))

        def plain(name, fn, data=None, *prereqs):
            return Check(name, fn, data, prereqs=list(prereqs))

        always_fail = plain("always_fail", check_always_fail)
        duplicate_node_names = error("duplicate_node_names", check_duplicate_node_names)
        duplicate_property_names = error(
            "duplicate_property_names", check_duplicate_property_names
        )
        node_name_chars = error(
            "node_name_chars", check_node_name_chars, PROPNODECHARS + "@"
        )
        node_name_chars_strict = plain(
            "node_name_chars_strict", check_node_name_chars_strict, PROPNODECHARS_STRICT
        )
        node_name_format = error(
            "node_name_format", check_node_name_format, None, node_name_chars
        )
        unit_address_vs_reg = warning("unit_address_vs_reg", check_unit_address_vs_reg)
        property_name_chars = error(
            "property_name_chars", check_property_name_chars, PROPNODECHARS
        )
        property_name_chars_strict = plain(
            "property_name_chars_strict",
            check_property_name_chars_strict,
            PROPNODECHARS_STRICT,
        )
        duplicate_label = error("duplicate_label", check_duplicate_label_node)
        explicit_phandles = error("explicit_phandles", check_explicit_phandles)
        name_is_string = error("name_is_string", check_is_string, "name")
        name_properties = error(
            "name_properties", check_name_properties, None, name_is_string
        )
        phandle_references = error(
            "phandle_references",
            fixup_phandle_references,
            phandle_format,
            duplicate_node_names,
            explicit_phandles,
        )
        path_references = error(
            "path_references", fixup_path_references, None, duplicate_node_names
        )
        address_cells_is_cell = warning(
            "address_cells_is_cell", check_is_cell, "#address-cells"
        )
        size_cells_is_cell = warning("size_cells_is_cell", check_is_cell, "#size-cells")
        interrupt_cells_is_cell = warning(
            "interrupt_cells_is_cell", check_is_cell, "#interrupt-cells"
        )
        device_type_is_string = warning(
            "device_type_is_string", check_is_string, "device_type"
        )
        model_is_string = warning("model_is_string", check_is_string, "model")
        status_is_string = warning("status_is_string", check_is_string, "status")
        addr_size_cells = warning(
            "addr_size_cells",
            fixup_addr_size_cells,
            None,
            address_cells_is_cell,
            size_cells_is_cell,
        )
        reg_format = warning("reg_format", check_reg_format, None, addr_size_cells)
        ranges_format = warning(
            "ranges_format", check_ranges_format, None, addr_size_cells
        )
        pci_bridge = warning(
            "pci_bridge", check_pci_bridge, None, device_type_is_string, addr_size_cells
        )
        pci_device_bus_num = warning(
            "pci_device_bus_num", check_pci_device_bus_num, None, reg_format, pci_bridge
        )
        pci_device_reg = warning(
            "pci_device_reg", check_pci_device_reg, None, reg_format, pci_bridge
        )
        simple_bus_bridge = warning(
            "simple_bus_bridge", check_simple_bus_bridge, None, addr_size_cells
        )
        simple_bus_reg = warning(
            "simple_bus_reg", check_simple_bus_reg, None, reg_format, simple_bus_bridge
        )
        unit_address_format = warning(
            "unit_address_format",
            check_unit_address_format,
            None,
            node_name_format,
            pci_bridge,
            simple_bus_bridge,
        )
        avoid_default_addr_size = warning(
            "avoid_default_addr_size",
            check_avoid_default_addr_size,
            None,
            addr_size_cells,
        )
        obsolete_chosen = warning(
            "obsolete_chosen_interrupt_controller",
            check_obsolete_chosen_interrupt_controller,
        )

        table = [
            duplicate_node_names, duplicate_property_names,
            node_name_chars, node_name_format, property_name_chars,
            name_is_string, name_properties,
            duplicate_label,
            explicit_phandles,
            phandle_references, path_references,
            address_cells_is_cell, size_cells_is_cell, interrupt_cells_is_cell,
            device_type_is_string, model_is_string, status_is_string,
            property_name_chars_strict,
            node_name_chars_strict,
            addr_size_cells, reg_format, ranges_format,
            unit_address_vs_reg,
            unit_address_format,
            pci_bridge,
            pci_device_reg,
            pci_device_bus_num,
            simple_bus_bridge,
            simple_bus_reg,
            avoid_default_addr_size,
            obsolete_chosen,
            always_fail,
        ]
        self._checks: dict[str, Check] = {check.name: check for check in table}

    def __iter__(self) -> Iterator[Check]:
        return iter(self._checks.values())

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def get(self, name: str) -> Check:
        """Return the check of that name; KeyError if there is none."""
        return self._checks[name]

    def _enable(self, check: Check, warn: bool, error: bool) -> None:
        # Raising a level raises it for the prerequisites too.
        if (warn and not check.warn) or (error and not check.error):
            for prq in check.prereqs:
                self._enable(prq, warn, error)
        check.warn = check.warn or warn
        check.error = check.error or error

    def _disable(self, check: Check, warn: bool, error: bool) -> None:
        # Lowering a level lowers it for the checks that depend on this one.
        if (warn and check.warn) or (error and check.error):
            for other in self:
                if any(prq is check for prq in other.prereqs):
                    self._disable(other, warn, error)
        check.warn = check.warn and not warn
        check.error = check.error and not error

    def parse_option(self, warn: bool, error: bool, arg: str) -> None:
        """Apply a -W/-E style option: a check name, optionally "no-" prefixed."""
        name = arg
        enable = True
        if arg.startswith(("no-", "no_")):
            name = arg[3:]
            enable = False
        check = self._checks.get(name)
        if check is None:
            raise CheckError(f'Unrecognized check name "{name}"')
        if enable:
            self._enable(check, warn, error)
        else:
            self._disable(check, warn, error)

    def process(self, dti: DTInfo, force: bool = False, quiet: int = 0) -> bool:
        """Run every enabled check; True if errors were found.

        Raises CheckError when errors were found and force is not set.
        """
        for check in self:
            check.status = CheckStatus.UNCHECKED
            check.messages.clear()
        error = False
        for check in self:
            if check.warn or check.error:
                error = error or check.run(dti, quiet)
        if error:
            if not force:
                raise CheckError(
                    "Input tree has errors, aborting (use -f to force output)"
                )
            if quiet < 3:
                print("Warning: Input tree has errors, output forced", file=sys.stderr)
        return error