"""The live device tree: nodes, properties, labels and reservations."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator

from devtree.data import Data, Marker, MarkerType

_NO_PHANDLE = (0, 0xFFFFFFFF, -1)


class PhandleFormat(enum.IntFlag):
    """Which phandle properties to generate."""

    LEGACY = 0x1
    EPAPR = 0x2
    BOTH = 0x3


class DtsFlags(enum.IntFlag):
    """Source version flags."""

    V1 = 0x0001
    PLUGIN = 0x0002


@dataclass
class Label:
    label: str
    deleted: bool = False


def _live_labels(labels: list[Label]) -> Iterator[str]:
    return (lab.label for lab in labels if not lab.deleted)


@dataclass(eq=False)
class Property:
    name: str
    val: Data = field(default_factory=Data)
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val) != 4:
            raise ValueError(
                f"property {self.name!r} is {len(self.val)} bytes, not one cell"
            )
        return int.from_bytes(bytes(self.val), "big")


def _join_path(prefix: str, name: str) -> str:
    if prefix.endswith("/"):
        return prefix + name
    return f"{prefix}/{name}"


@dataclass(eq=False)
class Node:
    name: str = ""
    proplist: list[Property] = field(default_factory=list)
    childlist: list[Node] = field(default_factory=list)
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False
    parent: Node | None = field(default=None, repr=False)
    fullpath: str = ""
    basenamelen: int = 0
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    bus: str | None = None

    def __post_init__(self) -> None:
        for child in self.childlist:
            child.parent = self
        self.basenamelen = len(self.name.partition("@")[0])

    def add_property(self, prop: Property) -> Property:
        """Append a property."""
        self.proplist.append(prop)
        return prop

    def add_child(self, child: Node) -> Node:
        """Append a child node and make this node its parent."""
        child.parent = self
        self.childlist.append(child)
        return child

    def properties(self) -> Iterator[Property]:
        """Iterate over the properties that are not deleted."""
        return (p for p in self.proplist if not p.deleted)

    def children(self) -> Iterator[Node]:
        """Iterate over the children that are not deleted."""
        return (c for c in self.childlist if not c.deleted)

    def walk(self) -> Iterator[Node]:
        """Yield this node and its live descendants, parents first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def get_property(self, name: str) -> Property | None:
        return next((p for p in self.properties() if p.name == name), None)

    def get_subnode(self, name: str) -> Node | None:
        return next((c for c in self.children() if c.name == name), None)

    def unitname(self) -> str:
        """The part of the name after '@', or an empty string."""
        _, _, unit = self.name.partition("@")
        return unit

    def fill_fullpaths(self, prefix: str) -> None:
        """Set full paths and base-name lengths for this subtree."""
        self.fullpath = _join_path(prefix, self.name)
        self.basenamelen = len(self.name.partition("@")[0])
        for child in self.children():
            child.fill_fullpaths(self.fullpath)

    def get_node_by_path(self, path: str) -> Node | None:
        """Find a node by a path relative to this one."""
        node: Node | None = self
        for component in filter(None, path.split("/")):
            node = node.get_subnode(component)
            if node is None:
                return None
        return None if node.deleted else node

    def get_node_by_label(self, label: str) -> Node | None:
        return next(
            (n for n in self.walk() if label in _live_labels(n.labels)), None
        )

    def get_node_by_phandle(self, phandle: int) -> Node | None:
        if phandle in _NO_PHANDLE:
            return None
        return next((n for n in self.walk() if n.phandle == phandle), None)

    def get_node_by_ref(self, ref: str) -> Node | None:
        """Resolve a reference: a path if it starts with '/', else a label."""
        if ref.startswith("/"):
            return self.get_node_by_path(ref)
        return self.get_node_by_label(ref)

    def get_property_by_label(self, label: str) -> tuple[Node, Property] | None:
        """Find the property carrying a label, with the node holding it."""
        for node in self.walk():
            for prop in node.properties():
                if label in _live_labels(prop.labels):
                    return node, prop
        return None

    def get_marker_label(
        self, label: str
    ) -> tuple[Node, Property, Marker] | None:
        """Find a label placed inside a property value."""
        for node in self.walk():
            for prop in node.properties():
                for marker in prop.val.markers_of_type(MarkerType.LABEL):
                    if marker.ref == label:
                        return node, prop, marker
        return None

    def get_node_phandle(
        self, node: Node, phandle_format: PhandleFormat = PhandleFormat.EPAPR
    ) -> int:
        """Return a node's phandle, allocating an unused one if it has none."""
        if node.phandle not in _NO_PHANDLE:
            return node.phandle
        phandle = 1
        while self.get_node_by_phandle(phandle) is not None:
            phandle += 1
        node.phandle = phandle
        if node.get_property("linux,phandle") is None and (
            phandle_format & PhandleFormat.LEGACY
        ):
            node.add_property(
                Property("linux,phandle", Data().append_cell(phandle))
            )
        if node.get_property("phandle") is None and (
            phandle_format & PhandleFormat.EPAPR
        ):
            node.add_property(Property("phandle", Data().append_cell(phandle)))
        return node.phandle


@dataclass
class ReserveEntry:
    address: int
    size: int
    labels: list[Label] = field(default_factory=list)


@dataclass
class DTInfo:
    dt: Node
    dtsflags: DtsFlags = DtsFlags(0)
    reservelist: list[ReserveEntry] = field(default_factory=list)
    boot_cpuid_phys: int = 0
    outname: str = "-"