import pytest

from devtree.data import Data, MarkerType
from devtree.tree import DTInfo, DtsFlags, Label, Node, PhandleFormat, Property


def make_tree():
    cpu = Node("cpu@0", labels=[Label("cpu0")])
    cpus = Node("cpus", childlist=[cpu])
    mem = Node("memory@80000000")
    root = Node("", childlist=[cpus, mem])
    root.fill_fullpaths("")
    return root, cpus, cpu, mem


def test_fill_fullpaths():
    root, cpus, cpu, mem = make_tree()
    assert root.fullpath == "/"
    assert cpus.fullpath == "/cpus"
    assert cpu.fullpath == "/cpus/cpu@0"
    assert mem.fullpath == "/memory@80000000"
    assert cpu.basenamelen == len("cpu")


def test_parent_links():
    root, cpus, cpu, _ = make_tree()
    assert cpu.parent is cpus
    assert cpus.parent is root
    extra = root.add_child(Node("extra"))
    assert extra.parent is root


def test_unitname():
    _, cpus, cpu, mem = make_tree()
    assert cpu.unitname() == "0"
    assert mem.unitname() == "80000000"
    assert cpus.unitname() == ""


@pytest.mark.parametrize("path", ["/cpus/cpu@0", "//cpus//cpu@0", "/cpus/cpu@0/"])
def test_get_node_by_path(path):
    root, _, cpu, _ = make_tree()
    assert root.get_node_by_path(path) is cpu


def test_get_node_by_path_root_and_missing():
    root, *_ = make_tree()
    assert root.get_node_by_path("/") is root
    assert root.get_node_by_path("") is root
    assert root.get_node_by_path("/cpus/cpu@1") is None


def test_deleted_nodes_are_skipped():
    root, cpus, cpu, mem = make_tree()
    cpu.deleted = True
    assert root.get_node_by_path("/cpus/cpu@0") is None
    assert list(root.walk()) == [root, cpus, mem]
    assert root.get_node_by_label("cpu0") is None


def test_get_property_skips_deleted():
    node = Node("n")
    gone = node.add_property(Property("reg", deleted=True))
    live = node.add_property(Property("reg"))
    assert node.get_property("reg") is live
    assert gone not in list(node.properties())


def test_property_cell():
    prop = Property("reg", Data().append_cell(0x2000))
    assert prop.cell() == 0x2000
    with pytest.raises(ValueError):
        Property("bad", Data(b"\x01\x02")).cell()


def test_labels_and_refs():
    root, _, cpu, _ = make_tree()
    assert root.get_node_by_label("cpu0") is cpu
    assert root.get_node_by_ref("cpu0") is cpu
    assert root.get_node_by_ref("/cpus/cpu@0") is cpu
    assert root.get_node_by_ref("nolabel") is None


def test_get_property_by_label():
    root, cpus, _, _ = make_tree()
    prop = cpus.add_property(Property("model", labels=[Label("plabel")]))
    assert root.get_property_by_label("plabel") == (cpus, prop)
    assert root.get_property_by_label("other") is None


def test_get_marker_label():
    root, _, _, mem = make_tree()
    val = Data().append_cell(1).add_marker(MarkerType.LABEL, "mid").append_cell(2)
    prop = mem.add_property(Property("reg", val))
    found = root.get_marker_label("mid")
    assert found is not None
    node, fprop, marker = found
    assert node is mem and fprop is prop
    assert marker.offset == 4
    assert root.get_marker_label("absent") is None


def test_get_node_by_phandle():
    root, _, cpu, _ = make_tree()
    cpu.phandle = 0x2000
    assert root.get_node_by_phandle(0x2000) is cpu
    assert root.get_node_by_phandle(0) is None
    assert root.get_node_by_phandle(0xFFFFFFFF) is None


def test_get_node_phandle_allocates_unused():
    root, cpus, cpu, _ = make_tree()
    cpus.phandle = 1
    handle = root.get_node_phandle(cpu, PhandleFormat.EPAPR)
    assert handle == 2
    assert cpu.phandle == handle
    assert cpu.get_property("phandle").cell() == handle
    assert cpu.get_property("linux,phandle") is None


def test_get_node_phandle_both_formats():
    root, _, cpu, _ = make_tree()
    handle = root.get_node_phandle(cpu, PhandleFormat.BOTH)
    assert cpu.get_property("phandle").cell() == handle
    assert cpu.get_property("linux,phandle").cell() == handle
    assert root.get_node_by_phandle(handle) is cpu


def test_get_node_phandle_keeps_existing():
    root, _, cpu, _ = make_tree()
    cpu.phandle = 0x2000
    assert root.get_node_phandle(cpu, PhandleFormat.BOTH) == 0x2000
    assert list(cpu.properties()) == []


def test_dtinfo_defaults():
    root, *_ = make_tree()
    dti = DTInfo(root, DtsFlags.V1 | DtsFlags.PLUGIN)
    assert dti.outname == "-"
    assert dti.dtsflags & DtsFlags.PLUGIN
    assert dti.reservelist == []