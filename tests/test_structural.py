import pytest

from devtree.data import Data, MarkerType
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
from devtree.tree import DTInfo, DtsFlags, Label, Node, Property


def info(root, **kwargs):
    root.fill_fullpaths("")
    return DTInfo(root, **kwargs)


def prop(name, payload=b""):
    return Property(name, Data(bytearray(payload)))


def cell(name, value):
    return Property(name, Data().append_cell(value))


def test_always_fail_reports_error():
    check = Check("always_fail", check_always_fail, error=True)
    assert check.run(info(Node()), quiet=3) is True
    assert check.status is CheckStatus.FAILED
    assert check.messages == ["always_fail check"]


def test_message_written_to_stderr(capsys):
    check = Check("always_fail", check_always_fail, error=True)
    check.run(info(Node()))
    assert capsys.readouterr().err == "<stdout>: ERROR (always_fail): always_fail check\n"


def test_quiet_suppresses_warning(capsys):
    check = Check("always_fail", check_always_fail, warn=True)
    assert check.run(info(Node()), quiet=1) is False
    assert capsys.readouterr().err == ""
    assert check.status is CheckStatus.FAILED


def test_is_string():
    root = Node(proplist=[prop("model", b"acme\0")])
    check = Check("model_is_string", check_is_string, "model", warn=True)
    assert check.run(info(root), 3) is False
    assert check.status is CheckStatus.PASSED

    bad = Node(proplist=[prop("model", b"a\0b\0")])
    check = Check("model_is_string", check_is_string, "model", warn=True)
    check.run(info(bad), 3)
    assert check.messages == ['"model" property in / is not a string']


def test_is_cell():
    bad = Node(proplist=[prop("#size-cells", b"\0\0")])
    check = Check("size_cells_is_cell", check_is_cell, "#size-cells", warn=True)
    check.run(info(bad), 3)
    assert check.status is CheckStatus.FAILED
    good = Node(proplist=[cell("#size-cells", 1)])
    check = Check("size_cells_is_cell", check_is_cell, "#size-cells", warn=True)
    check.run(info(good), 3)
    assert check.status is CheckStatus.PASSED


def test_duplicate_node_names():
    root = Node(childlist=[Node("a"), Node("a")])
    check = Check("duplicate_node_names", check_duplicate_node_names, error=True)
    assert check.run(info(root), 3) is True
    assert check.messages == ["Duplicate node name /a"]


def test_duplicate_property_names_ignores_deleted():
    dup = prop("x")
    dup.deleted = True
    root = Node(proplist=[prop("x"), dup])
    check = Check("dpn", check_duplicate_property_names, error=True)
    assert check.run(info(root), 3) is False
    root2 = Node(proplist=[prop("x"), prop("x")])
    check = Check("dpn", check_duplicate_property_names, error=True)
    check.run(info(root2), 3)
    assert check.messages == ["Duplicate property name x in /"]


def test_node_name_chars():
    root = Node(childlist=[Node("ok@1"), Node("bad$name")])
    check = Check("node_name_chars", check_node_name_chars, PROPNODECHARS + "@", error=True)
    check.run(info(root), 3)
    assert check.messages == ["Bad character '$' in node /bad$name"]


def test_node_name_chars_strict_only_base_name():
    root = Node(childlist=[Node("good@a_b"), Node("my_node")])
    check = Check("strict", check_node_name_chars_strict, PROPNODECHARS_STRICT)
    check.run(info(root), 3)
    assert check.messages == ["Character '_' not recommended in node /my_node"]


def test_node_name_format():
    root = Node(childlist=[Node("a@1@2")])
    check = Check("node_name_format", check_node_name_format, error=True)
    check.run(info(root), 3)
    assert check.messages == ["Node /a@1@2 has multiple '@' characters in name"]


def test_unit_address_vs_reg():
    root = Node(
        childlist=[
            Node("noreg@1"),
            Node("nounit", proplist=[cell("reg", 1)]),
            Node("fine@1", proplist=[cell("reg", 1)]),
            Node("emptyranges", proplist=[prop("ranges")]),
        ]
    )
    check = Check("uavr", check_unit_address_vs_reg, warn=True)
    check.run(info(root), 3)
    assert check.messages == [
        "Node /noreg@1 has a unit name, but no reg property",
        "Node /nounit has a reg or ranges property, but no unit name",
    ]


def test_property_name_chars():
    root = Node(proplist=[prop("good-name"), prop("bad=name")])
    check = Check("pnc", check_property_name_chars, PROPNODECHARS, error=True)
    check.run(info(root), 3)
    assert check.messages == ["Bad character '=' in property name \"bad=name\", node /"]


def test_property_name_chars_strict():
    root = Node(
        proplist=[
            prop("#address-cells"),
            prop("vendor,#foo"),
            prop("device_type"),
            prop("foo#bar"),
        ]
    )
    check = Check("pncs", check_property_name_chars_strict, PROPNODECHARS_STRICT)
    check.run(info(root), 3)
    assert check.messages == [
        "Character '#' not recommended in property name \"foo#bar\", node /"
    ]


def test_duplicate_label():
    root = Node(
        childlist=[
            Node("a", labels=[Label("lab")]),
            Node("b", labels=[Label("lab")]),
        ]
    )
    check = Check("duplicate_label", check_duplicate_label_node, error=True)
    check.run(info(root), 3)
    assert check.messages == ["Duplicate label 'lab' on /b and /a"]


def test_unique_labels_pass():
    value = Data().add_marker(MarkerType.LABEL, "inner").append_cell(1)
    root = Node(
        labels=[Label("top")],
        proplist=[Property("p", value, labels=[Label("plab")])],
    )
    check = Check("duplicate_label", check_duplicate_label_node, error=True)
    assert check.run(info(root), 3) is False
    assert check.status is CheckStatus.PASSED


def test_explicit_phandles_sets_phandle():
    child = Node("a", proplist=[cell("phandle", 5)])
    root = Node(childlist=[child])
    check = Check("explicit_phandles", check_explicit_phandles, error=True)
    assert check.run(info(root), 3) is False
    assert child.phandle == 5


def test_explicit_phandles_bad_and_duplicate():
    root = Node(
        childlist=[
            Node("a", proplist=[cell("phandle", 7)]),
            Node("b", proplist=[cell("linux,phandle", 7)]),
            Node("c", proplist=[cell("phandle", 0)]),
        ]
    )
    check = Check("explicit_phandles", check_explicit_phandles, error=True)
    assert check.run(info(root), 3) is True
    assert check.messages == [
        "/b has duplicated phandle 0x7 (seen before at /a)",
        "/c has bad value (0x0) in phandle property",
    ]


def test_explicit_phandles_mismatch():
    root = Node(proplist=[cell("phandle", 1), cell("linux,phandle", 2)])
    check = Check("explicit_phandles", check_explicit_phandles, error=True)
    check.run(info(root), 3)
    assert check.messages == [
        "/ has mismatching 'phandle' and 'linux,phandle' properties"
    ]


def test_name_property_removed_when_correct():
    child = Node("cpu@0", proplist=[prop("name", b"cpu\0")])
    root = Node(childlist=[child])
    check = Check("name_properties", check_name_properties, error=True)
    assert check.run(info(root), 3) is False
    assert child.get_property("name") is None


def test_name_property_incorrect():
    child = Node("cpu@0", proplist=[prop("name", b"gpu\0")])
    check = Check("name_properties", check_name_properties, error=True)
    check.run(info(Node(childlist=[child])), 3)
    assert check.messages == [
        '"name" property in /cpu@0 is incorrect ("gpu" instead of base node name)'
    ]


def test_phandle_references_allocate():
    target = Node("t", labels=[Label("tgt")])
    value = Data().add_marker(MarkerType.REF_PHANDLE, "tgt").append_cell(0)
    root = Node(proplist=[Property("ref", value)], childlist=[target])
    check = Check("phandle_references", fixup_phandle_references, error=True)
    assert check.run(info(root), 3) is False
    assert target.phandle == 1
    assert bytes(value) == b"\x00\x00\x00\x01"
    assert target.get_property("phandle").cell() == 1


def test_phandle_reference_missing():
    value = Data().add_marker(MarkerType.REF_PHANDLE, "nope").append_cell(0)
    root = Node(proplist=[Property("ref", value)])
    check = Check("phandle_references", fixup_phandle_references, error=True)
    assert check.run(info(root), 3) is True
    assert check.messages == ['Reference to non-existent node or label "nope"']


def test_phandle_reference_missing_in_plugin():
    value = Data().add_marker(MarkerType.REF_PHANDLE, "nope").append_cell(0)
    root = Node(proplist=[Property("ref", value)])
    check = Check("phandle_references", fixup_phandle_references, error=True)
    assert check.run(info(root, dtsflags=DtsFlags.PLUGIN), 3) is False
    assert bytes(value) == b"\xff\xff\xff\xff"


def test_path_references():
    target = Node("t", labels=[Label("tgt")])
    value = Data().append_cell(1).add_marker(MarkerType.REF_PATH, "tgt").append_cell(2)
    root = Node(proplist=[Property("path", value)], childlist=[target])
    check = Check("path_references", fixup_path_references, error=True)
    assert check.run(info(root), 3) is False
    assert bytes(value) == b"\x00\x00\x00\x01/t\x00\x00\x00\x00\x02"


def test_failed_prerequisite():
    pre = Check("always_fail", check_always_fail, error=True)
    dependent = Check("dep", check_always_fail, warn=True, prereqs=[pre])
    assert dependent.run(info(Node()), 3) is True
    assert dependent.status is CheckStatus.PREREQ
    assert dependent.messages == ["Failed prerequisite 'always_fail'"]


def test_passed_prerequisite_then_runs():
    pre = Check("ok", None)
    dependent = Check("dep", check_always_fail, warn=True, prereqs=[pre])
    dependent.run(info(Node()), 3)
    assert pre.status is CheckStatus.PASSED
    assert dependent.status is CheckStatus.FAILED


def test_cycle_raises():
    a = Check("a")
    b = Check("b", prereqs=[a])
    a.prereqs.append(b)
    with pytest.raises(CheckError):
        a.run(info(Node()), 3)