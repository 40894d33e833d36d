# devtree

Tools for working with device trees: an in-memory model of a tree and its
property values, the structural and semantic checks that are run over such a
tree, helpers for rendering and encoding property values, and a low-level
dumper for flattened device tree blobs (`.dtb` files).

## Installing

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Dumping a blob

`devtree-fdtdump` prints the header fields, the memory reservation map and
the structure block of a flattened device tree in a source-like form:

```
devtree-fdtdump board.dtb
```

Options:

- `-d`, `--debug` — also print, as `//` comments, the offset and tag of every
  token and the offsets of each property's name and value.
- `-s`, `--scan` — search the file for an embedded device tree instead of
  expecting one at offset 0; the offset found is printed first.
- `-V`, `--version` — print the version and exit.

A header that is not valid, a file that cannot be read or a truncated
structure block is reported on standard error and the command exits with
status 1. It is a debugging aid for looking at the raw layout of a blob, not
a decompiler.

The same work is available from Python: `devtree.fdtdump.dump_blob(blob,
debug)` returns the dump as a string, `valid_header(blob)` checks a header
against the length of the buffer, `find_embedded(blob)` returns the offset of
the first valid blob in a larger buffer, `FdtHeader.parse(blob)` reads the
header fields and `tag_name(tag)` names a structure tag.

## Library overview

### Property values — `devtree.data`

`Data` holds the bytes of a property value together with a list of `Marker`
objects. A marker records an offset into the value and is one of the
`MarkerType` kinds: `REF_PHANDLE`, `REF_PATH` or `LABEL`. The append methods
change the value in place and return it, so calls can be chained:
`append`, `append_cell`, `append_integer` (8, 16, 32 or 64 bits, big-endian),
`append_addr`, `append_byte`, `append_zeroes`, `append_align` and
`append_reserve_entry`. `add_marker` attaches a marker at the current end,
`insert_at_marker` inserts bytes at a marker and moves the markers after it,
and `merge` appends another value and takes over its markers at shifted
offsets. `is_one_string` tells whether a value is exactly one NUL-terminated
string, `markers_of_type` iterates over markers of one kind, and
`Data.from_file(stream, maxlen)` reads a binary stream.

### Trees — `devtree.tree`

`Node`, `Property`, `Label` and `ReserveEntry` describe a live tree, and
`DTInfo` bundles the root node with the reserve map, the boot CPU, the output
name and the `DtsFlags` (`V1`, `PLUGIN`). Nodes skip deleted children and
properties when iterated (`children`, `properties`, `walk`), compute full
paths with `fill_fullpaths`, and can be looked up by path, label, phandle or
reference (`get_node_by_path`, `get_node_by_label`, `get_node_by_phandle`,
`get_node_by_ref`). `get_property_by_label` and `get_marker_label` find labels
placed on properties or inside values. `get_node_phandle` returns a node's
phandle, allocating the lowest unused one when it has none and adding the
`phandle` and/or `linux,phandle` properties chosen by a `PhandleFormat`
(`LEGACY`, `EPAPR`, `BOTH`).

### Checks — `devtree.structural` and `devtree.semantic`

Every check is a `Check` with a name, a warning/error level and a list of
prerequisite checks; messages it reports are printed to standard error
(subject to the quiet level) and kept in its `messages` list. A
`CheckRegistry` holds the full, ordered table of checks:

- `get(name)` returns one check; the registry can also be iterated.
- `parse_option(warn, error, arg)` enables a check by name, or disables it
  when the name is prefixed with `no-` or `no_`; enabling also enables its
  prerequisites, disabling also disables the checks that depend on it. An
  unknown name raises `CheckError`.
- `process(dti, force, quiet)` runs every enabled check over the tree and
  returns whether errors were found; it raises `CheckError` when an
  error-level check fails, unless `force` is set.

The checks cover duplicate node and property names, name character sets,
unit addresses against `reg`/`ranges`, duplicate labels, explicit phandles,
`name` properties, `#address-cells`/`#size-cells` handling, `reg` and
`ranges` layout, PCI bridges and devices, simple-bus children, unit address
format, reliance on default cell counts and the obsolete
`/chosen/interrupt-controller`. Filling in phandle and path references inside
property values is done by the `phandle_references` and `path_references`
checks.

### Command-line options — `devtree.formats`

`guess_input_format` and `guess_type_by_name` decide between `dts`, `dtb`
and `fs` inputs from a path's type, the blob magic number or the extension;
`is_power_of_2` validates alignments. `parse_args(argv)` turns a
compiler-style argument list into a `DtcOptions`, settling the input and
output formats; invalid `-a` or `-H` values and `-p` together with `-S` raise
`ValueError`.

### Typed property values — `devtree.values`

`show_data(data, type_char, size)` renders a raw property value as strings or
as integers of size 1, 2 or 4 in one of the formats `d`, `i`, `u`, `x`, `o`,
guessing when no type or size is given. `encode_value(args, type_char, size)`
does the reverse for a list of command-line arguments. Both raise
`ValueFormatError` when the data does not fit the requested format.

## What this package does not do

There is no compiler here: nothing reads device tree source text or a
directory tree into a `Node`, nothing turns a blob into a `Node`, and nothing
writes a tree out as source, a blob or assembler. `parse_args` only parses
options; no command acts on them. There are no commands for reading, writing
or deleting properties and nodes inside a blob, and no overlay support —
`devtree.values` provides only the value rendering and encoding such tools
would use. The only command installed is `devtree-fdtdump`.