[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "devtree"
version = "1.4.4"
description = "Device tree data model, tree checks, value formatting and a flattened device tree (dtb) dumper"
requires-python = ">=3.10"
dependencies = []
keywords = ["device tree", "dtb", "dts", "fdt", "flattened device tree", "embedded"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
devtree-fdtdump = "devtree.fdtdump:main"

[tool.hatch.build.targets.wheel]
packages = ["devtree"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
