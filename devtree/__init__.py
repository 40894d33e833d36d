"""Device tree model and checks, property value helpers and a blob dumper."""

__version__ = "1.4.4"