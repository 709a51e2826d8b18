"""Inventory, back up, clean and re-provision a machine's Python toolchain."""

__version__ = "0.1.0"
