"""Spreadsheet <-> Google Tasks exporter with resumable batch runs."""

__version__ = "0.1.0"
