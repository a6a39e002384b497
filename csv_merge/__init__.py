"""Merge CSV blobs into a single xlsx workbook and deliver it."""

__version__ = "1.0.0"
