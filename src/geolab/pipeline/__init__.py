"""
GeoLab Pipeline Components

Single-pass export pipeline following the Row Source -> Record Mapper -> Transactional Sink pattern,
plus the read-only tools built on the same sources.

Components:
- source: CsvRowSource and StoreRowSource for lazy record reading
- transform: CsvPointMapper and ReprojectMapper for record-to-feature mapping
- export: Transaction, ShapefileSink and Exporter for all-or-nothing shapefile writes
- validate: geometry validity scans, optionally on a background worker
- query: QuerySession for filtering feature stores
"""

from .export import Exporter, ShapefileSink, Transaction, run_csv_export, run_reprojection_export
from .query import QuerySession, parse_filter, render_table
from .source import CsvRowSource, StoreRowSource, describe_store, list_layers
from .transform import CsvPointMapper, ReprojectMapper, find_transform
from .validate import ValidationTask, validate_features

__all__ = [
    "CsvRowSource", "StoreRowSource", "describe_store", "list_layers",
    "CsvPointMapper", "ReprojectMapper", "find_transform",
    "Exporter", "ShapefileSink", "Transaction", "run_csv_export", "run_reprojection_export",
    "ValidationTask", "validate_features",
    "QuerySession", "parse_filter", "render_table",
]
