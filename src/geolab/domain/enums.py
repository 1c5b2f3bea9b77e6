"""
Pipeline Enumerations

Core enums for type safety and clear interface definitions across the pipeline.
"""

from enum import Enum


class FieldType(str, Enum):
    """Attribute types a feature store schema can declare."""
    STR = "str"
    INT = "int"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT = "float"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    BOOL = "bool"


class TransactionState(str, Enum):
    """Lifecycle of a write transaction."""
    IDLE = "idle"               # Created, never begun
    OPEN = "open"               # Accepting writes
    COMMITTED = "committed"     # Staged files published
    ROLLED_BACK = "rolled_back" # Staged files discarded
    CLOSED = "closed"           # Resources released


class ExportStatus(str, Enum):
    """Outcome of an export run that did not raise."""
    COMMITTED = "committed"
    CANCELLED = "cancelled"     # User declined before the transaction began


class ReprojectStrategy(str, Enum):
    """How geometries are moved into the destination CRS."""
    TRANSFORM = "transform"     # Per-feature transform applied by the mapper
    QUERY = "query"             # Store reprojects while reading
