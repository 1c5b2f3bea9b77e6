"""
Type definitions for GeoLab pipeline results and failures.

Result objects are immutable snapshots handed back to the caller; the
exception hierarchy separates the failure classes the CLI reports:
missing input, malformed records, destination conflicts and failures
inside a write transaction.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .domain.enums import ExportStatus


@dataclass(frozen=True)
class ExportResult:
    """Outcome of an export run that did not raise."""
    status: ExportStatus
    destination: Path
    features_written: int = 0
    duration_s: float = 0.0

    @property
    def message(self) -> str:
        if self.status is ExportStatus.CANCELLED:
            return "Export cancelled"
        return "Export to shapefile complete"


@dataclass(frozen=True)
class ValidationReport:
    """Result of a geometry validity scan."""
    features_checked: int = 0
    invalid_ids: tuple[str, ...] = ()

    @property
    def invalid_count(self) -> int:
        return len(self.invalid_ids)

    @property
    def message(self) -> str:
        if self.invalid_count == 0:
            return "All feature geometries are valid"
        return f"Invalid features: {self.invalid_count}"


@dataclass(frozen=True)
class StoreInfo:
    """Summary of one layer of a feature store."""
    path: Path
    layer: str
    schema_text: str
    crs: Optional[str]
    bounds: tuple[float, float, float, float]
    feature_count: int
    layers: tuple[str, ...] = field(default_factory=tuple)


# GeoLab exception hierarchy
class GeolabError(Exception):
    """Base exception for pipeline operations."""
    pass


class SourceNotFoundError(GeolabError):
    """Required input file is missing."""
    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(f"Input file not found: {self.path}")


class MalformedRecordError(GeolabError):
    """Input record could not be parsed; fatal for the run."""
    def __init__(self, line_number: int, message: str):
        self.line_number = line_number
        super().__init__(f"Line {line_number}: {message}")


class DestinationConflictError(GeolabError):
    """Destination would overwrite the source being read."""
    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(f"Cannot replace {self.path}")


class TransactionError(GeolabError):
    """Write transaction used out of order or failed to publish."""
    pass


class ExportFailedError(GeolabError):
    """Write or transform failure inside the transaction; all writes were rolled back."""
    def __init__(self, destination: Path | str, reason: str):
        self.destination = Path(destination)
        self.reason = reason
        super().__init__(f"Export to shapefile failed: {reason}")


class TransformError(GeolabError):
    """Coordinate reference systems could not be resolved or related."""
    pass


class SchemaError(GeolabError):
    """Schema definition is missing or invalid."""
    pass


class FilterError(GeolabError):
    """Filter expression could not be parsed or evaluated."""
    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Invalid filter '{expression}': {message}")


class StoreConnectionError(GeolabError):
    """Feature store could not be opened or no store is connected."""
    pass
