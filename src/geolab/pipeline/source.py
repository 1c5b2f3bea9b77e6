"""
Row Sources - Lazy Record Readers

Each source is a finite, lazy iterable of raw records. Iterating again
reopens the underlying file, so a source can be replayed from the start.

- CsvRowSource: delimited text lines with a header, one record per non-blank line
- StoreRowSource: features of a fiona-readable store (shapefile, GeoPackage, ...),
  optionally bbox-filtered and/or reprojected by the store while reading
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import fiona
import fiona.transform
from fiona.errors import FionaError
from pyproj import CRS
from pyproj.exceptions import CRSError
from shapely.geometry import shape

from ..domain.models import Feature, RecordSchema
from ..types import SourceNotFoundError, StoreConnectionError, StoreInfo, TransformError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CsvRecord:
    """One raw CSV line split into tokens, with its 1-based line number."""
    line_number: int
    tokens: tuple[str, ...]


class CsvRowSource:
    """
    Read a delimited text file one record at a time.

    The first line is a header: it is logged and skipped, never checked
    against a schema. Lines are split on the delimiter as-is (no quoting
    rules). Whitespace-only lines are skipped.
    """

    def __init__(self, path: Path | str, delimiter: str = ",", encoding: str = "utf-8"):
        self.path = Path(path)
        self.delimiter = delimiter
        self.encoding = encoding

        if not self.path.is_file():
            raise SourceNotFoundError(self.path)

    def __iter__(self) -> Iterator[CsvRecord]:
        try:
            f = open(self.path, encoding=self.encoding, newline='')
        except FileNotFoundError:
            raise SourceNotFoundError(self.path)

        with f:
            header = f.readline()
            logger.info(f"Header: {header.rstrip()}")

            for line_number, line in enumerate(f, start=2):
                if not line.strip():
                    continue
                yield CsvRecord(line_number, tuple(line.rstrip("\r\n").split(self.delimiter)))


def _check_store_path(path: Path) -> None:
    if not path.exists():
        raise SourceNotFoundError(path)


def _crs_name(crs_wkt: Optional[str]) -> Optional[str]:
    if not crs_wkt:
        return None
    try:
        return CRS.from_wkt(crs_wkt).name
    except CRSError:
        return "unknown"


def list_layers(path: Path | str) -> list[str]:
    """
    Names of the feature types (layers) a store offers.

    Args:
        path: Shapefile, directory of shapefiles, GeoPackage or other OGR source

    Returns:
        Layer names in store order
    """
    path = Path(path)
    _check_store_path(path)
    try:
        return list(fiona.listlayers(str(path)))
    except (FionaError, ValueError) as e:
        raise StoreConnectionError(f"Could not open feature store {path}: {e}")


class StoreRowSource:
    """
    Read features from an existing feature store.

    Args:
        path: Path to the store
        layer: Layer name (defaults to the first layer)
        bbox: Optional (minx, miny, maxx, maxy) filter applied by the store
        reproject_to: Optional CRS the store reprojects geometries into while reading
    """

    def __init__(
        self,
        path: Path | str,
        layer: Optional[str] = None,
        bbox: Optional[tuple[float, float, float, float]] = None,
        reproject_to: Optional[str] = None
    ):
        self.path = Path(path)
        _check_store_path(self.path)

        self.layer = layer or self._first_layer()
        self.bbox = bbox
        self.reproject_to = reproject_to

        with self.open_collection() as src:
            self.crs_wkt = src.crs_wkt or None
            self._source_schema = RecordSchema.from_fiona(self.layer, src.schema, crs=self.crs_wkt)
            self.feature_count = len(src)

        self._target_wkt = None
        if reproject_to:
            if not self.crs_wkt:
                raise TransformError(f"{self.path} has no coordinate reference system to reproject from")
            try:
                self._target_wkt = CRS.from_user_input(reproject_to).to_wkt()
            except CRSError as e:
                raise TransformError(f"Unknown coordinate reference system '{reproject_to}': {e}")

    def _first_layer(self) -> str:
        layers = list_layers(self.path)
        if not layers:
            raise StoreConnectionError(f"No feature types found in {self.path}")
        return layers[0]

    def open_collection(self):
        try:
            return fiona.open(str(self.path), layer=self.layer)
        except (FionaError, ValueError) as e:
            raise StoreConnectionError(f"Could not open layer '{self.layer}' of {self.path}: {e}")

    def schema(self) -> RecordSchema:
        """Schema of the records this source yields (retyped when reprojecting)."""
        if self.reproject_to:
            return self._source_schema.retype(self.reproject_to)
        return self._source_schema

    def __iter__(self) -> Iterator[Feature]:
        with self.open_collection() as src:
            records = src.filter(bbox=self.bbox) if self.bbox else src

            for record in records:
                geometry = record.geometry
                if geometry is not None and self._target_wkt:
                    geometry = fiona.transform.transform_geom(self.crs_wkt, self._target_wkt, geometry)

                yield Feature(
                    geometry=shape(geometry) if geometry is not None else None,
                    properties=dict(record.properties),
                    id=f"{self.layer}.{record.id}"
                )


def describe_store(path: Path | str, layer: Optional[str] = None) -> StoreInfo:
    """
    Summarize one layer of a feature store.

    Args:
        path: Path to the store
        layer: Layer name (defaults to the first layer)

    Returns:
        StoreInfo with schema, CRS name, bounds and feature count
    """
    source = StoreRowSource(path, layer=layer)
    with source.open_collection() as src:
        bounds = tuple(src.bounds)

    info = StoreInfo(
        path=source.path,
        layer=source.layer,
        schema_text=source.schema().describe(),
        crs=_crs_name(source.crs_wkt),
        bounds=bounds,
        feature_count=source.feature_count,
        layers=tuple(list_layers(source.path))
    )
    logger.debug(f"Described {info.path} layer {info.layer}: {info.feature_count} features")
    return info
