"""
Record Mappers - Raw Records to Typed Features

Turns raw records from a row source into Features matching a destination
schema. Mapping is pure: mappers never touch the sink.

- CsvPointMapper: latitude, longitude, name, number -> Point(lon, lat) feature
- ReprojectMapper: copies attributes verbatim, reprojects the geometry
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as transform_geometry

from ..domain.models import Feature, RecordSchema
from ..types import MalformedRecordError, SchemaError, TransformError
from .source import CsvRecord

logger = logging.getLogger(__name__)

# Positional layout of a CSV row
LATITUDE, LONGITUDE, NAME, NUMBER = range(4)
CSV_FIELD_COUNT = 4


def resolve_crs(value: Any) -> CRS:
    """Resolve an EPSG code, PROJ string, WKT or CRS object."""
    if value is None or value == "":
        raise TransformError("No coordinate reference system defined")
    try:
        return CRS.from_user_input(value)
    except CRSError as e:
        raise TransformError(f"Unknown coordinate reference system '{value}': {e}")


@dataclass
class TransformContext:
    """
    Source CRS -> destination CRS mapping, resolved once per run.

    When ``lenient`` is false, approximate (ballpark) operations are refused
    and any point that cannot be transformed fails the run.
    """
    source_crs: CRS
    dest_crs: CRS
    lenient: bool = True
    _transformer: Optional[Transformer] = field(default=None, repr=False)

    @property
    def is_identity(self) -> bool:
        return self._transformer is None

    def transform(self, geometry: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
        """Transform one geometry into the destination CRS."""
        if geometry is None or self.is_identity:
            return geometry
        try:
            return transform_geometry(
                partial(self._transformer.transform, errcheck=not self.lenient),
                geometry
            )
        except ProjError as e:
            raise TransformError(f"Could not transform geometry to {self.dest_crs.name}: {e}")


def find_transform(source_crs: Any, dest_crs: Any, lenient: bool = True) -> TransformContext:
    """
    Look up the operation between two coordinate reference systems.

    Args:
        source_crs: CRS of the data (EPSG code, WKT, CRS, ...)
        dest_crs: CRS to write
        lenient: Allow for some error due to different datums

    Returns:
        TransformContext reused for every feature of the run
    """
    source = resolve_crs(source_crs)
    dest = resolve_crs(dest_crs)

    if source == dest:
        logger.debug(f"Source and destination CRS are both {source.name}; geometries pass through")
        return TransformContext(source_crs=source, dest_crs=dest, lenient=lenient)

    try:
        transformer = Transformer.from_crs(source, dest, always_xy=True, allow_ballpark=lenient)
    except ProjError as e:
        raise TransformError(f"No transform from {source.name} to {dest.name}: {e}")

    logger.info(f"Transform: {source.name} -> {dest.name} (lenient={lenient})")
    return TransformContext(source_crs=source, dest_crs=dest, lenient=lenient, _transformer=transformer)


class CsvPointMapper:
    """
    Map positional CSV rows to point features.

    Fields are read in strict order: latitude, longitude, name, number.
    The point is built as (longitude, latitude): longitude is x, latitude is y.
    """

    def __init__(self, schema: RecordSchema):
        if len(schema.fields) < 2:
            raise SchemaError(
                f"Schema '{schema.name}' needs a name and a number field, got {schema.field_names}"
            )
        self.schema = schema
        self._name_field, self._number_field = schema.field_names[:2]

    def map(self, record: CsvRecord) -> Feature:
        tokens = record.tokens
        if len(tokens) < CSV_FIELD_COUNT:
            raise MalformedRecordError(
                record.line_number,
                f"expected {CSV_FIELD_COUNT} fields, found {len(tokens)}"
            )

        latitude = self._parse(record, LATITUDE, float, "latitude")
        longitude = self._parse(record, LONGITUDE, float, "longitude")
        name = tokens[NAME].strip()
        number = self._parse(record, NUMBER, int, "number")

        # Longitude (= x coord) first!
        point = Point(longitude, latitude)

        return Feature(
            geometry=point,
            properties={self._name_field: name, self._number_field: number}
        )

    @staticmethod
    def _parse(record: CsvRecord, index: int, convert, label: str):
        token = record.tokens[index]
        try:
            return convert(token.strip())
        except ValueError:
            raise MalformedRecordError(record.line_number, f"invalid {label} '{token}'")


class ReprojectMapper:
    """Copy each feature's attributes and replace its geometry with the transformed one."""

    def __init__(self, context: TransformContext):
        self.context = context

    def map(self, feature: Feature) -> Feature:
        return feature.with_geometry(self.context.transform(feature.geometry))
