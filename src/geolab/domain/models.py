"""
Pipeline Domain Models

Pydantic models for record schemas and features flowing through the export pipeline.
Schemas are immutable once built; a sink created from a schema only accepts
features shaped by it.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from shapely.geometry.base import BaseGeometry

from .enums import FieldType

GEOMETRY_TYPES = {
    "Point",
    "LineString",
    "Polygon",
    "MultiPoint",
    "MultiLineString",
    "MultiPolygon",
    "GeometryCollection",
    "Unknown",
}

# Fiona reports integer widths for these types but they round-trip as the base name
_FIONA_TYPE_ALIASES = {
    "integer": FieldType.INT,
    "real": FieldType.FLOAT,
    "string": FieldType.STR,
}


class FieldSpec(BaseModel):
    """One named, typed scalar attribute."""
    name: str = Field(..., min_length=1, description="Attribute name")
    type: FieldType = Field(..., description="Attribute type")
    width: Optional[int] = Field(None, gt=0, description="Maximum width (text length or digits)")
    precision: Optional[int] = Field(None, ge=0, description="Decimal places for float fields")

    class Config:
        """Pydantic configuration."""
        frozen = True

    def to_fiona(self) -> str:
        """Render as a fiona type string such as ``str:15`` or ``float:24.15``."""
        if self.width is None:
            return self.type.value
        if self.precision is None:
            return f"{self.type.value}:{self.width}"
        return f"{self.type.value}:{self.width}.{self.precision}"

    @classmethod
    def from_fiona(cls, name: str, type_string: str) -> "FieldSpec":
        """Parse a fiona type string."""
        base, _, size = type_string.partition(":")
        base = base.strip().lower()
        field_type = _FIONA_TYPE_ALIASES.get(base) or FieldType(base)

        width = precision = None
        if size:
            width_part, _, precision_part = size.partition(".")
            width = int(width_part) if width_part else None
            precision = int(precision_part) if precision_part else None

        return cls(name=name, type=field_type, width=width, precision=precision)


class RecordSchema(BaseModel):
    """
    Ordered attribute schema with one designated geometry field.

    The geometry field comes first by shapefile convention and is not part of
    ``fields``; ``fields`` holds the scalar attributes in write order.
    """
    name: str = Field(..., min_length=1, description="Feature type name")
    geometry_field: str = Field(default="the_geom", description="Geometry attribute name")
    geometry_type: str = Field(default="Point", description="Geometry type shared by all features")
    crs: Optional[str] = Field(default="EPSG:4326", description="CRS as EPSG code, PROJ string or WKT")
    fields: tuple[FieldSpec, ...] = Field(default_factory=tuple, description="Scalar attributes in order")

    class Config:
        """Pydantic configuration."""
        frozen = True

    @field_validator("geometry_type")
    @classmethod
    def _known_geometry_type(cls, value: str) -> str:
        base = value[3:] if value.startswith("3D ") else value
        if base not in GEOMETRY_TYPES:
            raise ValueError(f"Unsupported geometry type: {value}")
        return value

    @field_validator("fields")
    @classmethod
    def _unique_field_names(cls, value: tuple[FieldSpec, ...]) -> tuple[FieldSpec, ...]:
        names = [f.name.lower() for f in value]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate field names: {', '.join(duplicates)}")
        return value

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def to_fiona(self) -> dict[str, Any]:
        """Fiona schema mapping for ``fiona.open(..., 'w', schema=...)``."""
        return {
            "geometry": self.geometry_type,
            "properties": {f.name: f.to_fiona() for f in self.fields},
        }

    @classmethod
    def from_fiona(cls, name: str, schema: dict[str, Any], crs: Optional[str] = None) -> "RecordSchema":
        """Build a schema from a fiona collection's ``schema`` mapping."""
        fields = tuple(
            FieldSpec.from_fiona(field_name, type_string)
            for field_name, type_string in schema.get("properties", {}).items()
        )
        return cls(
            name=name,
            geometry_type=schema.get("geometry") or "Unknown",
            crs=crs or None,
            fields=fields,
        )

    def retype(self, crs: Optional[str]) -> "RecordSchema":
        """Copy of this schema in another coordinate reference system."""
        return self.model_copy(update={"crs": crs})

    def describe(self) -> str:
        """Compact one-line form, e.g. ``Location: the_geom:Point, name:str:15``."""
        parts = [f"{self.geometry_field}:{self.geometry_type}"]
        parts.extend(f"{f.name}:{f.to_fiona()}" for f in self.fields)
        return f"{self.name}: " + ", ".join(parts)


class Feature(BaseModel):
    """One geometry plus its scalar attributes."""
    geometry: Optional[BaseGeometry] = Field(None, description="Shapely geometry")
    properties: dict[str, Any] = Field(default_factory=dict, description="Attribute values in schema order")
    id: Optional[str] = Field(None, description="Identity token assigned by a store")

    class Config:
        """Pydantic configuration."""
        frozen = True
        arbitrary_types_allowed = True  # Allow shapely geometries

    def with_geometry(self, geometry: Optional[BaseGeometry]) -> "Feature":
        """Same attributes and id, different geometry."""
        return Feature(geometry=geometry, properties=dict(self.properties), id=self.id)
