"""
Unit tests for domain models.

Tests schema validation, fiona conversions and feature copies.
"""

import pytest
from pydantic import ValidationError
from shapely.geometry import Point

from geolab.domain import Feature, FieldSpec, FieldType, RecordSchema


class TestFieldSpec:
    """Test FieldSpec conversions."""

    def test_to_fiona_with_width(self):
        assert FieldSpec(name="name", type=FieldType.STR, width=15).to_fiona() == "str:15"

    def test_to_fiona_without_width(self):
        assert FieldSpec(name="number", type=FieldType.INT).to_fiona() == "int"

    def test_to_fiona_with_precision(self):
        spec = FieldSpec(name="area", type=FieldType.FLOAT, width=24, precision=15)
        assert spec.to_fiona() == "float:24.15"

    def test_from_fiona_parses_width_and_precision(self):
        spec = FieldSpec.from_fiona("area", "float:24.15")
        assert spec.type is FieldType.FLOAT
        assert spec.width == 24
        assert spec.precision == 15

    def test_from_fiona_accepts_ogr_aliases(self):
        assert FieldSpec.from_fiona("n", "integer").type is FieldType.INT
        assert FieldSpec.from_fiona("x", "real").type is FieldType.FLOAT
        assert FieldSpec.from_fiona("s", "string:80").width == 80

    def test_width_must_be_positive(self):
        with pytest.raises(ValidationError):
            FieldSpec(name="name", type=FieldType.STR, width=0)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            FieldSpec.from_fiona("blob", "binary")


class TestRecordSchema:
    """Test RecordSchema validation and behavior."""

    def test_describe_matches_shapefile_layout(self, location_schema):
        assert location_schema.describe() == "Location: the_geom:Point, name:str:15, number:int"

    def test_to_fiona(self, location_schema):
        assert location_schema.to_fiona() == {
            "geometry": "Point",
            "properties": {"name": "str:15", "number": "int"},
        }

    def test_field_names_keep_order(self, location_schema):
        assert location_schema.field_names == ["name", "number"]

    def test_schema_is_immutable(self, location_schema):
        with pytest.raises(ValidationError):
            location_schema.name = "Other"

    def test_duplicate_field_names_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate field names"):
            RecordSchema(
                name="Broken",
                fields=(
                    FieldSpec(name="name", type=FieldType.STR),
                    FieldSpec(name="NAME", type=FieldType.INT),
                ),
            )

    def test_unknown_geometry_type_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported geometry type"):
            RecordSchema(name="Broken", geometry_type="Circle")

    def test_3d_geometry_type_accepted(self):
        assert RecordSchema(name="Z", geometry_type="3D Point").geometry_type == "3D Point"

    def test_retype_only_changes_crs(self, location_schema):
        retyped = location_schema.retype("EPSG:3857")
        assert retyped.crs == "EPSG:3857"
        assert retyped.fields == location_schema.fields
        assert retyped.name == location_schema.name
        assert location_schema.crs == "EPSG:4326"

    def test_from_fiona(self):
        schema = RecordSchema.from_fiona(
            "roads",
            {"geometry": "LineString", "properties": {"id": "int:9", "label": "str:80"}},
            crs="EPSG:4326",
        )
        assert schema.geometry_type == "LineString"
        assert schema.field_names == ["id", "label"]
        assert schema.fields[1].width == 80

    def test_from_fiona_without_geometry_type(self):
        schema = RecordSchema.from_fiona("table", {"geometry": None, "properties": {}})
        assert schema.geometry_type == "Unknown"
        assert schema.crs is None


class TestFeature:
    """Test Feature copies."""

    def test_with_geometry_keeps_attributes_and_id(self):
        feature = Feature(geometry=Point(0, 0), properties={"name": "a"}, id="points.0")
        moved = feature.with_geometry(Point(5, 5))

        assert moved.geometry.equals(Point(5, 5))
        assert moved.properties == {"name": "a"}
        assert moved.id == "points.0"
        assert feature.geometry.equals(Point(0, 0))
