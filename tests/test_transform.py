"""Unit tests for record mappers and CRS transforms."""

import pytest
from shapely.geometry import Point

from geolab.domain import Feature, FieldSpec, FieldType, RecordSchema
from geolab.pipeline.source import CsvRecord
from geolab.pipeline.transform import CsvPointMapper, ReprojectMapper, find_transform, resolve_crs
from geolab.types import MalformedRecordError, SchemaError, TransformError


class TestCsvPointMapper:
    """Test CSV row to point feature mapping."""

    def test_longitude_is_x_latitude_is_y(self, location_schema):
        feature = CsvPointMapper(location_schema).map(
            CsvRecord(2, ("46.066667", " 11.116667", " Trento", " 140"))
        )
        assert feature.geometry.x == pytest.approx(11.116667)
        assert feature.geometry.y == pytest.approx(46.066667)

    def test_attributes_are_stripped_and_typed(self, location_schema):
        feature = CsvPointMapper(location_schema).map(
            CsvRecord(2, ("46.066667", "11.116667", "  Trento ", " 140 "))
        )
        assert feature.properties == {"name": "Trento", "number": 140}
        assert feature.id is None

    def test_attribute_names_follow_schema(self):
        schema = RecordSchema(
            name="Station",
            fields=(
                FieldSpec(name="code", type=FieldType.STR, width=8),
                FieldSpec(name="visits", type=FieldType.INT),
            ),
        )
        feature = CsvPointMapper(schema).map(CsvRecord(2, ("1", "2", "A", "3")))
        assert feature.properties == {"code": "A", "visits": 3}

    def test_extra_tokens_ignored(self, location_schema):
        feature = CsvPointMapper(location_schema).map(CsvRecord(2, ("1", "2", "A", "3", "extra")))
        assert feature.properties["number"] == 3

    def test_too_few_fields(self, location_schema):
        with pytest.raises(MalformedRecordError, match="Line 7: expected 4 fields, found 3") as exc:
            CsvPointMapper(location_schema).map(CsvRecord(7, ("1", "2", "A")))
        assert exc.value.line_number == 7

    @pytest.mark.parametrize("tokens,label", [
        (("north", "2", "A", "3"), "latitude"),
        (("1", "", "A", "3"), "longitude"),
        (("1", "2", "A", "3.5"), "number"),
    ])
    def test_bad_numeric_token(self, location_schema, tokens, label):
        with pytest.raises(MalformedRecordError, match=f"invalid {label}"):
            CsvPointMapper(location_schema).map(CsvRecord(3, tokens))

    def test_schema_needs_two_fields(self):
        schema = RecordSchema(name="Bare", fields=(FieldSpec(name="name", type=FieldType.STR),))
        with pytest.raises(SchemaError):
            CsvPointMapper(schema)


class TestFindTransform:
    """Test CRS resolution and transform lookup."""

    def test_identity_when_crs_match(self):
        context = find_transform("EPSG:4326", "epsg:4326")
        assert context.is_identity
        point = Point(1, 2)
        assert context.transform(point) is point

    def test_wgs84_to_web_mercator(self):
        context = find_transform("EPSG:4326", "EPSG:3857")
        assert not context.is_identity
        moved = context.transform(Point(1.0, 0.0))
        assert moved.x == pytest.approx(111319.49, rel=1e-6)
        assert moved.y == pytest.approx(0.0, abs=1e-6)

    def test_none_geometry_passes_through(self):
        assert find_transform("EPSG:4326", "EPSG:3857").transform(None) is None

    def test_unknown_crs(self):
        with pytest.raises(TransformError, match="Unknown coordinate reference system"):
            find_transform("EPSG:4326", "EPSG:999999")

    def test_missing_crs(self):
        with pytest.raises(TransformError, match="No coordinate reference system"):
            resolve_crs(None)


class TestReprojectMapper:
    """Test attribute-preserving reprojection."""

    def test_only_geometry_changes(self):
        mapper = ReprojectMapper(find_transform("EPSG:4326", "EPSG:3857"))
        feature = Feature(geometry=Point(1.0, 0.0), properties={"name": "a", "number": 1}, id="points.0")

        moved = mapper.map(feature)
        assert moved.properties == {"name": "a", "number": 1}
        assert moved.id == "points.0"
        assert moved.geometry.x == pytest.approx(111319.49, rel=1e-6)

    def test_missing_geometry_stays_missing(self):
        mapper = ReprojectMapper(find_transform("EPSG:4326", "EPSG:3857"))
        assert mapper.map(Feature(geometry=None, properties={"name": "a"})).geometry is None
