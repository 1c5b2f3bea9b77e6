"""
Shared pytest fixtures for GeoLab tests.

Feature stores are real shapefiles written with fiona into tmp_path.
"""

import logging

import fiona
import pytest
from shapely.geometry import Point, Polygon, mapping

from geolab.config_loader import load_schema

GEOLAB_ENV_VARS = (
    "GEOLAB_CSV_DELIMITER",
    "GEOLAB_CSV_ENCODING",
    "GEOLAB_CREATE_SPATIAL_INDEX",
    "GEOLAB_SHAPEFILE_ENCODING",
    "GEOLAB_TARGET_CRS",
    "GEOLAB_LENIENT_TRANSFORM",
    "GEOLAB_TEMP_DIR",
    "TEMP_RETENTION_HOURS",
    "TEMP_SIZE_WARNING_GB",
    "TEMP_SIZE_LIMIT_GB",
)

LOCATIONS_CSV = """LAT, LON, CITY, NUMBER
46.066667, 11.116667, Trento, 140
44.9441, -93.0852, St Paul, 125

13.752222, 100.493889, Bangkok, 150
45.420833, -75.69, Ottawa, 200
"""

POINTS = [
    (Point(1.0, 0.0), {"name": "Origin East", "number": 10}),
    (Point(11.116667, 46.066667), {"name": "Trento", "number": 140}),
    (Point(-93.0852, 44.9441), {"name": "St Paul", "number": 125}),
]

POLYGONS = [
    (Polygon([(0, 0), (0, 1), (1, 1), (1, 0), (0, 0)]), {"name": "square"}),
    # Bowtie: ring crosses itself
    (Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)]), {"name": "bowtie"}),
]


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove GeoLab settings from the environment; anything loaded later is undone on teardown."""
    for name in GEOLAB_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def staging_root(tmp_path):
    """Staging root private to one test."""
    return tmp_path / "staging"


@pytest.fixture
def reset_logging():
    """Drop handlers installed by setup_logging so they do not outlive the test."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)


# =============================================================================
# Input Fixtures
# =============================================================================

@pytest.fixture
def location_schema():
    """Built-in Location schema."""
    return load_schema()


@pytest.fixture
def locations_csv(tmp_path):
    """CSV with a header, four rows and one blank line."""
    path = tmp_path / "locations.csv"
    path.write_text(LOCATIONS_CSV, encoding="utf-8")
    return path


@pytest.fixture
def malformed_csv(tmp_path):
    """CSV whose second record has a non-numeric count."""
    path = tmp_path / "malformed.csv"
    path.write_text(
        "LAT, LON, CITY, NUMBER\n"
        "46.066667, 11.116667, Trento, 140\n"
        "44.9441, -93.0852, St Paul, many\n",
        encoding="utf-8"
    )
    return path


def write_shapefile(path, geometry_type, properties, features, crs="EPSG:4326"):
    schema = {"geometry": geometry_type, "properties": properties}
    with fiona.open(str(path), "w", driver="ESRI Shapefile", schema=schema, crs=crs) as dst:
        for geometry, values in features:
            dst.write({"geometry": mapping(geometry), "properties": values})
    return path


@pytest.fixture
def points_shapefile(tmp_path):
    """Three WGS84 points with name and number attributes."""
    return write_shapefile(
        tmp_path / "points.shp",
        "Point",
        {"name": "str:15", "number": "int"},
        POINTS
    )


@pytest.fixture
def polygons_shapefile(tmp_path):
    """A valid square and an invalid bowtie polygon."""
    return write_shapefile(
        tmp_path / "polygons.shp",
        "Polygon",
        {"name": "str:20"},
        POLYGONS
    )
