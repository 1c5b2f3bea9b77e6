"""
CLI tests through typer's CliRunner.

Every command runs against real files in tmp_path with staging redirected
into the test's own directory.
"""

import pytest
from typer.testing import CliRunner

from geolab.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_environment(staging_root, monkeypatch, reset_logging):
    monkeypatch.setenv("GEOLAB_TEMP_DIR", str(staging_root))


class TestCsv2Shp:
    """Test the csv2shp command."""

    def test_export(self, locations_csv):
        result = runner.invoke(app, ["csv2shp", str(locations_csv)])
        assert result.exit_code == 0, result.output
        assert "Export to shapefile complete: 4 features written" in result.output
        assert "SHAPE: Location: the_geom:Point, name:str:15, number:int" in result.output
        assert locations_csv.with_suffix(".shp").exists()

    def test_missing_input(self, tmp_path):
        result = runner.invoke(app, ["csv2shp", str(tmp_path / "missing.csv")])
        assert result.exit_code == 1
        assert "ERROR: Input file not found" in result.output

    def test_malformed_input(self, malformed_csv):
        result = runner.invoke(app, ["csv2shp", str(malformed_csv)])
        assert result.exit_code == 1
        assert "Export to shapefile failed" in result.output
        assert "ERROR: Line 3: invalid number" in result.output
        assert not malformed_csv.with_suffix(".shp").exists()

    def test_existing_destination_declined(self, locations_csv, tmp_path):
        destination = tmp_path / "cities.shp"
        destination.write_bytes(b"keep me")

        result = runner.invoke(app, ["csv2shp", str(locations_csv), str(destination)], input="n\n")
        assert result.exit_code == 0, result.output
        assert "Export cancelled" in result.output
        assert destination.read_bytes() == b"keep me"

    def test_existing_destination_forced(self, locations_csv, tmp_path):
        destination = tmp_path / "cities.shp"
        destination.write_bytes(b"replace me")

        result = runner.invoke(app, ["csv2shp", str(locations_csv), str(destination), "--force"])
        assert result.exit_code == 0, result.output
        assert destination.read_bytes() != b"replace me"

    @pytest.mark.parametrize("delimiter", [".", "-"])
    def test_delimiter_colliding_with_coordinates(self, locations_csv, delimiter):
        result = runner.invoke(app, ["csv2shp", str(locations_csv), "-d", delimiter])
        assert result.exit_code == 1
        assert "collides with numeric coordinates" in result.output
        assert not locations_csv.with_suffix(".shp").exists()

    def test_unknown_schema(self, locations_csv):
        result = runner.invoke(app, ["csv2shp", str(locations_csv), "--schema", "Nope"])
        assert result.exit_code == 1
        assert "ERROR: Schema 'Nope' not found" in result.output

    def test_tab_delimiter(self, tmp_path):
        path = tmp_path / "stations.tsv"
        path.write_text("lat\tlon\tname\tn\n45.5\t-122.6\tPortland\t3\n", encoding="utf-8")

        result = runner.invoke(app, ["csv2shp", str(path), "-d", "\\t"])
        assert result.exit_code == 0, result.output
        assert "1 features written" in result.output


class TestReproject:
    """Test the reproject command."""

    def test_reproject(self, points_shapefile):
        result = runner.invoke(app, ["reproject", str(points_shapefile), "--to-crs", "EPSG:3857"])
        assert result.exit_code == 0, result.output
        assert "Export to shapefile complete: 3 features written" in result.output
        assert points_shapefile.with_name("points_reprojected.shp").exists()

    def test_query_strategy(self, points_shapefile, tmp_path):
        destination = tmp_path / "mercator.shp"
        result = runner.invoke(app, [
            "reproject", str(points_shapefile), str(destination),
            "--to-crs", "EPSG:3857", "--strategy", "query",
        ])
        assert result.exit_code == 0, result.output
        assert destination.exists()

    def test_cannot_replace_source(self, points_shapefile):
        result = runner.invoke(app, [
            "reproject", str(points_shapefile), str(points_shapefile), "--to-crs", "EPSG:3857", "--force",
        ])
        assert result.exit_code == 1
        assert f"Cannot replace {points_shapefile}" in result.output

    def test_unknown_crs(self, points_shapefile):
        result = runner.invoke(app, ["reproject", str(points_shapefile), "--to-crs", "EPSG:999999"])
        assert result.exit_code == 1
        assert "ERROR: Unknown target CRS" in result.output


class TestValidate:
    """Test the validate command."""

    @pytest.mark.parametrize("mode", ["--background", "--inline"])
    def test_invalid_geometry_reported(self, polygons_shapefile, mode):
        result = runner.invoke(app, ["validate", str(polygons_shapefile), mode])
        assert result.exit_code == 0, result.output
        assert "Invalid features: 1" in result.output
        assert "polygons.1" in result.output

    def test_valid_store(self, points_shapefile):
        result = runner.invoke(app, ["validate", str(points_shapefile)])
        assert result.exit_code == 0, result.output
        assert "All feature geometries are valid" in result.output

    def test_missing_store(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "missing.shp")])
        assert result.exit_code == 1
        assert "ERROR: Input file not found" in result.output


class TestInspection:
    """Test info and layers."""

    def test_info(self, points_shapefile):
        result = runner.invoke(app, ["info", str(points_shapefile)])
        assert result.exit_code == 0, result.output
        assert "Layer: points" in result.output
        assert "Schema: points: the_geom:Point" in result.output
        assert "Features: 3" in result.output

    def test_layers(self, points_shapefile):
        result = runner.invoke(app, ["layers", str(points_shapefile)])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "points"


class TestQueries:
    """Test features, count and the query shell."""

    def test_count(self, points_shapefile):
        result = runner.invoke(app, ["count", str(points_shapefile), "--filter", "number > 100"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "2"

    def test_features(self, points_shapefile):
        result = runner.invoke(app, ["features", str(points_shapefile), "-q", "name = 'Trento'"])
        assert result.exit_code == 0, result.output
        assert "Trento" in result.output
        assert "St Paul" not in result.output
        assert "1 features" in result.output

    def test_geometry_only(self, points_shapefile):
        result = runner.invoke(app, ["features", str(points_shapefile), "--geometry-only"])
        assert result.exit_code == 0, result.output
        assert "POINT" in result.output
        assert "Trento" not in result.output

    def test_bad_filter(self, points_shapefile):
        result = runner.invoke(app, ["count", str(points_shapefile), "--filter", "name = 'Trento"])
        assert result.exit_code == 1
        assert "ERROR: Invalid filter" in result.output

    def test_query_shell(self, points_shapefile):
        commands = "\n".join([
            "layers",
            "count number > 100",
            "use roads",
            "frobnicate",
            "geometry name = 'Trento'",
            "exit",
        ]) + "\n"
        result = runner.invoke(app, ["query-shell", str(points_shapefile)], input=commands)

        assert result.exit_code == 0, result.output
        assert "Feature types: points" in result.output
        assert "* points" in result.output
        assert "\n2\n" in result.output
        assert "ERROR: Unknown feature type 'roads'" in result.output
        assert "Unknown command 'frobnicate'" in result.output
        assert "POINT (11.116667 46.066667)" in result.output

    def test_query_shell_ends_on_eof(self):
        result = runner.invoke(app, ["query-shell"], input="count\n")
        assert result.exit_code == 0, result.output
        assert "ERROR: Not connected to a feature store" in result.output


class TestMisc:
    """Test listing commands."""

    def test_list_schemas(self):
        result = runner.invoke(app, ["list-schemas"])
        assert result.exit_code == 0, result.output
        assert "* Location" in result.output
        assert "Fields: name:str:15, number:int" in result.output

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "geolab version: 0.1.0" in result.output
