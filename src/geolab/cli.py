import functools
import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, Callable, Optional

import typer
from dotenv import load_dotenv

# Load environment variables BEFORE importing local modules that use them
load_dotenv()

from .cleanup import full_cleanup_check, register_cleanup_handlers
from .config.settings import Config, ConfigurationError, CRSConfig, CsvConfig
from .config_loader import DEFAULT_SCHEMA_NAME, get_available_schemas, load_schema
from .domain.enums import ExportStatus, ReprojectStrategy
from .pipeline.export import run_csv_export, run_reprojection_export
from .pipeline.query import DEFAULT_MAX_ROWS, QuerySession, render_table
from .pipeline.source import StoreRowSource, describe_store, list_layers
from .pipeline.validate import OUTCOME, PROGRESS, QueueProgressListener, ValidationTask, validate_features
from .types import ExportResult, GeolabError, ValidationReport
from .utils import setup_logging

app = typer.Typer(help="GeoLab: CSV -> Shapefile export, reprojection, validation and queries")


def safe_action(func: Callable) -> Callable:
    """Report GeoLab failures as 'ERROR: <message>' with exit code 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (GeolabError, ConfigurationError) as e:
            logging.debug(f"{func.__name__} failed", exc_info=True)
            typer.echo(f"ERROR: {e}", err=True)
            raise typer.Exit(1)
    return wrapper


def prepare_run(verbose: bool, target_name: str, mode: str, log_to_file: bool, skip_cleanup: bool) -> Config:
    """
    Logging, configuration and staging housekeeping shared by the export commands.

    Returns:
        Loaded Config
    """
    setup_logging(verbose, target_name, mode, log_to_file)
    config = Config()

    # Register cleanup handlers for graceful interruption handling
    register_cleanup_handlers(config.temp.root)

    if not full_cleanup_check(
        retention_hours=config.temp.retention_hours,
        warning_gb=config.temp.warning_gb,
        limit_gb=config.temp.limit_gb,
        root=config.temp.root,
        skip_cleanup=skip_cleanup
    ):
        logging.error("Temp directory size limit exceeded - aborting operation")
        raise typer.Exit(1)

    logging.debug(f"Configuration: {config.get_summary()}")
    return config


def confirm_overwrite(force: bool) -> Optional[Callable[[Path], bool]]:
    if force:
        return None
    return lambda path: typer.confirm(f"{path} already exists. Replace it?", default=False)


def log_banner(title: str, level: int = logging.INFO) -> None:
    logging.log(level, "=" * 50)
    logging.log(level, title)
    logging.log(level, "=" * 50)


def log_failure(error: Exception) -> None:
    log_banner("OPERATION FAILED", logging.ERROR)
    logging.error(f"Error type: {type(error).__name__}")
    logging.error(f"Error message: {error}")
    logging.error("Export to shapefile failed")


def report_export(result: ExportResult, start_time: datetime) -> None:
    if result.status is ExportStatus.CANCELLED:
        logging.info(f"Export cancelled, {result.destination} left unchanged")
        typer.echo(result.message)
        return

    logging.info(f"Export operation completed successfully in {datetime.now() - start_time}")
    logging.info(f"Output file: {result.destination}")
    typer.echo(f"{result.message}: {result.features_written} features written to {result.destination}")


@app.command("csv2shp")
@safe_action
def csv_to_shapefile(
    csv_file: Annotated[Path, typer.Argument(help="CSV file with a header and latitude,longitude,name,number rows")],
    output: Annotated[Optional[Path], typer.Argument(help="Shapefile to create (defaults to the CSV name with .shp)")] = None,
    schema: Annotated[str, typer.Option("--schema", "-s", help="Record schema name. Use 'list-schemas' to see available options.")] = DEFAULT_SCHEMA_NAME,
    schema_file: Annotated[Optional[Path], typer.Option("--schema-file", help="YAML file with schema definitions")] = None,
    delimiter: Annotated[Optional[str], typer.Option("--delimiter", "-d", help="CSV field delimiter (defaults to GEOLAB_CSV_DELIMITER or ',')")] = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Replace an existing shapefile without asking")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
    skip_cleanup: Annotated[bool, typer.Option("--skip-cleanup", help="Skip temp file cleanup for debugging")] = False,
):
    """
    Convert a latitude/longitude CSV file into a point shapefile.

    Every row is written, or none is: the shapefile is staged and only
    published once the last row has been written.

    Examples:
        geolab csv2shp data/locations.csv
        geolab csv2shp data/locations.csv out/cities.shp --force
        geolab csv2shp data/stations.tsv -d "\\t" --schema Station --schema-file schemas.yml
    """
    config = prepare_run(verbose, csv_file.stem, "csv2shp", log_to_file, skip_cleanup)

    if delimiter:
        if delimiter in ("\\t", "tab"):
            delimiter = "\t"
        try:
            config.csv = CsvConfig(delimiter=delimiter, encoding=config.csv.encoding)
        except ValueError as e:
            raise ConfigurationError(f"Invalid --delimiter: {e}")
        config.validate()

    record_schema = load_schema(schema, schema_file)

    start_time = datetime.now()
    log_banner("CSV TO SHAPEFILE EXPORT")
    logging.info(f"Execution timestamp: {start_time}")
    logging.info(f"Input file: {csv_file}")
    logging.info(f"Schema: {record_schema.describe()}")

    try:
        result = run_csv_export(
            csv_file,
            destination=output,
            schema=record_schema,
            csv_config=config.csv,
            export_config=config.export,
            staging_root=config.temp.root,
            confirm_overwrite=confirm_overwrite(force)
        )
    except GeolabError as e:
        log_failure(e)
        raise

    report_export(result, start_time)


@app.command("reproject")
@safe_action
def reproject(
    source: Annotated[Path, typer.Argument(help="Shapefile (or other feature store) to reproject")],
    output: Annotated[Optional[Path], typer.Argument(help="Shapefile to create (defaults to <name>_reprojected.shp)")] = None,
    to_crs: Annotated[Optional[str], typer.Option("--to-crs", "-t", help="Destination CRS, e.g. EPSG:3857 (defaults to GEOLAB_TARGET_CRS)")] = None,
    layer: Annotated[Optional[str], typer.Option("--layer", "-l", help="Layer to read (defaults to the first)")] = None,
    strategy: Annotated[ReprojectStrategy, typer.Option("--strategy", case_sensitive=False, help="transform: reproject each feature | query: let the store reproject while reading")] = ReprojectStrategy.TRANSFORM,
    strict: Annotated[bool, typer.Option("--strict", help="Refuse approximate transforms between different datums")] = False,
    force: Annotated[bool, typer.Option("--force", "-f", help="Replace an existing shapefile without asking")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
    skip_cleanup: Annotated[bool, typer.Option("--skip-cleanup", help="Skip temp file cleanup for debugging")] = False,
):
    """
    Export a shapefile into a new shapefile in another coordinate reference system.

    Attributes are copied unchanged; only geometries are transformed.

    Examples:
        geolab reproject data/bc_border.shp --to-crs EPSG:3005
        geolab reproject data/bc_border.shp out/border_3857.shp -t EPSG:3857 --strategy query
    """
    config = prepare_run(verbose, source.stem, "reproject", log_to_file, skip_cleanup)

    try:
        crs_config = CRSConfig(
            target_crs=to_crs or config.crs.target_crs,
            lenient=config.crs.lenient and not strict
        )
    except ValueError as e:
        raise ConfigurationError(str(e))

    start_time = datetime.now()
    log_banner("SHAPEFILE REPROJECTION EXPORT")
    logging.info(f"Execution timestamp: {start_time}")
    logging.info(f"Input file: {source}")
    logging.info(f"Destination CRS: {crs_config.target_crs} (lenient={crs_config.lenient})")
    logging.info(f"Strategy: {strategy.value}")

    try:
        result = run_reprojection_export(
            source,
            destination=output,
            layer=layer,
            strategy=strategy,
            crs_config=crs_config,
            export_config=config.export,
            staging_root=config.temp.root,
            confirm_overwrite=confirm_overwrite(force)
        )
    except GeolabError as e:
        log_failure(e)
        raise

    report_export(result, start_time)


def validate_in_background(rows: StoreRowSource) -> ValidationReport:
    """Run the scan on a worker while this thread drives the progress bar."""
    listener = QueueProgressListener()
    task = ValidationTask(lambda: iter(rows), total=rows.feature_count)
    task.start(listener.finished, progress=listener)

    outcome = None
    with typer.progressbar(length=rows.feature_count, label="Validating geometries") as progress_bar:
        done = 0
        while outcome is None:
            kind, value = listener.events.get()
            if kind == PROGRESS:
                progress_bar.update(value - done)
                done = value
            elif kind == OUTCOME:
                outcome = value

    if not outcome.ok:
        raise outcome.error
    return outcome.report


@app.command("validate")
@safe_action
def validate(
    source: Annotated[Path, typer.Argument(help="Feature store to check")],
    layer: Annotated[Optional[str], typer.Option("--layer", "-l", help="Layer to check (defaults to the first)")] = None,
    background: Annotated[bool, typer.Option("--background/--inline", help="Validate on a worker thread with a progress bar")] = True,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
):
    """Count features whose geometry is invalid."""
    setup_logging(verbose)
    rows = StoreRowSource(source, layer=layer)
    logging.info(f"Validating {rows.feature_count:,} features of {rows.path} ({rows.layer})")

    if background:
        report = validate_in_background(rows)
    else:
        report = validate_features(rows, total=rows.feature_count)

    typer.echo(report.message)
    for feature_id in report.invalid_ids:
        typer.echo(f"  {feature_id}")


@app.command("info")
@safe_action
def info(
    source: Annotated[Path, typer.Argument(help="Feature store to describe")],
    layer: Annotated[Optional[str], typer.Option("--layer", "-l", help="Layer to describe (defaults to the first)")] = None,
):
    """Show the schema, CRS, bounds and feature count of a layer."""
    details = describe_store(source, layer)
    minx, miny, maxx, maxy = details.bounds

    typer.echo(f"Source: {details.path}")
    typer.echo(f"Layer: {details.layer}")
    typer.echo(f"Schema: {details.schema_text}")
    typer.echo(f"CRS: {details.crs or 'undefined'}")
    typer.echo(f"Bounds: ({minx:.6f}, {miny:.6f}) - ({maxx:.6f}, {maxy:.6f})")
    typer.echo(f"Features: {details.feature_count}")
    if len(details.layers) > 1:
        typer.echo(f"Other layers: {', '.join(n for n in details.layers if n != details.layer)}")


@app.command("layers")
@safe_action
def layers(
    source: Annotated[Path, typer.Argument(help="Feature store to inspect")],
):
    """List the feature types (layers) of a store."""
    for name in list_layers(source):
        typer.echo(name)


def open_session(source: Path, layer: Optional[str]) -> QuerySession:
    session = QuerySession()
    session.connect(source)
    if layer:
        session.select(layer)
    return session


@app.command("features")
@safe_action
def features(
    source: Annotated[Path, typer.Argument(help="Feature store to query")],
    layer: Annotated[Optional[str], typer.Option("--layer", "-l", help="Feature type to query (defaults to the first)")] = None,
    filter_text: Annotated[Optional[str], typer.Option("--filter", "-q", help="Filter, e.g. \"number > 100 and name = 'Seattle'\" (include|exclude also accepted)")] = None,
    geometry_only: Annotated[bool, typer.Option("--geometry-only", help="Show only the geometry column")] = False,
    max_rows: Annotated[int, typer.Option("--max-rows", "-n", min=1, help="Rows to display")] = DEFAULT_MAX_ROWS,
):
    """Show features matching a filter as a table."""
    session = open_session(source, layer)
    if geometry_only:
        result = session.get_geometries(filter_text)
    else:
        result = session.get_features(filter_text)

    typer.echo(render_table(result, max_rows))
    typer.echo(f"\n{len(result)} features")


@app.command("count")
@safe_action
def count(
    source: Annotated[Path, typer.Argument(help="Feature store to query")],
    layer: Annotated[Optional[str], typer.Option("--layer", "-l", help="Feature type to query (defaults to the first)")] = None,
    filter_text: Annotated[Optional[str], typer.Option("--filter", "-q", help="Filter expression")] = None,
):
    """Count features matching a filter."""
    session = open_session(source, layer)
    typer.echo(str(session.count(filter_text)))


SHELL_HELP = """Commands:
  open PATH          connect to a feature store
  layers             list feature types
  use NAME           select a feature type
  features [FILTER]  show matching features
  count [FILTER]     count matching features
  geometry [FILTER]  show only the geometries of matching features
  help               show this message
  exit               leave the shell"""


def shell_commands(session: QuerySession, max_rows: int) -> dict[str, Callable[[str], None]]:
    """Dispatch table for the query shell: command name -> handler(argument)."""
    def open_store(argument: str) -> None:
        if not argument:
            raise GeolabError("Usage: open PATH")
        type_names = session.connect(argument)
        typer.echo(f"Feature types: {', '.join(type_names)}")

    def show_layers(argument: str) -> None:
        session.require_connection()
        for name in session.type_names:
            marker = "*" if name == session.type_name else " "
            typer.echo(f"{marker} {name}")

    def use(argument: str) -> None:
        if not argument:
            raise GeolabError("Usage: use NAME")
        session.select(argument)

    def show_features(argument: str) -> None:
        result = session.get_features(argument)
        typer.echo(render_table(result, max_rows))
        typer.echo(f"{len(result)} features")

    def show_count(argument: str) -> None:
        typer.echo(str(session.count(argument)))

    def show_geometry(argument: str) -> None:
        typer.echo(render_table(session.get_geometries(argument), max_rows))

    def show_help(argument: str) -> None:
        typer.echo(SHELL_HELP)

    return {
        "open": open_store,
        "layers": show_layers,
        "use": use,
        "features": show_features,
        "count": show_count,
        "geometry": show_geometry,
        "help": show_help,
    }


@app.command("query-shell")
def query_shell(
    source: Annotated[Optional[Path], typer.Argument(help="Feature store to connect to on start")] = None,
    max_rows: Annotated[int, typer.Option("--max-rows", "-n", min=1, help="Rows to display")] = DEFAULT_MAX_ROWS,
):
    """
    Interactive query loop over a feature store.

    Errors are reported and the loop continues; 'exit' or end of input leaves.
    """
    session = QuerySession()
    commands = shell_commands(session, max_rows)
    typer.echo("GeoLab query shell. Type 'help' for commands.")

    if source:
        try:
            commands["open"](str(source))
        except GeolabError as e:
            typer.echo(f"ERROR: {e}", err=True)

    while True:
        try:
            line = typer.prompt(
                f"geolab:{session.type_name or '-'}",
                default="",
                show_default=False,
                prompt_suffix="> "
            )
        except typer.Abort:
            break

        name, _, argument = line.strip().partition(" ")
        if not name:
            continue
        if name in ("exit", "quit"):
            break

        handler = commands.get(name)
        if handler is None:
            typer.echo(f"Unknown command '{name}'. Type 'help' for commands.", err=True)
            continue

        try:
            handler(argument.strip())
        except GeolabError as e:
            typer.echo(f"ERROR: {e}", err=True)


@app.command("list-schemas")
def list_schemas(
    schema_file: Annotated[Optional[Path], typer.Option("--schema-file", help="YAML file with schema definitions")] = None,
):
    """List record schemas available to csv2shp."""
    try:
        schemas = get_available_schemas(schema_file)
        if not schemas:
            typer.echo("WARNING: No schemas found")
            raise typer.Exit(1)

        typer.echo("Available Record Schemas")
        typer.echo("=" * 50)
        for name, description in schemas.items():
            record_schema = load_schema(name, schema_file)
            typer.echo(f"\n* {name}")
            typer.echo(f"   Geometry: {record_schema.geometry_field} ({record_schema.geometry_type})")
            typer.echo(f"   CRS: {record_schema.crs}")
            typer.echo(f"   Fields: {', '.join(f'{f.name}:{f.to_fiona()}' for f in record_schema.fields)}")
            if description:
                typer.echo(f"   Description: {description}")

        typer.echo(f"\nFound {len(schemas)} schemas")
        typer.echo("\nUsage:")
        typer.echo("  geolab csv2shp <csv_file> --schema <name> [--schema-file <file>]")

    except GeolabError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(1)


@app.command("version")
def version():
    """Display version information."""
    from . import __version__
    typer.echo(f"geolab version: {__version__}")


if __name__ == "__main__":
    app()
