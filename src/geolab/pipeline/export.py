"""
Exporter - Transactional Shapefile Export

Writes mapped features into a new shapefile inside an all-or-nothing
transaction. Features are written into a private staging directory; commit
publishes the finished shapefile next to its destination name, rollback
discards it. A destination is never left half-written.
"""

import logging
import shutil
import tempfile
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Optional

import fiona
from shapely.geometry import mapping

from ..cleanup import get_pid_temp_dir
from ..config.settings import CRSConfig, CsvConfig, ExportConfig
from ..config_loader import load_schema
from ..domain.enums import ExportStatus, ReprojectStrategy, TransactionState
from ..domain.models import Feature, RecordSchema
from ..types import (
    DestinationConflictError,
    ExportFailedError,
    ExportResult,
    GeolabError,
    TransactionError,
    TransformError,
)
from ..utils import (
    as_shapefile_path,
    default_csv_destination,
    default_reprojection_destination,
    replaces_shapefile,
    shapefile_parts,
)
from .source import CsvRowSource, StoreRowSource
from .transform import CsvPointMapper, ReprojectMapper, find_transform, resolve_crs

logger = logging.getLogger(__name__)

SHAPEFILE_DRIVER = "ESRI Shapefile"


class Transaction:
    """
    Unit of work wrapping all writes to one destination.

    State moves idle -> open -> (committed | rolled_back) -> closed.
    ``close()`` may be called on every exit path: it rolls back a transaction
    that is still open and is a no-op for one that never began.
    """

    def __init__(self, handle: str = "create", staging_root: Optional[Path] = None):
        self.handle = handle
        self.staging_root = staging_root
        self.state = TransactionState.IDLE
        self.staging_dir: Optional[Path] = None
        self._resources: list[Any] = []
        self._staged: dict[Path, Path] = {}

    def __repr__(self) -> str:
        return f"Transaction(handle={self.handle!r}, state={self.state.value})"

    def _require_open(self, action: str) -> None:
        if self.state is not TransactionState.OPEN:
            raise TransactionError(
                f"Cannot {action}: transaction '{self.handle}' is {self.state.value}"
            )

    def begin(self) -> None:
        if self.state is not TransactionState.IDLE:
            raise TransactionError(f"Transaction '{self.handle}' already {self.state.value}")

        pid_dir = get_pid_temp_dir(self.staging_root)
        self.staging_dir = Path(tempfile.mkdtemp(prefix=f"txn_{self.handle}_", dir=pid_dir))
        self.state = TransactionState.OPEN
        logger.debug(f"Transaction '{self.handle}' staging in {self.staging_dir}")

    def stage(self, destination: Path) -> Path:
        """Reserve the staging path that will be published as ``destination`` on commit."""
        self._require_open("stage")
        staged = self.staging_dir / destination.name
        self._staged[staged] = destination
        return staged

    def register(self, resource: Any) -> None:
        """Tie a closable writer to this transaction; it is closed before commit or rollback."""
        self._require_open("register a writer")
        self._resources.append(resource)

    def _close_resources(self) -> None:
        first_error = None
        while self._resources:
            resource = self._resources.pop()
            try:
                resource.close()
            except Exception as e:
                logger.warning(f"Failed to close {resource!r}: {e}")
                first_error = first_error or e
        if first_error is not None:
            raise first_error

    def commit(self) -> None:
        self._require_open("commit")
        self._close_resources()
        self._publish()
        self.state = TransactionState.COMMITTED
        logger.debug(f"Transaction '{self.handle}' committed")

    def _publish(self) -> None:
        """Move staged shapefiles into place, restoring any replaced files on failure."""
        backup_dir = self.staging_dir / ".previous"
        published: list[Path] = []
        replaced: list[tuple[Path, Path]] = []

        try:
            for staged, destination in self._staged.items():
                destination.parent.mkdir(parents=True, exist_ok=True)

                for old_part in shapefile_parts(destination):
                    backup_dir.mkdir(exist_ok=True)
                    backup = backup_dir / old_part.name
                    shutil.move(str(old_part), str(backup))
                    replaced.append((backup, old_part))

                for part in shapefile_parts(staged):
                    target = destination.with_suffix(part.suffix.lower())
                    shutil.move(str(part), str(target))
                    published.append(target)
        except OSError as e:
            for target in published:
                target.unlink(missing_ok=True)
            for backup, original in replaced:
                shutil.move(str(backup), str(original))
            raise TransactionError(f"Could not publish staged files: {e}")

        for target in published:
            logger.debug(f"Published {target}")

    def rollback(self) -> None:
        if self.state is not TransactionState.OPEN:
            logger.debug(f"Rollback ignored: transaction '{self.handle}' is {self.state.value}")
            return

        try:
            self._close_resources()
        except Exception as e:
            logger.warning(f"Error while closing writers during rollback: {e}")
        self._discard_staging()
        self.state = TransactionState.ROLLED_BACK
        logger.info(f"Transaction '{self.handle}' rolled back")

    def _discard_staging(self) -> None:
        if self.staging_dir and self.staging_dir.exists():
            shutil.rmtree(self.staging_dir, ignore_errors=True)
        self._staged.clear()

    def close(self) -> None:
        if self.state is TransactionState.CLOSED:
            return
        if self.state is TransactionState.OPEN:
            self.rollback()
        self._discard_staging()
        self.state = TransactionState.CLOSED


class ShapefileSink:
    """
    Write features into a new shapefile through a Transaction.

    The schema is created exactly once, before the first append. Appends go
    one at a time in source order.
    """

    def __init__(
        self,
        destination: Path | str,
        transaction: Transaction,
        create_spatial_index: bool = True,
        encoding: str = "UTF-8"
    ):
        self.destination = as_shapefile_path(destination)
        self.transaction = transaction
        self.create_spatial_index = create_spatial_index
        self.encoding = encoding
        self.schema: Optional[RecordSchema] = None
        self.features_written = 0
        self._collection = None

    def create_schema(self, schema: RecordSchema) -> None:
        if self.schema is not None:
            raise TransactionError(f"Schema already created for {self.destination}")

        staged = self.transaction.stage(self.destination)
        options = {"SPATIAL_INDEX": "YES"} if self.create_spatial_index else {}
        crs_wkt = resolve_crs(schema.crs).to_wkt() if schema.crs else None

        self._collection = fiona.open(
            str(staged),
            "w",
            driver=SHAPEFILE_DRIVER,
            schema=schema.to_fiona(),
            crs_wkt=crs_wkt,
            encoding=self.encoding,
            **options
        )
        self.transaction.register(self._collection)
        self.schema = schema

    def append(self, feature: Feature) -> str:
        """Write one feature; returns the identity token assigned to it."""
        if self._collection is None:
            raise TransactionError("create_schema() must be called before append()")

        record = {
            "geometry": mapping(feature.geometry) if feature.geometry is not None else None,
            "properties": {name: feature.properties.get(name) for name in self.schema.field_names},
        }
        self._collection.write(record)
        self.features_written += 1
        return f"{self.schema.name}.{self.features_written}"

    def add_features(self, features: Iterable[Feature]) -> int:
        """Append every feature in order; returns the number written."""
        for feature in features:
            feature_id = self.append(feature)
            logger.debug(f"Wrote {feature_id}")
        return self.features_written


class Exporter:
    """
    Run one Row Source -> Record Mapper -> Transactional Sink pass.

    Settings come from ExportConfig (spatial index, attribute encoding);
    staging files live under ``staging_root``.
    """

    def __init__(self, settings: Optional[ExportConfig] = None, staging_root: Optional[Path] = None):
        self.settings = settings or ExportConfig()
        self.staging_root = staging_root

    def export(
        self,
        source: Iterable[Any],
        mapper: Optional[Any],
        schema: RecordSchema,
        destination: Path | str,
        source_path: Optional[Path | str] = None,
        confirm_overwrite: Optional[Callable[[Path], bool]] = None,
        handle: str = "create"
    ) -> ExportResult:
        """
        Write every record of ``source`` into a new shapefile.

        Args:
            source: Iterable of raw records
            mapper: Object with ``map(record) -> Feature``; None when records are already features
            schema: Destination schema
            destination: Shapefile path (.shp added when missing)
            source_path: File being read; the destination may not replace it
            confirm_overwrite: Asked before replacing an existing destination; False cancels
            handle: Transaction name used in logs and staging directory names

        Returns:
            ExportResult with COMMITTED or CANCELLED status

        Raises:
            DestinationConflictError: Destination equals the source (nothing written)
            ExportFailedError: Write failed; all writes were rolled back
            GeolabError: Record or transform failure; all writes were rolled back
        """
        destination = as_shapefile_path(destination)
        transaction = Transaction(handle, staging_root=self.staging_root)
        start_time = time.time()

        try:
            if source_path is not None and replaces_shapefile(source_path, destination):
                logger.error(f"Cannot replace {source_path}")
                raise DestinationConflictError(destination)

            if confirm_overwrite and shapefile_parts(destination) and not confirm_overwrite(destination):
                logger.info(f"Export cancelled: {destination} left unchanged")
                return ExportResult(status=ExportStatus.CANCELLED, destination=destination)

            transaction.begin()
            try:
                sink = ShapefileSink(
                    destination,
                    transaction,
                    create_spatial_index=self.settings.create_spatial_index,
                    encoding=self.settings.encoding
                )
                sink.create_schema(schema)
                logger.info(f"SHAPE: {schema.describe()}")

                features = source if mapper is None else (mapper.map(record) for record in source)
                written = sink.add_features(features)
                transaction.commit()
            except Exception as e:
                logger.exception(f"Export to shapefile failed: {e}")
                transaction.rollback()
                if isinstance(e, GeolabError):
                    raise
                raise ExportFailedError(destination, str(e)) from e

            duration = time.time() - start_time
            logger.info(f"Export to shapefile complete: {written:,} features written to {destination}")
            return ExportResult(
                status=ExportStatus.COMMITTED,
                destination=destination,
                features_written=written,
                duration_s=duration
            )
        finally:
            transaction.close()


def run_csv_export(
    csv_path: Path | str,
    destination: Optional[Path | str] = None,
    schema: Optional[RecordSchema] = None,
    csv_config: Optional[CsvConfig] = None,
    export_config: Optional[ExportConfig] = None,
    staging_root: Optional[Path] = None,
    confirm_overwrite: Optional[Callable[[Path], bool]] = None
) -> ExportResult:
    """
    Convert a latitude/longitude CSV into a point shapefile.

    Args:
        csv_path: CSV with a header line and rows of latitude,longitude,name,number
        destination: Shapefile to create (defaults to the CSV path with .shp)
        schema: Destination schema (defaults to the built-in Location schema)
        csv_config: Delimiter and encoding
        export_config: Shapefile output settings
        staging_root: Root directory for staged files
        confirm_overwrite: Asked before replacing an existing shapefile

    Returns:
        ExportResult
    """
    csv_config = csv_config or CsvConfig()
    source = CsvRowSource(csv_path, delimiter=csv_config.delimiter, encoding=csv_config.encoding)
    schema = schema or load_schema()
    mapper = CsvPointMapper(schema)

    destination = as_shapefile_path(destination) if destination else default_csv_destination(csv_path)
    logger.info(f"Converting {source.path} -> {destination} ({schema.describe()})")

    return Exporter(export_config, staging_root).export(
        source,
        mapper,
        schema,
        destination,
        source_path=csv_path,
        confirm_overwrite=confirm_overwrite,
        handle="create"
    )


def run_reprojection_export(
    source_path: Path | str,
    dest_crs: Optional[str] = None,
    destination: Optional[Path | str] = None,
    layer: Optional[str] = None,
    strategy: ReprojectStrategy = ReprojectStrategy.TRANSFORM,
    crs_config: Optional[CRSConfig] = None,
    export_config: Optional[ExportConfig] = None,
    staging_root: Optional[Path] = None,
    confirm_overwrite: Optional[Callable[[Path], bool]] = None
) -> ExportResult:
    """
    Export a feature store into a new shapefile in another CRS.

    Args:
        source_path: Store to read
        dest_crs: CRS to write (defaults to crs_config.target_crs)
        destination: Shapefile to create (defaults to <stem>_reprojected.shp)
        layer: Layer to read (defaults to the first layer)
        strategy: TRANSFORM reprojects per feature in the mapper; QUERY lets the store reproject on read
        crs_config: Target CRS and leniency
        export_config: Shapefile output settings
        staging_root: Root directory for staged files
        confirm_overwrite: Asked before replacing an existing shapefile

    Returns:
        ExportResult
    """
    crs_config = crs_config or CRSConfig()
    dest_crs = dest_crs or crs_config.target_crs
    destination = (
        as_shapefile_path(destination) if destination
        else default_reprojection_destination(source_path)
    )

    if strategy is ReprojectStrategy.QUERY:
        source = StoreRowSource(source_path, layer=layer, reproject_to=dest_crs)
        mapper = None
        schema = source.schema()
    else:
        source = StoreRowSource(source_path, layer=layer)
        if not source.crs_wkt:
            raise TransformError(f"{source.path} has no coordinate reference system to reproject from")
        context = find_transform(source.crs_wkt, dest_crs, lenient=crs_config.lenient)
        mapper = ReprojectMapper(context)
        schema = source.schema().retype(dest_crs)

    logger.info(
        f"Reprojecting {source.path} layer '{source.layer}' -> {destination} "
        f"({dest_crs}, strategy={strategy.value})"
    )

    # A directory store holds one shapefile per layer
    layer_path = source.path / f"{source.layer}.shp" if source.path.is_dir() else source.path

    return Exporter(export_config, staging_root).export(
        source,
        mapper,
        schema,
        destination,
        source_path=layer_path,
        confirm_overwrite=confirm_overwrite,
        handle="Reproject"
    )
