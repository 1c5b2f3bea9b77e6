"""
Configuration management for the GeoLab toolkit.

Usage:
    from geolab.config.settings import Config
    config = Config()
    exporter = Exporter(config.export)

Environment Variables:
    GEOLAB_CSV_DELIMITER: Field delimiter for CSV input (default ",")
    GEOLAB_CSV_ENCODING: Text encoding for CSV input (default "utf-8")
    GEOLAB_CREATE_SPATIAL_INDEX: Write a .qix spatial index with shapefiles (default "true")
    GEOLAB_SHAPEFILE_ENCODING: Attribute encoding for written shapefiles (default "UTF-8")
    GEOLAB_TARGET_CRS: Default destination CRS for reprojection (default "EPSG:4326")
    GEOLAB_LENIENT_TRANSFORM: Allow approximate transforms across datums (default "true")
    GEOLAB_TEMP_DIR: Root directory for staging files (default: system temp dir)
    TEMP_RETENTION_HOURS / TEMP_SIZE_WARNING_GB / TEMP_SIZE_LIMIT_GB: staging housekeeping
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pyproj import CRS
from pyproj.exceptions import CRSError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass
class CsvConfig:
    """CSV input configuration."""
    delimiter: str = ","
    encoding: str = "utf-8"

    def __post_init__(self):
        """Validate CSV configuration."""
        if len(self.delimiter) != 1:
            raise ValueError("CSV delimiter must be a single character")
        if self.delimiter.isspace() and self.delimiter != "\t":
            raise ValueError("CSV delimiter cannot be whitespace other than tab")


@dataclass
class ExportConfig:
    """Shapefile output configuration."""
    create_spatial_index: bool = True
    encoding: str = "UTF-8"

    def __post_init__(self):
        """Validate export configuration."""
        if not self.encoding:
            raise ValueError("Shapefile encoding cannot be empty")


@dataclass
class CRSConfig:
    """Reprojection configuration."""
    target_crs: str = "EPSG:4326"
    lenient: bool = True  # allow for some error due to different datums

    def __post_init__(self):
        """Validate that the target CRS resolves."""
        try:
            CRS.from_user_input(self.target_crs)
        except CRSError as e:
            raise ValueError(f"Unknown target CRS '{self.target_crs}': {e}")


@dataclass
class TempConfig:
    """Staging directory management configuration."""
    temp_dir: Optional[str] = None
    retention_hours: int = 24
    warning_gb: int = 10
    limit_gb: int = 20

    def __post_init__(self):
        """Validate temp management configuration."""
        if self.retention_hours < 0:
            raise ValueError("Retention hours must be non-negative")
        if self.warning_gb < 1:
            raise ValueError("Warning threshold must be at least 1GB")
        if self.limit_gb <= self.warning_gb:
            raise ValueError("Size limit must be greater than warning threshold")

    @property
    def root(self) -> Path:
        return Path(self.temp_dir) if self.temp_dir else Path(tempfile.gettempdir()) / "geolab"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


class Config:
    """
    Centralized configuration for GeoLab commands.

    Values are read once at startup and passed explicitly into the pipeline
    components; nothing below keeps process-wide state.

    Environment variables loaded (in order of preference):
    1. Explicit environment file passed to constructor
    2. .env.{ENVIRONMENT} (where ENVIRONMENT=development|production|staging)
    3. .env file in project root
    4. System environment variables

    Example:
        config = Config(environment="development")
        config = Config(env_file=Path("/secure/production.env"))
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 env_file: Optional[Path] = None,
                 validate_on_init: bool = True):
        """
        Initialize configuration.

        Args:
            environment: Target environment (development|staging|production)
            env_file: Explicit path to environment file
            validate_on_init: Whether to validate all settings on initialization
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.project_root = self._find_project_root()

        self._load_environment_variables(env_file)

        self._load_csv_config()
        self._load_export_config()
        self._load_crs_config()
        self._load_temp_config()

        if validate_on_init:
            self.validate()

    def _find_project_root(self) -> Path:
        """Find project root directory containing pyproject.toml, .git or a .env file."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            if any((parent / marker).exists() for marker in ['pyproject.toml', '.git', '.env']):
                return parent
        return cwd

    def _load_environment_variables(self, env_file: Path | None) -> None:
        """Load environment variables from appropriate source."""
        loaded_files = []

        if env_file:
            if env_file.exists():
                load_dotenv(env_file)
                loaded_files.append(str(env_file))
                logger.info(f"Loaded configuration from {env_file}")
            else:
                raise ConfigurationError(f"Specified env file not found: {env_file}")

        else:
            env_specific_file = self.project_root / f".env.{self.environment}"
            if env_specific_file.exists():
                load_dotenv(env_specific_file)
                loaded_files.append(str(env_specific_file))
                logger.info(f"Loaded environment-specific config: {env_specific_file}")

            generic_env_file = self.project_root / ".env"
            if generic_env_file.exists():
                load_dotenv(generic_env_file)
                loaded_files.append(str(generic_env_file))
                logger.info(f"Loaded generic config: {generic_env_file}")

        if not loaded_files:
            logger.debug("No .env files found, using system environment variables only")

        self._loaded_env_files = loaded_files

        logger.debug(f"Project root: {self.project_root}")
        logger.debug(f"Environment: {self.environment}")

    def _load_csv_config(self) -> None:
        """Load CSV input configuration."""
        try:
            self.csv = CsvConfig(
                delimiter=os.getenv("GEOLAB_CSV_DELIMITER", ","),
                encoding=os.getenv("GEOLAB_CSV_ENCODING", "utf-8")
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid CSV configuration: {e}")

    def _load_export_config(self) -> None:
        """Load shapefile output configuration."""
        try:
            self.export = ExportConfig(
                create_spatial_index=_env_flag("GEOLAB_CREATE_SPATIAL_INDEX", "true"),
                encoding=os.getenv("GEOLAB_SHAPEFILE_ENCODING", "UTF-8")
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid export configuration: {e}")

    def _load_crs_config(self) -> None:
        """Load reprojection configuration."""
        try:
            self.crs = CRSConfig(
                target_crs=os.getenv("GEOLAB_TARGET_CRS", "EPSG:4326"),
                lenient=_env_flag("GEOLAB_LENIENT_TRANSFORM", "true")
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid CRS configuration: {e}")

    def _load_temp_config(self) -> None:
        """Load staging directory configuration."""
        try:
            self.temp = TempConfig(
                temp_dir=os.getenv("GEOLAB_TEMP_DIR"),
                retention_hours=int(os.getenv("TEMP_RETENTION_HOURS", "24")),
                warning_gb=int(os.getenv("TEMP_SIZE_WARNING_GB", "10")),
                limit_gb=int(os.getenv("TEMP_SIZE_LIMIT_GB", "20"))
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid temp management configuration: {e}")

    def validate(self) -> None:
        """
        Cross-section validation.

        Raises:
            ConfigurationError: If any configuration is invalid
        """
        validation_errors = []

        temp_root = self.temp.root
        if temp_root.exists() and not temp_root.is_dir():
            validation_errors.append(f"Temp path is not a directory: {temp_root}")

        if self.csv.delimiter in ('.', '-'):
            validation_errors.append(
                f"CSV delimiter '{self.csv.delimiter}' collides with numeric coordinates"
            )

        if validation_errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {error}" for error in validation_errors)
            )

        logger.debug("Configuration validation passed")

    def get_summary(self) -> dict[str, Any]:
        """
        Get configuration summary for logging.

        Returns:
            Dictionary with the effective settings
        """
        return {
            'environment': self.environment,
            'loaded_env_files': self._loaded_env_files,
            'csv_delimiter': self.csv.delimiter,
            'csv_encoding': self.csv.encoding,
            'create_spatial_index': self.export.create_spatial_index,
            'shapefile_encoding': self.export.encoding,
            'target_crs': self.crs.target_crs,
            'lenient_transform': self.crs.lenient,
            'temp_dir': str(self.temp.root),
        }

    def __repr__(self) -> str:
        return (
            f"Config(environment={self.environment}, "
            f"target_crs={self.crs.target_crs}, "
            f"temp_dir={self.temp.root})"
        )

