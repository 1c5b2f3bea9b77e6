"""
Consolidated Utilities

Sections:
- Logging utilities
- Filesystem and path operations
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

SHAPEFILE_SUFFIX = ".shp"

# Files that together make up one shapefile
SHAPEFILE_PARTS = (".shp", ".shx", ".dbf", ".prj", ".cpg", ".qix", ".sbn", ".sbx")

# =============================================================================
# Logging Utilities
# =============================================================================

def setup_logging(
    verbose: bool,
    target_name: Optional[str] = None,
    mode: Optional[str] = None,
    enable_file_logging: bool = False
) -> None:
    """
    Configure logging with optional timestamped file output.

    Args:
        verbose: Enable debug-level logging if True
        target_name: Input name for log file naming
        mode: Operation mode for log file naming
        enable_file_logging: Create timestamped log files when True
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if enable_file_logging and target_name and mode:
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = logs_dir / f"{target_name}_{mode}_{timestamp}.log"

        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        print(f"Logging to: {log_file}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True
    )


# =============================================================================
# Filesystem and Path Operations
# =============================================================================

def as_shapefile_path(path: Path | str) -> Path:
    """Give a destination path the .shp suffix when it has none."""
    path = Path(path)
    if path.suffix.lower() != SHAPEFILE_SUFFIX:
        path = path.with_name(path.name + SHAPEFILE_SUFFIX)
    return path


def default_csv_destination(csv_path: Path | str) -> Path:
    """data/locations.csv -> data/locations.shp"""
    return Path(csv_path).with_suffix(SHAPEFILE_SUFFIX)


def default_reprojection_destination(source_path: Path | str) -> Path:
    """data/bc_border.shp -> data/bc_border_reprojected.shp"""
    source_path = Path(source_path)
    return source_path.with_name(f"{source_path.stem}_reprojected{SHAPEFILE_SUFFIX}")


def same_file(first: Path | str, second: Path | str) -> bool:
    """True when both paths resolve to the same file, whether or not it exists."""
    return Path(first).expanduser().resolve() == Path(second).expanduser().resolve()


def shapefile_parts(shp_path: Path | str) -> list[Path]:
    """Existing sidecar files belonging to a shapefile, .shp included."""
    shp_path = Path(shp_path)
    parts = []
    for suffix in SHAPEFILE_PARTS:
        for candidate in (shp_path.with_suffix(suffix), shp_path.with_suffix(suffix.upper())):
            if candidate.exists():
                parts.append(candidate)
                break
    return parts


def replaces_shapefile(source_path: Path | str, destination: Path | str) -> bool:
    """
    True when writing ``destination`` would replace any file of the source shapefile.

    Suffix case is ignored, so points.SHP and points.shp name the same
    shapefile, and existing sidecars are compared as files.
    """
    source_path = Path(source_path)
    destination = Path(destination)
    if same_file(
        source_path.with_suffix(source_path.suffix.lower()),
        destination.with_suffix(destination.suffix.lower())
    ):
        return True
    if source_path.suffix.lower() != SHAPEFILE_SUFFIX:
        return False

    source_parts = shapefile_parts(source_path)
    return any(
        os.path.samefile(part, source_part)
        for part in shapefile_parts(destination)
        for source_part in source_parts
    )
