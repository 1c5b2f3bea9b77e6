"""Staging directory management for transactional shapefile writes."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import sys
import tempfile
import time
from pathlib import Path
from typing import Optional


def get_temp_root(root: Optional[Path | str] = None) -> Path:
    """Get the staging root: explicit root, $GEOLAB_TEMP_DIR, or <system temp>/geolab."""
    if root:
        return Path(root)
    env_root = os.getenv("GEOLAB_TEMP_DIR")
    if env_root:
        return Path(env_root)
    return Path(tempfile.gettempdir()) / "geolab"


def get_pid_temp_dir(root: Optional[Path | str] = None) -> Path:
    """Get process-isolated staging directory for current PID."""
    pid_dir = get_temp_root(root) / f"pid_{os.getpid()}"
    pid_dir.mkdir(parents=True, exist_ok=True)
    return pid_dir


def cleanup_stale_files(retention_hours: int = 24, root: Optional[Path | str] = None) -> int:
    """
    Remove staged files older than retention period.

    Staging directories left behind by a killed process are only ever
    reclaimed here.

    Args:
        retention_hours: Files older than this will be removed
        root: Staging root (defaults to get_temp_root())

    Returns:
        Number of files cleaned up
    """
    temp_dir = get_temp_root(root)
    if not temp_dir.exists():
        return 0

    cutoff_time = time.time() - (retention_hours * 3600)
    cleaned_count = 0

    for item in temp_dir.rglob("*"):
        if item.is_file():
            try:
                if item.stat().st_mtime < cutoff_time:
                    item.unlink()
                    cleaned_count += 1
                    logging.debug(f"Cleaned stale temp file: {item}")
            except (OSError, PermissionError) as e:
                logging.warning(f"Could not remove stale file {item}: {e}")

    # Remove empty staging directories, deepest first
    for directory in sorted((d for d in temp_dir.rglob("*") if d.is_dir()), reverse=True):
        if not any(directory.iterdir()):
            try:
                directory.rmdir()
                logging.debug(f"Removed empty staging directory: {directory}")
            except OSError:
                pass

    if cleaned_count > 0:
        logging.info(f"Cleaned up {cleaned_count} stale temp files (>{retention_hours}h)")

    return cleaned_count


def get_temp_dir_size(root: Optional[Path | str] = None) -> int:
    """Get total size of the staging root in bytes."""
    temp_dir = get_temp_root(root)
    if not temp_dir.exists():
        return 0

    total_size = 0
    for item in temp_dir.rglob("*"):
        if item.is_file():
            try:
                total_size += item.stat().st_size
            except (OSError, PermissionError):
                pass

    return total_size


def check_temp_size_limits(warning_gb: int = 10, limit_gb: int = 20, root: Optional[Path | str] = None) -> bool:
    """
    Check staging root size against limits.

    Args:
        warning_gb: Log warning when exceeding this size
        limit_gb: Trigger cleanup when exceeding this size
        root: Staging root (defaults to get_temp_root())

    Returns:
        True if within limits, False if over hard limit
    """
    size_gb = get_temp_dir_size(root) / (1024 ** 3)

    if size_gb > limit_gb:
        logging.error(f"Temp directory size ({size_gb:.1f}GB) exceeds limit ({limit_gb}GB)")
        # Force cleanup of files older than 1 hour
        cleaned = cleanup_stale_files(retention_hours=1, root=root)
        logging.info(f"Emergency cleanup removed {cleaned} files")

        new_size_gb = get_temp_dir_size(root) / (1024 ** 3)
        if new_size_gb > limit_gb:
            logging.error(f"Temp directory still too large ({new_size_gb:.1f}GB) after cleanup")
            return False

    elif size_gb > warning_gb:
        logging.warning(f"Temp directory size ({size_gb:.1f}GB) exceeds warning threshold ({warning_gb}GB)")

    return True


def cleanup_current_pid(root: Optional[Path | str] = None) -> None:
    """Remove the staging directory of the current process."""
    pid_dir = get_temp_root(root) / f"pid_{os.getpid()}"
    if pid_dir.exists():
        try:
            shutil.rmtree(pid_dir)
            logging.debug(f"Cleaned up PID temp directory: {pid_dir}")
        except OSError as e:
            logging.warning(f"Could not clean PID temp directory {pid_dir}: {e}")


def register_cleanup_handlers(root: Optional[Path | str] = None) -> None:
    """Register signal handlers that drop staged files on interruption."""
    def signal_handler(signum: int, frame) -> None:
        logging.info(f"Received signal {signum}, cleaning up staged files...")
        cleanup_current_pid(root)
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def full_cleanup_check(
    retention_hours: int = 24,
    warning_gb: int = 10,
    limit_gb: int = 20,
    root: Optional[Path | str] = None,
    skip_cleanup: bool = False
) -> bool:
    """
    Perform staging directory housekeeping before a run.

    Args:
        retention_hours: Files older than this will be removed
        warning_gb: Log warning when exceeding this size
        limit_gb: Trigger emergency cleanup when exceeding this size
        root: Staging root (defaults to get_temp_root())
        skip_cleanup: Skip the cleanup (for debugging)

    Returns:
        True if the staging root is healthy, False if issues remain
    """
    get_temp_root(root).mkdir(parents=True, exist_ok=True)

    if not skip_cleanup:
        cleanup_stale_files(retention_hours, root)

    return check_temp_size_limits(warning_gb, limit_gb, root)
