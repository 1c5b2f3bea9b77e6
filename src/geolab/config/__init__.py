"""
Configuration module for the GeoLab toolkit.
"""

from .settings import (
    Config,
    ConfigurationError,
    CRSConfig,
    CsvConfig,
    ExportConfig,
    TempConfig,
)

__all__ = [
    'Config',
    'ConfigurationError',
    'CRSConfig',
    'CsvConfig',
    'ExportConfig',
    'TempConfig'
]
