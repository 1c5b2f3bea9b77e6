"""
Schema definition loading for GeoLab.

Record schemas are declared in YAML, either in the packaged
``data/schemas.yml`` or in a user-supplied file with the same layout:

    Location:
      geometry_type: Point
      crs: EPSG:4326
      fields:
        - {name: name, type: str, width: 15}
        - {name: number, type: int}

Every schema, built-in or user-defined, goes through the same path into an
immutable ``RecordSchema``.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .domain.models import RecordSchema
from .types import SchemaError

DEFAULT_SCHEMA_NAME = "Location"
DEFAULT_SCHEMA_FILE = Path(__file__).parent / "data" / "schemas.yml"


def _read_definitions(schema_file: Optional[Path | str]) -> dict[str, Any]:
    path = Path(schema_file) if schema_file else DEFAULT_SCHEMA_FILE
    if not path.exists():
        raise SchemaError(f"Schema file not found: {path}")

    try:
        with open(path, encoding='utf-8') as f:
            definitions = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SchemaError(f"Could not parse schema file {path}: {e}")

    if not isinstance(definitions, dict):
        raise SchemaError(f"Schema file {path} must map schema names to definitions")
    return definitions


def build_schema(name: str, definition: dict[str, Any]) -> RecordSchema:
    """
    Build a RecordSchema from one declarative definition.

    Args:
        name: Feature type name
        definition: Mapping with geometry_type, crs and fields keys

    Returns:
        Validated, immutable RecordSchema

    Raises:
        SchemaError: If the definition is invalid
    """
    if not isinstance(definition, dict):
        raise SchemaError(f"Schema '{name}' must be a mapping")

    values = {k: v for k, v in definition.items() if k != 'description'}
    try:
        return RecordSchema(name=name, **values)
    except (ValidationError, TypeError) as e:
        raise SchemaError(f"Invalid schema '{name}': {e}")


def load_schema(name: str = DEFAULT_SCHEMA_NAME, schema_file: Optional[Path | str] = None) -> RecordSchema:
    """
    Load one named schema.

    Args:
        name: Schema name (defaults to the built-in Location schema)
        schema_file: YAML file with schema definitions (defaults to the packaged file)

    Returns:
        RecordSchema for the name

    Raises:
        SchemaError: If the file or the schema is missing or invalid
    """
    definitions = _read_definitions(schema_file)
    if name not in definitions:
        available = sorted(definitions.keys())
        raise SchemaError(f"Schema '{name}' not found. Available: {available}")
    return build_schema(name, definitions[name])


def get_available_schemas(schema_file: Optional[Path | str] = None) -> dict[str, str]:
    """
    List schema names with their descriptions.

    Args:
        schema_file: YAML file with schema definitions (defaults to the packaged file)

    Returns:
        Mapping of schema name to description (empty string when absent)
    """
    definitions = _read_definitions(schema_file)
    return {
        name: (definition or {}).get('description', '') if isinstance(definition, dict) else ''
        for name, definition in definitions.items()
    }
