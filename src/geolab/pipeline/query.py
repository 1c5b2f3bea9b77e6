"""
Query Tool Backend

Connects to a feature store, lists its feature types and evaluates textual
filters against one of them with pandas. Filters use pandas expression
syntax, with the CQL spellings ``=``, ``<>``, ``AND``, ``OR`` and ``NOT``
accepted as well; ``include`` selects every feature and ``exclude`` none.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd
from fiona.errors import FionaError

from ..types import FilterError, SourceNotFoundError, StoreConnectionError
from .source import list_layers

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 20

# Quoted literals are passed through untouched
_QUOTED = re.compile(r"('(?:[^']|'')*'|\"[^\"]*\")")
_SINGLE_EQUALS = re.compile(r"(?<![=!<>])=(?!=)")
_KEYWORDS = re.compile(r"\b(AND|OR|NOT)\b")


class FilterMode(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    EXPRESSION = "expression"


@dataclass(frozen=True)
class FeatureFilter:
    """Parsed filter: select all, select none, or a pandas expression."""
    text: str
    mode: FilterMode
    expression: Optional[str] = None

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        if self.mode is FilterMode.INCLUDE:
            return frame
        if self.mode is FilterMode.EXCLUDE:
            return frame.iloc[0:0]

        try:
            mask = frame.eval(self.expression, engine="python")
        except Exception as e:
            raise FilterError(self.text, str(e)) from e

        if pd.api.types.is_bool(mask):
            return frame if mask else frame.iloc[0:0]
        if not isinstance(mask, pd.Series) or not pd.api.types.is_bool_dtype(mask):
            raise FilterError(self.text, "expression must be true or false for each feature")
        return frame[mask]


def _normalize(expression: str) -> str:
    pieces = _QUOTED.split(expression)
    for i in range(0, len(pieces), 2):
        piece = pieces[i].replace("<>", "!=")
        piece = _SINGLE_EQUALS.sub("==", piece)
        pieces[i] = _KEYWORDS.sub(lambda m: m.group(1).lower(), piece)
    return "".join(pieces)


def parse_filter(text: Optional[str]) -> FeatureFilter:
    """
    Parse a textual filter.

    Args:
        text: ``include``, ``exclude``, empty, or an expression such as
            ``population > 1000 and name = 'Seattle'``

    Returns:
        FeatureFilter ready to apply to a frame

    Raises:
        FilterError: Quotes are unbalanced or the expression does not parse
    """
    text = (text or "").strip()
    lowered = text.lower()
    if lowered in ("", FilterMode.INCLUDE.value):
        return FeatureFilter(text=text or FilterMode.INCLUDE.value, mode=FilterMode.INCLUDE)
    if lowered == FilterMode.EXCLUDE.value:
        return FeatureFilter(text=text, mode=FilterMode.EXCLUDE)

    unquoted = _QUOTED.split(text)[::2]
    if any("'" in piece or '"' in piece for piece in unquoted):
        raise FilterError(text, "unbalanced quotes")

    expression = _normalize(text)
    try:
        compile(expression, "<filter>", "eval")
    except SyntaxError as e:
        raise FilterError(text, e.msg)

    logger.debug(f"Filter '{text}' -> '{expression}'")
    return FeatureFilter(text=text, mode=FilterMode.EXPRESSION, expression=expression)


class QuerySession:
    """
    One connection to a feature store plus the currently selected feature type.

    Example:
        session = QuerySession()
        session.connect("data/countries.shp")
        session.count("POP_EST > 1e8")
    """

    def __init__(self):
        self.path: Optional[Path] = None
        self.type_names: list[str] = []
        self.type_name: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.path is not None

    def connect(self, path: Path | str) -> list[str]:
        """Open a store and select its first feature type; returns all type names."""
        path = Path(path)
        if not path.exists():
            raise SourceNotFoundError(path)

        type_names = list_layers(path)
        if not type_names:
            raise StoreConnectionError(f"No feature types found in {path}")

        self.path = path
        self.type_names = type_names
        self.type_name = type_names[0]
        logger.info(f"Connected to {path}: {', '.join(type_names)}")
        return type_names

    def require_connection(self) -> None:
        if not self.connected:
            raise StoreConnectionError("Not connected to a feature store")

    def select(self, type_name: str) -> None:
        self.require_connection()
        if type_name not in self.type_names:
            raise StoreConnectionError(
                f"Unknown feature type '{type_name}'. Available: {', '.join(self.type_names)}"
            )
        self.type_name = type_name

    def _read(self) -> gpd.GeoDataFrame:
        self.require_connection()
        try:
            return gpd.read_file(self.path, layer=self.type_name, engine="fiona")
        except (FionaError, OSError, ValueError) as e:
            raise StoreConnectionError(f"Could not read '{self.type_name}' from {self.path}: {e}")

    def get_features(self, filter_text: Optional[str] = None) -> gpd.GeoDataFrame:
        """Features of the selected type matching the filter."""
        feature_filter = parse_filter(filter_text)
        features = feature_filter.apply(self._read())
        logger.debug(f"{self.type_name} [{feature_filter.text}]: {len(features)} features")
        return features

    def count(self, filter_text: Optional[str] = None) -> int:
        return len(self.get_features(filter_text))

    def get_geometries(self, filter_text: Optional[str] = None) -> gpd.GeoSeries:
        """Only the geometry column of the matching features."""
        return self.get_features(filter_text).geometry


def render_table(frame: pd.DataFrame | gpd.GeoSeries, max_rows: int = DEFAULT_MAX_ROWS) -> str:
    """Render features as text, geometries written as WKT."""
    if isinstance(frame, gpd.GeoSeries):
        frame = frame.to_frame()
    if frame.empty:
        return "(no features)"
    if isinstance(frame, gpd.GeoDataFrame):
        frame = frame.to_wkt()
    return frame.to_string(max_rows=max_rows, max_colwidth=60)
