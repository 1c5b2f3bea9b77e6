"""
GeoLab - Command-line tools over the Python geospatial stack.

Converts latitude/longitude CSV files into point shapefiles, reprojects
shapefiles, validates geometries and queries feature stores.
"""

__version__ = "0.1.0"
