"""
Domain Models and Types

This module contains the core domain models and enumerations used throughout the pipeline.

Models:
- RecordSchema: Ordered attribute schema with a designated geometry field
- FieldSpec: One typed scalar attribute
- Feature: Geometry plus attributes, the unit handed from mapper to sink

Enums:
- FieldType: Attribute types understood by feature stores
- TransactionState: Write transaction lifecycle
- ExportStatus: Non-error outcomes of an export run
- ReprojectStrategy: Per-feature transform or read-time reprojection
"""

from .enums import ExportStatus, FieldType, ReprojectStrategy, TransactionState
from .models import Feature, FieldSpec, RecordSchema

__all__ = [
    "Feature", "FieldSpec", "RecordSchema",
    "ExportStatus", "FieldType", "ReprojectStrategy", "TransactionState"
]
