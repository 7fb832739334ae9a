"""
Data Models Package
Entity field metadata and pipeline value models.
"""

from .entities import (
    ENTITY_REGISTRY,
    EntityDescriptor,
    FieldDescriptor,
    PRIMARY_ENTITY,
    composite_fields,
    descriptor_for,
    get_descriptor,
    resolve_field,
)
from .schemas import (
    CancellationCheck,
    DetectedFormat,
    DuplicateHandling,
    ImportParameters,
    ProgressSnapshot,
)

__all__ = [
    "ENTITY_REGISTRY",
    "EntityDescriptor",
    "FieldDescriptor",
    "PRIMARY_ENTITY",
    "composite_fields",
    "descriptor_for",
    "get_descriptor",
    "resolve_field",
    "CancellationCheck",
    "DetectedFormat",
    "DuplicateHandling",
    "ImportParameters",
    "ProgressSnapshot",
]
