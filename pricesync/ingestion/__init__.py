"""
Data Ingestion Package
Detects file formats, maps columns to entity fields and imports rows in batches.
"""

from .errors import (
    PipelineError,
    DetectionError,
    MappingError,
    ValidationError,
    PersistenceError,
    ExportError,
    StrategyNotFoundError,
    CancellationSignal,
    OverloadedError,
)
from .format_detector import FormatDetector
from .field_mapping import FieldMappingEngine, RowMapper
from .entity_builder import EntityBuilder
from .persistence import BatchPersistenceCoordinator, BatchResult, UniquenessPolicy
from .strategies import StrategyRegistry, ImportStrategy
from .cancellation import CancellationToken, cancellation_registry
from .import_job import ImportJob

__all__ = [
    "PipelineError",
    "DetectionError",
    "MappingError",
    "ValidationError",
    "PersistenceError",
    "ExportError",
    "StrategyNotFoundError",
    "CancellationSignal",
    "OverloadedError",
    "FormatDetector",
    "FieldMappingEngine",
    "RowMapper",
    "EntityBuilder",
    "BatchPersistenceCoordinator",
    "BatchResult",
    "UniquenessPolicy",
    "StrategyRegistry",
    "ImportStrategy",
    "CancellationToken",
    "cancellation_registry",
    "ImportJob",
]
