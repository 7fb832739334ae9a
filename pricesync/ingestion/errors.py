"""
Pipeline Errors
Exception taxonomy shared by ingestion, tracking and export.
"""

from typing import Iterable, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DetectionError(PipelineError):
    """Input is empty or unreadable. Fatal to the run."""


class MappingError(PipelineError):
    """
    Column mapping failed.

    Raised for missing required columns (fatal to the run when found by the
    header pre-pass) and for single-field failures (fatal to one row).
    """

    def __init__(self, message: str, columns: Optional[Iterable[str]] = None):
        self.columns = list(columns or [])
        super().__init__(message, details={"columns": self.columns})


class ValidationError(PipelineError):
    """An entity failed self-validation. Fatal to one row."""


class PersistenceError(PipelineError):
    """A batch could not be committed. Fatal to one batch."""


class ExportError(PipelineError):
    """Export cannot produce an artifact, e.g. unsupported format."""

    def __init__(self, message: str, format: Optional[str] = None):
        self.format = format
        super().__init__(message, details={"format": format})


class StrategyNotFoundError(PipelineError):
    """No processing strategy can handle the file."""


class CancellationSignal(PipelineError):
    """Cooperative stop requested for a running job."""

    def __init__(self, operation_id: Optional[int] = None):
        self.operation_id = operation_id
        super().__init__(
            f"Operation {operation_id} was cancelled", details={"operation_id": operation_id}
        )


class OverloadedError(PipelineError):
    """Worker pool and queue are full and the pool rejects new work."""

    def __init__(self, pool_name: str):
        self.pool_name = pool_name
        super().__init__(f"System overloaded: pool '{pool_name}' is full",
                         details={"pool": pool_name})
