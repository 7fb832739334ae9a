"""
Pipeline value models.
Pydantic models for detected file formats, run parameters and progress snapshots.
"""

import logging
from pydantic import BaseModel, Field, field_validator, ConfigDict, ValidationInfo
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from pricesync.models.entities import PRIMARY_ENTITY

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class DuplicateHandling(str, Enum):
    """What to do when an incoming primary entity matches a stored one."""

    OVERRIDE = "override"  # overwrite the stored record
    SKIP = "skip"  # keep the stored record untouched
    IGNORE = "ignore"  # drop the incoming entity and its related facts


class CancellationCheck(str, Enum):
    """How often a running import polls its cancellation token."""

    BATCH = "batch"
    ROW = "row"


CHOICE_DEFAULTS = {
    "duplicate_handling": DuplicateHandling.OVERRIDE,
    "cancellation_check": CancellationCheck.BATCH,
}


class DetectedFormat(BaseModel):
    """
    Format parameters inferred from the head of a file.
    Produced once per file and consumed by the row readers.
    """

    model_config = ConfigDict(frozen=True)

    file_type: str = "csv"
    encoding: str = "utf-8"
    delimiter: str = ","
    quote_char: str = '"'
    has_header: bool = True
    column_count: int = 0
    sample_headers: List[str] = Field(default_factory=list)
    sample_rows: List[List[str]] = Field(default_factory=list)
    encoding_confidence: float = 0.0


class ImportParameters(BaseModel):
    """
    Typed view of the string-keyed submission parameters of an import.
    Unusable values fall back to defaults instead of failing the run.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, extra="allow")

    strategy_id: Optional[str] = Field(default=None, alias="strategyId")
    entity_type: str = Field(default=PRIMARY_ENTITY, alias="entityType")
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, alias="batchSize")
    template_id: Optional[int] = Field(default=None, alias="templateId")
    client_id: Optional[int] = Field(default=None, alias="clientId")
    duplicate_handling: DuplicateHandling = Field(
        default=DuplicateHandling.OVERRIDE, alias="duplicateHandling"
    )
    cancellation_check: CancellationCheck = Field(
        default=CancellationCheck.BATCH, alias="cancellationCheck"
    )
    data_source: str = Field(default="FILE", alias="dataSource")

    # Detector overrides
    encoding: Optional[str] = None
    delimiter: Optional[str] = None
    quote_char: Optional[str] = Field(default=None, alias="quoteChar")
    has_header: Optional[bool] = Field(default=None, alias="hasHeader")

    @field_validator("batch_size", mode="before")
    @classmethod
    def fallback_batch_size(cls, v):
        """Non-positive or non-numeric batch sizes use the default."""
        try:
            size = int(str(v).strip())
        except (ValueError, TypeError):
            return DEFAULT_BATCH_SIZE
        return size if size > 0 else DEFAULT_BATCH_SIZE

    @field_validator("template_id", "client_id", mode="before")
    @classmethod
    def convert_to_int(cls, v):
        """Convert string IDs to integers."""
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (ValueError, TypeError):
            return None

    @field_validator("entity_type", mode="before")
    @classmethod
    def normalize_entity_type(cls, v):
        if v is None or not str(v).strip():
            return PRIMARY_ENTITY
        return str(v).strip().lower()

    @field_validator("duplicate_handling", "cancellation_check", mode="before")
    @classmethod
    def normalize_choice(cls, v, info: ValidationInfo):
        """Choices are case-insensitive; unknown values use the field default."""
        default = CHOICE_DEFAULTS[info.field_name]
        choice = v.value if isinstance(v, Enum) else str(v or "").strip().lower()
        try:
            return type(default)(choice)
        except ValueError:
            logger.warning(f"Unknown {info.field_name} '{v}', using '{default.value}'")
            return default

    @field_validator("strategy_id", "encoding", "delimiter", "quote_char", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None or (isinstance(v, str) and v == ""):
            return None
        if isinstance(v, str) and v.lower() in ("tab", "\\t"):
            return "\t"
        return v

    @field_validator("has_header", mode="before")
    @classmethod
    def parse_has_header(cls, v):
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes", "y")
        return bool(v)

    @classmethod
    def from_params(cls, params: Optional[Dict[str, Any]]) -> "ImportParameters":
        return cls.model_validate(params or {})


class ProgressSnapshot(BaseModel):
    """Ephemeral progress view of one running operation."""

    operation_id: int
    status: str
    total: int = 0
    processed: int = 0
    progress: int = 0
    message: Optional[str] = None
    success_count: Optional[int] = None
    error_count: Optional[int] = None
    updated_at: datetime = Field(default_factory=datetime.now)

    def to_event(self) -> Dict[str, Any]:
        """Payload published on the progress channel."""
        event = {
            "operationId": self.operation_id,
            "status": self.status,
            "total": self.total,
            "processed": self.processed,
            "progress": self.progress,
        }
        if self.message is not None:
            event["message"] = self.message
        if self.success_count is not None:
            event["successCount"] = self.success_count
        if self.error_count is not None:
            event["errorCount"] = self.error_count
        return event
