"""
SQLAlchemy ORM Models
Database table definitions using SQLAlchemy ORM.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Date, DateTime, JSON,
    ForeignKey, Text, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OperationType(str, Enum):
    """Kind of file operation."""

    IMPORT = "IMPORT"
    EXPORT = "EXPORT"


class OperationStatus(str, Enum):
    """Lifecycle states of a file operation."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (
    OperationStatus.COMPLETED.value,
    OperationStatus.FAILED.value,
    OperationStatus.CANCELLED.value,
)

ERROR_MESSAGE_LIMIT = 1000


class Product(Base):
    """
    Product model.

    Primary imported entity. Natural key is (client_id, product_id).
    """
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(255), nullable=True,
                        comment='External product identifier from the source file')
    product_name = Column(String(500), nullable=True)
    product_brand = Column(String(255), nullable=True)
    product_bar = Column(String(255), nullable=True, comment='Barcode')
    product_description = Column(Text, nullable=True)
    product_url = Column(String(1000), nullable=True)
    product_category1 = Column(String(255), nullable=True)
    product_category2 = Column(String(255), nullable=True)
    product_category3 = Column(String(255), nullable=True)
    product_price = Column(Float, nullable=True)
    product_analog = Column(String(500), nullable=True)
    product_additional1 = Column(String(500), nullable=True)
    product_additional2 = Column(String(500), nullable=True)
    product_additional3 = Column(String(500), nullable=True)
    product_additional4 = Column(String(500), nullable=True)
    product_additional5 = Column(String(500), nullable=True)
    data_source = Column(String(50), nullable=True,
                         comment='Origin of the record: FILE, API, MANUAL')

    # Ownership and traceability
    client_id = Column(Integer, nullable=True, index=True)
    file_id = Column(Integer, nullable=True)
    import_operation_id = Column(Integer, nullable=True, index=True,
                                 comment='File operation that last wrote this row')

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    region_data = relationship("RegionData", back_populates="product",
                               cascade="all, delete-orphan")
    competitor_data = relationship("CompetitorData", back_populates="product",
                                   cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_products_client_product', 'client_id', 'product_id', unique=True),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, product_id={self.product_id}, name={self.product_name})>"


class RegionData(Base):
    """
    Region fact attached to a product.

    Natural key defaults to (region, product).
    """
    __tablename__ = 'region_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    region = Column(String(255), nullable=True)
    region_address = Column(String(1000), nullable=True)
    stock_amount = Column(Integer, nullable=True)

    client_id = Column(Integer, nullable=True, index=True)
    import_operation_id = Column(Integer, nullable=True, index=True)
    product_ref = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'),
                         nullable=True, index=True)

    product = relationship("Product", back_populates="region_data")

    def __repr__(self):
        return f"<RegionData(id={self.id}, region={self.region}, product_ref={self.product_ref})>"


class CompetitorData(Base):
    """
    Competitor price observation attached to a product.

    Natural key defaults to (competitor_name, product).
    """
    __tablename__ = 'competitor_data'

    id = Column(Integer, primary_key=True, autoincrement=True)
    competitor_name = Column(String(500), nullable=True)
    competitor_price = Column(Float, nullable=True)
    competitor_promotional_price = Column(Float, nullable=True)
    competitor_time = Column(String(50), nullable=True)
    competitor_date = Column(Date, nullable=True)
    competitor_local_date_time = Column(DateTime, nullable=True)
    competitor_stock_status = Column(String(255), nullable=True)
    competitor_additional_price = Column(Float, nullable=True)
    competitor_commentary = Column(Text, nullable=True)
    competitor_product_name = Column(String(500), nullable=True)
    competitor_additional = Column(String(500), nullable=True)
    competitor_additional2 = Column(String(500), nullable=True)
    competitor_url = Column(String(1000), nullable=True)
    competitor_web_cache_url = Column(String(1000), nullable=True)

    client_id = Column(Integer, nullable=True, index=True)
    import_operation_id = Column(Integer, nullable=True, index=True)
    product_ref = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'),
                         nullable=True, index=True)

    product = relationship("Product", back_populates="competitor_data")

    def __repr__(self):
        return (
            f"<CompetitorData(id={self.id}, competitor={self.competitor_name}, "
            f"product_ref={self.product_ref})>"
        )


class MappingTemplate(Base):
    """
    Saved mapping from source column labels to entity fields.

    client_id NULL means a global template. At most one template per
    (client_id, entity_type) is the default.
    """
    __tablename__ = 'mapping_templates'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    client_id = Column(Integer, nullable=True, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    file_format = Column(String(20), nullable=True, comment='csv, xlsx or NULL for any')
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    rules = relationship("MappingRule", back_populates="template",
                         cascade="all, delete-orphan",
                         order_by="MappingRule.order_index")

    __table_args__ = (
        Index('idx_mapping_templates_scope', 'client_id', 'entity_type'),
    )

    def __repr__(self):
        return f"<MappingTemplate(id={self.id}, name={self.name}, entity_type={self.entity_type})>"


class MappingRule(Base):
    """Single column-to-field rule inside a mapping template."""
    __tablename__ = 'mapping_rules'

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey('mapping_templates.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    source_column = Column(String(255), nullable=False)
    target_field = Column(String(255), nullable=False)
    target_entity = Column(String(50), nullable=True,
                           comment='NULL for the primary entity, else region/competitor')
    is_required = Column(Boolean, nullable=False, default=False)
    default_value = Column(String(500), nullable=True)
    transformation = Column(String(500), nullable=True,
                            comment='Transformation chain, e.g. "trim|upper"')
    order_index = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    template = relationship("MappingTemplate", back_populates="rules")

    @property
    def field_id(self) -> str:
        """Target field id, namespaced for secondary entities."""
        if self.target_entity and self.target_entity != "product" and "." not in self.target_field:
            return f"{self.target_entity}.{self.target_field}"
        return self.target_field

    def __repr__(self):
        return f"<MappingRule(source={self.source_column}, target={self.field_id})>"


class FileOperation(Base):
    """
    Durable record of one import or export run.

    Status moves PENDING -> PROCESSING -> COMPLETED | FAILED | CANCELLED
    and never leaves a terminal state.
    """
    __tablename__ = 'file_operations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, nullable=True, index=True)
    operation_type = Column(String(20), nullable=False, default=OperationType.IMPORT.value)
    file_name = Column(String(500), nullable=True)
    file_type = Column(String(20), nullable=True)
    source_file_path = Column(String(1000), nullable=True)
    result_file_path = Column(String(1000), nullable=True)
    file_size = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, index=True, default=OperationStatus.PENDING.value)
    processing_progress = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    record_count = Column(Integer, nullable=False, default=0,
                          comment='Entities accepted by the store')
    failed_records = Column(Integer, nullable=False, default=0)
    error_message = Column(String(ERROR_MESSAGE_LIMIT), nullable=True)
    parameters = Column(JSON, nullable=True, comment='Submission parameters')

    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_file_operations_status_started', 'status', 'started_at'),
        Index('idx_file_operations_type_created', 'operation_type', 'created_at'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> Optional[float]:
        """Elapsed processing time, or None if the run has not started."""
        if not self.started_at:
            return None
        end = self.completed_at or utcnow()
        return (end - self.started_at).total_seconds()

    def _check_transition(self, target: OperationStatus) -> None:
        if self.is_terminal:
            raise ValueError(
                f"Operation {self.id} is already {self.status}, cannot move to {target.value}"
            )

    def mark_processing(self) -> None:
        if self.status != OperationStatus.PENDING.value:
            raise ValueError(
                f"Operation {self.id} is {self.status}, only PENDING can start processing"
            )
        self.status = OperationStatus.PROCESSING.value
        self.processing_progress = 0
        self.started_at = utcnow()

    def mark_completed(self, record_count: int) -> None:
        self._check_transition(OperationStatus.COMPLETED)
        self.status = OperationStatus.COMPLETED.value
        self.processing_progress = 100
        self.record_count = record_count
        self.completed_at = utcnow()

    def mark_failed(self, error_message: Optional[str]) -> None:
        self._check_transition(OperationStatus.FAILED)
        self.status = OperationStatus.FAILED.value
        self.error_message = truncate_error(error_message)
        self.completed_at = utcnow()

    def mark_cancelled(self, message: Optional[str] = None) -> None:
        self._check_transition(OperationStatus.CANCELLED)
        self.status = OperationStatus.CANCELLED.value
        if message:
            self.error_message = truncate_error(message)
        self.completed_at = utcnow()

    def __repr__(self):
        return (
            f"<FileOperation(id={self.id}, type={self.operation_type}, "
            f"status={self.status}, processed={self.processed_records}/{self.total_records})>"
        )


def truncate_error(message: Optional[str]) -> Optional[str]:
    if message is not None and len(message) > ERROR_MESSAGE_LIMIT:
        return message[:ERROR_MESSAGE_LIMIT - 3] + "..."
    return message
