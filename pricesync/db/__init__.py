"""
Database ORM Models
SQLAlchemy ORM models and repositories.
"""

from .models import (
    Base,
    Product,
    RegionData,
    CompetitorData,
    MappingTemplate,
    MappingRule,
    FileOperation,
    OperationType,
    OperationStatus,
)
from .repository import OperationRepository, MappingTemplateRepository

__all__ = [
    "Base",
    "Product",
    "RegionData",
    "CompetitorData",
    "MappingTemplate",
    "MappingRule",
    "FileOperation",
    "OperationType",
    "OperationStatus",
    "OperationRepository",
    "MappingTemplateRepository",
]
