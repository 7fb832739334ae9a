"""
Import Processing Strategies
Pluggable strategies deciding how rows of a file become entities.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pricesync.ingestion.entity_builder import EntityBuilder
from pricesync.ingestion.errors import StrategyNotFoundError
from pricesync.ingestion.field_mapping import FieldMappingEngine
from pricesync.models.entities import PRIMARY_ENTITY
from pricesync.models.schemas import ImportParameters

logger = logging.getLogger(__name__)


class ImportStrategy:
    """Base import strategy."""

    strategy_id = "base"
    display_name = "Base import"
    description = ""
    supported_file_types: Tuple[str, ...] = ("csv", "txt", "tsv", "xlsx", "xlsm")
    priority = 0
    related_types: Optional[Tuple[str, ...]] = None

    def is_compatible(self, file_path: Path) -> bool:
        return Path(file_path).suffix.lower().lstrip(".") in self.supported_file_types

    def validate_parameters(self, params: ImportParameters) -> Optional[str]:
        """Return a description of unusable parameters, or None."""
        return None

    def create_mapping_engine(self, params: ImportParameters) -> FieldMappingEngine:
        return FieldMappingEngine(params.entity_type, composite=self.related_types != ())

    def create_builder(self, params: ImportParameters, operation_id: Optional[int]) -> EntityBuilder:
        return EntityBuilder(
            entity_type=params.entity_type,
            client_id=params.client_id,
            operation_id=operation_id,
            data_source=params.data_source,
            related=self.related_types,
        )

    def describe(self) -> Dict[str, object]:
        return {
            "id": self.strategy_id,
            "name": self.display_name,
            "description": self.description,
            "fileTypes": list(self.supported_file_types),
            "priority": self.priority,
        }


class CompositeProductStrategy(ImportStrategy):
    """Products with their region and competitor facts from the same row."""

    strategy_id = "composite-product"
    display_name = "Products with regions and competitors"
    description = "Each row yields a product plus optional region and competitor records"
    priority = 10

    def validate_parameters(self, params: ImportParameters) -> Optional[str]:
        if params.entity_type != PRIMARY_ENTITY:
            return f"Strategy {self.strategy_id} only imports '{PRIMARY_ENTITY}' entities"
        return None


class ProductOnlyStrategy(ImportStrategy):
    """Products only; region and competitor columns are ignored."""

    strategy_id = "product"
    display_name = "Products only"
    description = "Each row yields one product"
    priority = 0
    related_types = ()


class StrategyRegistry:
    """Registered import strategies, selected by id or by priority."""

    def __init__(self, strategies: Optional[List[ImportStrategy]] = None):
        self._strategies: Dict[str, ImportStrategy] = {}
        for strategy in strategies if strategies is not None else default_strategies():
            self.register(strategy)

    def register(self, strategy: ImportStrategy) -> None:
        self._strategies[strategy.strategy_id] = strategy

    def get(self, strategy_id: str) -> ImportStrategy:
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise StrategyNotFoundError(
                f"Unknown processing strategy '{strategy_id}'",
                details={"strategy_id": strategy_id, "available": list(self._strategies)},
            )

    def all(self) -> List[ImportStrategy]:
        return sorted(self._strategies.values(), key=lambda s: s.priority, reverse=True)

    def select(self, file_path: Path, strategy_id: Optional[str] = None) -> ImportStrategy:
        """
        Pick the strategy for a file.

        An explicit id wins; otherwise the highest-priority compatible
        strategy is used.

        Raises:
            StrategyNotFoundError: if no strategy matches
        """
        if strategy_id:
            strategy = self.get(strategy_id)
            if not strategy.is_compatible(file_path):
                raise StrategyNotFoundError(
                    f"Strategy '{strategy_id}' does not support {Path(file_path).name}",
                    details={"strategy_id": strategy_id},
                )
            return strategy

        compatible = [s for s in self.all() if s.is_compatible(file_path)]
        if not compatible:
            raise StrategyNotFoundError(
                f"No processing strategy supports {Path(file_path).name}",
                details={"file": str(file_path)},
            )
        logger.debug(f"Selected strategy {compatible[0].strategy_id} for {Path(file_path).name}")
        return compatible[0]


def default_strategies() -> List[ImportStrategy]:
    return [CompositeProductStrategy(), ProductOnlyStrategy()]
