"""
Entity Builder
Turns one mapped flat row into a product with its region and competitor facts.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from pricesync.ingestion.errors import MappingError
from pricesync.models.entities import PRIMARY_ENTITY, get_descriptor, resolve_field

logger = logging.getLogger(__name__)


class EntityBuilder:
    """
    Accumulates mapped rows into a small entity graph.

    Fields are partitioned by namespace: "region.*" and "competitor.*" (or
    un-namespaced ids that only exist on a related entity) go to the related
    entity, everything else to the primary entity. A related entity is only
    created when at least one of its fields is non-blank.

    One instance per import run. Not thread-safe.
    """

    def __init__(
        self,
        entity_type: str = PRIMARY_ENTITY,
        client_id: Optional[int] = None,
        operation_id: Optional[int] = None,
        data_source: Optional[str] = None,
        related: Optional[Iterable[str]] = None,
    ):
        self.entity_type = entity_type
        self.descriptor = get_descriptor(entity_type)
        self.related_types = set(related) if related is not None else set(self.descriptor.related)
        self.client_id = client_id
        self.operation_id = operation_id
        self.data_source = data_source
        self._primary: Optional[Any] = None
        self._related: Dict[str, Any] = {}

    def apply_row(self, mapped_row: Dict[str, str]) -> bool:
        """
        Add one mapped row (field id -> raw value) to the current group.

        Args:
            mapped_row: Output of a RowMapper

        Returns:
            True if any entity received data

        Raises:
            MappingError: if a value cannot be converted to its field type
        """
        partitions: Dict[str, Dict[str, str]] = {}
        for field_id, value in mapped_row.items():
            if value is None or not str(value).strip():
                continue
            resolved = resolve_field(field_id, self.entity_type)
            if resolved is None:
                logger.debug(f"Ignoring unknown field '{field_id}'")
                continue
            entity_type, descriptor = resolved
            if entity_type != self.entity_type and entity_type not in self.related_types:
                continue
            partitions.setdefault(entity_type, {})[descriptor.field_id] = value

        applied = False
        for entity_type, values in partitions.items():
            entity = self._entity_for(entity_type)
            try:
                applied |= get_descriptor(entity_type).fill_from_mapping(entity, values)
            except ValueError as e:
                raise MappingError(str(e), columns=list(values)) from e
        return applied

    def build(self) -> List[Any]:
        """
        Entities of the current group: the primary first, then related ones.

        Related entities get a back-reference to the primary. Nothing is
        returned when the group has no primary entity.
        """
        if self._primary is None:
            return []
        entities = [self._primary]
        for entity_type, entity in self._related.items():
            setattr(entity, get_descriptor(entity_type).parent_attribute, self._primary)
            entities.append(entity)
        return entities

    def validate(self) -> Optional[str]:
        """First validation failure across the accumulated entities, or None."""
        if self._primary is None:
            if self._related:
                return f"Missing {self.descriptor.display_name.lower()} data"
            return None

        failure = self.descriptor.validate(self._primary)
        if failure:
            return failure
        for entity_type, entity in self._related.items():
            failure = get_descriptor(entity_type).validate(entity)
            if failure:
                return failure
        return None

    def reset(self) -> None:
        self._primary = None
        self._related = {}

    @property
    def is_empty(self) -> bool:
        return self._primary is None and not self._related

    def _entity_for(self, entity_type: str) -> Any:
        if entity_type == self.entity_type:
            if self._primary is None:
                self._primary = self._new(entity_type)
                if self.data_source and hasattr(self._primary, "data_source"):
                    self._primary.data_source = self.data_source
            return self._primary
        if entity_type not in self._related:
            self._related[entity_type] = self._new(entity_type)
        return self._related[entity_type]

    def _new(self, entity_type: str) -> Any:
        return get_descriptor(entity_type).create(
            client_id=self.client_id,
            import_operation_id=self.operation_id,
        )
