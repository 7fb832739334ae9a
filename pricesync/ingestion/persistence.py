"""
Batch Persistence
Commits built entities in independent transactions with natural-key upserts.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from pricesync.db.models import Product, RegionData, CompetitorData
from pricesync.models.entities import ENTITY_REGISTRY, EntityDescriptor, descriptor_for
from pricesync.models.schemas import DuplicateHandling

logger = logging.getLogger(__name__)

SCOPE_ATTRIBUTES = ("client_id",)


@dataclass
class UniquenessPolicy:
    """
    Natural-key attributes per entity type.

    Related entities are always matched within their parent, so their keys
    list only their own attributes. Types are matched independently, so a
    region fact can never collide with a competitor fact.
    """

    keys: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "UniquenessPolicy":
        return cls(keys={name: d.natural_key for name, d in ENTITY_REGISTRY.items()})

    def key_for(self, entity_type: str) -> Tuple[str, ...]:
        return self.keys.get(entity_type, ENTITY_REGISTRY[entity_type].natural_key)


@dataclass
class BatchResult:
    """Outcome of one committed (or rolled back) batch."""

    batch_number: int
    size: int
    accepted: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BatchPersistenceCoordinator:
    """
    Persists heterogeneous entity lists grouped by type.

    Primary entities are saved before related ones so that related entities
    can be matched against their (possibly pre-existing) parent. A primary
    entity matching a stored one on its natural key is handled according
    to the duplicate policy; related entities always overwrite a match.
    Only descriptor fields are copied onto existing rows, never ids,
    ownership columns or relationships.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        duplicate_handling: DuplicateHandling = DuplicateHandling.OVERRIDE,
        uniqueness: Optional[UniquenessPolicy] = None,
    ):
        self.session_factory = session_factory
        self.duplicate_handling = DuplicateHandling(duplicate_handling)
        self.uniqueness = uniqueness or UniquenessPolicy.default()
        self.stats = {
            "batches_committed": 0,
            "batches_failed": 0,
            "inserted": 0,
            "updated": 0,
            "skipped": 0,
        }

    def commit_batch(self, entities: List[Any], batch_number: int = 0) -> BatchResult:
        """
        Persist one batch in its own transaction.

        A failure rolls back this batch only and is reported in the result.

        Args:
            entities: Entities built from one or more rows
            batch_number: Sequence number used in logs

        Returns:
            BatchResult with the accepted count or the error
        """
        session = self.session_factory()
        counts = {"inserted": 0, "updated": 0, "skipped": 0}
        try:
            accepted = self.persist(session, entities, counts)
            session.commit()
        except Exception as e:
            session.rollback()
            self.stats["batches_failed"] += 1
            logger.warning(f"Batch {batch_number} ({len(entities)} entities) rolled back: {e}")
            return BatchResult(batch_number, len(entities), 0, error=str(e))
        finally:
            session.close()

        self.stats["batches_committed"] += 1
        for key, value in counts.items():
            self.stats[key] += value
        logger.debug(f"Batch {batch_number} committed: {accepted}/{len(entities)} accepted")
        return BatchResult(batch_number, len(entities), accepted)

    def persist(
        self, session: Session, entities: List[Any], counts: Optional[Dict[str, int]] = None
    ) -> int:
        """
        Save entities through the session without committing.

        Args:
            session: Open session; the caller owns the transaction
            entities: Entities of any registered type
            counts: Optional dict receiving inserted/updated/skipped counts

        Returns:
            Number of entities accepted (inserted or overwritten)
        """
        counts = counts if counts is not None else {"inserted": 0, "updated": 0, "skipped": 0}
        groups: Dict[str, List[Any]] = {}
        parents: Dict[int, Any] = {}

        for entity in entities:
            descriptor = descriptor_for(entity)
            groups.setdefault(descriptor.entity_type, []).append(entity)
            if not descriptor.is_main:
                # Detach from the incoming parent; re-attached to the resolved one below
                parents[id(entity)] = getattr(entity, descriptor.parent_attribute)
                setattr(entity, descriptor.parent_attribute, None)

        resolved: Dict[int, Optional[Any]] = {}
        accepted = 0
        ordered = sorted(groups, key=lambda name: not ENTITY_REGISTRY[name].is_main)
        for entity_type in ordered:
            descriptor = ENTITY_REGISTRY[entity_type]
            if descriptor.is_main:
                accepted += self._save_primary(session, descriptor, groups[entity_type], resolved, counts)
                session.flush()
            else:
                accepted += self._save_related(
                    session, descriptor, groups[entity_type], parents, resolved, counts
                )
        session.flush()
        return accepted

    def _save_primary(
        self,
        session: Session,
        descriptor: EntityDescriptor,
        entities: List[Any],
        resolved: Dict[int, Optional[Any]],
        counts: Dict[str, int],
    ) -> int:
        key_attributes = self.uniqueness.key_for(descriptor.entity_type)
        seen: Dict[Tuple[Any, ...], Any] = {}
        accepted = 0

        for entity in entities:
            key = tuple(getattr(entity, attribute) for attribute in key_attributes)
            existing = None
            if self._has_key(key_attributes, key):
                existing = seen.get(key)
                if existing is None:
                    existing = self._find(session, descriptor.model, key_attributes, key)

            if existing is None:
                session.add(entity)
                resolved[id(entity)] = entity
                if self._has_key(key_attributes, key):
                    seen[key] = entity
                counts["inserted"] += 1
                accepted += 1
                continue

            if self.duplicate_handling == DuplicateHandling.OVERRIDE:
                descriptor.copy_fields(entity, existing)
                existing.import_operation_id = entity.import_operation_id
                resolved[id(entity)] = existing
                counts["updated"] += 1
                accepted += 1
            elif self.duplicate_handling == DuplicateHandling.SKIP:
                resolved[id(entity)] = existing
                counts["skipped"] += 1
            else:
                resolved[id(entity)] = None
                counts["skipped"] += 1
            seen[key] = existing

        return accepted

    def _save_related(
        self,
        session: Session,
        descriptor: EntityDescriptor,
        entities: List[Any],
        parents: Dict[int, Any],
        resolved: Dict[int, Optional[Any]],
        counts: Dict[str, int],
    ) -> int:
        key_attributes = self.uniqueness.key_for(descriptor.entity_type)
        parent_column = self._parent_column(descriptor)
        seen: Dict[Tuple[Any, ...], Any] = {}
        accepted = 0

        for entity in entities:
            incoming_parent = parents.get(id(entity))
            parent = resolved.get(id(incoming_parent)) if incoming_parent is not None else None
            if parent is None:
                counts["skipped"] += 1
                continue

            key = tuple(getattr(entity, attribute) for attribute in key_attributes)
            existing = None
            if self._has_key(key_attributes, key):
                scoped_key = (id(parent),) + key
                existing = seen.get(scoped_key)
                if existing is None and parent.id is not None:
                    existing = self._find(
                        session,
                        descriptor.model,
                        key_attributes + (parent_column,),
                        key + (parent.id,),
                    )

            if existing is None:
                setattr(entity, descriptor.parent_attribute, parent)
                session.add(entity)
                existing = entity
                counts["inserted"] += 1
            else:
                descriptor.copy_fields(entity, existing)
                existing.import_operation_id = entity.import_operation_id
                counts["updated"] += 1

            if self._has_key(key_attributes, key):
                seen[(id(parent),) + key] = existing
            accepted += 1

        return accepted

    def delete_operation_entities(self, session: Session, operation_id: int) -> Dict[str, int]:
        """
        Remove every entity written by an import operation, children first.

        Products updated by the operation are deleted as well, since their
        previous values are not retained.
        """
        removed = {}
        for model in (RegionData, CompetitorData, Product):
            result = session.execute(delete(model).where(model.import_operation_id == operation_id))
            removed[model.__tablename__] = result.rowcount
        session.commit()
        logger.info(f"Rolled back entities of operation {operation_id}: {removed}")
        return removed

    @staticmethod
    def _has_key(attributes: Tuple[str, ...], key: Tuple[Any, ...]) -> bool:
        """A natural key needs at least one non-scope attribute with a value."""
        return any(
            value is not None
            for attribute, value in zip(attributes, key)
            if attribute not in SCOPE_ATTRIBUTES
        )

    @staticmethod
    def _find(session: Session, model: type, attributes: Tuple[str, ...], values: Tuple[Any, ...]):
        filters = []
        for attribute, value in zip(attributes, values):
            column = getattr(model, attribute)
            filters.append(column.is_(None) if value is None else column == value)
        stmt = select(model).where(and_(*filters)).limit(1)
        return session.execute(stmt).scalars().first()

    @staticmethod
    def _parent_column(descriptor: EntityDescriptor) -> str:
        relationship_property = getattr(descriptor.model, descriptor.parent_attribute).property
        local_column = next(iter(relationship_property.local_columns))
        return local_column.key
