"""
Composite Rows
Flattens a product and its related records into export rows.
"""

from itertools import product as cartesian
from typing import Any, Dict, Iterable, List, Optional

from pricesync.models.entities import PRIMARY_ENTITY, FieldDescriptor, composite_fields, get_descriptor

IMPORT_OPERATION_KEY = "importOperationId"


def _values(entity: Any, fields: List[FieldDescriptor]) -> Dict[str, Any]:
    if entity is None:
        return {}
    return {f.field_id: getattr(entity, f.attribute) for f in fields}


def expand_entity(entity: Any, entity_type: str = PRIMARY_ENTITY, composite: bool = True) -> List[Dict[str, Any]]:
    """
    Rows for one entity.

    Without related records the entity yields one row. With records of one
    related type it yields one row per record; with several related types
    it yields their cross-product. Related fields are namespaced
    ("region.region", "competitor.competitorPrice").
    """
    descriptor = get_descriptor(entity_type)
    base = _values(entity, list(descriptor.fields))
    base[IMPORT_OPERATION_KEY] = getattr(entity, "import_operation_id", None)
    if not composite or not descriptor.is_main:
        return [base]

    related_sets = []
    for related_type in descriptor.related:
        records = list(getattr(entity, _collection_name(related_type), None) or [])
        if records:
            prefixed = [f.prefixed(related_type) for f in get_descriptor(related_type).fields]
            related_sets.append([_values(record, prefixed) for record in records])

    if not related_sets:
        return [base]

    rows = []
    for combination in cartesian(*related_sets):
        row = dict(base)
        for values in combination:
            row.update(values)
        rows.append(row)
    return rows


def expand_entities(
    entities: Iterable[Any], entity_type: str = PRIMARY_ENTITY, composite: bool = True
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for entity in entities:
        rows.extend(expand_entity(entity, entity_type, composite))
    return rows


def export_columns(
    entity_type: str = PRIMARY_ENTITY,
    composite: bool = True,
    field_ids: Optional[List[str]] = None,
) -> List[FieldDescriptor]:
    """
    Columns of an export, in order.

    Args:
        entity_type: Exported entity type
        composite: Include related entity fields
        field_ids: Restrict to these field ids (kept in the given order)

    Returns:
        Exportable field descriptors
    """
    descriptor = get_descriptor(entity_type)
    available = composite_fields(entity_type) if composite and descriptor.is_main else list(descriptor.fields)
    available = [f for f in available if f.exportable]
    if not field_ids:
        return available

    by_id = {f.field_id.lower(): f for f in available}
    return [by_id[field_id.lower()] for field_id in field_ids if field_id.lower() in by_id]


def _collection_name(related_type: str) -> str:
    return {"region": "region_data", "competitor": "competitor_data"}[related_type]
