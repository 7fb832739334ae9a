"""
Field Mapping
Resolves source column labels to entity field ids, from a saved template or by auto-matching.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pricesync.db.models import MappingRule, MappingTemplate
from pricesync.ingestion.errors import MappingError
from pricesync.ingestion.transformers import compile_transformation
from pricesync.models.entities import (
    FieldDescriptor,
    PRIMARY_ENTITY,
    composite_fields,
    get_descriptor,
    resolve_field,
)

logger = logging.getLogger(__name__)

MIN_CONTAINMENT_LENGTH = 3
MIN_WORD_LENGTH = 3
WORD_SCORE_THRESHOLD = 3


def _normalize(label: str) -> str:
    return label.strip().lower()


def _words(label: str) -> List[str]:
    return [word for word in re.split(r"[\s_.\-]+", label.lower()) if len(word) >= MIN_WORD_LENGTH]


def word_similarity(first: str, second: str) -> int:
    """Two points per shared word longer than two characters."""
    second_words = _words(second)
    return sum(2 for word in _words(first) if word in second_words)


@dataclass
class ResolvedRule:
    """A mapping rule ready to apply to rows."""

    source_column: str
    field_id: str
    entity_type: str
    required: bool = False
    default_value: Optional[str] = None
    transform: Optional[Callable[[str], str]] = None
    order_index: int = 0


class RowMapper:
    """
    Pure function from a raw row (label -> string) to field id -> string.

    Source labels are matched case-insensitively. The first rule that yields
    a non-blank value for a field wins.
    """

    def __init__(self, rules: Sequence[ResolvedRule], entity_type: str = PRIMARY_ENTITY):
        self.rules = sorted(rules, key=lambda rule: rule.order_index)
        self.entity_type = entity_type

    def __call__(self, row: Dict[str, str]) -> Dict[str, str]:
        """
        Map one row.

        Raises:
            MappingError: if a required value is missing or a transformation fails
        """
        lookup = {_normalize(label): value for label, value in row.items()}
        mapped: Dict[str, str] = {}

        for rule in self.rules:
            if rule.field_id in mapped:
                continue

            raw = lookup.get(_normalize(rule.source_column))
            value = raw.strip() if raw is not None else ""
            if not value and rule.default_value:
                value = rule.default_value

            if not value:
                if rule.required:
                    raise MappingError(
                        f"Required column '{rule.source_column}' is empty",
                        columns=[rule.source_column],
                    )
                continue

            if rule.transform is not None:
                try:
                    value = rule.transform(value)
                except (ValueError, TypeError) as e:
                    raise MappingError(
                        f"Cannot transform column '{rule.source_column}': {e}",
                        columns=[rule.source_column],
                    ) from e

            mapped[rule.field_id] = value

        return mapped

    @property
    def field_ids(self) -> List[str]:
        return [rule.field_id for rule in self.rules]

    @property
    def source_columns(self) -> List[str]:
        return [rule.source_column for rule in self.rules]

    def missing_required_columns(self, headers: Iterable[str]) -> List[str]:
        """
        Required primary-entity columns absent from the header set.

        Rules with a default value never count as missing.
        """
        available = {_normalize(header) for header in headers}
        missing = []
        for rule in self.rules:
            if not rule.required or rule.default_value:
                continue
            if rule.entity_type != self.entity_type:
                continue
            if _normalize(rule.source_column) not in available and rule.source_column not in missing:
                missing.append(rule.source_column)
        return missing


class FieldMappingEngine:
    """
    Builds row mappers for an entity type.

    Auto mode matches source headers against field ids and display labels:
    exact matches first, then substring containment, then shared words.
    Template mode compiles the active rules of a saved template.
    """

    def __init__(self, entity_type: str = PRIMARY_ENTITY, composite: bool = True):
        self.entity_type = entity_type
        self.composite = composite
        self.descriptor = get_descriptor(entity_type)

    def target_fields(self) -> List[FieldDescriptor]:
        """Fields available as mapping targets, related-entity fields namespaced."""
        if self.composite and self.descriptor.is_main:
            return composite_fields(self.entity_type)
        return list(self.descriptor.fields)

    def suggest_mapping(self, headers: Sequence[str]) -> Dict[str, str]:
        """
        Suggest header -> field id assignments.

        Every declared field is tried against the headers in field order;
        a header is assigned to at most one field. Unmatched fields and
        headers are left out.

        Args:
            headers: Source column labels

        Returns:
            Dict of header to field id, in header order
        """
        fields = self.target_fields()
        usable = [header for header in headers if header and header.strip()]
        claimed: Dict[str, str] = {}
        matched_fields = set()

        def claim(header: str, field: FieldDescriptor) -> None:
            claimed[header] = field.field_id
            matched_fields.add(field.field_id)

        # Exact id / label / alias match
        for field in fields:
            names = {_normalize(field.field_id), _normalize(field.label)}
            names.update(_normalize(alias) for alias in field.aliases)
            for header in usable:
                if header not in claimed and _normalize(header) in names:
                    claim(header, field)
                    break

        # Substring containment in either direction
        for field in fields:
            if field.field_id in matched_fields:
                continue
            label = _normalize(field.label)
            for header in usable:
                normalized = _normalize(header)
                if header in claimed or len(normalized) < MIN_CONTAINMENT_LENGTH:
                    continue
                if normalized in label or label in normalized:
                    claim(header, field)
                    break

        # Shared words
        for header in usable:
            if header in claimed:
                continue
            best_field, best_score = None, 0
            for field in fields:
                if field.field_id in matched_fields:
                    continue
                score = word_similarity(header, field.label)
                if score > best_score:
                    best_field, best_score = field, score
            if best_field is not None and best_score > WORD_SCORE_THRESHOLD:
                claim(header, best_field)

        suggestion = {header: claimed[header] for header in usable if header in claimed}
        logger.info(
            f"Auto-matched {len(suggestion)}/{len(usable)} columns to {self.entity_type} fields"
        )
        return suggestion

    def auto_mapper(self, headers: Sequence[str]) -> RowMapper:
        """Row mapper built from suggest_mapping, trimming every value."""
        rules = []
        for index, (header, field_id) in enumerate(self.suggest_mapping(headers).items()):
            entity_type = self._entity_of(field_id)
            rules.append(
                ResolvedRule(
                    source_column=header,
                    field_id=field_id,
                    entity_type=entity_type,
                    transform=compile_transformation("trim", header),
                    order_index=index,
                )
            )
        return RowMapper(rules, entity_type=self.entity_type)

    def from_template(self, template: MappingTemplate) -> RowMapper:
        """
        Compile the active rules of a template.

        Raises:
            MappingError: if a rule targets an unknown field or names an
                unknown transformation
        """
        return self.from_rules(template.rules)

    def from_rules(self, rules: Iterable[MappingRule]) -> RowMapper:
        resolved = []
        unknown = []
        for rule in rules:
            if rule.is_active is False:
                continue
            field_id = rule.field_id
            if resolve_field(field_id, self.entity_type) is None:
                unknown.append(field_id)
                continue
            resolved.append(
                ResolvedRule(
                    source_column=rule.source_column,
                    field_id=field_id,
                    entity_type=self._entity_of(field_id),
                    required=bool(rule.is_required),
                    default_value=rule.default_value or None,
                    transform=compile_transformation(rule.transformation, rule.source_column),
                    order_index=rule.order_index or 0,
                )
            )

        if unknown:
            raise MappingError(
                f"Template targets unknown {self.entity_type} fields: {', '.join(unknown)}",
                columns=unknown,
            )
        return RowMapper(resolved, entity_type=self.entity_type)

    def validate_required_columns(self, headers: Sequence[str], mapper: RowMapper) -> None:
        """
        Header pre-pass: every required primary-entity column must be present.

        Raises:
            MappingError: listing every missing column
        """
        missing = mapper.missing_required_columns(headers)
        if missing:
            raise MappingError(
                f"Missing required column(s): {', '.join(missing)}",
                columns=missing,
            )

    def build_template(
        self,
        headers: Sequence[str],
        name: str,
        client_id: Optional[int] = None,
        file_format: Optional[str] = None,
    ) -> MappingTemplate:
        """Create an (unsaved) template from the auto-matched suggestion."""
        template = MappingTemplate(
            name=name,
            client_id=client_id,
            entity_type=self.entity_type,
            file_format=file_format,
            is_active=True,
            is_default=False,
        )
        for index, (header, field_id) in enumerate(self.suggest_mapping(headers).items()):
            template.rules.append(
                MappingRule(
                    source_column=header,
                    target_field=field_id,
                    transformation="trim",
                    order_index=index,
                    is_required=False,
                    is_active=True,
                )
            )
        return template

    def _entity_of(self, field_id: str) -> str:
        resolved = resolve_field(field_id, self.entity_type) if self.descriptor.is_main else None
        return resolved[0] if resolved else self.entity_type
