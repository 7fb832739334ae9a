"""
Entity field metadata.
Field-descriptor tables for every importable entity type and the registry that resolves them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import re

from pricesync.db.models import Product, RegionData, CompetitorData

PRIMARY_ENTITY = "product"

DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y")
DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
)
TRUE_VALUES = {"true", "yes", "y", "1", "on", "да"}
FALSE_VALUES = {"false", "no", "n", "0", "off", "нет"}


def parse_number(value: str) -> float:
    """
    Parse a locale-tolerant decimal string.

    Accepts currency symbols, spaces as thousand separators and a comma
    as decimal separator ("1 234,50" -> 1234.5).
    """
    cleaned = re.sub(r"[£$€₽\s ]", "", value)
    if "," in cleaned and "." in cleaned:
        # The right-most separator is the decimal one
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    if not cleaned:
        raise ValueError(f"Not a number: {value!r}")
    return float(cleaned)


def parse_date(value: str) -> date:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    # Datetime strings are accepted for date columns
    return parse_datetime(value).date()


def parse_datetime(value: str) -> datetime:
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Not a date/time: {value!r}")


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


CONVERTERS: Dict[type, Callable[[str], Any]] = {
    str: lambda v: v,
    float: parse_number,
    int: lambda v: int(round(parse_number(v))),
    date: parse_date,
    datetime: parse_datetime,
    bool: parse_bool,
}


@dataclass(frozen=True)
class FieldDescriptor:
    """One mappable field: its id, ORM attribute, display label and value type."""

    field_id: str
    attribute: str
    label: str
    value_type: type = str
    aliases: Tuple[str, ...] = ()
    exportable: bool = True

    def convert(self, raw: str) -> Any:
        """Convert a non-blank raw string to the field's value type."""
        return CONVERTERS[self.value_type](raw.strip())

    def prefixed(self, prefix: str) -> "FieldDescriptor":
        return FieldDescriptor(
            field_id=f"{prefix}.{self.field_id}",
            attribute=self.attribute,
            label=self.label,
            value_type=self.value_type,
            aliases=tuple(f"{prefix}.{alias}" for alias in self.aliases),
            exportable=self.exportable,
        )


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Field table and behaviour for one entity type.

    The descriptor drives population from mapped rows, validation, the
    labels used for auto-matching and export headers, and the generic
    field copy used by upserts.
    """

    entity_type: str
    display_name: str
    model: type
    fields: Tuple[FieldDescriptor, ...]
    natural_key: Tuple[str, ...]
    required_any: Tuple[str, ...] = ()
    parent_attribute: Optional[str] = None
    related: Tuple[str, ...] = ()
    _index: Dict[str, FieldDescriptor] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        for descriptor in self.fields:
            self._index[descriptor.field_id.lower()] = descriptor
            for alias in descriptor.aliases:
                self._index[alias.lower()] = descriptor

    @property
    def is_main(self) -> bool:
        return self.parent_attribute is None

    def create(self, **values) -> Any:
        return self.model(**values)

    def get_field(self, field_id: str) -> Optional[FieldDescriptor]:
        """Find a field by id or alias, case-insensitively."""
        return self._index.get(field_id.lower())

    def field_labels(self) -> Dict[str, str]:
        return {descriptor.field_id: descriptor.label for descriptor in self.fields}

    def fill_from_mapping(self, entity: Any, values: Dict[str, str]) -> bool:
        """
        Populate an entity from field id -> raw string values.

        Blank values are skipped. Unknown field ids are ignored.

        Args:
            entity: Instance of this descriptor's model
            values: Field id (or alias) to raw string value

        Returns:
            True if at least one field received a value

        Raises:
            ValueError: if a value cannot be converted to the field type
        """
        filled = False
        for field_id, raw in values.items():
            if raw is None or not str(raw).strip():
                continue
            descriptor = self.get_field(field_id)
            if descriptor is None:
                continue
            try:
                value = descriptor.convert(str(raw))
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {descriptor.field_id}: {e}") from e
            setattr(entity, descriptor.attribute, value)
            filled = True
        return filled

    def validate(self, entity: Any) -> Optional[str]:
        """Return a description of the first validation failure, or None."""
        if self.required_any and all(
            _is_blank(getattr(entity, attribute)) for attribute in self.required_any
        ):
            labels = ", ".join(
                descriptor.label for descriptor in self.fields
                if descriptor.attribute in self.required_any
            )
            return f"{self.display_name}: one of [{labels}] is required"

        for descriptor in self.fields:
            if descriptor.value_type is float:
                value = getattr(entity, descriptor.attribute)
                if value is not None and value < 0:
                    return f"{self.display_name}: {descriptor.label} cannot be negative ({value})"
        return None

    def natural_key_of(self, entity: Any) -> Tuple[Any, ...]:
        return tuple(getattr(entity, attribute) for attribute in self.natural_key)

    def read_value(self, entity: Any, field_id: str) -> Any:
        descriptor = self.get_field(field_id)
        if descriptor is None or entity is None:
            return None
        return getattr(entity, descriptor.attribute)

    def copy_fields(self, source: Any, target: Any) -> None:
        """
        Overwrite every descriptor field on target with source's value.

        Surrogate ids, ownership columns and relationships are not part of
        the field table and are never copied.
        """
        for descriptor in self.fields:
            setattr(target, descriptor.attribute, getattr(source, descriptor.attribute))


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


PRODUCT_FIELDS = (
    FieldDescriptor("productId", "product_id", "Product ID", aliases=("sku",)),
    FieldDescriptor("productName", "product_name", "Product name"),
    FieldDescriptor("productBrand", "product_brand", "Brand"),
    FieldDescriptor("productBar", "product_bar", "Barcode"),
    FieldDescriptor("productDescription", "product_description", "Description"),
    FieldDescriptor("productUrl", "product_url", "Product URL"),
    FieldDescriptor("productCategory1", "product_category1", "Category 1"),
    FieldDescriptor("productCategory2", "product_category2", "Category 2"),
    FieldDescriptor("productCategory3", "product_category3", "Category 3"),
    FieldDescriptor("productPrice", "product_price", "Product price", float,
                    aliases=("basePrice",)),
    FieldDescriptor("productAnalog", "product_analog", "Analog"),
    FieldDescriptor("productAdditional1", "product_additional1", "Additional 1"),
    FieldDescriptor("productAdditional2", "product_additional2", "Additional 2"),
    FieldDescriptor("productAdditional3", "product_additional3", "Additional 3"),
    FieldDescriptor("productAdditional4", "product_additional4", "Additional 4"),
    FieldDescriptor("productAdditional5", "product_additional5", "Additional 5"),
    FieldDescriptor("dataSource", "data_source", "Data source"),
)

REGION_FIELDS = (
    FieldDescriptor("region", "region", "Region"),
    FieldDescriptor("regionAddress", "region_address", "Region address"),
    FieldDescriptor("stockAmount", "stock_amount", "Stock amount", int, aliases=("stock",)),
)

COMPETITOR_FIELDS = (
    FieldDescriptor("competitorName", "competitor_name", "Competitor name"),
    FieldDescriptor("competitorPrice", "competitor_price", "Competitor price", float),
    FieldDescriptor("competitorPromotionalPrice", "competitor_promotional_price",
                    "Competitor promotional price", float),
    FieldDescriptor("competitorTime", "competitor_time", "Competitor time"),
    FieldDescriptor("competitorDate", "competitor_date", "Competitor date", date),
    FieldDescriptor("competitorLocalDateTime", "competitor_local_date_time",
                    "Competitor date and time", datetime),
    FieldDescriptor("competitorStockStatus", "competitor_stock_status", "Competitor stock status"),
    FieldDescriptor("competitorAdditionalPrice", "competitor_additional_price",
                    "Competitor additional price", float),
    FieldDescriptor("competitorCommentary", "competitor_commentary", "Competitor commentary"),
    FieldDescriptor("competitorProductName", "competitor_product_name",
                    "Competitor product name"),
    FieldDescriptor("competitorAdditional", "competitor_additional", "Competitor additional"),
    FieldDescriptor("competitorAdditional2", "competitor_additional2", "Competitor additional 2"),
    FieldDescriptor("competitorUrl", "competitor_url", "Competitor URL"),
    FieldDescriptor("competitorWebCacheUrl", "competitor_web_cache_url",
                    "Competitor web cache URL"),
)


ENTITY_REGISTRY: Dict[str, EntityDescriptor] = {
    "product": EntityDescriptor(
        entity_type="product",
        display_name="Product",
        model=Product,
        fields=PRODUCT_FIELDS,
        natural_key=("client_id", "product_id"),
        required_any=("product_id", "product_name"),
        related=("region", "competitor"),
    ),
    "region": EntityDescriptor(
        entity_type="region",
        display_name="Region",
        model=RegionData,
        fields=REGION_FIELDS,
        natural_key=("region",),
        required_any=("region",),
        parent_attribute="product",
    ),
    "competitor": EntityDescriptor(
        entity_type="competitor",
        display_name="Competitor",
        model=CompetitorData,
        fields=COMPETITOR_FIELDS,
        natural_key=("competitor_name",),
        required_any=("competitor_name",),
        parent_attribute="product",
    ),
}


def get_descriptor(entity_type: str) -> EntityDescriptor:
    """
    Look up the descriptor for an entity type id.

    Raises:
        ValueError: if the entity type is not registered
    """
    try:
        return ENTITY_REGISTRY[entity_type.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown entity type '{entity_type}'. Known types: {', '.join(ENTITY_REGISTRY)}"
        )


def descriptor_for(entity: Any) -> EntityDescriptor:
    """Descriptor of an entity instance, by its model class."""
    for descriptor in ENTITY_REGISTRY.values():
        if isinstance(entity, descriptor.model):
            return descriptor
    raise ValueError(f"No descriptor registered for {type(entity).__name__}")


def composite_fields(
    entity_type: str = PRIMARY_ENTITY, related: Optional[Iterable[str]] = None
) -> List[FieldDescriptor]:
    """
    Fields of a main entity plus its related entities' fields.

    Related fields are namespaced with the related type, e.g. "region.region".

    Args:
        entity_type: Main entity type
        related: Restrict to these related types (defaults to all)

    Returns:
        Ordered list of field descriptors
    """
    main = get_descriptor(entity_type)
    result = list(main.fields)
    allowed = set(related) if related is not None else None
    for related_type in main.related:
        if allowed is not None and related_type not in allowed:
            continue
        result.extend(f.prefixed(related_type) for f in get_descriptor(related_type).fields)
    return result


def resolve_field(
    field_id: str, entity_type: str = PRIMARY_ENTITY
) -> Optional[Tuple[str, FieldDescriptor]]:
    """
    Find which entity a target field id belongs to.

    "region.region" resolves to the region entity. Un-namespaced ids are
    looked up on the main entity first, then on each related entity.

    Returns:
        (entity type, field descriptor) or None if the id is unknown
    """
    main = get_descriptor(entity_type)
    if "." in field_id:
        prefix, name = field_id.split(".", 1)
        prefix = prefix.lower()
        if prefix == main.entity_type:
            descriptor = main.get_field(name)
            return (main.entity_type, descriptor) if descriptor else None
        if prefix in main.related:
            descriptor = get_descriptor(prefix).get_field(name)
            return (prefix, descriptor) if descriptor else None
        return None

    descriptor = main.get_field(field_id)
    if descriptor is not None:
        return main.entity_type, descriptor
    for related_type in main.related:
        descriptor = get_descriptor(related_type).get_field(field_id)
        if descriptor is not None:
            return related_type, descriptor
    return None
