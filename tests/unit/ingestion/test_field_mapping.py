"""
Tests for column-to-field mapping and value transformations.
"""

import pytest

from pricesync.db.models import MappingRule, MappingTemplate
from pricesync.ingestion.errors import MappingError
from pricesync.ingestion.field_mapping import FieldMappingEngine, word_similarity
from pricesync.ingestion.transformers import compile_transformation


def _template(*rules):
    template = MappingTemplate(name="test", entity_type="product", is_active=True, is_default=False)
    for index, rule in enumerate(rules):
        rule.order_index = index
        template.rules.append(rule)
    return template


class TestAutoMatching:
    """Header suggestion against field ids, labels and aliases."""

    def test_exact_label_and_id_matches(self):
        engine = FieldMappingEngine()
        suggestion = engine.suggest_mapping(["Product ID", "productName", "BRAND"])

        assert suggestion == {
            "Product ID": "productId",
            "productName": "productName",
            "BRAND": "productBrand",
        }

    def test_alias_match(self):
        suggestion = FieldMappingEngine().suggest_mapping(["sku", "basePrice"])

        assert suggestion["sku"] == "productId"
        assert suggestion["basePrice"] == "productPrice"

    def test_related_fields_are_namespaced(self):
        suggestion = FieldMappingEngine().suggest_mapping(["Region", "Competitor price"])

        assert suggestion["Region"] == "region.region"
        assert suggestion["Competitor price"] == "competitor.competitorPrice"

    def test_containment_match(self):
        suggestion = FieldMappingEngine().suggest_mapping(["Barcode EAN13"])
        assert suggestion == {"Barcode EAN13": "productBar"}

    def test_header_is_claimed_once(self):
        suggestion = FieldMappingEngine().suggest_mapping(["Brand", "Brand"])
        assert list(suggestion.values()).count("productBrand") == 1

    def test_unmatched_headers_are_ignored(self):
        suggestion = FieldMappingEngine().suggest_mapping(["zz", "", "Product name"])
        assert suggestion == {"Product name": "productName"}

    def test_product_only_engine_has_no_related_targets(self):
        engine = FieldMappingEngine(composite=False)
        assert all("." not in field.field_id for field in engine.target_fields())

    def test_word_similarity(self):
        assert word_similarity("competitor promo price", "Competitor promotional price") == 4
        assert word_similarity("a b", "a b") == 0


class TestRowMapper:
    """Applying resolved rules to rows."""

    def test_auto_mapper_trims_values(self):
        mapper = FieldMappingEngine().auto_mapper(["Product ID", "Product price"])
        mapped = mapper({"Product ID": "  P-1 ", "Product price": " 9.99"})

        assert mapped == {"productId": "P-1", "productPrice": "9.99"}

    def test_labels_match_case_insensitively(self):
        template = _template(MappingRule(source_column="SKU", target_field="productId"))
        mapper = FieldMappingEngine().from_template(template)

        assert mapper({"sku": "A1"}) == {"productId": "A1"}

    def test_default_value_substitutes_blank(self):
        template = _template(
            MappingRule(source_column="brand", target_field="productBrand", default_value="Generic")
        )
        mapper = FieldMappingEngine().from_template(template)

        assert mapper({"brand": ""}) == {"productBrand": "Generic"}

    def test_blank_required_value_raises(self):
        template = _template(
            MappingRule(source_column="sku", target_field="productId", is_required=True)
        )
        mapper = FieldMappingEngine().from_template(template)

        with pytest.raises(MappingError) as exc_info:
            mapper({"sku": "  "})
        assert exc_info.value.columns == ["sku"]

    def test_transformation_chain(self):
        template = _template(
            MappingRule(source_column="name", target_field="productName", transformation="trim|upper")
        )
        mapper = FieldMappingEngine().from_template(template)

        assert mapper({"name": "  rake "}) == {"productName": "RAKE"}

    def test_failed_transformation_raises(self):
        template = _template(
            MappingRule(source_column="price", target_field="productPrice", transformation="number")
        )
        mapper = FieldMappingEngine().from_template(template)

        with pytest.raises(MappingError):
            mapper({"price": "cheap"})

    def test_inactive_rules_are_skipped(self):
        template = _template(
            MappingRule(source_column="sku", target_field="productId", is_active=True),
            MappingRule(source_column="name", target_field="productName", is_active=False),
        )
        mapper = FieldMappingEngine().from_template(template)

        assert mapper.field_ids == ["productId"]

    def test_secondary_target_entity_is_namespaced(self):
        template = _template(
            MappingRule(source_column="stock", target_field="stockAmount", target_entity="region")
        )
        mapper = FieldMappingEngine().from_template(template)

        assert mapper({"stock": "5"}) == {"region.stockAmount": "5"}

    def test_unknown_target_field_raises(self):
        template = _template(MappingRule(source_column="x", target_field="colour"))

        with pytest.raises(MappingError) as exc_info:
            FieldMappingEngine().from_template(template)
        assert "colour" in exc_info.value.columns

    def test_unknown_transformation_raises(self):
        template = _template(
            MappingRule(source_column="sku", target_field="productId", transformation="reverse")
        )

        with pytest.raises(MappingError):
            FieldMappingEngine().from_template(template)


class TestRequiredColumns:
    """Header pre-pass."""

    def test_every_missing_column_is_reported(self):
        template = _template(
            MappingRule(source_column="sku", target_field="productId", is_required=True),
            MappingRule(source_column="name", target_field="productName", is_required=True),
            MappingRule(source_column="price", target_field="productPrice", is_required=True),
        )
        engine = FieldMappingEngine()
        mapper = engine.from_template(template)

        with pytest.raises(MappingError) as exc_info:
            engine.validate_required_columns(["price"], mapper)
        assert exc_info.value.columns == ["sku", "name"]

    def test_required_rule_with_default_is_not_missing(self):
        template = _template(
            MappingRule(
                source_column="source", target_field="dataSource", is_required=True, default_value="FILE"
            )
        )
        engine = FieldMappingEngine()
        engine.validate_required_columns(["sku"], engine.from_template(template))

    def test_required_secondary_column_is_not_checked(self):
        template = _template(
            MappingRule(source_column="region", target_field="region", target_entity="region", is_required=True)
        )
        engine = FieldMappingEngine()
        engine.validate_required_columns(["sku"], engine.from_template(template))


class TestTemplateGeneration:
    def test_build_template_from_headers(self):
        template = FieldMappingEngine().build_template(
            ["Product ID", "Region", "unknown"], name="auto", client_id=3
        )

        assert template.client_id == 3
        assert [rule.source_column for rule in template.rules] == ["Product ID", "Region"]
        assert [rule.field_id for rule in template.rules] == ["productId", "region.region"]


class TestTransformations:
    @pytest.mark.parametrize(
        "spec,value,expected",
        [
            ("trim", "  a ", "a"),
            ("lowercase", "ABC", "abc"),
            ("number", "1 234,50", "1234.5"),
            ("number:2", "3,1", "3.10"),
            ("boolean", "Yes", "true"),
            ("date:%d.%m.%Y", "05.03.2024", "2024-03-05"),
            ("replace:-=", "A-1", "A1"),
        ],
    )
    def test_builtin_transformations(self, spec, value, expected):
        assert compile_transformation(spec)(value) == expected

    def test_empty_spec_is_none(self):
        assert compile_transformation("") is None
