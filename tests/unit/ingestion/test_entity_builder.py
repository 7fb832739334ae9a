"""
Tests for building product graphs from mapped rows.
"""

import pytest

from pricesync.db.models import CompetitorData, Product, RegionData
from pricesync.ingestion.entity_builder import EntityBuilder
from pricesync.ingestion.errors import MappingError


class TestEntityBuilder:
    """Row partitioning, back-references and validation."""

    def test_product_with_region_and_competitor(self):
        builder = EntityBuilder(client_id=7, operation_id=3)
        applied = builder.apply_row(
            {
                "productId": "A1",
                "basePrice": "9.99",
                "region.region": "EU",
                "stockAmount": "10",
                "competitor.competitorName": "AgroShop",
            }
        )
        entities = builder.build()

        assert applied is True
        product, *related = entities
        assert isinstance(product, Product)
        assert product.product_id == "A1"
        assert product.product_price == 9.99
        assert product.client_id == 7
        assert product.import_operation_id == 3

        region = next(e for e in related if isinstance(e, RegionData))
        competitor = next(e for e in related if isinstance(e, CompetitorData))
        assert region.region == "EU"
        assert region.stock_amount == 10
        assert region.product is product
        assert competitor.competitor_name == "AgroShop"
        assert competitor.product is product

    def test_blank_related_fields_create_no_entity(self):
        builder = EntityBuilder()
        builder.apply_row({"productId": "A1", "region.region": "", "competitor.competitorPrice": "  "})

        assert len(builder.build()) == 1

    def test_empty_row_is_skippable(self):
        builder = EntityBuilder()

        assert builder.apply_row({"productId": "", "unknownField": "x"}) is False
        assert builder.is_empty
        assert builder.build() == []
        assert builder.validate() is None

    def test_data_source_is_stamped(self):
        builder = EntityBuilder(data_source="FILE")
        builder.apply_row({"productName": "Rake"})

        assert builder.build()[0].data_source == "FILE"

    def test_invalid_number_raises_mapping_error(self):
        builder = EntityBuilder()

        with pytest.raises(MappingError):
            builder.apply_row({"productId": "A1", "productPrice": "n/a"})

    def test_related_without_product_fails_validation(self):
        builder = EntityBuilder()
        builder.apply_row({"region.region": "EU"})

        assert builder.validate() == "Missing product data"
        assert builder.build() == []

    def test_negative_price_fails_validation(self):
        builder = EntityBuilder()
        builder.apply_row({"productId": "A1", "productPrice": "-1"})

        assert "cannot be negative" in builder.validate()

    def test_product_needs_id_or_name(self):
        builder = EntityBuilder()
        builder.apply_row({"productBrand": "Gardena"})

        assert "Product ID" in builder.validate()

    def test_restricted_related_types(self):
        builder = EntityBuilder(related=())
        builder.apply_row({"productId": "A1", "region.region": "EU"})

        assert len(builder.build()) == 1

    def test_reset_clears_state(self):
        builder = EntityBuilder()
        builder.apply_row({"productId": "A1", "region.region": "EU"})
        builder.reset()

        assert builder.is_empty
        builder.apply_row({"productId": "B2"})
        entities = builder.build()
        assert len(entities) == 1
        assert entities[0].product_id == "B2"
