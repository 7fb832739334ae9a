"""
Tests for entity field metadata and import parameters.
"""

from datetime import date, datetime

import pytest

from pricesync.db.models import Product, RegionData
from pricesync.models.entities import (
    composite_fields,
    descriptor_for,
    get_descriptor,
    parse_date,
    parse_datetime,
    parse_number,
    resolve_field,
)
from pricesync.models.schemas import ImportParameters, ProgressSnapshot


class TestValueParsing:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9.99", 9.99),
            ("9,99", 9.99),
            ("1 234,50", 1234.5),
            ("1,234.50", 1234.5),
            ("1.234,50", 1234.5),
            ("€15", 15.0),
        ],
    )
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == expected

    def test_parse_number_rejects_text(self):
        with pytest.raises(ValueError):
            parse_number("n/a")

    def test_parse_dates(self):
        assert parse_date("2024-03-05") == date(2024, 3, 5)
        assert parse_date("05.03.2024") == date(2024, 3, 5)
        assert parse_datetime("2024-03-05 10:15:00") == datetime(2024, 3, 5, 10, 15)


class TestRegistry:
    """Descriptor lookups."""

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError):
            get_descriptor("invoice")

    def test_field_lookup_by_alias_is_case_insensitive(self):
        field = get_descriptor("product").get_field("BASEPRICE")
        assert field.field_id == "productPrice"

    def test_descriptor_for_instance(self):
        assert descriptor_for(RegionData()).entity_type == "region"

    def test_composite_fields_are_prefixed(self):
        field_ids = [f.field_id for f in composite_fields("product")]

        assert field_ids[0] == "productId"
        assert "region.stockAmount" in field_ids
        assert "competitor.competitorUrl" in field_ids

    def test_composite_fields_restricted(self):
        field_ids = [f.field_id for f in composite_fields("product", related=["region"])]
        assert not any(f.startswith("competitor.") for f in field_ids)

    @pytest.mark.parametrize(
        "field_id,entity_type,resolved_id",
        [
            ("productName", "product", "productName"),
            ("sku", "product", "productId"),
            ("region.region", "region", "region"),
            ("stock", "region", "stockAmount"),
            ("competitor.competitorDate", "competitor", "competitorDate"),
        ],
    )
    def test_resolve_field(self, field_id, entity_type, resolved_id):
        resolved = resolve_field(field_id)
        assert resolved[0] == entity_type
        assert resolved[1].field_id == resolved_id

    def test_resolve_unknown(self):
        assert resolve_field("colour") is None
        assert resolve_field("warehouse.region") is None


class TestDescriptorBehaviour:
    def test_fill_converts_types(self):
        descriptor = get_descriptor("competitor")
        entity = descriptor.create()

        descriptor.fill_from_mapping(
            entity,
            {
                "competitorName": "AgroShop",
                "competitorPrice": "10,49",
                "competitorDate": "2024-03-05",
                "competitorLocalDateTime": "05.03.2024 10:15",
            },
        )

        assert entity.competitor_price == 10.49
        assert entity.competitor_date == date(2024, 3, 5)
        assert entity.competitor_local_date_time == datetime(2024, 3, 5, 10, 15)

    def test_copy_fields_skips_ownership(self):
        descriptor = get_descriptor("product")
        source = Product(product_id="A1", product_price=2.0, client_id=9, import_operation_id=5)
        target = Product(product_id="A1", product_price=1.0, client_id=1, import_operation_id=1)

        descriptor.copy_fields(source, target)

        assert target.product_price == 2.0
        assert target.client_id == 1
        assert target.import_operation_id == 1

    def test_natural_key(self):
        product = Product(product_id="A1", client_id=3)
        assert get_descriptor("product").natural_key_of(product) == (3, "A1")


class TestImportParameters:
    def test_string_map_is_coerced(self):
        params = ImportParameters.from_params(
            {
                "batchSize": "250",
                "templateId": "12",
                "duplicateHandling": "SKIP",
                "delimiter": "tab",
                "hasHeader": "false",
            }
        )

        assert params.batch_size == 250
        assert params.template_id == 12
        assert params.duplicate_handling == "skip"
        assert params.delimiter == "\t"
        assert params.has_header is False
        assert params.entity_type == "product"

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ({"duplicateHandling": "replace"}, ("override", "batch")),
            ({"cancellationCheck": "sometimes"}, ("override", "batch")),
            ({"duplicateHandling": " Ignore ", "cancellationCheck": "ROW"}, ("ignore", "row")),
            ({"duplicateHandling": None}, ("override", "batch")),
        ],
    )
    def test_unknown_choices_use_defaults(self, raw, expected):
        params = ImportParameters.from_params(raw)

        assert (params.duplicate_handling, params.cancellation_check) == expected

    @pytest.mark.parametrize("raw,expected", [("Product", "product"), (" REGION ", "region"), ("", "product")])
    def test_entity_type_is_normalized(self, raw, expected):
        assert ImportParameters.from_params({"entityType": raw}).entity_type == expected

    @pytest.mark.parametrize("raw", ["-5", "0", "lots", None])
    def test_unusable_batch_size_uses_default(self, raw):
        assert ImportParameters.from_params({"batchSize": raw}).batch_size == 500

    def test_snapshot_event(self):
        event = ProgressSnapshot(operation_id=4, status="PROCESSING", total=10, processed=5, progress=50).to_event()

        assert event == {"operationId": 4, "status": "PROCESSING", "total": 10, "processed": 5, "progress": 50}
