"""
Tests for export processing strategies.
"""

from datetime import date, datetime

import pytest

from pricesync.export.processing import FilteredProcessing, ProcessingStrategy


@pytest.fixture
def rows():
    return [
        {
            "productId": "A1",
            "productName": "Garden Hose",
            "productPrice": 9.0,
            "competitor.competitorDate": date(2024, 3, 5),
            "importOperationId": 1,
        },
        {
            "productId": "A2",
            "productName": "Hose reel",
            "productPrice": "12,50",
            "competitor.competitorDate": datetime(2024, 4, 1, 8, 0),
            "importOperationId": 2,
        },
        {
            "productId": "A3",
            "productName": "Rake",
            "productPrice": None,
            "competitor.competitorDate": "2024-03-31",
            "importOperationId": 3,
        },
        {
            "productId": "A4",
            "productName": None,
            "productPrice": "n/a",
            "competitor.competitorDate": None,
            "importOperationId": None,
        },
    ]


def _ids(rows):
    return [row["productId"] for row in rows]


def test_simple_strategy_returns_rows_unchanged(rows):
    assert ProcessingStrategy().process(rows, {"textField": "productName", "textValue": "x"}) is rows


class TestFilteredProcessing:
    """Each predicate on its own and combined."""

    def test_no_filters_keeps_everything(self, rows):
        assert FilteredProcessing().process(rows, {}) == rows

    def test_text_filter_is_case_insensitive_substring(self, rows):
        kept = FilteredProcessing().process(rows, {"textField": "productName", "textValue": "HOSE"})

        assert _ids(kept) == ["A1", "A2"]

    def test_numeric_range_is_inclusive(self, rows):
        kept = FilteredProcessing().process(
            rows, {"numericField": "productPrice", "minValue": "9", "maxValue": "12.5"}
        )

        assert _ids(kept) == ["A1", "A2"]

    def test_numeric_minimum_only(self, rows):
        kept = FilteredProcessing().process(rows, {"numericField": "productPrice", "minValue": "10"})

        assert _ids(kept) == ["A2"]

    def test_date_range(self, rows):
        kept = FilteredProcessing().process(
            rows,
            {"dateField": "competitor.competitorDate", "fromDate": "2024-03-01", "toDate": "2024-03-31"},
        )

        assert _ids(kept) == ["A1", "A3"]

    def test_import_operations(self, rows):
        kept = FilteredProcessing().process(rows, {"importOperations": "1, 3,x"})

        assert _ids(kept) == ["A1", "A3"]

    def test_filters_combine(self, rows):
        kept = FilteredProcessing().process(
            rows,
            {"textField": "productName", "textValue": "hose", "importOperations": "2,3"},
        )

        assert _ids(kept) == ["A2"]

    @pytest.mark.parametrize(
        "params",
        [
            {"numericField": "productPrice", "minValue": "cheap"},
            {"dateField": "competitor.competitorDate", "fromDate": "05/03/2024"},
            {"importOperations": "x,y"},
            {"textField": "productName"},
            {"minValue": "1"},
        ],
    )
    def test_invalid_parameters_skip_the_filter(self, rows, params):
        assert FilteredProcessing().process(rows, params) == rows
