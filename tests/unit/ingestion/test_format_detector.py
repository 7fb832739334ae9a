"""
Tests for format detection.
"""

from io import BytesIO

import pytest

from pricesync.ingestion.errors import DetectionError
from pricesync.ingestion.format_detector import (
    FormatDetector,
    detect_delimiter,
    detect_encoding,
    detect_header,
    detect_quote_char,
)


def _detect(text: str, **kwargs):
    return FormatDetector().detect(BytesIO(text.encode("utf-8")), **kwargs)


class TestDelimiterDetection:
    """Delimiter scoring."""

    @pytest.mark.parametrize("delimiter", [",", ";", "\t", "|"])
    def test_consistent_delimiter_is_detected(self, delimiter):
        lines = [
            delimiter.join(["name", "price", "stock"]),
            delimiter.join(["Hose", "24", "15"]),
            delimiter.join(["Can", "9", "40"]),
        ]
        assert detect_delimiter(lines) == delimiter

    def test_comma_is_default_without_candidates(self):
        assert detect_delimiter(["single column", "another value"]) == ","

    def test_consistency_beats_raw_count(self):
        lines = ["a;b;c", "d;e;f", "x,y,z,w,v,u,t"]
        assert detect_delimiter(lines) == ";"


class TestQuoteDetection:
    def test_double_quote_is_default(self):
        assert detect_quote_char(["a,b", "c,d"], ",") == '"'

    def test_paired_single_quotes(self):
        lines = ["'a','b'", "'c','d'"]
        assert detect_quote_char(lines, ",") == "'"


class TestHeaderDetection:
    """Header heuristics on the first row pair."""

    def test_text_over_numbers_is_header(self):
        rows = [["sku", "price", "stock"], ["A1", "9.99", "10"]]
        assert detect_header(rows) is True

    def test_single_row_is_never_header(self):
        assert detect_header([["sku", "price"]]) is False

    def test_two_data_rows_are_not_header(self):
        rows = [["10", "20", "30"], ["11", "21", "31"]]
        assert detect_header(rows) is False


class TestFormatDetector:
    """End-to-end detection on streams and files."""

    def test_semicolon_file(self):
        detected = _detect("sku;price;region;stock\nA1;9.99;EU;10\nA1;11.99;EU;5\n")

        assert detected.delimiter == ";"
        assert detected.quote_char == '"'
        assert detected.has_header is True
        assert detected.column_count == 4
        assert detected.sample_headers == ["sku", "price", "region", "stock"]
        assert detected.sample_rows[0] == ["A1", "9.99", "EU", "10"]

    def test_header_only_file_has_no_header(self):
        detected = _detect("sku,price\n")

        assert detected.has_header is False
        assert detected.sample_headers == ["Column_1", "Column_2"]

    def test_empty_stream_raises(self):
        with pytest.raises(DetectionError):
            FormatDetector().detect(BytesIO(b""))

    def test_whitespace_only_stream_raises(self):
        with pytest.raises(DetectionError):
            FormatDetector().detect(BytesIO(b"   \n\n"))

    def test_stream_is_rewound(self):
        stream = BytesIO(b"sku,price\nA1,1.5\n")
        FormatDetector().detect(stream)
        assert stream.tell() == 0

    def test_only_bounded_prefix_is_inspected(self):
        content = "sku,price\n" + "".join(f"A{i},{i}.5\n" for i in range(1000))
        detector = FormatDetector(detection_bytes=64, sample_lines=10)

        detected = detector.detect(BytesIO(content.encode("utf-8")))

        assert detected.delimiter == ","
        assert len(detected.sample_rows) <= 9

    def test_explicit_overrides_win(self):
        detected = _detect("a,b\n1,2\n", delimiter=";", has_header=True)

        assert detected.delimiter == ";"
        assert detected.has_header is True
        assert detected.column_count == 1

    def test_quoted_values_are_unwrapped(self):
        detected = _detect('"Product ID","Product name"\n"P-1","Rake, steel"\n')

        assert detected.sample_headers == ["Product ID", "Product name"]
        assert detected.sample_rows[0] == ["P-1", "Rake, steel"]

    def test_ascii_reports_utf8(self):
        encoding, _ = detect_encoding(b"sku,price\nA1,9.99\n")
        assert encoding == "utf-8"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(DetectionError):
            FormatDetector().detect_file(tmp_path / "missing.csv")

    def test_spreadsheet_detection(self, sample_xlsx):
        detected = FormatDetector().detect_file(sample_xlsx)

        assert detected.file_type == "xlsx"
        assert detected.has_header is True
        assert detected.sample_headers == ["Product ID", "Product name", "Product price", "Region"]
