"""
Tests for streaming row readers.
"""

from pricesync.ingestion.format_detector import FormatDetector
from pricesync.ingestion.readers import CsvRowReader, XlsxRowReader, cell_to_string, open_reader


class TestCsvRowReader:
    def test_rows_are_labelled_strings(self, write_csv):
        path = write_csv("sku;price\nA1;9,99\nA2;\n")
        detected = FormatDetector().detect_file(path)

        rows = list(open_reader(path, detected))

        assert rows == [{"sku": "A1", "price": "9,99"}, {"sku": "A2", "price": ""}]

    def test_leading_zeros_are_kept(self, write_csv):
        path = write_csv("Product ID,Barcode\n007,0123456789\n")
        detected = FormatDetector().detect_file(path)

        assert list(CsvRowReader(path, detected)) == [{"Product ID": "007", "Barcode": "0123456789"}]

    def test_small_chunks(self, write_csv):
        path = write_csv("sku,price\n" + "".join(f"A{i},{i}\n" for i in range(25)))
        detected = FormatDetector().detect_file(path)

        rows = list(CsvRowReader(path, detected, chunk_size=4))

        assert len(rows) == 25
        assert rows[-1] == {"sku": "A24", "price": "24"}

    def test_short_first_row_does_not_narrow_later_rows(self, write_csv):
        path = write_csv("Product ID,Product name,Product price\nA1,One\nA2,Two,5.0\nA3,Three,6.0\n")
        detected = FormatDetector().detect_file(path, has_header=True)
        reader = CsvRowReader(path, detected)

        rows = list(reader)

        assert rows == [
            {"Product ID": "A1", "Product name": "One", "Product price": ""},
            {"Product ID": "A2", "Product name": "Two", "Product price": "5.0"},
            {"Product ID": "A3", "Product name": "Three", "Product price": "6.0"},
        ]
        assert reader.malformed_lines == 0

    def test_wide_lines_are_reported(self, write_csv):
        path = write_csv("sku,name\nA1,One\nA2,Two,EXTRA\nA3,Three\n")
        detected = FormatDetector().detect_file(path, has_header=True)
        seen = []
        reader = open_reader(path, detected, on_malformed=seen.append)

        rows = list(reader)

        assert [row["sku"] for row in rows] == ["A1", "A3"]
        assert reader.malformed_lines == 1
        assert seen == [["A2", "Two", "EXTRA"]]

    def test_headerless_rows_use_placeholders(self, write_csv):
        path = write_csv("A1,1\nA2,2\n")
        detected = FormatDetector().detect_file(path, has_header=False)

        rows = list(CsvRowReader(path, detected))

        assert rows == [{"Column_1": "A1", "Column_2": "1"}, {"Column_1": "A2", "Column_2": "2"}]

    def test_duplicate_headers_last_column_wins(self, write_csv):
        path = write_csv("sku,price,price\nA1,1,2\n")
        detected = FormatDetector().detect_file(path, has_header=True)

        assert list(CsvRowReader(path, detected)) == [{"sku": "A1", "price": "2"}]

    def test_estimate_small_file(self, write_csv):
        path = write_csv("sku,price\nA1,1\nA2,2\nA3,3\n")
        detected = FormatDetector().detect_file(path)

        assert CsvRowReader(path, detected).estimate_record_count() == 3

    def test_estimate_large_file(self, write_csv):
        path = write_csv("sku,price\n" + "".join(f"A{i:04d},{i % 10}\n" for i in range(1000)))
        detected = FormatDetector().detect_file(path)

        estimate = CsvRowReader(path, detected).estimate_record_count()

        assert 900 <= estimate <= 1100


class TestXlsxRowReader:
    def test_rows_skip_header(self, sample_xlsx):
        detected = FormatDetector().detect_file(sample_xlsx)
        reader = XlsxRowReader(sample_xlsx, detected)

        rows = list(reader)

        assert rows[0] == {"Product ID": "X-1", "Product name": "Seed tray", "Product price": "4.5", "Region": "East"}
        assert rows[1]["Product price"] == "2"
        assert reader.estimate_record_count() == 2


class TestCellToString:
    def test_values(self):
        assert cell_to_string(None) == ""
        assert cell_to_string(3.0) == "3"
        assert cell_to_string(float("nan")) == ""
        assert cell_to_string(" x ") == "x"
