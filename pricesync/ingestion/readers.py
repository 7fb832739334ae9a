"""
Row Readers
Stream rows of CSV and XLSX files as label -> raw string dicts in bounded memory.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import pandas as pd
from openpyxl import load_workbook

from pricesync.models.schemas import DetectedFormat

logger = logging.getLogger(__name__)

ESTIMATE_SAMPLE_LINES = 100


def column_labels(detected: DetectedFormat, width: int) -> List[str]:
    """Labels for a row of the given width, padding with placeholders."""
    labels = list(detected.sample_headers)
    for i in range(len(labels), width):
        labels.append(f"Column_{i + 1}")
    return labels


def cell_to_string(value: Any) -> str:
    """Render a spreadsheet or pandas cell as the raw string the mapping layer expects."""
    if value is None or value is pd.NA or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


class CsvRowReader:
    """
    Reads a delimited file in chunks with pandas.

    Every value is read as text; blank cells become empty strings. The row
    width is fixed by the first line of the file, so short rows are padded
    with empty cells. Lines with more fields than that are not yielded; each
    one is counted in `malformed_lines` and passed to `on_malformed`.
    """

    def __init__(
        self,
        file_path: Union[str, Path],
        detected: DetectedFormat,
        chunk_size: int = 1000,
        on_malformed: Optional[Callable[[List[str]], None]] = None,
    ):
        self.file_path = Path(file_path)
        self.detected = detected
        self.chunk_size = chunk_size
        self.on_malformed = on_malformed
        self.malformed_lines = 0

    @property
    def width(self) -> int:
        return max(self.detected.column_count, len(self.detected.sample_headers), 1)

    def _bad_line(self, fields: List[str]) -> None:
        self.malformed_lines += 1
        logger.warning(
            f"Skipping line with {len(fields)} fields (expected {self.width}) in {self.file_path.name}"
        )
        if self.on_malformed is not None:
            self.on_malformed(fields)
        return None

    def __iter__(self) -> Iterator[Dict[str, str]]:
        width = self.width
        labels = column_labels(self.detected, width)
        # The header line is parsed too, so pandas sizes rows from a line of
        # exactly `width` fields; positional names tolerate duplicate headers.
        chunk_iterator = pd.read_csv(
            self.file_path,
            sep=self.detected.delimiter,
            quotechar=self.detected.quote_char,
            encoding=self.detected.encoding,
            encoding_errors="replace",
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            chunksize=self.chunk_size,
            engine="python",
            on_bad_lines=self._bad_line,
        )

        skip_header = self.detected.has_header
        for chunk_df in chunk_iterator:
            for values in chunk_df.itertuples(index=False, name=None):
                if skip_header:
                    skip_header = False
                    continue
                row = {labels[i]: cell_to_string(value) for i, value in enumerate(values)}
                if any(row.values()):
                    yield row

    def estimate_record_count(self) -> int:
        """
        Estimate data rows from the file size and the average length of the first lines.

        Only used for progress percentages.
        """
        try:
            file_size = self.file_path.stat().st_size
            sample_size = 0
            line_count = 0
            with open(self.file_path, "r", encoding=self.detected.encoding, errors="replace") as f:
                for line in f:
                    sample_size += len(line.encode(self.detected.encoding, errors="replace"))
                    line_count += 1
                    if line_count >= ESTIMATE_SAMPLE_LINES:
                        break
            if line_count == 0:
                return 0
            if line_count < ESTIMATE_SAMPLE_LINES:
                # The whole file was sampled
                return max(0, line_count - (1 if self.detected.has_header else 0))
            average = sample_size / line_count
            header_rows = 1 if self.detected.has_header else 0
            return max(0, int(file_size / average) - header_rows)
        except (OSError, LookupError) as e:
            logger.warning(f"Could not estimate record count for {self.file_path}: {e}")
            return 0


class XlsxRowReader:
    """Reads the first sheet of a workbook in openpyxl read-only mode."""

    def __init__(self, file_path: Union[str, Path], detected: DetectedFormat):
        self.file_path = Path(file_path)
        self.detected = detected

    def __iter__(self) -> Iterator[Dict[str, str]]:
        workbook = load_workbook(self.file_path, read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            rows = sheet.iter_rows(values_only=True)
            if self.detected.has_header:
                next(rows, None)
            for values in rows:
                cells = [cell_to_string(value) for value in values]
                if not any(cells):
                    continue
                labels = column_labels(self.detected, len(cells))
                yield {labels[i]: cell for i, cell in enumerate(cells)}
        finally:
            workbook.close()

    def estimate_record_count(self) -> int:
        try:
            workbook = load_workbook(self.file_path, read_only=True)
            try:
                max_row = workbook.worksheets[0].max_row or 0
            finally:
                workbook.close()
        except Exception as e:
            logger.warning(f"Could not estimate record count for {self.file_path}: {e}")
            return 0
        return max(0, max_row - (1 if self.detected.has_header else 0))


def open_reader(
    file_path: Union[str, Path],
    detected: DetectedFormat,
    chunk_size: int = 1000,
    on_malformed: Optional[Callable[[List[str]], None]] = None,
):
    """Row reader matching the detected file type."""
    if detected.file_type == "xlsx":
        return XlsxRowReader(file_path, detected)
    return CsvRowReader(file_path, detected, chunk_size=chunk_size, on_malformed=on_malformed)
