"""
Format Detection
Infers encoding, delimiter, quote character and header presence of uploaded files.
"""

import csv
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple, Union

import chardet
from openpyxl import load_workbook

from pricesync.config.settings import get_settings
from pricesync.ingestion.errors import DetectionError
from pricesync.models.schemas import DetectedFormat

logger = logging.getLogger(__name__)

DELIMITERS = [",", ";", "\t", "|"]
QUOTE_CHARS = ['"', "'"]
CONSISTENCY_BONUS = 10
QUOTE_PATTERN_BONUS = 5
MIN_ENCODING_CONFIDENCE = 0.5
XLSX_MAGIC = b"PK\x03\x04"
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm")


def detect_encoding(raw_data: bytes) -> Tuple[str, float]:
    """
    Detect the encoding of a byte prefix using chardet.

    Args:
        raw_data: Bytes to inspect

    Returns:
        (encoding, confidence); UTF-8 when detection is not confident
    """
    result = chardet.detect(raw_data)
    encoding = result.get("encoding")
    confidence = result.get("confidence") or 0.0

    # ASCII is often a false positive for UTF-8 files
    # Since UTF-8 is a superset of ASCII, default to UTF-8
    if encoding and encoding.lower() == "ascii":
        logger.debug("Detected ASCII, using UTF-8 (ASCII superset)")
        return "utf-8", confidence

    if not encoding or confidence < MIN_ENCODING_CONFIDENCE:
        logger.info(f"No confident encoding ({encoding}, {confidence:.2%}), using UTF-8")
        return "utf-8", confidence

    logger.info(f"Detected encoding: {encoding} (confidence: {confidence:.2%})")
    return encoding.lower(), confidence


def detect_delimiter(lines: List[str]) -> str:
    """
    Pick the delimiter with the highest occurrence score.

    Each candidate scores its occurrence count per line, plus a bonus when
    a line repeats the previous line's count. Ties keep the earlier
    candidate, so comma wins when nothing scores.
    """
    best_delimiter, best_score = ",", 0
    for delimiter in DELIMITERS:
        score = 0
        previous_count = -1
        for line in lines:
            count = line.count(delimiter)
            if count > 0:
                score += count
                if count == previous_count:
                    score += CONSISTENCY_BONUS
            previous_count = count
        if score > best_score:
            best_delimiter, best_score = delimiter, score
    return best_delimiter


def detect_quote_char(lines: List[str], delimiter: str) -> str:
    """Pick the quote character whose occurrences pair up, defaulting to a double quote."""
    best_quote, best_score = '"', 0
    for quote in QUOTE_CHARS:
        score = 0
        pattern = f"{quote}{delimiter}{quote}"
        for line in lines:
            count = line.count(quote)
            if count > 0 and count % 2 == 0:
                score += count
                if pattern in line:
                    score += QUOTE_PATTERN_BONUS
        if score > best_score:
            best_quote, best_score = quote, score
    return best_quote


def is_numeric(token: str) -> bool:
    token = token.strip()
    if not token:
        return False
    try:
        float(token.replace(",", "."))
        return True
    except ValueError:
        return False


def _looks_like_label(token: str) -> bool:
    """Separators or camelCase are typical of column names."""
    if "_" in token or " " in token:
        return True
    return bool(token) and token[0].islower() and any(c.isupper() for c in token)


def detect_header(rows: List[List[str]]) -> bool:
    """
    Decide whether the first row is a header by comparing it with the second.

    Per column: +2 when row 0 is text and row 1 is numeric, +1 when the row 0
    token is shorter, +1 when the row 0 token looks like a label. The first
    row is a header when the total reaches half the column count. Fewer than
    two rows never count as a header.
    """
    if len(rows) < 2:
        return False

    first, second = rows[0], rows[1]
    score = 0
    for first_token, second_token in zip(first, second):
        if not is_numeric(first_token) and is_numeric(second_token):
            score += 2
        if len(first_token) < len(second_token):
            score += 1
        if _looks_like_label(first_token):
            score += 1
    return score >= len(first) // 2


def parse_line(line: str, delimiter: str, quote_char: str) -> List[str]:
    """Split one sample line, honouring quotes, and trim every token."""
    try:
        tokens = next(csv.reader([line], delimiter=delimiter, quotechar=quote_char))
    except (csv.Error, StopIteration):
        tokens = line.split(delimiter)
    return [token.strip() for token in tokens]


def placeholder_headers(column_count: int) -> List[str]:
    return [f"Column_{i + 1}" for i in range(column_count)]


def is_spreadsheet(path: Path, head: bytes = b"") -> bool:
    return path.suffix.lower() in SPREADSHEET_EXTENSIONS or head.startswith(XLSX_MAGIC)


class FormatDetector:
    """
    Detects the format of delimited text and spreadsheet files.

    Only a bounded prefix of the input is inspected. Seekable streams are
    rewound to where they started, so the caller can read the full stream
    afterwards.
    """

    def __init__(self, detection_bytes: Optional[int] = None, sample_lines: Optional[int] = None):
        settings = get_settings()
        self.detection_bytes = detection_bytes or settings.detection_bytes
        self.sample_lines = sample_lines or settings.detection_sample_lines

    def detect_file(
        self,
        file_path: Union[str, Path],
        encoding: Optional[str] = None,
        delimiter: Optional[str] = None,
        quote_char: Optional[str] = None,
        has_header: Optional[bool] = None,
    ) -> DetectedFormat:
        """
        Detect the format of a file on disk.

        Explicit arguments override the corresponding detection step.

        Raises:
            DetectionError: if the file is missing, empty or unreadable
        """
        path = Path(file_path)
        if not path.is_file():
            raise DetectionError(f"File not found: {path}", details={"path": str(path)})

        with open(path, "rb") as f:
            head = f.read(len(XLSX_MAGIC))
            f.seek(0)
            if is_spreadsheet(path, head):
                return self.detect_spreadsheet(path, has_header=has_header)
            return self.detect(
                f,
                encoding=encoding,
                delimiter=delimiter,
                quote_char=quote_char,
                has_header=has_header,
            )

    def detect(
        self,
        stream: BinaryIO,
        encoding: Optional[str] = None,
        delimiter: Optional[str] = None,
        quote_char: Optional[str] = None,
        has_header: Optional[bool] = None,
    ) -> DetectedFormat:
        """
        Detect the format of a delimited text stream.

        Args:
            stream: Binary stream positioned at the start of the data
            encoding: Force this encoding
            delimiter: Force this delimiter
            quote_char: Force this quote character
            has_header: Force header presence

        Returns:
            DetectedFormat for the stream

        Raises:
            DetectionError: if the stream is empty or cannot be read
        """
        raw = self._read_prefix(stream)
        if not raw or not raw.strip():
            raise DetectionError("Input is empty")

        confidence = 1.0
        if not encoding:
            encoding, confidence = detect_encoding(raw)

        try:
            text = raw.decode(encoding, errors="replace")
        except LookupError as e:
            raise DetectionError(f"Unknown encoding '{encoding}'", details={"encoding": encoding}) from e

        lines = self._sample_lines(text, truncated=len(raw) >= self.detection_bytes)
        if not lines:
            raise DetectionError("Input has no readable lines")

        delimiter = delimiter or detect_delimiter(lines)
        quote_char = quote_char or detect_quote_char(lines, delimiter)
        rows = [parse_line(line, delimiter, quote_char) for line in lines]
        if has_header is None:
            has_header = detect_header(rows)

        column_count = len(rows[0])
        headers = self._headers(rows[0], has_header)
        data_rows = rows[1:] if has_header else rows

        detected = DetectedFormat(
            file_type="csv",
            encoding=encoding,
            delimiter=delimiter,
            quote_char=quote_char,
            has_header=has_header,
            column_count=column_count,
            sample_headers=headers,
            sample_rows=data_rows,
            encoding_confidence=confidence,
        )
        logger.info(
            f"Detected format: encoding={encoding}, delimiter={delimiter!r}, "
            f"quote={quote_char!r}, header={has_header}, columns={column_count}"
        )
        return detected

    def detect_spreadsheet(self, file_path: Path, has_header: Optional[bool] = None) -> DetectedFormat:
        """Detect header presence and columns on the first sheet of a workbook."""
        try:
            workbook = load_workbook(file_path, read_only=True, data_only=True)
        except Exception as e:
            raise DetectionError(f"Cannot open spreadsheet {file_path.name}: {e}") from e

        try:
            sheet = workbook.worksheets[0]
            rows = []
            for values in sheet.iter_rows(max_row=self.sample_lines, values_only=True):
                row = ["" if value is None else str(value).strip() for value in values]
                if any(row):
                    rows.append(row)
        finally:
            workbook.close()

        if not rows:
            raise DetectionError(f"Spreadsheet {file_path.name} is empty")

        if has_header is None:
            has_header = detect_header(rows)
        headers = self._headers(rows[0], has_header)

        logger.info(f"Detected spreadsheet: header={has_header}, columns={len(rows[0])}")
        return DetectedFormat(
            file_type="xlsx",
            has_header=has_header,
            column_count=len(rows[0]),
            sample_headers=headers,
            sample_rows=rows[1:] if has_header else rows,
            encoding_confidence=1.0,
        )

    def _read_prefix(self, stream: BinaryIO) -> bytes:
        seekable = stream.seekable()
        start = stream.tell() if seekable else None
        try:
            return stream.read(self.detection_bytes)
        except OSError as e:
            raise DetectionError(f"Input is unreadable: {e}") from e
        finally:
            if seekable:
                stream.seek(start)

    def _sample_lines(self, text: str, truncated: bool) -> List[str]:
        lines = text.splitlines()
        # The last line of a cut-off prefix may be partial
        if truncated and len(lines) > 1:
            lines = lines[:-1]
        return [line for line in lines if line.strip()][: self.sample_lines]

    @staticmethod
    def _headers(first_row: List[str], has_header: bool) -> List[str]:
        if not has_header:
            return placeholder_headers(len(first_row))
        return [token or f"Column_{i + 1}" for i, token in enumerate(first_row)]
