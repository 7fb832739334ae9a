"""
Export Formats
CSV and XLSX serializers for flattened export rows.
"""

import csv
import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from pricesync.models.entities import FieldDescriptor

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

HEADER_PARAM_PREFIX = "header_"


def header_param(field_id: str) -> str:
    """Parameter name overriding a column header: header_<field id with '.' -> '_'>."""
    return HEADER_PARAM_PREFIX + field_id.replace(".", "_")


def column_headers(columns: List[FieldDescriptor], params: Dict[str, str]) -> List[str]:
    headers = []
    for column in columns:
        override = params.get(header_param(column.field_id))
        headers.append(override if override else column.label)
    return headers


class ExportFormat:
    """Base serializer."""

    format_name = ""
    extension = ""
    content_type = "application/octet-stream"

    def supports(self, format_name: Optional[str]) -> bool:
        return bool(format_name) and format_name.strip().lower() == self.format_name

    def export(self, rows: List[Row], columns: List[FieldDescriptor], params: Dict[str, str]) -> bytes:
        raise NotImplementedError


class CsvExportFormat(ExportFormat):
    """
    Delimited text export.

    Every field is quoted. Parameters: delimiter (default ","), quoteChar
    (default '"'), encoding (default utf-8) and header_* overrides.
    """

    format_name = "csv"
    extension = "csv"
    content_type = "text/csv"

    def export(self, rows: List[Row], columns: List[FieldDescriptor], params: Dict[str, str]) -> bytes:
        delimiter = (params.get("delimiter") or ",")[:1]
        quote_char = (params.get("quoteChar") or '"')[:1]
        encoding = params.get("encoding") or "utf-8"

        output = StringIO()
        writer = csv.writer(
            output,
            delimiter=delimiter,
            quotechar=quote_char,
            quoting=csv.QUOTE_ALL,
            lineterminator="\n",
        )
        writer.writerow(column_headers(columns, params))
        for row in rows:
            writer.writerow([self._format_value(row.get(column.field_id)) for column in columns])

        return output.getvalue().encode(encoding)

    @staticmethod
    def _format_value(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, datetime):
            return value.strftime("%Y-%m-%d %H:%M:%S")
        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)


class XlsxExportFormat(ExportFormat):
    """Excel workbook export with a styled, frozen header row."""

    format_name = "xlsx"
    extension = "xlsx"
    content_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    sheet_title = "Products"
    max_column_width = 50
    number_format = "#,##0.00"
    datetime_format = "yyyy-mm-dd hh:mm:ss"
    date_format = "yyyy-mm-dd"

    def export(self, rows: List[Row], columns: List[FieldDescriptor], params: Dict[str, str]) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = params.get("sheetName") or self.sheet_title

        # Styles
        header_font = Font(bold=True)
        header_fill = PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid")
        center = Alignment(horizontal="center", vertical="center")
        thin_border = Border(
            left=Side(style="thin"),
            right=Side(style="thin"),
            top=Side(style="thin"),
            bottom=Side(style="thin"),
        )

        headers = column_headers(columns, params)
        widths = [len(header) for header in headers]

        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = center
            cell.border = thin_border

        for row_idx, row in enumerate(rows, 2):
            for col, column in enumerate(columns, 1):
                value = row.get(column.field_id)
                cell = ws.cell(row=row_idx, column=col, value=value)
                cell.border = thin_border
                if isinstance(value, bool):
                    pass
                elif isinstance(value, (int, float)):
                    cell.number_format = self.number_format
                elif isinstance(value, datetime):
                    cell.number_format = self.datetime_format
                elif isinstance(value, date):
                    cell.number_format = self.date_format
                if value is not None:
                    widths[col - 1] = max(widths[col - 1], len(str(value)))

        for col, width in enumerate(widths, 1):
            ws.column_dimensions[get_column_letter(col)].width = min(width + 2, self.max_column_width)

        ws.freeze_panes = "A2"

        output = BytesIO()
        wb.save(output)
        return output.getvalue()


def default_formats() -> List[ExportFormat]:
    return [CsvExportFormat(), XlsxExportFormat()]
