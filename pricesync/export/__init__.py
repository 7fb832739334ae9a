"""
Export pipeline: row expansion, processing strategies, CSV/XLSX serializers.
"""

from pricesync.export.composite import expand_entities, expand_entity, export_columns
from pricesync.export.engine import ExportEngine
from pricesync.export.formats import CsvExportFormat, ExportFormat, XlsxExportFormat
from pricesync.export.processing import FilteredProcessing, ProcessingStrategy
from pricesync.export.service import ExportService, load_entities

__all__ = [
    "expand_entities",
    "expand_entity",
    "export_columns",
    "ExportEngine",
    "ExportFormat",
    "CsvExportFormat",
    "XlsxExportFormat",
    "ProcessingStrategy",
    "FilteredProcessing",
    "ExportService",
    "load_entities",
]
