"""
Export Engine
Selects a processing strategy and a format serializer and produces export artifacts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pricesync.export.composite import expand_entities, export_columns
from pricesync.export.formats import ExportFormat, default_formats
from pricesync.export.processing import ProcessingStrategy, default_processors
from pricesync.ingestion.errors import ExportError
from pricesync.models.entities import PRIMARY_ENTITY

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "csv"
DEFAULT_PROCESSING = "simple"
FALSE_VALUES = {"false", "0", "no", "off"}


class ExportEngine:
    """
    Serializes stored entities into downloadable artifacts.

    Parameters (string-keyed):
    - format: "csv" or "xlsx" (case-insensitive, default csv)
    - strategyId: processing strategy id ("simple" or "filtered")
    - entityType: exported entity type (default "product")
    - composite: "false" to export only the entity's own fields
    - fields: comma-separated field ids restricting and ordering columns
    plus the format and filter specific parameters.
    """

    def __init__(
        self,
        formats: Optional[List[ExportFormat]] = None,
        processors: Optional[List[ProcessingStrategy]] = None,
    ):
        self.formats = formats if formats is not None else default_formats()
        self.processors = {p.strategy_id: p for p in (processors if processors is not None else default_processors())}

    def supports(self, format_name: Optional[str]) -> bool:
        return any(f.supports(format_name) for f in self.formats)

    def get_format(self, format_name: Optional[str]) -> ExportFormat:
        """
        First serializer supporting the format.

        Raises:
            ExportError: if no registered serializer supports it
        """
        for export_format in self.formats:
            if export_format.supports(format_name):
                return export_format
        raise ExportError(f"Unsupported export format: {format_name}", format=format_name)

    def get_processor(self, strategy_id: Optional[str]) -> ProcessingStrategy:
        processor = self.processors.get(strategy_id or DEFAULT_PROCESSING)
        if processor is None:
            raise ExportError(
                f"Unknown export processing strategy '{strategy_id}'. "
                f"Available: {', '.join(sorted(self.processors))}"
            )
        return processor

    def content_type(self, format_name: str) -> str:
        return self.get_format(format_name).content_type

    def file_name(
        self,
        format_name: str,
        entity_type: str = PRIMARY_ENTITY,
        timestamp: Optional[datetime] = None,
    ) -> str:
        """export_<entity>_<yyyyMMdd_HHmmss>.<ext>"""
        export_format = self.get_format(format_name)
        stamp = (timestamp or datetime.now()).strftime("%Y%m%d_%H%M%S")
        return f"export_{entity_type}_{stamp}.{export_format.extension}"

    def build_rows(self, entities: Iterable[Any], params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Flatten entities and run the processing strategy over the rows."""
        entity_type = params.get("entityType") or PRIMARY_ENTITY
        rows = expand_entities(entities, entity_type, composite=_is_composite(params))
        processor = self.get_processor(params.get("strategyId"))
        return processor.process(rows, params)

    def export(self, entities: Iterable[Any], params: Optional[Dict[str, str]] = None) -> bytes:
        """
        Produce the artifact bytes.

        Args:
            entities: Stored entities of the exported type
            params: Export parameters

        Returns:
            Serialized artifact

        Raises:
            ExportError: if the format or processing strategy is unknown
        """
        params = dict(params or {})
        self.get_format(params.get("format") or DEFAULT_FORMAT)
        return self.serialize(self.build_rows(entities, params), params)

    def serialize(self, rows: List[Dict[str, Any]], params: Dict[str, str]) -> bytes:
        """Serialize already flattened rows with the requested format."""
        format_name = params.get("format") or DEFAULT_FORMAT
        export_format = self.get_format(format_name)
        entity_type = params.get("entityType") or PRIMARY_ENTITY

        try:
            columns = export_columns(entity_type, _is_composite(params), _field_list(params))
        except ValueError as e:
            raise ExportError(str(e), format=format_name) from e

        logger.info(
            f"Exporting {len(rows)} rows of '{entity_type}' as {export_format.format_name} "
            f"({len(columns)} columns)"
        )
        return export_format.export(rows, columns, params)


def _is_composite(params: Dict[str, str]) -> bool:
    return str(params.get("composite", "true")).strip().lower() not in FALSE_VALUES


def _field_list(params: Dict[str, str]) -> Optional[List[str]]:
    raw = params.get("fields")
    if not raw:
        return None
    return [field.strip() for field in raw.split(",") if field.strip()]
