"""
Export Service
Runs a tracked EXPORT operation: loads entities, serializes them and stores the artifact.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pricesync.config.settings import get_settings
from pricesync.db.models import FileOperation, OperationType, Product
from pricesync.db.repository import OperationRepository
from pricesync.export.engine import DEFAULT_FORMAT, ExportEngine
from pricesync.models.entities import PRIMARY_ENTITY, get_descriptor
from pricesync.tracking.progress import ProgressTracker

logger = logging.getLogger(__name__)


def load_entities(
    db: Session, entity_type: str = PRIMARY_ENTITY, client_id: Optional[int] = None
) -> List[Any]:
    """
    Load stored entities of one type, with related records for products.

    Args:
        db: Database session
        entity_type: Entity type id
        client_id: Restrict to one client

    Returns:
        Entities ordered by surrogate id
    """
    model = get_descriptor(entity_type).model
    stmt = select(model)
    if model is Product:
        stmt = stmt.options(selectinload(Product.region_data), selectinload(Product.competitor_data))
    if client_id is not None:
        stmt = stmt.where(model.client_id == client_id)
    stmt = stmt.order_by(model.id)
    return list(db.execute(stmt).scalars())


class ExportService:
    """Creates, runs and records export operations."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        tracker: ProgressTracker,
        engine: Optional[ExportEngine] = None,
        export_directory: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.tracker = tracker
        self.engine = engine or ExportEngine()
        self.export_directory = Path(export_directory or get_settings().export_directory)
        self.operations = OperationRepository()

    def create_operation(self, params: Dict[str, str], client_id: Optional[int] = None) -> int:
        """Register a PENDING export operation and return its id."""
        format_name = params.get("format") or DEFAULT_FORMAT
        # Fail before any record exists when the format is unknown
        file_name = self.engine.file_name(format_name, params.get("entityType") or PRIMARY_ENTITY)

        session = self.session_factory()
        try:
            operation = self.operations.create(
                session,
                OperationType.EXPORT,
                file_name=file_name,
                client_id=client_id,
                file_type=format_name.lower(),
                parameters=dict(params),
            )
            return operation.id
        finally:
            session.close()

    def run(self, operation_id: int) -> Dict[str, Any]:
        """
        Execute a PENDING export operation.

        Returns:
            Dict with operation_id, file_path, rows and size_bytes

        Raises:
            Exception: any error, after the operation was marked FAILED
        """
        session = self.session_factory()
        try:
            operation = session.get(FileOperation, operation_id)
            if operation is None:
                raise ValueError(f"Operation {operation_id} not found")
            params = dict(operation.parameters or {})
            client_id = operation.client_id
            file_name = operation.file_name
            operation.mark_processing()
            session.commit()
        finally:
            session.close()

        logger.info(f"Export {operation_id} started ({file_name})")

        try:
            session = self.session_factory()
            try:
                entities = load_entities(session, params.get("entityType") or PRIMARY_ENTITY, client_id)
                self.tracker.init(operation_id, len(entities), message=f"Exporting {file_name}")
                rows = self.engine.build_rows(entities, params)
                content = self.engine.serialize(rows, params)
            finally:
                session.close()

            self.export_directory.mkdir(parents=True, exist_ok=True)
            output_path = self.export_directory / file_name
            output_path.write_bytes(content)
            self.tracker.advance(operation_id, len(entities))

        except Exception as e:
            logger.error(f"Export {operation_id} failed: {e}", exc_info=True)
            self._update(operation_id, lambda op: op.mark_failed(str(e)))
            self.tracker.fail(operation_id, str(e))
            raise

        def complete(operation: FileOperation) -> None:
            operation.result_file_path = str(output_path)
            operation.file_size = len(content)
            operation.processed_records = len(entities)
            operation.mark_completed(len(rows))

        self._update(operation_id, complete)
        self.tracker.complete(operation_id, len(entities), success_count=len(rows))
        logger.info(f"Export {operation_id} completed: {len(rows)} rows -> {output_path}")

        return {
            "operation_id": operation_id,
            "file_path": str(output_path),
            "rows": len(rows),
            "size_bytes": len(content),
        }

    def export(self, params: Dict[str, str], client_id: Optional[int] = None) -> Dict[str, Any]:
        """Create and run an export operation in one call."""
        return self.run(self.create_operation(params, client_id))

    def _update(self, operation_id: int, change: Callable[[FileOperation], None]) -> None:
        session = self.session_factory()
        try:
            operation = session.get(FileOperation, operation_id)
            change(operation)
            session.commit()
        finally:
            session.close()
