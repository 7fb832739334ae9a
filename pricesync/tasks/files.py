"""
File Processing Tasks
Background tasks for importing uploaded files, exporting entities and operation housekeeping
"""

import logging
from typing import Any, Dict, Optional

from .celery_app import app

logger = logging.getLogger(__name__)


@app.task(bind=True, name="tasks.import_file")
def import_file(
    self, operation_id: int, file_path: str, params: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Import an uploaded file into the store.

    Args:
        operation_id: Id of a PENDING import operation
        file_path: Path to the uploaded file
        params: Submission parameters (strategyId, batchSize, entityType, ...)

    Returns:
        Dictionary with processing results
    """
    try:
        logger.info(f"Starting import {operation_id} for {file_path}")

        # Import here to avoid circular dependencies
        from .runner import run_import

        stats = run_import(operation_id, file_path, params)

        logger.info(f"Completed import {operation_id}: {stats['status']}")
        return {
            "status": "success",
            "operation_id": operation_id,
            "operation_status": stats["status"],
            "processed": stats["processed"],
            "persisted": stats["persisted"],
            "failed_rows": stats["failed_rows"],
            "errors": stats["errors"][:10],
        }

    except Exception as e:
        logger.error(f"Error importing file {file_path}: {e}", exc_info=True)
        return {
            "status": "error",
            "operation_id": operation_id,
            "file_path": file_path,
            "error": str(e),
        }


@app.task(bind=True, name="tasks.export_entities")
def export_entities(self, operation_id: int) -> Dict[str, Any]:
    """
    Run a PENDING export operation.

    Args:
        operation_id: Id of the export operation (its parameters are stored on it)

    Returns:
        Dictionary with the artifact path and row count
    """
    try:
        logger.info(f"Starting export {operation_id}")

        from .runner import run_export

        result = run_export(operation_id)

        return {
            "status": "success",
            **result,
        }

    except Exception as e:
        logger.error(f"Error running export {operation_id}: {e}", exc_info=True)
        return {
            "status": "error",
            "operation_id": operation_id,
            "error": str(e),
        }


@app.task(bind=True, name="tasks.rollback_import")
def rollback_import(self, operation_id: int) -> Dict[str, Any]:
    """Delete every entity written by an import operation."""
    try:
        from .runner import rollback_import as rollback

        removed = rollback(operation_id)
        return {
            "status": "success",
            "operation_id": operation_id,
            "removed": removed,
        }

    except Exception as e:
        logger.error(f"Error rolling back import {operation_id}: {e}", exc_info=True)
        return {
            "status": "error",
            "operation_id": operation_id,
            "error": str(e),
        }


@app.task(bind=True, name="tasks.mark_stuck_operations")
def mark_stuck_operations(self, older_than_minutes: Optional[int] = None) -> Dict[str, Any]:
    """
    Fail operations stuck in PROCESSING.

    Args:
        older_than_minutes: Processing age threshold (defaults to settings)

    Returns:
        Dictionary with the number of operations marked failed
    """
    try:
        from .runner import mark_stuck_operations as mark_stuck

        count = mark_stuck(older_than_minutes)

        logger.info(f"Marked {count} stuck operations as failed")
        return {
            "status": "success",
            "marked_failed": count,
        }

    except Exception as e:
        logger.error(f"Error marking stuck operations: {e}", exc_info=True)
        return {
            "status": "error",
            "error": str(e),
        }


@app.task(bind=True, name="tasks.purge_operations")
def purge_operations(self, older_than_days: Optional[int] = None) -> Dict[str, Any]:
    """Delete finished operations older than the retention window."""
    try:
        from .runner import purge_operations as purge

        count = purge(older_than_days)
        return {
            "status": "success",
            "purged": count,
        }

    except Exception as e:
        logger.error(f"Error purging operations: {e}", exc_info=True)
        return {
            "status": "error",
            "error": str(e),
        }
