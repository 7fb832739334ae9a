"""
Job Runner
Creates operations and runs import/export jobs, in-process or from Celery tasks.
"""

import logging
import threading
from concurrent.futures import Future
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from pricesync.config.settings import get_settings
from pricesync.db.models import OperationType, utcnow
from pricesync.db.repository import OperationRepository
from pricesync.db.session import SessionLocal
from pricesync.export.service import ExportService
from pricesync.ingestion.cancellation import cancellation_registry
from pricesync.ingestion.import_job import ImportJob
from pricesync.ingestion.persistence import BatchPersistenceCoordinator
from pricesync.tasks.executor import run_in_pool
from pricesync.tracking.progress import ProgressTracker

logger = logging.getLogger(__name__)

_tracker: Optional[ProgressTracker] = None
_tracker_lock = threading.Lock()


def get_tracker() -> ProgressTracker:
    """Process-wide progress tracker with its reaper thread running."""
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = ProgressTracker(SessionLocal)
            _tracker.start()
        return _tracker


def create_import_operation(
    file_path: str,
    params: Optional[Dict[str, Any]] = None,
    client_id: Optional[int] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> int:
    """Register a PENDING import operation for an uploaded file."""
    path = Path(file_path)
    session = session_factory()
    try:
        operation = OperationRepository().create(
            session,
            OperationType.IMPORT,
            file_name=path.name,
            client_id=client_id,
            source_file_path=str(path),
            file_type=path.suffix.lower().lstrip(".") or None,
            file_size=path.stat().st_size if path.exists() else None,
            parameters=dict(params or {}),
        )
        return operation.id
    finally:
        session.close()


def run_import(
    operation_id: int,
    file_path: str,
    params: Optional[Dict[str, Any]] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    tracker: Optional[ProgressTracker] = None,
) -> Dict[str, Any]:
    """
    Run one import job with a cancellation token registered under its id.

    Returns:
        Import statistics
    """
    token = cancellation_registry.register(operation_id)
    try:
        job = ImportJob(
            operation_id,
            file_path,
            session_factory=session_factory,
            tracker=tracker or get_tracker(),
            params=params,
            token=token,
        )
        return job.run()
    finally:
        cancellation_registry.release(operation_id)


def submit_import(
    file_path: str, params: Optional[Dict[str, Any]] = None, client_id: Optional[int] = None
) -> Tuple[int, Future]:
    """
    Create an import operation and run it on the file processing pool.

    Returns:
        (operation id, future of the import statistics)
    """
    operation_id = create_import_operation(file_path, params, client_id)
    future = run_in_pool("file_processing", run_import, operation_id, file_path, params)
    return operation_id, future


def run_export(
    operation_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
    tracker: Optional[ProgressTracker] = None,
) -> Dict[str, Any]:
    service = ExportService(session_factory, tracker or get_tracker())
    return service.run(operation_id)


def submit_export(params: Dict[str, str], client_id: Optional[int] = None) -> Tuple[int, Future]:
    """Create an export operation and run it on the export pool."""
    service = ExportService(SessionLocal, get_tracker())
    operation_id = service.create_operation(params, client_id)
    future = run_in_pool("export", service.run, operation_id)
    return operation_id, future


def cancel_operation(operation_id: int) -> bool:
    """Request cancellation of a job running in this process."""
    return cancellation_registry.cancel(operation_id)


def rollback_import(
    operation_id: int, session_factory: Callable[[], Session] = SessionLocal
) -> Dict[str, int]:
    """Delete every entity an import operation wrote."""
    session = session_factory()
    try:
        return BatchPersistenceCoordinator(session_factory).delete_operation_entities(
            session, operation_id
        )
    finally:
        session.close()


def mark_stuck_operations(
    older_than_minutes: Optional[int] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> int:
    """
    Fail operations that have been PROCESSING for too long.

    Returns:
        Number of operations marked FAILED
    """
    minutes = older_than_minutes or get_settings().stuck_operation_minutes
    session = session_factory()
    try:
        stuck = OperationRepository().list_stuck(session, minutes)
        for operation in stuck:
            operation.mark_failed(f"Processing timed out after {minutes} minutes")
            logger.warning(f"Marked stuck operation {operation.id} as failed")
        session.commit()
        return len(stuck)
    finally:
        session.close()


def purge_operations(
    older_than_days: Optional[int] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> int:
    """Delete finished operations older than the retention window."""
    days = older_than_days or get_settings().operation_retention_days
    session = session_factory()
    try:
        return OperationRepository().purge_finished(session, utcnow() - timedelta(days=days))
    finally:
        session.close()
