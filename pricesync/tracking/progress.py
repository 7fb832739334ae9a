"""
Progress Tracking
Live per-operation counters mirrored into FileOperation records and published to subscribers.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pricesync.config.settings import get_settings
from pricesync.db.models import FileOperation, OperationStatus, truncate_error
from pricesync.models.schemas import ProgressSnapshot
from pricesync.tracking.notifier import ProgressNotifier

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def progress_percent(processed: int, total: int) -> int:
    """min(100, floor(processed * 100 / total)), or 0 while the total is unknown."""
    if total <= 0:
        return 0
    return min(100, int(processed * 100 // total))


class ExpiringCache(Generic[K, V]):
    """
    Thread-safe dict whose entries may carry an expiry deadline.

    Entries without a deadline live until removed. Expired entries are
    invisible to get() and dropped by purge().
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: Dict[K, Tuple[V, Optional[float]]] = {}
        self._lock = threading.Lock()

    def set(self, key: K, value: V, ttl: Optional[float] = None) -> None:
        deadline = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._items[key] = (value, deadline)

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            item = self._items.get(key)
        if item is None:
            return None
        value, deadline = item
        if deadline is not None and deadline <= self._clock():
            return None
        return value

    def values(self) -> List[V]:
        now = self._clock()
        with self._lock:
            return [
                value for value, deadline in self._items.values()
                if deadline is None or deadline > now
            ]

    def purge(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, (_, deadline) in self._items.items()
                if deadline is not None and deadline <= now
            ]
            for key in expired:
                del self._items[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ProgressTracker:
    """
    Tracks running operations.

    Every call updates the in-memory snapshot, writes the counters to the
    FileOperation row and publishes the snapshot. Terminal snapshots stay
    readable for the retention window; a reaper thread owned by the tracker
    evicts them afterwards. The cache is not authoritative: get() falls back
    to the database record.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Optional[ProgressNotifier] = None,
        retention_seconds: Optional[float] = None,
        reaper_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.notifier = notifier or ProgressNotifier()
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.progress_retention_seconds
        )
        self.reaper_interval = reaper_interval or settings.progress_reaper_interval
        self._cache: ExpiringCache[int, ProgressSnapshot] = ExpiringCache(clock=clock)
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._stop_event = threading.Event()
        self._reaper: Optional[threading.Thread] = None

    # Lifecycle

    def start(self) -> None:
        """Start the reaper thread that evicts expired terminal snapshots."""
        if self._reaper is not None and self._reaper.is_alive():
            return
        self._stop_event.clear()
        self._reaper = threading.Thread(target=self._reap_loop, name="progress-reaper", daemon=True)
        self._reaper.start()
        logger.info(f"Progress reaper started (interval={self.reaper_interval}s)")

    def stop(self) -> None:
        self._stop_event.set()
        if self._reaper is not None:
            self._reaper.join(timeout=self.reaper_interval + 1)
            self._reaper = None

    def purge_expired(self) -> int:
        removed = self._cache.purge()
        if removed:
            logger.debug(f"Evicted {removed} expired progress snapshots")
        return removed

    def _reap_loop(self) -> None:
        while not self._stop_event.wait(self.reaper_interval):
            self.purge_expired()

    # Updates

    def init(self, operation_id: int, estimated_total: int = 0, message: Optional[str] = None) -> ProgressSnapshot:
        """
        Start tracking an operation.

        Args:
            operation_id: FileOperation id
            estimated_total: Expected number of records (0 when unknown)
            message: Optional human-readable message

        Returns:
            The initial snapshot
        """
        total = max(0, estimated_total or 0)
        snapshot = ProgressSnapshot(
            operation_id=operation_id,
            status=OperationStatus.PROCESSING.value,
            total=total,
            processed=0,
            progress=0,
            message=message,
        )
        with self._lock_for(operation_id):
            self._cache.set(operation_id, snapshot)
            self._persist(operation_id, total=total, processed=0, progress=0)
        self._publish(snapshot)
        return snapshot

    def set_total(self, operation_id: int, total: int) -> ProgressSnapshot:
        with self._lock_for(operation_id):
            current = self._current(operation_id)
            total = max(0, total)
            snapshot = current.model_copy(
                update={
                    "total": total,
                    "progress": progress_percent(current.processed, total),
                    "updated_at": datetime.now(),
                }
            )
            self._cache.set(operation_id, snapshot)
            self._persist(operation_id, total=total, progress=snapshot.progress)
        self._publish(snapshot)
        return snapshot

    def advance(self, operation_id: int, delta_processed: int, message: Optional[str] = None) -> ProgressSnapshot:
        """
        Add processed records. Negative deltas are ignored so that the
        processed counter never decreases.
        """
        with self._lock_for(operation_id):
            current = self._current(operation_id)
            processed = current.processed + max(0, delta_processed)
            snapshot = current.model_copy(
                update={
                    "processed": processed,
                    "progress": progress_percent(processed, current.total),
                    "message": message if message is not None else current.message,
                    "updated_at": datetime.now(),
                }
            )
            self._cache.set(operation_id, snapshot)
            self._persist(operation_id, processed=processed, progress=snapshot.progress)
        self._publish(snapshot)
        return snapshot

    def complete(
        self,
        operation_id: int,
        final_total: Optional[int] = None,
        success_count: Optional[int] = None,
        error_count: int = 0,
        message: Optional[str] = None,
    ) -> ProgressSnapshot:
        """Mark an operation completed with progress 100."""
        with self._lock_for(operation_id):
            current = self._current(operation_id)
            processed = final_total if final_total is not None else current.processed
            snapshot = current.model_copy(
                update={
                    "status": OperationStatus.COMPLETED.value,
                    "processed": max(processed, current.processed),
                    "total": max(current.total, processed),
                    "progress": 100,
                    "success_count": success_count if success_count is not None else processed,
                    "error_count": error_count,
                    "message": message or current.message,
                    "updated_at": datetime.now(),
                }
            )
            self._finish(snapshot, OperationStatus.COMPLETED)
        self._publish(snapshot)
        return snapshot

    def fail(self, operation_id: int, message: str) -> ProgressSnapshot:
        with self._lock_for(operation_id):
            current = self._current(operation_id)
            snapshot = current.model_copy(
                update={
                    "status": OperationStatus.FAILED.value,
                    "message": message,
                    "updated_at": datetime.now(),
                }
            )
            self._finish(snapshot, OperationStatus.FAILED, error_message=message)
        self._publish(snapshot)
        return snapshot

    def cancel(self, operation_id: int, message: Optional[str] = None) -> ProgressSnapshot:
        with self._lock_for(operation_id):
            current = self._current(operation_id)
            snapshot = current.model_copy(
                update={
                    "status": OperationStatus.CANCELLED.value,
                    "message": message or "Cancelled",
                    "updated_at": datetime.now(),
                }
            )
            self._finish(snapshot, OperationStatus.CANCELLED)
        self._publish(snapshot)
        return snapshot

    # Queries

    def get(self, operation_id: int) -> Optional[ProgressSnapshot]:
        """Current snapshot, read from the database when it is no longer cached."""
        snapshot = self._cache.get(operation_id)
        if snapshot is not None:
            return snapshot

        session = self.session_factory()
        try:
            operation = session.get(FileOperation, operation_id)
            if operation is None:
                return None
            return ProgressSnapshot(
                operation_id=operation.id,
                status=operation.status,
                total=operation.total_records or 0,
                processed=operation.processed_records or 0,
                progress=operation.processing_progress or 0,
                message=operation.error_message,
            )
        finally:
            session.close()

    def active(self) -> List[ProgressSnapshot]:
        """Cached snapshots of operations still processing."""
        return [
            snapshot for snapshot in self._cache.values()
            if snapshot.status == OperationStatus.PROCESSING.value
        ]

    # Internals

    def _lock_for(self, operation_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(operation_id, threading.Lock())

    def _current(self, operation_id: int) -> ProgressSnapshot:
        snapshot = self._cache.get(operation_id)
        if snapshot is None:
            snapshot = ProgressSnapshot(
                operation_id=operation_id, status=OperationStatus.PROCESSING.value
            )
        return snapshot

    def _finish(
        self,
        snapshot: ProgressSnapshot,
        status: OperationStatus,
        error_message: Optional[str] = None,
    ) -> None:
        self._cache.set(snapshot.operation_id, snapshot, ttl=self.retention_seconds)
        self._persist(
            snapshot.operation_id,
            processed=snapshot.processed,
            progress=snapshot.progress,
            status=status,
            error_message=error_message,
        )
        with self._locks_guard:
            self._locks.pop(snapshot.operation_id, None)

    def _persist(
        self,
        operation_id: int,
        total: Optional[int] = None,
        processed: Optional[int] = None,
        progress: Optional[int] = None,
        status: Optional[OperationStatus] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Write counters to the FileOperation row.

        A terminal status is only written when the record is not terminal
        yet, so the owning job's own transition always wins.
        """
        session = self.session_factory()
        try:
            operation = session.get(FileOperation, operation_id)
            if operation is None:
                logger.warning(f"Progress update for unknown operation {operation_id}")
                return
            if total is not None:
                operation.total_records = total
            if processed is not None:
                operation.processed_records = processed
            if progress is not None:
                operation.processing_progress = progress
            if status is not None and not operation.is_terminal:
                if status == OperationStatus.COMPLETED:
                    operation.mark_completed(operation.record_count or processed or 0)
                elif status == OperationStatus.FAILED:
                    operation.mark_failed(error_message)
                else:
                    operation.mark_cancelled()
            elif error_message and not operation.error_message:
                operation.error_message = truncate_error(error_message)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to persist progress of operation {operation_id}: {e}", exc_info=True)
        finally:
            session.close()

    def _publish(self, snapshot: ProgressSnapshot) -> None:
        self.notifier.notify_progress(snapshot.to_event())
