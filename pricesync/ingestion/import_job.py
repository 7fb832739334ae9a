"""
Import Job
Drives one uploaded file through detection, mapping, entity building and batched persistence.
"""

import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from pricesync.db.models import FileOperation, OperationStatus
from pricesync.db.repository import MappingTemplateRepository
from pricesync.ingestion.cancellation import CancellationToken
from pricesync.ingestion.errors import (
    CancellationSignal,
    DetectionError,
    MappingError,
    StrategyNotFoundError,
    ValidationError,
)
from pricesync.ingestion.field_mapping import FieldMappingEngine, RowMapper
from pricesync.ingestion.format_detector import FormatDetector
from pricesync.ingestion.persistence import BatchPersistenceCoordinator
from pricesync.ingestion.readers import open_reader
from pricesync.ingestion.strategies import ImportStrategy, StrategyRegistry
from pricesync.models.schemas import CancellationCheck, DetectedFormat, ImportParameters
from pricesync.tracking.progress import ProgressTracker

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 100


class ImportJob:
    """
    Runs one import operation.

    The operation moves PENDING -> PROCESSING before the first row is read
    and ends in exactly one of COMPLETED, FAILED or CANCELLED. Rows are
    grouped into batches of `batchSize` rows; every batch commits in its own
    transaction, and a failed batch is rolled back and counted without
    stopping the run. Cancellation is polled between batches (or between
    rows with cancellationCheck=row) and never undoes committed batches.
    """

    def __init__(
        self,
        operation_id: int,
        file_path: str,
        session_factory: Callable[[], Session],
        tracker: ProgressTracker,
        params: Optional[Dict[str, Any]] = None,
        strategies: Optional[StrategyRegistry] = None,
        detector: Optional[FormatDetector] = None,
        coordinator: Optional[BatchPersistenceCoordinator] = None,
        token: Optional[CancellationToken] = None,
    ):
        """
        Initialize the job.

        Args:
            operation_id: Id of a PENDING FileOperation
            file_path: Uploaded file on disk
            session_factory: Callable returning new sessions
            tracker: Progress tracker for this process
            params: String-keyed submission parameters
            strategies: Import strategies (defaults to the built-in ones)
            detector: Format detector
            coordinator: Batch persistence coordinator
            token: Cancellation token polled by the job
        """
        self.operation_id = operation_id
        self.file_path = Path(file_path)
        self.session_factory = session_factory
        self.tracker = tracker
        self.params = ImportParameters.from_params(params)
        self.strategies = strategies or StrategyRegistry()
        self.detector = detector or FormatDetector()
        self.coordinator = coordinator or BatchPersistenceCoordinator(
            session_factory, duplicate_handling=self.params.duplicate_handling
        )
        self.token = token or CancellationToken(operation_id)
        self.templates = MappingTemplateRepository()

        # Statistics tracking
        self.stats = {
            "operation_id": operation_id,
            "status": OperationStatus.PENDING.value,
            "estimated_rows": 0,
            "rows_read": 0,
            "processed": 0,
            "persisted": 0,
            "failed_rows": 0,
            "skipped_rows": 0,
            "malformed_lines": 0,
            "batches_committed": 0,
            "batches_failed": 0,
            "errors": [],
        }

    def cancel(self) -> None:
        """Request a cooperative stop."""
        self.token.cancel()

    def run(self) -> Dict[str, Any]:
        """
        Execute the import.

        Returns:
            Processing statistics

        Raises:
            Exception: any run-level error, after the operation was marked FAILED
        """
        start_time = datetime.now()
        self._start()

        try:
            self.token.raise_if_cancelled()
            strategy = self._select_strategy()
            detected = self._detect()

            reader = open_reader(self.file_path, detected, on_malformed=self._malformed_line)
            estimated = reader.estimate_record_count()
            self.stats["estimated_rows"] = estimated
            self.tracker.init(self.operation_id, estimated, message=f"Importing {self.file_path.name}")

            engine = strategy.create_mapping_engine(self.params)
            mapper = self._resolve_mapper(engine, detected)
            engine.validate_required_columns(detected.sample_headers, mapper)

            self._process_rows(reader, mapper, strategy)

        except CancellationSignal:
            self._finish_cancelled()
        except Exception as e:
            logger.error(f"Import {self.operation_id} failed: {e}")
            logger.debug(traceback.format_exc())
            self._finish_failed(str(e))
            raise
        else:
            if self.token.is_cancelled:
                self._finish_cancelled()
            else:
                self._finish_completed()
        finally:
            self.stats["duration_seconds"] = (datetime.now() - start_time).total_seconds()

        self._log_statistics()
        return self.stats

    # Stages

    def _start(self) -> None:
        session = self.session_factory()
        try:
            operation = session.get(FileOperation, self.operation_id)
            if operation is None:
                raise ValueError(f"Operation {self.operation_id} not found")
            if self.params.client_id is None and operation.client_id is not None:
                self.params.client_id = operation.client_id
            operation.mark_processing()
            session.commit()
        finally:
            session.close()

        self.stats["status"] = OperationStatus.PROCESSING.value
        logger.info(f"Import {self.operation_id} started for {self.file_path}")

    def _select_strategy(self) -> ImportStrategy:
        if not self.file_path.is_file():
            raise DetectionError(f"File not found: {self.file_path}")
        if self.file_path.stat().st_size == 0:
            raise DetectionError(f"File is empty: {self.file_path.name}")

        strategy = self.strategies.select(self.file_path, self.params.strategy_id)
        problem = strategy.validate_parameters(self.params)
        if problem:
            raise StrategyNotFoundError(problem, details={"strategy_id": strategy.strategy_id})
        logger.info(f"Import {self.operation_id} uses strategy '{strategy.strategy_id}'")
        return strategy

    def _detect(self) -> DetectedFormat:
        return self.detector.detect_file(
            self.file_path,
            encoding=self.params.encoding,
            delimiter=self.params.delimiter,
            quote_char=self.params.quote_char,
            has_header=self.params.has_header,
        )

    def _resolve_mapper(self, engine: FieldMappingEngine, detected: DetectedFormat) -> RowMapper:
        """Explicit template, else the scope's default template, else auto-matching."""
        session = self.session_factory()
        try:
            if self.params.template_id is not None:
                template = self.templates.get(session, self.params.template_id)
                if template is None:
                    raise MappingError(f"Mapping template {self.params.template_id} not found")
            else:
                template = self.templates.find_default(
                    session, self.params.entity_type, self.params.client_id
                )

            if template is not None:
                logger.info(f"Import {self.operation_id} uses mapping template '{template.name}'")
                return engine.from_template(template)
        finally:
            session.close()

        mapper = engine.auto_mapper(detected.sample_headers)
        if not mapper.rules:
            raise MappingError(
                "No source column matches a known field",
                columns=detected.sample_headers,
            )
        return mapper

    def _process_rows(self, reader, mapper: RowMapper, strategy: ImportStrategy) -> None:
        builder = strategy.create_builder(self.params, self.operation_id)
        batch_size = self.params.batch_size
        check_rows = self.params.cancellation_check == CancellationCheck.ROW.value
        pending: List[List[Any]] = []
        batch_number = 0

        for row_number, row in enumerate(reader, start=1):
            if check_rows and self.token.is_cancelled:
                break
            self.stats["rows_read"] += 1

            entities = self._build_row(builder, mapper, row, row_number)
            if not entities:
                continue
            pending.append(entities)

            if len(pending) >= batch_size:
                if self.token.is_cancelled:
                    break
                batch_number += 1
                self._commit(pending, batch_number)
                pending = []

        if pending and not self.token.is_cancelled:
            self._commit(pending, batch_number + 1)

    def _build_row(self, builder, mapper: RowMapper, row: Dict[str, str], row_number: int) -> List[Any]:
        builder.reset()
        try:
            mapped = mapper(row)
            if not builder.apply_row(mapped):
                self.stats["skipped_rows"] += 1
                return []
            failure = builder.validate()
            if failure:
                raise ValidationError(failure)
            return builder.build()
        except (MappingError, ValidationError) as e:
            self.stats["failed_rows"] += 1
            self._record_error(f"Row {row_number}: {e.message}")
            return []

    def _malformed_line(self, fields: List[str]) -> None:
        """Lines with more fields than the header are discarded as failed rows."""
        self.stats["malformed_lines"] += 1
        self.stats["failed_rows"] += 1
        preview = ",".join(str(field) for field in fields)[:80]
        self._record_error(f"Malformed line with {len(fields)} fields: {preview}")

    def _commit(self, pending: List[List[Any]], batch_number: int) -> None:
        entities = [entity for group in pending for entity in group]
        result = self.coordinator.commit_batch(entities, batch_number)

        if result.succeeded:
            self.stats["batches_committed"] += 1
            self.stats["processed"] += len(pending)
            self.stats["persisted"] += result.accepted
            self.tracker.advance(self.operation_id, len(pending))
        else:
            self.stats["batches_failed"] += 1
            self.stats["failed_rows"] += len(pending)
            self._record_error(f"Batch {batch_number}: {result.error}")

    # Terminal states

    def _counters(self) -> Dict[str, int]:
        return {
            "processed_records": self.stats["processed"],
            "record_count": self.stats["persisted"],
            "failed_records": self.stats["failed_rows"],
        }

    def _finish_completed(self) -> None:
        if not self._update_operation(lambda operation: operation.mark_completed(self.stats["persisted"])):
            return
        self.stats["status"] = OperationStatus.COMPLETED.value
        self.tracker.complete(
            self.operation_id,
            self.stats["processed"],
            success_count=self.stats["processed"],
            error_count=self.stats["failed_rows"],
        )
        logger.info(f"Import {self.operation_id} completed")

    def _finish_cancelled(self) -> None:
        message = f"Cancelled after {self.stats['processed']} rows"
        if not self._update_operation(lambda operation: operation.mark_cancelled(message)):
            return
        self.stats["status"] = OperationStatus.CANCELLED.value
        self.tracker.cancel(self.operation_id, message)
        logger.info(f"Import {self.operation_id} cancelled: {message}")

    def _finish_failed(self, message: str) -> None:
        if not self._update_operation(lambda operation: operation.mark_failed(message)):
            return
        self.stats["status"] = OperationStatus.FAILED.value
        self.tracker.fail(self.operation_id, message)

    def _update_operation(self, transition: Callable[[FileOperation], None]) -> bool:
        """
        Write the run counters and apply a terminal transition.

        An operation that already reached a terminal state elsewhere (the
        stuck-operation sweep, a user cancel) keeps that state; only the
        counters are written and the tracker is brought in line with it.

        Returns:
            True if the transition was applied
        """
        session = self.session_factory()
        try:
            operation = session.get(FileOperation, self.operation_id)
            for key, value in self._counters().items():
                setattr(operation, key, value)
            if operation.is_terminal:
                status, message = operation.status, operation.error_message
                session.commit()
            else:
                transition(operation)
                session.commit()
                return True
        finally:
            session.close()

        logger.warning(f"Import {self.operation_id} finished but the operation is already {status}")
        self.stats["status"] = status
        if status == OperationStatus.FAILED.value:
            self.tracker.fail(self.operation_id, message or f"Operation {self.operation_id} failed")
        elif status == OperationStatus.CANCELLED.value:
            self.tracker.cancel(self.operation_id, message)
        else:
            self.tracker.complete(
                self.operation_id,
                self.stats["processed"],
                success_count=self.stats["processed"],
                error_count=self.stats["failed_rows"],
            )
        return False

    def _record_error(self, message: str) -> None:
        logger.warning(f"Import {self.operation_id}: {message}")
        if len(self.stats["errors"]) < MAX_RECORDED_ERRORS:
            self.stats["errors"].append(message)

    def _log_statistics(self):
        """Log processing statistics."""
        logger.info("=" * 50)
        logger.info(f"IMPORT {self.operation_id} STATISTICS")
        logger.info("=" * 50)
        logger.info(f"Status: {self.stats['status']}")
        logger.info(f"Rows read: {self.stats['rows_read']} (estimated {self.stats['estimated_rows']})")
        logger.info(f"Processed rows: {self.stats['processed']}")
        logger.info(f"Persisted entities: {self.stats['persisted']}")
        logger.info(f"Failed rows: {self.stats['failed_rows']}")
        logger.info(f"Skipped rows: {self.stats['skipped_rows']}")
        logger.info(f"Malformed lines: {self.stats['malformed_lines']}")
        logger.info(
            f"Batches: {self.stats['batches_committed']} committed, "
            f"{self.stats['batches_failed']} failed"
        )
        logger.info("=" * 50)
