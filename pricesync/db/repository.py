"""
Repositories
Query helpers for file operations and mapping templates.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, func, and_, or_, delete
from sqlalchemy.orm import Session, selectinload

from pricesync.db.models import (
    FileOperation,
    MappingTemplate,
    OperationStatus,
    OperationType,
    TERMINAL_STATUSES,
    utcnow,
)

logger = logging.getLogger(__name__)


class OperationRepository:
    """
    Read and write access to FileOperation records.

    Provides:
    - Creation and lookup of operations
    - Active / stuck operation listings
    - Aggregated counts over a time window
    - Purging of old finished operations
    """

    def create(
        self,
        db: Session,
        operation_type: OperationType,
        file_name: Optional[str] = None,
        client_id: Optional[int] = None,
        source_file_path: Optional[str] = None,
        file_type: Optional[str] = None,
        file_size: Optional[int] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> FileOperation:
        """
        Create a PENDING operation record.

        Args:
            db: Database session
            operation_type: IMPORT or EXPORT
            file_name: Original file name shown to users
            client_id: Owning client scope
            source_file_path: Path of the uploaded file
            file_type: File extension without dot
            file_size: File size in bytes
            parameters: Submission parameters

        Returns:
            Created FileOperation instance
        """
        operation = FileOperation(
            operation_type=OperationType(operation_type).value,
            file_name=file_name,
            client_id=client_id,
            source_file_path=source_file_path,
            file_type=file_type,
            file_size=file_size,
            parameters=parameters or {},
            status=OperationStatus.PENDING.value,
        )
        db.add(operation)
        db.commit()
        db.refresh(operation)

        logger.info(f"Created {operation.operation_type} operation {operation.id} ({file_name})")
        return operation

    def get(self, db: Session, operation_id: int) -> Optional[FileOperation]:
        return db.get(FileOperation, operation_id)

    def list_active(self, db: Session, client_id: Optional[int] = None) -> List[FileOperation]:
        """Operations that are PENDING or PROCESSING, newest first."""
        stmt = select(FileOperation).where(
            FileOperation.status.in_(
                [OperationStatus.PENDING.value, OperationStatus.PROCESSING.value]
            )
        )
        if client_id is not None:
            stmt = stmt.where(FileOperation.client_id == client_id)
        stmt = stmt.order_by(FileOperation.created_at.desc())
        return list(db.execute(stmt).scalars())

    def list_stuck(
        self, db: Session, older_than_minutes: int, now: Optional[datetime] = None
    ) -> List[FileOperation]:
        """
        Operations that have been PROCESSING longer than the given age.

        Args:
            db: Database session
            older_than_minutes: Minimum processing age
            now: Reference time (defaults to current UTC time)

        Returns:
            Stuck operations, oldest first
        """
        cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)
        stmt = (
            select(FileOperation)
            .where(
                and_(
                    FileOperation.status == OperationStatus.PROCESSING.value,
                    FileOperation.started_at.isnot(None),
                    FileOperation.started_at < cutoff,
                )
            )
            .order_by(FileOperation.started_at.asc())
        )
        return list(db.execute(stmt).scalars())

    def get_stats(
        self,
        db: Session,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        client_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Aggregate operation counts over a time window.

        Args:
            db: Database session
            from_date: Only include operations created at or after this time
            to_date: Only include operations created before this time
            client_id: Restrict to one client

        Returns:
            Dict with total, per-status and per-type counts, processed record
            sum and average duration of finished runs
        """
        filters = []
        if from_date:
            filters.append(FileOperation.created_at >= from_date)
        if to_date:
            filters.append(FileOperation.created_at < to_date)
        if client_id is not None:
            filters.append(FileOperation.client_id == client_id)

        status_stmt = select(FileOperation.status, func.count(FileOperation.id)).group_by(
            FileOperation.status
        )
        type_stmt = select(FileOperation.operation_type, func.count(FileOperation.id)).group_by(
            FileOperation.operation_type
        )
        records_stmt = select(func.coalesce(func.sum(FileOperation.processed_records), 0))
        if filters:
            status_stmt = status_stmt.where(and_(*filters))
            type_stmt = type_stmt.where(and_(*filters))
            records_stmt = records_stmt.where(and_(*filters))

        by_status = {status.value.lower(): 0 for status in OperationStatus}
        for status_val, count in db.execute(status_stmt):
            by_status[status_val.lower()] = count
        by_type = {row[0]: row[1] for row in db.execute(type_stmt)}

        # Durations are computed in Python so the query stays portable
        finished_stmt = select(FileOperation.started_at, FileOperation.completed_at).where(
            and_(
                FileOperation.started_at.isnot(None),
                FileOperation.completed_at.isnot(None),
                *filters,
            )
        )
        durations = [
            (completed - started).total_seconds()
            for started, completed in db.execute(finished_stmt)
        ]

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_type": by_type,
            "processed_records": int(db.execute(records_stmt).scalar_one()),
            "avg_duration_seconds": sum(durations) / len(durations) if durations else None,
        }

    def purge_finished(self, db: Session, older_than: datetime) -> int:
        """Delete terminal operations completed before the cutoff."""
        stmt = delete(FileOperation).where(
            and_(
                FileOperation.status.in_(TERMINAL_STATUSES),
                FileOperation.completed_at < older_than,
            )
        )
        result = db.execute(stmt)
        db.commit()
        logger.info(f"Purged {result.rowcount} finished operations older than {older_than}")
        return result.rowcount


class MappingTemplateRepository:
    """Lookup and storage of mapping templates."""

    def get(self, db: Session, template_id: int) -> Optional[MappingTemplate]:
        stmt = (
            select(MappingTemplate)
            .options(selectinload(MappingTemplate.rules))
            .where(MappingTemplate.id == template_id)
        )
        return db.execute(stmt).scalar_one_or_none()

    def list_for_scope(
        self, db: Session, entity_type: str, client_id: Optional[int] = None
    ) -> List[MappingTemplate]:
        """Active templates owned by the client plus global ones, client templates first."""
        stmt = (
            select(MappingTemplate)
            .where(
                and_(
                    MappingTemplate.is_active.is_(True),
                    MappingTemplate.entity_type == entity_type,
                    or_(
                        MappingTemplate.client_id == client_id,
                        MappingTemplate.client_id.is_(None),
                    ),
                )
            )
            .order_by(MappingTemplate.client_id.is_(None), MappingTemplate.name)
        )
        return list(db.execute(stmt).scalars())

    def find_default(
        self, db: Session, entity_type: str, client_id: Optional[int] = None
    ) -> Optional[MappingTemplate]:
        """Default template for the client, falling back to the global default."""
        for template in self.list_for_scope(db, entity_type, client_id):
            if template.is_default:
                return template
        return None

    def save(self, db: Session, template: MappingTemplate) -> MappingTemplate:
        """
        Persist a template.

        Marking a template as default clears the flag on every other
        template of the same scope and entity type.
        """
        if template.is_default:
            scope_filter = (
                MappingTemplate.client_id.is_(None)
                if template.client_id is None
                else MappingTemplate.client_id == template.client_id
            )
            stmt = select(MappingTemplate).where(
                and_(
                    scope_filter,
                    MappingTemplate.entity_type == template.entity_type,
                    MappingTemplate.is_default.is_(True),
                )
            )
            for other in db.execute(stmt).scalars():
                if other is not template:
                    other.is_default = False

        db.add(template)
        db.commit()
        db.refresh(template)
        logger.info(f"Saved mapping template {template.id} ({template.name}, {len(template.rules)} rules)")
        return template
