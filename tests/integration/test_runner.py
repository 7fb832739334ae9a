"""
Maintenance helpers of the job runner.
"""

from datetime import timedelta

from sqlalchemy import select

from pricesync.db.models import FileOperation, OperationStatus, Product, utcnow
from pricesync.tasks.runner import (
    cancel_operation,
    create_import_operation,
    mark_stuck_operations,
    purge_operations,
    rollback_import,
    run_import,
)


def _set(session_factory, operation_id, **values):
    session = session_factory()
    try:
        operation = session.get(FileOperation, operation_id)
        for key, value in values.items():
            setattr(operation, key, value)
        session.commit()
    finally:
        session.close()


def _status(session_factory, operation_id):
    session = session_factory()
    try:
        operation = session.get(FileOperation, operation_id)
        return operation.status if operation else None
    finally:
        session.close()


def test_create_import_operation_records_file(session_factory, write_csv):
    path = write_csv("sku,price\nA1,1\n", name="prices.csv")

    operation_id = create_import_operation(str(path), {"batchSize": "10"}, client_id=5, session_factory=session_factory)

    session = session_factory()
    try:
        operation = session.get(FileOperation, operation_id)
        assert operation.status == OperationStatus.PENDING.value
        assert operation.file_name == "prices.csv"
        assert operation.file_type == "csv"
        assert operation.file_size == path.stat().st_size
        assert operation.parameters == {"batchSize": "10"}
        assert operation.client_id == 5
    finally:
        session.close()


def test_mark_stuck_operations(session_factory, create_operation):
    stuck = create_operation()
    fresh = create_operation()
    _set(session_factory, stuck, status=OperationStatus.PROCESSING.value, started_at=utcnow() - timedelta(hours=2))
    _set(session_factory, fresh, status=OperationStatus.PROCESSING.value, started_at=utcnow())

    assert mark_stuck_operations(30, session_factory=session_factory) == 1

    session = session_factory()
    try:
        operation = session.get(FileOperation, stuck)
        assert operation.status == OperationStatus.FAILED.value
        assert operation.error_message == "Processing timed out after 30 minutes"
    finally:
        session.close()
    assert _status(session_factory, fresh) == OperationStatus.PROCESSING.value


def test_purge_operations(session_factory, create_operation):
    old = create_operation()
    recent = create_operation()
    running = create_operation()
    _set(session_factory, old, status=OperationStatus.COMPLETED.value, completed_at=utcnow() - timedelta(days=100))
    _set(session_factory, recent, status=OperationStatus.COMPLETED.value, completed_at=utcnow())
    _set(session_factory, running, status=OperationStatus.PROCESSING.value, started_at=utcnow() - timedelta(days=100))

    assert purge_operations(90, session_factory=session_factory) == 1

    assert _status(session_factory, old) is None
    assert _status(session_factory, recent) == OperationStatus.COMPLETED.value
    assert _status(session_factory, running) == OperationStatus.PROCESSING.value


def test_rollback_import(session_factory, db_session, tracker, write_csv):
    first = write_csv("Product ID,Product price\nA1,1\n", name="first.csv")
    second = write_csv("Product ID,Product price,Region\nB2,2,EU\n", name="second.csv")
    first_id = create_import_operation(str(first), client_id=1, session_factory=session_factory)
    second_id = create_import_operation(str(second), client_id=1, session_factory=session_factory)
    run_import(first_id, str(first), {}, session_factory, tracker)
    run_import(second_id, str(second), {}, session_factory, tracker)

    removed = rollback_import(second_id, session_factory=session_factory)

    assert removed["products"] == 1
    assert removed["region_data"] == 1
    assert [p.product_id for p in db_session.execute(select(Product)).scalars()] == ["A1"]


def test_cancel_unknown_operation():
    assert cancel_operation(123456) is False
