"""
Import -> export -> re-import round trips through the job runner and export service.
"""

from pathlib import Path

import pytest
from sqlalchemy import select

from pricesync.db.models import FileOperation, OperationStatus, OperationType, Product
from pricesync.export.service import ExportService
from pricesync.ingestion.errors import ExportError
from pricesync.tasks.runner import create_import_operation, run_import

ROUND_TRIP_FIELDS = "productId,productName,productBrand,productPrice"


def _catalogue(session, client_id):
    stmt = select(Product).where(Product.client_id == client_id).order_by(Product.product_id)
    return [
        (p.product_id, p.product_name, p.product_brand, p.product_price)
        for p in session.execute(stmt).scalars()
    ]


@pytest.fixture
def imported(session_factory, tracker, write_csv, sample_csv_data):
    """Sample catalogue imported for client 1."""
    path = write_csv(sample_csv_data)
    operation_id = create_import_operation(str(path), {}, client_id=1, session_factory=session_factory)
    run_import(operation_id, str(path), {}, session_factory, tracker)
    return operation_id


@pytest.fixture
def export_service(session_factory, tracker, tmp_path):
    return ExportService(session_factory, tracker, export_directory=str(tmp_path / "exports"))


def test_csv_export_reimports_into_another_client(imported, export_service, session_factory, db_session, tracker):
    result = export_service.export(
        {"format": "csv", "composite": "false", "fields": ROUND_TRIP_FIELDS}, client_id=1
    )

    operation_id = create_import_operation(result["file_path"], {}, client_id=2, session_factory=session_factory)
    stats = run_import(operation_id, result["file_path"], {}, session_factory, tracker)

    assert stats["status"] == OperationStatus.COMPLETED.value
    assert stats["processed"] == 3
    assert _catalogue(db_session, 2) == _catalogue(db_session, 1)
    assert _catalogue(db_session, 1)[0] == ("SKU-1", "Garden hose 20m", "Gardena", 24.9)


def test_xlsx_export_reimports(imported, export_service, session_factory, db_session, tracker):
    result = export_service.export({"format": "xlsx", "composite": "false", "fields": ROUND_TRIP_FIELDS})

    operation_id = create_import_operation(result["file_path"], {}, client_id=3, session_factory=session_factory)
    run_import(operation_id, result["file_path"], {}, session_factory, tracker)

    assert _catalogue(db_session, 3) == _catalogue(db_session, 1)


class TestExportService:
    """EXPORT operations recorded alongside the artifact."""

    def test_export_writes_artifact_and_completes(self, imported, export_service, session_factory, db_session):
        result = export_service.export({"format": "csv"}, client_id=1)

        path = Path(result["file_path"])
        assert path.exists()
        assert path.name.startswith("export_product_")
        assert path.suffix == ".csv"
        assert result["rows"] == 3
        assert result["size_bytes"] == path.stat().st_size

        operation = db_session.get(FileOperation, result["operation_id"])
        assert operation.operation_type == OperationType.EXPORT.value
        assert operation.status == OperationStatus.COMPLETED.value
        assert operation.record_count == 3
        assert operation.result_file_path == str(path)

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 4
        assert '"North"' in lines[1]

    def test_filtered_export(self, imported, export_service):
        result = export_service.export(
            {"strategyId": "filtered", "numericField": "productPrice", "minValue": "20"}, client_id=1
        )

        assert result["rows"] == 2

    def test_other_client_gets_empty_export(self, imported, export_service):
        result = export_service.export({"format": "csv"}, client_id=42)

        assert result["rows"] == 0
        assert Path(result["file_path"]).read_text(encoding="utf-8").count("\n") == 1

    def test_unsupported_format_creates_no_operation(self, export_service, db_session):
        with pytest.raises(ExportError):
            export_service.create_operation({"format": "pdf"})

        stmt = select(FileOperation).where(FileOperation.operation_type == OperationType.EXPORT.value)
        assert db_session.execute(stmt).first() is None

    def test_failure_marks_operation_failed(self, imported, export_service, session_factory, tracker):
        operation_id = export_service.create_operation({"format": "csv", "strategyId": "pivot"})

        with pytest.raises(ExportError):
            export_service.run(operation_id)

        session = session_factory()
        try:
            operation = session.get(FileOperation, operation_id)
            assert operation.status == OperationStatus.FAILED.value
            assert "pivot" in operation.error_message
        finally:
            session.close()
        assert tracker.get(operation_id).status == OperationStatus.FAILED.value
