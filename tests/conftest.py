"""
Pytest configuration and shared fixtures
"""

import sys
from pathlib import Path

import pytest
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pricesync.db.models import Base, OperationType
from pricesync.db.repository import OperationRepository
from pricesync.tracking.notifier import ProgressNotifier
from pricesync.tracking.progress import ProgressTracker


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return ProgressNotifier()


@pytest.fixture
def tracker(session_factory, notifier):
    """Progress tracker without a reaper thread."""
    return ProgressTracker(session_factory, notifier=notifier, retention_seconds=60, reaper_interval=1)


@pytest.fixture
def create_operation(session_factory):
    """Factory creating PENDING operations, returning their ids."""

    def _create(operation_type=OperationType.IMPORT, file_name="upload.csv", client_id=1, parameters=None):
        session = session_factory()
        try:
            operation = OperationRepository().create(
                session,
                operation_type,
                file_name=file_name,
                client_id=client_id,
                parameters=parameters,
            )
            return operation.id
        finally:
            session.close()

    return _create


@pytest.fixture
def write_csv(tmp_path):
    """Factory writing text to a CSV file under tmp_path."""

    def _write(content: str, name: str = "upload.csv", encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        path.write_bytes(content.encode(encoding))
        return path

    return _write


@pytest.fixture
def sample_csv_data():
    """Sample product CSV with region and competitor columns."""
    return (
        "Product ID,Product name,Brand,Product price,Region,Stock amount,Competitor name,Competitor price\n"
        "SKU-1,Garden hose 20m,Gardena,24.90,North,15,AgroShop,23.50\n"
        "SKU-2,Watering can,Gardena,9.99,North,40,AgroShop,10.49\n"
        "SKU-3,Pruning shears,Fiskars,31.00,South,7,GreenMart,29.90\n"
    )


@pytest.fixture
def sample_xlsx(tmp_path):
    """Small workbook with a header row and two products."""
    wb = Workbook()
    ws = wb.active
    ws.append(["Product ID", "Product name", "Product price", "Region"])
    ws.append(["X-1", "Seed tray", 4.5, "East"])
    ws.append(["X-2", "Plant labels", 2, "West"])
    path = tmp_path / "products.xlsx"
    wb.save(path)
    return path
