# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta
from typing import Dict, List
from unittest.mock import MagicMock


# =============================================================================
# SETTINGS ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every lazily-loaded component at a throwaway database"""
    from school_core import settings as settings_module
    from school_core.settings import Settings

    test_settings = Settings(db_path=tmp_path / "school.db")
    monkeypatch.setattr(settings_module, "_settings", test_settings)
    return test_settings


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_learners() -> List[Dict]:
    """Three learners across two grades"""
    return [
        {
            "id": "L001", "admission_number": "ADM-001", "first_name": "Amani",
            "last_name": "Otieno", "current_grade_id": "G4", "current_stream_id": "S1",
            "status": "active", "gender": "female",
        },
        {
            "id": "L002", "admission_number": "ADM-002", "first_name": "Baraka",
            "last_name": "Mwangi", "current_grade_id": "G4", "current_stream_id": "S2",
            "status": "active", "gender": "male",
        },
        {
            "id": "L003", "admission_number": "ADM-003", "first_name": "Chebet",
            "last_name": "Kiprop", "current_grade_id": "G5", "current_stream_id": "S3",
            "status": "active", "gender": "female",
        },
    ]


@pytest.fixture
def sample_remote_tables(sample_learners) -> Dict[str, List[Dict]]:
    """Rows for every synced collection as the remote store returns them"""
    today = datetime.now().date()
    year = today.year
    return {
        "learners": sample_learners + [
            {"id": "L900", "admission_number": "ADM-900", "status": "graduated"},
        ],
        "grades": [
            {"id": "G4", "name": "Grade 4", "grade_level": "grade_4"},
            {"id": "G5", "name": "Grade 5", "grade_level": "grade_5"},
        ],
        "streams": [
            {"id": "S1", "name": "North", "grade_id": "G4", "capacity": 40},
            {"id": "S2", "name": "South", "grade_id": "G4", "capacity": 40},
            {"id": "S3", "name": "East", "grade_id": "G5", "capacity": 35},
        ],
        "fee_payments": [
            {"id": "P1", "learner_id": "L001", "amount_paid": 5000.0,
             "payment_date": (today - timedelta(days=10)).isoformat(), "payment_method": "mpesa"},
            {"id": "P2", "learner_id": "L002", "amount_paid": 2500.0,
             "payment_date": (today - timedelta(days=400)).isoformat(), "payment_method": "cash"},
        ],
        "fee_balances": [
            {"id": "B1", "learner_id": "L001", "academic_year": f"{year - 1}-{year}",
             "term": "Term 1", "total_fees": 15000.0, "amount_paid": 5000.0, "balance": 10000.0},
        ],
        "teachers": [
            {"id": "T1", "first_name": "Daudi", "last_name": "Njoroge", "email": "daudi@school.ac.ke"},
            {"id": "T2", "first_name": "Esther", "last_name": "Wanjiku", "email": "esther@school.ac.ke"},
        ],
        "performance_records": [
            {"id": "R1", "learner_id": "L001", "learning_area_id": "MATH",
             "academic_year": f"{year - 1}-{year}", "term": "Term 1", "marks": 78.5},
            {"id": "R2", "learner_id": "L001", "learning_area_id": "MATH",
             "academic_year": f"{year - 5}-{year - 4}", "term": "Term 1", "marks": 60.0},
        ],
        "alumni": [
            {"id": "A1", "learner_id": "L800", "graduation_year": str(year - 1)},
        ],
    }


@pytest.fixture
def sample_entry() -> Dict:
    """Teacher T1 teaching stream S1 on Monday 08:00-09:00, 2024 Term 1"""
    return {
        "teacher_id": "T1",
        "stream_id": "S1",
        "grade_id": "G4",
        "learning_area_id": "MATH",
        "academic_year": "2024",
        "term": "Term 1",
        "day_of_week": 1,
        "start_time": "08:00",
        "end_time": "09:00",
        "entry_type": "lesson",
        "subject_name": "Mathematics",
    }


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def local_db(tmp_path):
    """Initialized LocalDatabase in a temporary directory"""
    from school_core.offline.local_database import LocalDatabase

    db = LocalDatabase(db_path=tmp_path / "cache" / "school.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def remote(sample_remote_tables):
    """In-memory remote store preloaded with sample rows"""
    from school_core.data.remote import InMemoryRemote

    return InMemoryRemote(sample_remote_tables)


@pytest.fixture
def connection_manager():
    """ConnectionManager that never probes the network (starts OFFLINE)"""
    from school_core.offline.connection_manager import ConnectionManager

    manager = ConnectionManager(supabase_url=None, check_interval=3600, timeout=1)
    manager.set_offline()
    return manager


@pytest.fixture
def sync_engine(local_db, remote, connection_manager):
    """SyncEngine wired to the temporary database and in-memory remote"""
    from school_core.offline.sync_engine import SyncEngine

    engine = SyncEngine(
        local_db=local_db,
        remote=remote,
        connection_manager=connection_manager,
        sync_interval=3600,
        max_retry_attempts=3,
    )
    engine.initialize()
    yield engine
    engine.teardown()


@pytest.fixture
def timetable_service():
    """TimetableService evaluating conflicts locally against an empty remote"""
    from school_core.data.remote import InMemoryRemote
    from school_core.timetable.service import TimetableService

    return TimetableService(InMemoryRemote(), use_remote_procedures=False)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit for testing"""
    from school_core.errors import handlers
    from school_core import settings as settings_module

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.secrets = {}

    monkeypatch.setattr(handlers, "st", mock_st)
    monkeypatch.setattr(settings_module, "st", mock_st)

    yield mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.range.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client

