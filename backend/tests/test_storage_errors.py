"""
Storage Failure Tests

Tests that an unreachable database surfaces as StorageUnavailableError,
distinct from every domain error.
"""
import os

# Set environment variables FIRST, before any other imports
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from resume_ats.errors import LedgerError, StorageUnavailableError
from resume_ats.orchestrators.analysis_orchestrator import AnalysisOrchestrator
from resume_ats.services.analysis_ledger import AnalysisLedger
from resume_ats.services.quota_tracker import QuotaTracker
from resume_ats.services.scorer import ResumeScorer
from resume_ats.services.user_service import UserService


class UnusedScorer(ResumeScorer):
    def score(self, resume_text, job_description):
        raise AssertionError("scorer must not be reached")


@pytest.fixture
def broken_db(tmp_path):
    """Session bound to a database file whose directory does not exist."""
    missing = tmp_path / "missing" / "nowhere.db"
    engine = create_engine(f"sqlite:///{missing}")
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def test_storage_error_is_not_a_domain_error():
    assert not issubclass(StorageUnavailableError, LedgerError)


def test_quota_read_reports_storage_unavailable(broken_db):
    with pytest.raises(StorageUnavailableError):
        QuotaTracker(broken_db).can_create(uuid4())


def test_quota_write_reports_storage_unavailable(broken_db):
    with pytest.raises(StorageUnavailableError):
        QuotaTracker(broken_db).record_usage(uuid4())


def test_ledger_reports_storage_unavailable(broken_db):
    with pytest.raises(StorageUnavailableError):
        AnalysisLedger(broken_db).analytics(uuid4())


def test_user_service_reports_storage_unavailable(broken_db):
    with pytest.raises(StorageUnavailableError):
        UserService(broken_db).get_user(uuid4())


def test_orchestrator_reports_storage_unavailable(broken_db):
    orchestrator = AnalysisOrchestrator(broken_db, UnusedScorer())

    with pytest.raises(StorageUnavailableError):
        orchestrator.submit("submit-offline", uuid4(), "Job", "Resume")
