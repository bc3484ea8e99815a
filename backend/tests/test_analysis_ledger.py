"""
Analysis Ledger Tests

Tests that verify the analysis lineage:
1. Creation validates input and always writes version 1
2. Versions are append-only and numbered 1..N
3. Completion is one-way
4. Suggestions, summaries, history paging and analytics are derived correctly
5. Concurrent appends and edits of stored versions are rejected
"""
import os

# Set environment variables FIRST, before any other imports
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from resume_ats.database import Base
from resume_ats.errors import (
    AlreadyCompletedError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from resume_ats.models.analysis import (
    Analysis,
    AnalysisStatus,
    AnalysisSuggestion,
    AnalysisVersion,
    SuggestionCategory,
)
from resume_ats.models.user import User
from resume_ats.services.analysis_ledger import AnalysisLedger
from resume_ats.services.scorer import SuggestionDraft
from resume_ats.utils.invariants import ImmutableVersionError


engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2026, 3, 2, 9, 0, 0)

JOB_DESCRIPTION = "Senior Python engineer. SQLAlchemy, PostgreSQL, async services."
RESUME_V1 = "Python developer with 5 years of experience."
RESUME_V2 = "Python developer with 5 years of SQLAlchemy and PostgreSQL experience."


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db():
    """Create test database session."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_user(db):
    """Create a test user."""
    user = User(email="ledger@example.com", full_name="Ledger User", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def ledger(db, clock):
    return AnalysisLedger(db, clock=clock)


@pytest.fixture
def analysis(ledger, test_user):
    """Analysis with a mix of suggestions."""
    return ledger.create(
        user_id=test_user.id,
        job_title="Backend Engineer",
        job_description=JOB_DESCRIPTION,
        resume_text=RESUME_V1,
        ats_score=62,
        suggestions=[
            SuggestionDraft("Keywords", "Mention SQLAlchemy explicitly", "High"),
            SuggestionDraft("Formatting", "Use a single-column layout", "High"),
            SuggestionDraft("Skills", "Group skills by area", "Medium"),
            {"category": "Action Verbs", "priority": "High", "suggestion": "Start bullets with verbs"},
        ],
    )


class TestCreate:
    """Test analysis creation."""

    def test_create_writes_version_one(self, ledger, analysis, clock):
        assert analysis.status == AnalysisStatus.IN_PROGRESS
        assert analysis.current_version == 1
        assert analysis.score_improvement == 0
        assert analysis.created_at == T0

        version = analysis.versions[0]
        assert version.version_number == 1
        assert version.ats_score == 62
        assert version.resume_text == RESUME_V1
        assert version.improvement_notes == "Initial analysis"

    def test_create_applies_defaults(self, ledger, test_user):
        analysis = ledger.create(
            user_id=test_user.id,
            job_title="   ",
            job_description=JOB_DESCRIPTION,
            resume_text=RESUME_V1,
            ats_score=50,
        )

        assert analysis.job_title == "Untitled Position"
        assert analysis.resume_file_name == "resume.pdf"
        assert analysis.suggestions == []

    def test_create_keeps_suggestion_order(self, analysis):
        categories = [s.category for s in analysis.suggestions]
        assert categories == [
            SuggestionCategory.KEYWORDS,
            SuggestionCategory.FORMATTING,
            SuggestionCategory.SKILLS,
            SuggestionCategory.ACTION_VERBS,
        ]
        assert not any(s.implemented for s in analysis.suggestions)

    @pytest.mark.parametrize("score", [-1, 100.5, "90", None, True, float("nan")])
    def test_create_rejects_bad_score(self, ledger, test_user, db, score):
        with pytest.raises(ValidationError):
            ledger.create(
                user_id=test_user.id,
                job_title="Role",
                job_description=JOB_DESCRIPTION,
                resume_text=RESUME_V1,
                ats_score=score,
            )
        assert db.query(Analysis).count() == 0

    def test_create_accepts_score_bounds(self, ledger, test_user):
        low = ledger.create(test_user.id, "Low", JOB_DESCRIPTION, RESUME_V1, 0)
        high = ledger.create(test_user.id, "High", JOB_DESCRIPTION, RESUME_V1, 100)

        assert low.ats_score == 0
        assert high.ats_score == 100

    def test_create_rejects_empty_text(self, ledger, test_user):
        with pytest.raises(ValidationError) as exc_info:
            ledger.create(test_user.id, "Role", "   ", RESUME_V1, 70)
        assert exc_info.value.details["field"] == "job_description"

        with pytest.raises(ValidationError) as exc_info:
            ledger.create(test_user.id, "Role", JOB_DESCRIPTION, "", 70)
        assert exc_info.value.details["field"] == "resume_text"

    def test_create_rejects_unknown_category(self, ledger, test_user):
        with pytest.raises(ValidationError):
            ledger.create(
                test_user.id, "Role", JOB_DESCRIPTION, RESUME_V1, 70,
                suggestions=[SuggestionDraft("Vibes", "Be cooler", "High")]
            )

    def test_create_for_unknown_user(self, ledger, db):
        with pytest.raises(NotFoundError):
            ledger.create(uuid4(), "Role", JOB_DESCRIPTION, RESUME_V1, 70)


class TestVersions:
    """Test the append-only lineage."""

    def test_add_version_appends_and_updates_current(self, ledger, analysis, clock):
        clock.advance(hours=2)
        version = ledger.add_version(analysis.id, RESUME_V2, 78, notes="Added keywords")

        refreshed = ledger.get(analysis.id)
        assert version.version_number == 2
        assert refreshed.current_version == 2
        assert refreshed.resume_text == RESUME_V2
        assert refreshed.ats_score == 78
        assert refreshed.updated_at == clock.now
        assert refreshed.versions[0].ats_score == 62
        assert refreshed.versions[0].resume_text == RESUME_V1

    def test_version_numbers_are_sequential(self, ledger, analysis):
        for score in (65, 70, 74):
            ledger.add_version(analysis.id, RESUME_V2, score)

        numbers = [v.version_number for v in ledger.get(analysis.id).versions]
        assert numbers == [1, 2, 3, 4]

    def test_score_improvement_tracks_first_version(self, ledger, analysis):
        ledger.add_version(analysis.id, RESUME_V2, 80)
        assert ledger.get(analysis.id).score_improvement == 18

        ledger.add_version(analysis.id, RESUME_V2, 55)
        assert ledger.get(analysis.id).score_improvement == -7

    def test_add_version_allowed_after_completion(self, ledger, analysis):
        ledger.complete(analysis.id)
        version = ledger.add_version(analysis.id, RESUME_V2, 81)

        assert version.version_number == 2
        assert ledger.get(analysis.id).status == AnalysisStatus.COMPLETED

    def test_add_version_rejects_bad_input(self, ledger, analysis):
        with pytest.raises(ValidationError):
            ledger.add_version(analysis.id, RESUME_V2, 101)
        with pytest.raises(ValidationError):
            ledger.add_version(analysis.id, "  ", 80)
        with pytest.raises(NotFoundError):
            ledger.add_version(uuid4(), RESUME_V2, 80)

        assert ledger.get(analysis.id).current_version == 1

    def test_stored_version_cannot_be_edited(self, ledger, analysis, db):
        version = ledger.get(analysis.id).versions[0]
        version.ats_score = 99

        with pytest.raises(ImmutableVersionError):
            db.flush()
        db.rollback()

        assert ledger.get(analysis.id).versions[0].ats_score == 62
        print("✓ version rows reject UPDATE")

    def test_stale_analysis_raises_concurrent_modification(self, ledger, analysis, db):
        ledger.get(analysis.id)
        # Another writer bumps the row behind the session's back
        db.query(Analysis).filter(Analysis.id == analysis.id).update(
            {Analysis.revision: Analysis.revision + 1},
            synchronize_session=False
        )

        with pytest.raises(ConcurrentModificationError) as exc_info:
            ledger.add_version(analysis.id, RESUME_V2, 80)

        assert exc_info.value.details["operation"] == "add_version"
        db.expire_all()
        assert ledger.get(analysis.id).current_version == 1


class TestComplete:
    """Test the one-way completion transition."""

    def test_complete_sets_status_and_timestamp(self, ledger, analysis, clock):
        done_at = clock.advance(days=1)
        completed = ledger.complete(analysis.id)

        assert completed.status == AnalysisStatus.COMPLETED
        assert completed.completed_at == done_at
        assert completed.is_completed

    def test_second_complete_is_rejected(self, ledger, analysis, clock):
        first = ledger.complete(analysis.id).completed_at
        clock.advance(hours=1)

        with pytest.raises(AlreadyCompletedError):
            ledger.complete(analysis.id)

        assert ledger.get(analysis.id).completed_at == first

    def test_complete_unknown(self, ledger, db):
        with pytest.raises(NotFoundError):
            ledger.complete(uuid4())


class TestSuggestions:
    """Test implemented flags and the high-priority view."""

    def test_high_priority_sorted_by_category(self, ledger, analysis):
        names = [s.category.value for s in ledger.get_high_priority_suggestions(analysis.id)]
        assert names == ["Action Verbs", "Formatting", "Keywords"]

    def test_implemented_suggestions_drop_out(self, ledger, analysis):
        action_verbs = analysis.suggestions[3]
        ledger.implement_suggestion(analysis.id, action_verbs.id)

        names = [s.category.value for s in ledger.get_high_priority_suggestions(analysis.id)]
        assert names == ["Formatting", "Keywords"]

    def test_implement_is_idempotent(self, ledger, analysis):
        suggestion_id = analysis.suggestions[0].id
        ledger.implement_suggestion(analysis.id, suggestion_id)
        again = ledger.implement_suggestion(analysis.id, suggestion_id)

        assert again.implemented is True

    def test_implement_unknown_suggestion(self, ledger, analysis, test_user, db):
        other = ledger.create(
            test_user.id, "Other", JOB_DESCRIPTION, RESUME_V1, 40,
            suggestions=[SuggestionDraft("Summary", "Add a summary", "Low")]
        )

        with pytest.raises(NotFoundError):
            ledger.implement_suggestion(analysis.id, uuid4())
        with pytest.raises(NotFoundError):
            ledger.implement_suggestion(analysis.id, other.suggestions[0].id)

    def test_summary(self, ledger, analysis):
        ledger.implement_suggestion(analysis.id, analysis.suggestions[1].id)
        ledger.add_version(analysis.id, RESUME_V2, 70)

        summary = ledger.summary(analysis.id).to_dict()

        assert summary["job_title"] == "Backend Engineer"
        assert summary["versions_count"] == 2
        assert summary["high_priority_suggestions"] == 3
        assert summary["implemented_suggestions"] == 1
        assert summary["total_suggestions"] == 4
        assert summary["score_improvement"] == 8
        assert summary["status"] == "in-progress"
        assert summary["completed_at"] is None


class TestHistory:
    """Test paginated listings."""

    def _create_many(self, ledger, clock, user_id, count):
        ids = []
        for i in range(count):
            analysis = ledger.create(user_id, f"Role {i}", JOB_DESCRIPTION, RESUME_V1, 50 + i)
            ids.append(analysis.id)
            clock.advance(minutes=5)
        return ids

    def test_newest_first_with_pagination(self, ledger, clock, test_user):
        ids = self._create_many(ledger, clock, test_user.id, 5)

        first, pagination = ledger.list_for_user(test_user.id, page=1, page_size=2)
        assert [a.id for a in first] == [ids[4], ids[3]]
        assert pagination.to_dict() == {
            "current_page": 1,
            "total_pages": 3,
            "total_analyses": 5,
            "has_more": True,
        }

        last, pagination = ledger.list_for_user(test_user.id, page=3, page_size=2)
        assert [a.id for a in last] == [ids[0]]
        assert pagination.has_more is False

    def test_page_past_the_end_is_empty(self, ledger, clock, test_user):
        self._create_many(ledger, clock, test_user.id, 2)

        records, pagination = ledger.list_for_user(test_user.id, page=4, page_size=2)
        assert records == []
        assert pagination.total_pages == 1
        assert pagination.has_more is False

    def test_user_without_analyses(self, ledger, test_user):
        records, pagination = ledger.list_for_user(test_user.id)
        assert records == []
        assert pagination.total_pages == 0
        assert pagination.total_analyses == 0

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (-1, 5)])
    def test_invalid_paging(self, ledger, test_user, page, page_size):
        with pytest.raises(ValidationError):
            ledger.list_for_user(test_user.id, page=page, page_size=page_size)


class TestAnalytics:
    """Test per-user aggregate statistics."""

    def test_empty_user_gets_zeros(self, ledger, test_user):
        stats = ledger.analytics(test_user.id)

        assert stats.to_dict() == {
            "total_analyses": 0,
            "completed_analyses": 0,
            "in_progress_analyses": 0,
            "average_score": 0,
            "highest_score": 0,
            "lowest_score": 0,
        }

    def test_aggregates(self, ledger, test_user):
        first = ledger.create(test_user.id, "A", JOB_DESCRIPTION, RESUME_V1, 80)
        ledger.create(test_user.id, "B", JOB_DESCRIPTION, RESUME_V1, 80.5)
        ledger.complete(first.id)

        stats = ledger.analytics(test_user.id)

        assert stats.total_analyses == 2
        assert stats.completed_analyses == 1
        assert stats.in_progress_analyses == 1
        # 80.25 rounds half-up
        assert stats.average_score == 80.3
        assert stats.highest_score == 80.5
        assert stats.lowest_score == 80

    def test_analytics_uses_current_scores(self, ledger, analysis, test_user):
        ledger.add_version(analysis.id, RESUME_V2, 90)

        stats = ledger.analytics(test_user.id)
        assert stats.highest_score == 90
        assert stats.average_score == 90


class TestDelete:
    """Test removal with owned children."""

    def test_delete_removes_versions_and_suggestions(self, ledger, analysis, db):
        ledger.add_version(analysis.id, RESUME_V2, 70)
        analysis_id = analysis.id

        ledger.delete(analysis_id)

        assert db.query(Analysis).filter(Analysis.id == analysis_id).count() == 0
        assert db.query(AnalysisVersion).filter(AnalysisVersion.analysis_id == analysis_id).count() == 0
        assert db.query(AnalysisSuggestion).filter(AnalysisSuggestion.analysis_id == analysis_id).count() == 0
        with pytest.raises(NotFoundError):
            ledger.get(analysis_id)

    def test_delete_checks_owner(self, ledger, analysis):
        with pytest.raises(NotFoundError):
            ledger.delete(analysis.id, user_id=uuid4())

        assert ledger.get(analysis.id) is not None
