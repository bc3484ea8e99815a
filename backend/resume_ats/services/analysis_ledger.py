"""Versioned analysis records: creation, revisions, suggestions and statistics."""
import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from uuid import UUID

from loguru import logger
from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from resume_ats.config import settings
from resume_ats.database import storage_guard
from resume_ats.errors import (
    AlreadyCompletedError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from resume_ats.models.analysis import (
    DEFAULT_JOB_TITLE,
    DEFAULT_RESUME_FILE_NAME,
    INITIAL_VERSION_NOTES,
    Analysis,
    AnalysisStatus,
    AnalysisSuggestion,
    AnalysisVersion,
    SuggestionCategory,
    SuggestionPriority,
)
from resume_ats.models.user import User
from resume_ats.services.scorer import SuggestionDraft
from resume_ats.utils.identifiers import coerce_uuid
from resume_ats.utils.invariants import (
    check_analysis_has_versions,
    check_version_sequence,
)
from resume_ats.utils.timestamp import Clock, to_iso, utcnow

CONTEXT_PREFIX = "[ledger]"
MIN_SCORE = 0
MAX_SCORE = 100


@dataclass
class AnalysisSummary:
    """Compact view of one analysis."""
    id: str
    job_title: str
    ats_score: float
    status: str
    created_at: Optional[str]
    updated_at: Optional[str]
    completed_at: Optional[str]
    versions_count: int
    high_priority_suggestions: int
    implemented_suggestions: int
    total_suggestions: int
    score_improvement: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Pagination:
    """Paging metadata for a history listing (1-based pages)."""
    current_page: int
    total_pages: int
    total_analyses: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalyticsSummary:
    """Aggregate statistics over all of a user's analyses."""
    total_analyses: int
    completed_analyses: int
    in_progress_analyses: int
    average_score: float
    highest_score: float
    lowest_score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AnalysisLedger:
    """
    Service owning analysis records and their version lineage.

    Rules:
    - create() writes the record and version 1 in one flush; no reader ever
      sees an analysis with zero versions
    - Versions are append-only; numbers are assigned here as len(versions) + 1
    - completed is terminal; a second complete() raises AlreadyCompletedError
    - Quota is never consulted or granted here (see QuotaTracker)

    Capabilities:
    - Create / revise / complete / delete analyses
    - Mark suggestions implemented, list open high-priority suggestions
    - Per-analysis summaries, paginated history, per-user analytics
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        auto_commit: bool = True,
    ):
        """
        Initialize analysis ledger.

        Args:
            db: Database session
            clock: Source of "now" (naive UTC)
            auto_commit: Commit after each write; orchestrators pass False
        """
        self.db = db
        self.clock = clock or utcnow
        self.auto_commit = auto_commit

    def create(
        self,
        user_id: Union[UUID, str],
        job_title: Optional[str],
        job_description: str,
        resume_text: str,
        ats_score: float,
        suggestions: Optional[Iterable[Union[SuggestionDraft, Dict[str, Any]]]] = None,
        resume_file_name: Optional[str] = None,
        analysis_metadata: Optional[Dict[str, Any]] = None,
    ) -> Analysis:
        """
        Create an analysis together with its first version.

        Args:
            user_id: Owning user
            job_title: Display title (defaults to "Untitled Position")
            job_description: Job description, required
            resume_text: Resume text, required
            ats_score: Score between 0 and 100
            suggestions: SuggestionDraft objects or dicts with category/priority/text
            resume_file_name: Uploaded file name (defaults to "resume.pdf")
            analysis_metadata: Scorer metadata

        Returns:
            The persisted Analysis

        Raises:
            ValidationError: If any input is empty, malformed or out of range
            NotFoundError: If the user does not exist
        """
        user_id = coerce_uuid(user_id, "user_id")
        job_description = self._require_text(job_description, "job_description").strip()
        self._require_text(resume_text, "resume_text")
        ats_score = self._validate_score(ats_score)
        drafts = [self._coerce_suggestion(s, i) for i, s in enumerate(suggestions or [])]
        now = self.clock()

        with storage_guard(self.db):
            self._require_user(user_id)

            analysis = Analysis(
                user_id=user_id,
                job_title=(job_title or "").strip() or DEFAULT_JOB_TITLE,
                job_description=job_description,
                resume_text=resume_text,
                resume_file_name=(resume_file_name or "").strip() or DEFAULT_RESUME_FILE_NAME,
                ats_score=ats_score,
                status=AnalysisStatus.IN_PROGRESS,
                analysis_metadata=analysis_metadata or {},
                created_at=now,
                updated_at=now,
            )
            analysis.versions.append(
                AnalysisVersion(
                    version_number=1,
                    resume_text=resume_text,
                    ats_score=ats_score,
                    improvement_notes=INITIAL_VERSION_NOTES,
                    created_at=now,
                )
            )
            for position, (category, priority, text) in enumerate(drafts):
                analysis.suggestions.append(
                    AnalysisSuggestion(
                        position=position,
                        category=category,
                        priority=priority,
                        text=text,
                        implemented=False,
                    )
                )

            check_analysis_has_versions(analysis)
            self.db.add(analysis)
            self.db.flush()
            self._commit()

        logger.info(
            f"{CONTEXT_PREFIX} analysis {analysis.id} created for user {user_id} "
            f"(score {ats_score}, {len(drafts)} suggestions)"
        )
        return analysis

    def add_version(
        self,
        analysis_id: Union[UUID, str],
        resume_text: str,
        ats_score: float,
        notes: str = "",
    ) -> AnalysisVersion:
        """
        Append a resume revision to an analysis.

        The record's current resume text and score move to the new values;
        earlier versions are never touched.

        Returns:
            The new AnalysisVersion

        Raises:
            NotFoundError: If the analysis does not exist
            ValidationError: If the text is empty or the score out of range
            ConcurrentModificationError: If another append won the race
        """
        analysis_id = coerce_uuid(analysis_id, "analysis_id")
        self._require_text(resume_text, "resume_text")
        ats_score = self._validate_score(ats_score)
        now = self.clock()

        with storage_guard(self.db):
            analysis = self._get_analysis(analysis_id)

            version = AnalysisVersion(
                version_number=len(analysis.versions) + 1,
                resume_text=resume_text,
                ats_score=ats_score,
                improvement_notes=notes or "",
                created_at=now,
            )
            analysis.versions.append(version)
            analysis.resume_text = resume_text
            analysis.ats_score = ats_score
            analysis.updated_at = now

            self._flush_or_conflict(analysis_id, "add_version")
            check_version_sequence(analysis)
            self._commit()

        logger.info(
            f"{CONTEXT_PREFIX} version {version.version_number} appended to analysis "
            f"{analysis_id} (score {ats_score})"
        )
        return version

    def complete(self, analysis_id: Union[UUID, str]) -> Analysis:
        """
        Mark an analysis completed. One-way transition.

        Raises:
            NotFoundError: If the analysis does not exist
            AlreadyCompletedError: If it is already completed
        """
        analysis_id = coerce_uuid(analysis_id, "analysis_id")
        now = self.clock()

        with storage_guard(self.db):
            analysis = self._get_analysis(analysis_id)
            if analysis.status == AnalysisStatus.COMPLETED:
                raise AlreadyCompletedError(
                    f"Analysis {analysis_id} is already completed",
                    details={
                        "analysis_id": str(analysis_id),
                        "completed_at": to_iso(analysis.completed_at),
                    }
                )

            analysis.status = AnalysisStatus.COMPLETED
            analysis.completed_at = now
            analysis.updated_at = now
            self._flush_or_conflict(analysis_id, "complete")
            self._commit()

        logger.info(f"{CONTEXT_PREFIX} analysis {analysis_id} completed")
        return analysis

    def implement_suggestion(
        self,
        analysis_id: Union[UUID, str],
        suggestion_id: Union[UUID, str],
    ) -> AnalysisSuggestion:
        """
        Flag a suggestion as implemented. Repeating the call is harmless.

        Raises:
            NotFoundError: If the analysis or the suggestion (within it) does not exist
        """
        analysis_id = coerce_uuid(analysis_id, "analysis_id")
        suggestion_id = coerce_uuid(suggestion_id, "suggestion_id")

        with storage_guard(self.db):
            analysis = self._get_analysis(analysis_id)
            suggestion = next(
                (s for s in analysis.suggestions if s.id == suggestion_id),
                None
            )
            if suggestion is None:
                raise NotFoundError(
                    f"Suggestion {suggestion_id} not found on analysis {analysis_id}",
                    details={
                        "analysis_id": str(analysis_id),
                        "suggestion_id": str(suggestion_id),
                    }
                )

            if not suggestion.implemented:
                suggestion.implemented = True
                self.db.flush()
                self._commit()
                logger.info(
                    f"{CONTEXT_PREFIX} suggestion {suggestion_id} on analysis {analysis_id} implemented"
                )

        return suggestion

    def get_high_priority_suggestions(
        self,
        analysis_id: Union[UUID, str]
    ) -> List[AnalysisSuggestion]:
        """
        Open high-priority suggestions, sorted by category name.

        Computed from the stored suggestions on every call.
        """
        analysis = self.get(analysis_id)
        open_high = [
            s for s in analysis.suggestions
            if s.priority == SuggestionPriority.HIGH and not s.implemented
        ]
        return sorted(open_high, key=lambda s: s.category.value)

    def summary(self, analysis_id: Union[UUID, str]) -> AnalysisSummary:
        """
        Summarize one analysis.

        Raises:
            NotFoundError: If the analysis does not exist
        """
        analysis = self.get(analysis_id)
        suggestions = analysis.suggestions
        return AnalysisSummary(
            id=str(analysis.id),
            job_title=analysis.job_title,
            ats_score=analysis.ats_score,
            status=analysis.status.value,
            created_at=to_iso(analysis.created_at),
            updated_at=to_iso(analysis.updated_at),
            completed_at=to_iso(analysis.completed_at),
            versions_count=analysis.current_version,
            high_priority_suggestions=sum(
                1 for s in suggestions if s.priority == SuggestionPriority.HIGH
            ),
            implemented_suggestions=sum(1 for s in suggestions if s.implemented),
            total_suggestions=len(suggestions),
            score_improvement=analysis.score_improvement,
        )

    def list_for_user(
        self,
        user_id: Union[UUID, str],
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Tuple[List[Analysis], Pagination]:
        """
        A user's analyses, newest first, one page at a time.

        Args:
            user_id: User ID
            page: 1-based page number
            page_size: Records per page (defaults to DEFAULT_PAGE_SIZE)

        Returns:
            (records, pagination)

        Raises:
            ValidationError: If page or page_size is below 1
        """
        if page_size is None:
            page_size = settings.default_page_size
        self._validate_positive_int(page, "page")
        self._validate_positive_int(page_size, "page_size")
        user_id = coerce_uuid(user_id, "user_id")
        offset = (page - 1) * page_size

        with storage_guard(self.db):
            query = self.db.query(Analysis).filter(Analysis.user_id == user_id)
            total = query.count()
            records = query.order_by(
                desc(Analysis.created_at),
                desc(Analysis.id)
            ).offset(offset).limit(page_size).all()

        pagination = Pagination(
            current_page=page,
            total_pages=math.ceil(total / page_size),
            total_analyses=total,
            has_more=offset + len(records) < total,
        )
        return records, pagination

    def analytics(self, user_id: Union[UUID, str]) -> AnalyticsSummary:
        """
        Aggregate statistics across a user's analyses.

        A user with no analyses gets all-zero statistics.
        """
        user_id = coerce_uuid(user_id, "user_id")

        with storage_guard(self.db):
            total, average, highest, lowest = self.db.query(
                func.count(Analysis.id),
                func.avg(Analysis.ats_score),
                func.max(Analysis.ats_score),
                func.min(Analysis.ats_score),
            ).filter(Analysis.user_id == user_id).one()

            completed = self.db.query(func.count(Analysis.id)).filter(
                Analysis.user_id == user_id,
                Analysis.status == AnalysisStatus.COMPLETED
            ).scalar()

        if not total:
            return AnalyticsSummary(0, 0, 0, 0, 0, 0)

        return AnalyticsSummary(
            total_analyses=total,
            completed_analyses=completed,
            in_progress_analyses=total - completed,
            average_score=self._round_half_up(float(average)),
            highest_score=highest,
            lowest_score=lowest,
        )

    def get(
        self,
        analysis_id: Union[UUID, str],
        user_id: Optional[Union[UUID, str]] = None
    ) -> Analysis:
        """
        Fetch an analysis, optionally checking ownership.

        Raises:
            NotFoundError: If missing, or not owned by ``user_id`` when given
        """
        analysis_id = coerce_uuid(analysis_id, "analysis_id")
        owner_id = coerce_uuid(user_id, "user_id") if user_id is not None else None
        with storage_guard(self.db):
            return self._get_analysis(analysis_id, owner_id)

    def delete(
        self,
        analysis_id: Union[UUID, str],
        user_id: Optional[Union[UUID, str]] = None
    ) -> None:
        """
        Remove an analysis with its versions and suggestions in one transaction.

        Raises:
            NotFoundError: If missing, or not owned by ``user_id`` when given
        """
        analysis_id = coerce_uuid(analysis_id, "analysis_id")
        owner_id = coerce_uuid(user_id, "user_id") if user_id is not None else None

        with storage_guard(self.db):
            analysis = self._get_analysis(analysis_id, owner_id)
            self.db.delete(analysis)
            self.db.flush()
            self._commit()

        logger.info(f"{CONTEXT_PREFIX} analysis {analysis_id} deleted")

    # Private helper methods

    def _get_analysis(self, analysis_id: UUID, user_id: Optional[UUID] = None) -> Analysis:
        query = self.db.query(Analysis).filter(Analysis.id == analysis_id)
        if user_id is not None:
            query = query.filter(Analysis.user_id == user_id)
        analysis = query.first()
        if not analysis:
            details = {"analysis_id": str(analysis_id)}
            if user_id is not None:
                details["user_id"] = str(user_id)
            raise NotFoundError(f"Analysis {analysis_id} not found", details=details)
        return analysis

    def _require_user(self, user_id: UUID) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(
                f"User with ID {user_id} not found",
                details={"user_id": str(user_id)}
            )
        return user

    def _flush_or_conflict(self, analysis_id: UUID, operation: str) -> None:
        """Flush; a stale revision or duplicate version number means another writer won."""
        try:
            self.db.flush()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            logger.warning(f"{CONTEXT_PREFIX} concurrent {operation} on analysis {analysis_id}: {e}")
            raise ConcurrentModificationError(
                f"Analysis {analysis_id} was modified concurrently during {operation}",
                details={"analysis_id": str(analysis_id), "operation": operation}
            ) from e

    def _commit(self) -> None:
        if self.auto_commit:
            self.db.commit()
        else:
            self.db.flush()

    @staticmethod
    def _require_text(value: Any, field_name: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                f"{field_name} is required",
                details={"field": field_name}
            )
        return value

    @staticmethod
    def _validate_score(value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(
                f"ats_score must be a number, got {type(value).__name__}",
                details={"field": "ats_score", "value": repr(value)}
            )
        if math.isnan(value) or not MIN_SCORE <= value <= MAX_SCORE:
            raise ValidationError(
                f"ats_score must be between {MIN_SCORE} and {MAX_SCORE}, got {value}",
                details={"field": "ats_score", "value": value}
            )
        return value

    @staticmethod
    def _validate_positive_int(value: Any, field_name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(
                f"{field_name} must be a positive integer, got {value!r}",
                details={"field": field_name, "value": repr(value)}
            )

    @staticmethod
    def _coerce_suggestion(
        raw: Union[SuggestionDraft, Dict[str, Any]],
        index: int
    ) -> Tuple[SuggestionCategory, SuggestionPriority, str]:
        if isinstance(raw, SuggestionDraft):
            category, priority, text = raw.category, raw.priority, raw.text
        elif isinstance(raw, dict):
            category = raw.get("category")
            priority = raw.get("priority") or SuggestionPriority.MEDIUM
            text = raw.get("text", raw.get("suggestion"))
        else:
            raise ValidationError(
                f"suggestions[{index}] must be a SuggestionDraft or dict",
                details={"index": index}
            )

        try:
            category = SuggestionCategory(category)
            priority = SuggestionPriority(priority)
        except ValueError as e:
            raise ValidationError(
                f"suggestions[{index}]: {e}",
                details={"index": index, "category": str(category), "priority": str(priority)}
            ) from e

        if not isinstance(text, str) or not text.strip():
            raise ValidationError(
                f"suggestions[{index}].text is required",
                details={"index": index}
            )
        return category, priority, text.strip()

    @staticmethod
    def _round_half_up(value: float) -> float:
        return math.floor(value * 10 + 0.5) / 10
