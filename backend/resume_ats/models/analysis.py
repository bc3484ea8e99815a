"""Analysis, AnalysisVersion and AnalysisSuggestion models."""
import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from resume_ats.database import Base
from resume_ats.models.base import BaseModel
from resume_ats.utils.invariants import check_version_not_modified
from resume_ats.utils.timestamp import utcnow

DEFAULT_JOB_TITLE = "Untitled Position"
DEFAULT_RESUME_FILE_NAME = "resume.pdf"
INITIAL_VERSION_NOTES = "Initial analysis"


class AnalysisStatus(str, enum.Enum):
    """Lifecycle of an analysis. COMPLETED is terminal."""
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class SuggestionCategory(str, enum.Enum):
    """Fixed set of suggestion categories."""
    KEYWORDS = "Keywords"
    FORMATTING = "Formatting"
    EXPERIENCE = "Experience"
    SKILLS = "Skills"
    EDUCATION = "Education"
    SUMMARY = "Summary"
    ACTION_VERBS = "Action Verbs"
    QUANTIFICATION = "Quantification"
    OTHER = "Other"


class SuggestionPriority(str, enum.Enum):
    """Suggestion priority."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Analysis(Base, BaseModel):
    """
    One resume analysed against one job description.

    ``resume_text`` and ``ats_score`` mirror the latest entry in ``versions``.
    ``revision`` is the optimistic-lock column: every UPDATE of the row is
    issued as ``WHERE id = ? AND revision = ?`` and a lost race surfaces as
    StaleDataError, which the ledger turns into ConcurrentModificationError.

    Attributes:
        user_id: Owning user (immutable)
        job_title: Display title of the position
        job_description: Job description the resume was scored against
        resume_text: Resume text of the latest version
        resume_file_name: Name of the uploaded file
        ats_score: Score of the latest version (0-100)
        status: in-progress or completed
        completed_at: Set exactly once, when status becomes completed
        analysis_metadata: Scorer metadata (model, timing, keyword hits)
        revision: Optimistic-lock counter
    """

    __tablename__ = "analyses"

    user_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    job_title = Column(String(255), nullable=False, default=DEFAULT_JOB_TITLE)
    job_description = Column(Text, nullable=False)
    resume_text = Column(Text, nullable=False)
    resume_file_name = Column(String(255), nullable=False, default=DEFAULT_RESUME_FILE_NAME)
    ats_score = Column(Float, nullable=False, index=True)
    status = Column(
        SQLEnum(
            AnalysisStatus,
            name="analysis_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AnalysisStatus.IN_PROGRESS,
        index=True
    )
    completed_at = Column(DateTime, nullable=True)
    analysis_metadata = Column(JSON, nullable=True)
    revision = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}
    __table_args__ = (
        Index("ix_analyses_user_created", "user_id", "created_at"),
        CheckConstraint(
            "ats_score >= 0 AND ats_score <= 100",
            name="ck_analyses_ats_score_range"
        ),
    )

    # Relationships
    user = relationship("User", back_populates="analyses")
    versions = relationship(
        "AnalysisVersion",
        back_populates="analysis",
        order_by="AnalysisVersion.version_number",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    suggestions = relationship(
        "AnalysisSuggestion",
        back_populates="analysis",
        order_by="AnalysisSuggestion.position",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def current_version(self) -> int:
        """Number of versions recorded so far."""
        return len(self.versions)

    @property
    def score_improvement(self) -> float:
        """Current score minus the first version's score; 0 until a second version exists."""
        if len(self.versions) < 2:
            return 0
        return self.ats_score - self.versions[0].ats_score

    @property
    def is_completed(self) -> bool:
        return self.status == AnalysisStatus.COMPLETED

    def __repr__(self):
        return f"<Analysis(id='{self.id}', status='{self.status}', versions={len(self.versions)})>"


class AnalysisVersion(Base):
    """
    Immutable snapshot of a resume revision and its score.

    Version numbers are assigned by the ledger as ``len(versions) + 1`` and
    are unique per analysis. Updates are rejected by a mapper guard.
    """

    __tablename__ = "analysis_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    analysis_id = Column(
        Uuid,
        ForeignKey("analyses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    version_number = Column(Integer, nullable=False)
    resume_text = Column(Text, nullable=False)
    ats_score = Column(Float, nullable=False)
    improvement_notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("analysis_id", "version_number", name="uq_analysis_version_number"),
        CheckConstraint("version_number >= 1", name="ck_analysis_versions_number_positive"),
    )

    # Relationships
    analysis = relationship("Analysis", back_populates="versions")

    def to_dict(self):
        return {
            "id": str(self.id),
            "version_number": self.version_number,
            "resume_text": self.resume_text,
            "ats_score": self.ats_score,
            "improvement_notes": self.improvement_notes,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AnalysisVersion(analysis_id='{self.analysis_id}', version_number={self.version_number})>"


class AnalysisSuggestion(Base):
    """
    Improvement suggestion attached to an analysis.

    Only ``implemented`` changes after creation.
    """

    __tablename__ = "analysis_suggestions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    analysis_id = Column(
        Uuid,
        ForeignKey("analyses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position = Column(Integer, nullable=False, default=0)
    category = Column(
        SQLEnum(
            SuggestionCategory,
            name="suggestion_category",
            values_callable=_enum_values,
        ),
        nullable=False
    )
    priority = Column(
        SQLEnum(
            SuggestionPriority,
            name="suggestion_priority",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SuggestionPriority.MEDIUM
    )
    text = Column(Text, nullable=False)
    implemented = Column(Boolean, nullable=False, default=False)

    # Relationships
    analysis = relationship("Analysis", back_populates="suggestions")

    def to_dict(self):
        return {
            "id": str(self.id),
            "category": self.category.value,
            "priority": self.priority.value,
            "text": self.text,
            "implemented": self.implemented,
        }

    def __repr__(self):
        return f"<AnalysisSuggestion(category='{self.category}', priority='{self.priority}')>"


@event.listens_for(AnalysisVersion, "before_update")
def _reject_version_update(mapper, connection, target):
    state = inspect(target)
    changed = [
        attr.key for attr in mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        check_version_not_modified(target, changed)
