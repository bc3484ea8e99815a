"""
Services package.

Services contain business logic and data access layer.
They handle CRUD operations and business rules.

Services should:
    - Accept database session as parameter
    - Perform database operations
    - Implement business logic
    - Return data or raise typed exceptions (see resume_ats.errors)
"""

from resume_ats.services.quota_tracker import (
    QuotaTracker,
    QuotaPolicy,
    QuotaState,
)
from resume_ats.services.analysis_ledger import (
    AnalysisLedger,
    AnalysisSummary,
    AnalyticsSummary,
    Pagination,
)
from resume_ats.services.scorer import (
    ResumeScorer,
    ScoringResult,
    SuggestionDraft,
)
from resume_ats.services.user_service import UserService

__all__ = [
    "QuotaTracker",
    "QuotaPolicy",
    "QuotaState",
    "AnalysisLedger",
    "AnalysisSummary",
    "AnalyticsSummary",
    "Pagination",
    "ResumeScorer",
    "ScoringResult",
    "SuggestionDraft",
    "UserService",
]
