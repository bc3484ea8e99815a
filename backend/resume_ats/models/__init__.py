"""
Models Package

Imports all SQLAlchemy models for application use.
"""

from resume_ats.models.base import BaseModel
from resume_ats.models.user import User
from resume_ats.models.weekly_usage import WeeklyUsage
from resume_ats.models.analysis import (
    Analysis,
    AnalysisVersion,
    AnalysisSuggestion,
    AnalysisStatus,
    SuggestionCategory,
    SuggestionPriority,
)
from resume_ats.models.idempotency import (
    IdempotencyKey,
    DecisionTrace,
    EvidenceBundle,
    RequestStatus,
)

__all__ = [
    'BaseModel',
    'User',
    'WeeklyUsage',
    'Analysis',
    'AnalysisVersion',
    'AnalysisSuggestion',
    'AnalysisStatus',
    'SuggestionCategory',
    'SuggestionPriority',
    'IdempotencyKey',
    'DecisionTrace',
    'EvidenceBundle',
    'RequestStatus',
]
