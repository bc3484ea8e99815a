"""Contract for the external resume scorer."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class SuggestionDraft:
    """A suggestion as produced by a scorer, before it is stored."""
    category: str
    text: str
    priority: str = "Medium"


@dataclass
class ScoringResult:
    """Output of one scoring call."""
    ats_score: float
    suggestions: List[SuggestionDraft] = field(default_factory=list)
    model_used: Optional[str] = None
    processing_time_ms: Optional[int] = None
    keywords_found: List[Dict[str, Any]] = field(default_factory=list)  # [{"keyword": str, "count": int}]
    missing_keywords: List[str] = field(default_factory=list)

    def analysis_metadata(self) -> Dict[str, Any]:
        """Metadata stored alongside the analysis record."""
        return {
            "model_used": self.model_used,
            "processing_time_ms": self.processing_time_ms,
            "keywords_found": list(self.keywords_found),
            "missing_keywords": list(self.missing_keywords),
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ResumeScorer(ABC):
    """
    Scores a resume against a job description.

    Implementations (LLM calls, keyword matchers) live outside this package;
    the ledger only consumes the score and the categorized suggestions.
    """

    @abstractmethod
    def score(self, resume_text: str, job_description: str) -> ScoringResult:
        """
        Score ``resume_text`` for ``job_description``.

        Returns:
            ScoringResult with a 0-100 score and suggestions
        """
        pass
