"""Analysis orchestrator: quota admission, scoring and ledger writes as one unit."""
from typing import Any, Dict, Optional, Union
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from resume_ats.errors import QuotaExceededError
from resume_ats.orchestrators.base import BaseOrchestrator, OrchestrationError
from resume_ats.services.analysis_ledger import AnalysisLedger
from resume_ats.services.quota_tracker import QuotaTracker
from resume_ats.services.scorer import ResumeScorer
from resume_ats.utils.identifiers import coerce_uuid
from resume_ats.utils.timestamp import Clock

OPERATION_SUBMIT = "submit"
OPERATION_REVISE = "revise"


class AnalysisOrchestrator(BaseOrchestrator[Dict[str, Any]]):
    """
    Orchestrator for submitting and revising resume analyses.

    Submission steps:
    1. Ask QuotaTracker whether the user may create an analysis
    2. Call the external scorer
    3. Create the analysis (with version 1) through AnalysisLedger
    4. Account the usage through QuotaTracker
    5. Write DecisionTrace (automatic via BaseOrchestrator)

    Revision steps:
    1. Load the analysis (ownership checked when a user is bound)
    2. Re-score the revised resume against the stored job description
    3. Append a version; no quota is consumed

    All writes share one transaction committed by execute(); a failure at
    any step (including losing the quota race at step 4) leaves no analysis
    behind and no usage counted.
    """

    @property
    def orchestrator_name(self) -> str:
        """Return orchestrator name."""
        return "analysis_orchestrator"

    def __init__(
        self,
        db: Session,
        scorer: ResumeScorer,
        user_id: Optional[UUID] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize analysis orchestrator.

        Args:
            db: Database session
            scorer: External resume scorer
            user_id: Optional user ID bound to this orchestrator
            clock: Source of "now" shared by quota and ledger
        """
        super().__init__(db, user_id, clock)
        self.scorer = scorer
        self.quota_tracker = QuotaTracker(db, clock=self.clock, auto_commit=False)
        self.ledger = AnalysisLedger(db, clock=self.clock, auto_commit=False)

    def submit(
        self,
        request_id: str,
        user_id: Union[UUID, str],
        job_description: str,
        resume_text: str,
        job_title: Optional[str] = None,
        resume_file_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a new scored analysis, consuming one unit of weekly quota.

        Args:
            request_id: Idempotency key
            user_id: User ID
            job_description: Job description to score against
            resume_text: Extracted resume text
            job_title: Optional display title
            resume_file_name: Optional uploaded file name

        Returns:
            Dictionary with the analysis id, score, version and quota status

        Raises:
            QuotaExceededError: If the weekly limit is reached
            ValidationError: If the inputs or the scorer output are invalid
            NotFoundError: If the user does not exist
        """
        return self.execute(
            request_id=request_id,
            input_data={
                "operation": OPERATION_SUBMIT,
                "user_id": str(user_id),
                "job_title": job_title,
                "job_description": job_description,
                "resume_text": resume_text,
                "resume_file_name": resume_file_name,
            }
        )

    def revise(
        self,
        request_id: str,
        analysis_id: Union[UUID, str],
        resume_text: str,
        notes: str = "",
    ) -> Dict[str, Any]:
        """
        Re-score a revised resume and append it as a new version.

        Args:
            request_id: Idempotency key
            analysis_id: Analysis to revise
            resume_text: Revised resume text
            notes: Improvement notes stored on the version

        Returns:
            Dictionary with the new version number, score and improvement

        Raises:
            NotFoundError: If the analysis does not exist (or is not the bound user's)
            ValidationError: If the inputs or the scorer output are invalid
        """
        return self.execute(
            request_id=request_id,
            input_data={
                "operation": OPERATION_REVISE,
                "analysis_id": str(analysis_id),
                "resume_text": resume_text,
                "notes": notes,
            }
        )

    def _execute_pipeline(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Dispatch to the submission or revision pipeline.

        This is called by BaseOrchestrator.execute() which automatically
        writes DecisionTrace after successful completion.
        """
        data = context["input"]
        operation = data.get("operation")
        if operation == OPERATION_SUBMIT:
            return self._run_submission(data)
        if operation == OPERATION_REVISE:
            return self._run_revision(data)
        raise OrchestrationError(f"Unknown operation: {operation!r}")

    def _run_submission(self, data: Dict[str, Any]) -> Dict[str, Any]:
        user_id = coerce_uuid(data["user_id"], "user_id")
        now = self.clock()

        # Step 1: Admission
        if not self.quota_tracker.can_create(user_id, now=now):
            summary = self.quota_tracker.usage_summary(user_id, now=now)
            self.add_evidence("quota_state", summary, source=f"WeeklyUsage:{user_id}")
            raise QuotaExceededError(
                f"Weekly analysis limit reached for user {user_id}",
                details=summary
            )
        self.log_step("quota_admission", details={
            "remaining": self.quota_tracker.remaining(user_id, now=now)
        })

        # Step 2: External scoring
        scoring = self.scorer.score(data["resume_text"], data["job_description"])
        self.add_evidence(
            "scoring_result",
            scoring.to_dict(),
            source=f"ResumeScorer:{scoring.model_used or type(self.scorer).__name__}"
        )

        # Step 3: Ledger write (record + version 1 + suggestions)
        analysis = self.ledger.create(
            user_id=user_id,
            job_title=data.get("job_title"),
            job_description=data["job_description"],
            resume_text=data["resume_text"],
            ats_score=scoring.ats_score,
            suggestions=scoring.suggestions,
            resume_file_name=data.get("resume_file_name"),
            analysis_metadata=scoring.analysis_metadata(),
        )
        self.log_step("create_analysis", details={"analysis_id": str(analysis.id)})

        # Step 4: Accounting
        quota = self.quota_tracker.record_usage(user_id, now=now)
        self.log_step("record_usage", details={"count": quota.count})

        logger.info(
            f"[orchestrator] analysis {analysis.id} submitted for user {user_id} "
            f"(score {analysis.ats_score}, quota {quota.count}/{self.quota_tracker.policy.limit})"
        )

        policy = self.quota_tracker.policy
        return {
            "resource_id": str(analysis.id),
            "resource_type": "Analysis",
            "analysis_id": str(analysis.id),
            "ats_score": analysis.ats_score,
            "status": analysis.status.value,
            "current_version": analysis.current_version,
            "suggestions_count": len(analysis.suggestions),
            "high_priority_suggestions": [
                s.to_dict() for s in self.ledger.get_high_priority_suggestions(analysis.id)
            ],
            "quota": {
                "used": quota.count,
                "remaining": policy.remaining(quota, now),
                "days_until_reset": policy.days_until_reset(quota, now),
            },
        }

    def _run_revision(self, data: Dict[str, Any]) -> Dict[str, Any]:
        analysis = self.ledger.get(data["analysis_id"], user_id=self.user_id)

        scoring = self.scorer.score(data["resume_text"], analysis.job_description)
        self.add_evidence(
            "scoring_result",
            scoring.to_dict(),
            source=f"ResumeScorer:{scoring.model_used or type(self.scorer).__name__}"
        )

        version = self.ledger.add_version(
            analysis.id,
            resume_text=data["resume_text"],
            ats_score=scoring.ats_score,
            notes=data.get("notes") or "",
        )
        self.log_step("append_version", details={"version_number": version.version_number})

        return {
            "resource_id": str(analysis.id),
            "resource_type": "Analysis",
            "analysis_id": str(analysis.id),
            "version_number": version.version_number,
            "ats_score": version.ats_score,
            "current_version": analysis.current_version,
            "score_improvement": analysis.score_improvement,
        }
