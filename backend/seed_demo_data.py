"""
Demo Seed Data Script

Loads demo data through the AnalysisOrchestrator so that quota accounting,
version lineage, decision traces and idempotency keys are all exercised:

- Priya Natarajan: one analysis revised twice, then completed
- Tom Becker: four analyses in one sitting (weekly limit reached)

Scoring uses a small keyword matcher instead of an external model.
"""

import re
import time
from typing import Dict, List

from sqlalchemy.orm import Session

from resume_ats.database import SessionLocal, engine, Base
from resume_ats.errors import QuotaExceededError
from resume_ats.models import (
    User, WeeklyUsage, Analysis, AnalysisVersion, AnalysisSuggestion,
    IdempotencyKey, DecisionTrace, EvidenceBundle
)
from resume_ats.orchestrators import AnalysisOrchestrator
from resume_ats.services import (
    AnalysisLedger,
    QuotaTracker,
    ResumeScorer,
    ScoringResult,
    SuggestionDraft,
    UserService,
)
from resume_ats.utils.logger import setup_logger


# ============================================================================
# DEMO CONTENT
# ============================================================================

BACKEND_JOB = """
Senior Backend Engineer
We build payment APIs in Python. You will design PostgreSQL schemas,
own SQLAlchemy models, run services on Kubernetes and mentor engineers.
Must have: Python, PostgreSQL, SQLAlchemy, Kubernetes, REST, mentoring.
"""

RESUME_DRAFTS = [
    "Software developer. Wrote Python scripts and maintained a MySQL database.",
    "Software developer. Built REST services in Python on PostgreSQL; "
    "improved query latency by 40%.",
    "Backend engineer. Designed PostgreSQL schemas and SQLAlchemy models for REST "
    "payment services on Kubernetes; mentored 3 engineers; cut p99 latency by 40%.",
]

DATA_JOB = """
Data Engineer
Own our Airflow pipelines, model data with dbt and keep Snowflake tidy.
Must have: SQL, Python, Airflow, dbt, Snowflake.
"""

DATA_RESUME = "Analyst. Wrote SQL reports and Python notebooks for finance."


class KeywordScorer(ResumeScorer):
    """Scores by the share of job keywords the resume mentions."""

    KEYWORD_PATTERN = re.compile(r"Must have:\s*(.+)", re.IGNORECASE)

    def score(self, resume_text: str, job_description: str) -> ScoringResult:
        started = time.time()
        keywords = self._keywords(job_description)
        lowered = resume_text.lower()

        found: List[Dict[str, object]] = []
        missing: List[str] = []
        for keyword in keywords:
            hits = lowered.count(keyword.lower())
            if hits:
                found.append({"keyword": keyword, "count": hits})
            else:
                missing.append(keyword)

        coverage = len(found) / len(keywords) if keywords else 0
        has_numbers = bool(re.search(r"\d+%|\d+ ", resume_text))
        ats_score = round(min(100, 35 + coverage * 55 + (10 if has_numbers else 0)), 1)

        suggestions = [
            SuggestionDraft("Keywords", f"Mention {keyword} where you used it", "High")
            for keyword in missing[:2]
        ]
        if not has_numbers:
            suggestions.append(
                SuggestionDraft("Quantification", "Add numbers to your achievements", "High")
            )
        suggestions.append(SuggestionDraft("Formatting", "Keep to a single column", "Low"))

        return ScoringResult(
            ats_score=ats_score,
            suggestions=suggestions,
            model_used="keyword-matcher",
            processing_time_ms=int((time.time() - started) * 1000),
            keywords_found=found,
            missing_keywords=missing,
        )

    def _keywords(self, job_description: str) -> List[str]:
        match = self.KEYWORD_PATTERN.search(job_description)
        if not match:
            return []
        return [k.strip().rstrip(".") for k in match.group(1).split(",") if k.strip()]


def clear_all_data(db: Session):
    """Clear all existing data (for demo purposes only)"""
    print("Clearing existing data...")
    db.query(EvidenceBundle).delete()
    db.query(DecisionTrace).delete()
    db.query(IdempotencyKey).delete()
    db.query(AnalysisSuggestion).delete()
    db.query(AnalysisVersion).delete()
    db.query(Analysis).delete()
    db.query(WeeklyUsage).delete()
    db.query(User).delete()
    db.commit()
    print("✓ Data cleared")


def load_revision_scenario(db: Session, scorer: ResumeScorer):
    """One analysis, revised twice, then completed."""
    print("\nCreating revision scenario: Priya Natarajan...")
    user = UserService(db).create_user("priya.natarajan@example.com", "Priya Natarajan")
    orchestrator = AnalysisOrchestrator(db, scorer, user_id=user.id)

    submitted = orchestrator.submit(
        request_id=f"seed-{user.id}-submit",
        user_id=user.id,
        job_description=BACKEND_JOB,
        resume_text=RESUME_DRAFTS[0],
        job_title="Senior Backend Engineer",
        resume_file_name="priya_natarajan_cv.pdf",
    )
    for number, draft in enumerate(RESUME_DRAFTS[1:], start=2):
        orchestrator.revise(
            request_id=f"seed-{user.id}-revise-{number}",
            analysis_id=submitted["analysis_id"],
            resume_text=draft,
            notes=f"Draft {number}",
        )

    ledger = AnalysisLedger(db)
    ledger.complete(submitted["analysis_id"])
    summary = ledger.summary(submitted["analysis_id"])

    print(f"✓ Analysis {summary.id}")
    print(f"  - {summary.versions_count} versions, score {summary.ats_score}")
    print(f"  - Improvement: {summary.score_improvement:+.1f}")
    print(f"  - Status: {summary.status}")


def load_quota_scenario(db: Session, scorer: ResumeScorer):
    """Four analyses in one sitting, then a denied fifth."""
    print("\nCreating quota scenario: Tom Becker...")
    user = UserService(db).create_user("tom.becker@example.com", "Tom Becker")
    orchestrator = AnalysisOrchestrator(db, scorer, user_id=user.id)

    for attempt in range(1, 6):
        try:
            result = orchestrator.submit(
                request_id=f"seed-{user.id}-{attempt}",
                user_id=user.id,
                job_description=DATA_JOB,
                resume_text=DATA_RESUME,
                job_title=f"Data Engineer #{attempt}",
            )
            print(f"  - Analysis {attempt}: score {result['ats_score']}, "
                  f"{result['quota']['remaining']} left this week")
        except QuotaExceededError as e:
            print(f"  - Analysis {attempt} denied: {e} "
                  f"(resets in {e.details.get('days_until_reset')} days)")

    usage = QuotaTracker(db).usage_summary(user.id)
    print(f"✓ Quota: {usage['used']}/{usage['limit']} used")


def main():
    """Run the complete demo data seeding"""
    setup_logger(level="WARNING")

    print("=" * 60)
    print("Resume ATS Ledger - Demo Data Seeder")
    print("=" * 60)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    scorer = KeywordScorer()

    try:
        clear_all_data(db)

        load_revision_scenario(db, scorer)
        load_quota_scenario(db, scorer)

        print("\n" + "=" * 60)
        print("✓ Demo data successfully seeded!")
        print("=" * 60)

    except Exception as e:
        print(f"\n❌ Error seeding data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == '__main__':
    main()
