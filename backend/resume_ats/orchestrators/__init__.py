"""
Orchestrators package.

Orchestrators coordinate multiple services to implement complex workflows.
They own the transaction: services underneath run with auto_commit=False
and execute() commits once the whole pipeline has succeeded.

Difference between Services and Orchestrators:
    - Services: Single-responsibility, focused on one domain/entity
    - Orchestrators: Multi-service coordination, idempotency, tracing
"""

from resume_ats.orchestrators.base import (
    BaseOrchestrator,
    OrchestrationError,
    DuplicateRequestError,
    IdempotencyConflictError,
)
from resume_ats.orchestrators.analysis_orchestrator import AnalysisOrchestrator

__all__ = [
    "BaseOrchestrator",
    "OrchestrationError",
    "DuplicateRequestError",
    "IdempotencyConflictError",
    "AnalysisOrchestrator",
]
