"""
System invariants and validation utilities.

Enforces critical record-keeping constraints:
1. No analysis without at least one version
2. Version numbers run 1..N with no gaps, duplicates or reordering
3. Versions are immutable once written
4. Quota counter stays within [0, limit]
5. Orchestrator request ids and names are well formed

Fail fast with explicit errors.
"""

from typing import Optional


class InvariantViolationError(Exception):
    """Base exception for invariant violations."""

    def __init__(self, invariant_name: str, message: str, details: dict = None):
        self.invariant_name = invariant_name
        self.details = details or {}
        super().__init__(f"[INVARIANT VIOLATION: {invariant_name}] {message}")


class AnalysisWithoutVersionsError(InvariantViolationError):
    """Raised when an analysis would exist with an empty version history."""

    def __init__(self, message: str, details: dict = None):
        super().__init__("analysis_without_versions", message, details)


class VersionSequenceError(InvariantViolationError):
    """Raised when version numbers are not exactly 1..N in order."""

    def __init__(self, message: str, details: dict = None):
        super().__init__("version_sequence", message, details)


class ImmutableVersionError(InvariantViolationError):
    """Raised when a stored version entry is modified."""

    def __init__(self, message: str, details: dict = None):
        super().__init__("immutable_version", message, details)


class QuotaStateError(InvariantViolationError):
    """Raised when a quota counter leaves its allowed range."""

    def __init__(self, message: str, details: dict = None):
        super().__init__("quota_state", message, details)


def check_analysis_has_versions(analysis) -> None:
    """
    Invariant: No analysis without versions.

    Version 1 is written in the same flush as its parent, so an analysis
    that reaches this check with an empty history is a bug in the writer.

    Raises:
        AnalysisWithoutVersionsError: If the version list is empty
    """
    if not analysis.versions:
        raise AnalysisWithoutVersionsError(
            f"Analysis {analysis.id} has no versions",
            details={"analysis_id": str(analysis.id)}
        )


def check_version_sequence(analysis) -> None:
    """
    Invariant: version numbers are exactly 1..N in append order.

    Raises:
        AnalysisWithoutVersionsError: If the version list is empty
        VersionSequenceError: If numbering has gaps, duplicates or is reordered
    """
    check_analysis_has_versions(analysis)

    numbers = [v.version_number for v in analysis.versions]
    expected = list(range(1, len(numbers) + 1))
    if numbers != expected:
        raise VersionSequenceError(
            f"Analysis {analysis.id} has version numbers {numbers}, expected {expected}",
            details={
                "analysis_id": str(analysis.id),
                "version_numbers": numbers,
            }
        )


def check_version_not_modified(version, changed_fields: list) -> None:
    """
    Guard: version entries are append-only history.

    Raises:
        ImmutableVersionError: Always, listing the attempted changes
    """
    raise ImmutableVersionError(
        f"Version {version.version_number} of analysis {version.analysis_id} is immutable",
        details={
            "analysis_id": str(version.analysis_id),
            "version_number": version.version_number,
            "changed_fields": changed_fields,
            "hint": "Append a new version with AnalysisLedger.add_version() instead"
        }
    )


def check_quota_state(count: int, limit: int, user_id: Optional[object] = None) -> None:
    """
    Invariant: 0 <= count <= limit.

    Raises:
        QuotaStateError: If the counter is out of range
    """
    if count < 0 or count > limit:
        raise QuotaStateError(
            f"Quota count {count} outside [0, {limit}]",
            details={
                "user_id": str(user_id) if user_id else None,
                "count": count,
                "limit": limit,
            }
        )


def validate_request_id(request_id: str) -> None:
    """
    Utility helper: Validate request_id format.

    Args:
        request_id: Request identifier to validate

    Raises:
        ValueError: If request_id is invalid
    """
    if not isinstance(request_id, str):
        raise ValueError(f"request_id must be a string, got {type(request_id)}")

    if not request_id.strip():
        raise ValueError("request_id cannot be empty")

    if len(request_id) > 255:
        raise ValueError(f"request_id too long (max 255 chars, got {len(request_id)})")


def validate_orchestrator_name(orchestrator_name: str) -> None:
    """
    Utility helper: Validate orchestrator name format.

    Args:
        orchestrator_name: Orchestrator name to validate

    Raises:
        ValueError: If orchestrator_name is invalid
    """
    if not orchestrator_name:
        raise ValueError("orchestrator_name cannot be empty")

    if not isinstance(orchestrator_name, str):
        raise ValueError(f"orchestrator_name must be a string, got {type(orchestrator_name)}")

    if len(orchestrator_name) > 100:
        raise ValueError(f"orchestrator_name too long (max 100 chars, got {len(orchestrator_name)})")

    if not orchestrator_name.replace('_', '').isalnum():
        raise ValueError("orchestrator_name must contain only alphanumeric characters and underscores")
