"""
Base Orchestrator

Abstract base class for orchestrators with built-in support for:
- Idempotency (a retried request never runs its pipeline twice)
- Decision tracing (audit trail of the steps taken)
- Evidence bundling (what the decision was based on)
- All-or-nothing pipelines: domain writes commit together or not at all

An idempotency key belongs to the user who made the request and to the
exact payload it was made with. Replaying the key with anything else is a
conflict, never a cache hit.
"""

import uuid
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, TypeVar, Generic

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resume_ats.database import storage_guard
from resume_ats.errors import LedgerError, StorageUnavailableError
from resume_ats.models.idempotency import (
    IdempotencyKey,
    DecisionTrace,
    EvidenceBundle,
    RequestStatus
)
from resume_ats.utils.invariants import (
    validate_request_id,
    validate_orchestrator_name,
)
from resume_ats.utils.timestamp import Clock, to_iso, utcnow


T = TypeVar('T')


@dataclass
class ExecutionStep:
    """One traced step of a pipeline run."""
    step: int
    action: str
    status: str = "in_progress"
    duration_ms: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    _started: float = field(default_factory=time.time, repr=False)

    def finish(self, status: str = "success", error: Optional[str] = None,
               details: Optional[Dict[str, Any]] = None):
        self.status = status
        self.error = error
        self.duration_ms = int((time.time() - self._started) * 1000)
        if details:
            self.details = details

    def to_dict(self) -> Dict[str, Any]:
        result = {"step": self.step, "action": self.action,
                  "status": self.status, "duration_ms": self.duration_ms}
        if self.details:
            result["details"] = self.details
        if self.error:
            result["error"] = self.error
        return result


class OrchestrationError(Exception):
    """Base exception for orchestration errors"""
    pass


class DuplicateRequestError(OrchestrationError):
    """Raised when a concurrent request with the same id committed first"""
    pass


class IdempotencyConflictError(OrchestrationError):
    """Raised when a request id is reused by another user or with another payload"""
    pass


class BaseOrchestrator(ABC, Generic[T]):
    """
    Abstract base orchestrator with idempotency and traceability.

    Subclasses must implement:
    - orchestrator_name: str property
    - _execute_pipeline(context: Dict[str, Any]) -> T method

    Pipeline results must be JSON-serializable dicts; they are cached on the
    idempotency key and returned verbatim for replayed request ids until the
    key expires.

    Error handling:
    - Domain errors (LedgerError) and StorageUnavailableError propagate unchanged
    - Anything else is wrapped in OrchestrationError
    - On failure all pipeline writes are rolled back, then the FAILED key and
      its trace are committed on their own
    """

    def __init__(
        self,
        db: Session,
        user_id: Optional[uuid.UUID] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize base orchestrator.

        Args:
            db: Database session
            user_id: Optional user ID for this operation
            clock: Source of "now" for key timestamps and expiry
        """
        self.db = db
        self.user_id = user_id
        self.clock = clock or utcnow
        self._start_time = None
        self._current_request_id = None
        self._owner_id: Optional[uuid.UUID] = None
        self._execution_steps: List[ExecutionStep] = []
        self._evidence: List[Dict[str, Any]] = []

    @property
    @abstractmethod
    def orchestrator_name(self) -> str:
        """Name of this orchestrator (must be unique across all orchestrators)."""
        pass

    @abstractmethod
    def _execute_pipeline(self, context: Dict[str, Any]) -> T:
        """
        Execute the orchestration pipeline.

        Must only flush, never commit; execute() owns the transaction.
        """
        pass

    def execute(
        self,
        request_id: str,
        input_data: Dict[str, Any],
        ttl_hours: int = 24
    ) -> T:
        """
        Execute the orchestration with idempotency guarantees.

        1. Look up the idempotency key
        2. Expired or FAILED key: release it and run again
        3. Key owned by another user or made with another payload: conflict
        4. COMPLETED key: return the cached response
        5. Otherwise create the key, run the pipeline, persist the trace,
           cache the response and commit everything together

        Args:
            request_id: Unique request identifier (idempotency key)
            input_data: Input data for the orchestration
            ttl_hours: How long a cached response may be replayed

        Returns:
            Result of the orchestration

        Raises:
            IdempotencyConflictError: If the request id belongs to another request
            DuplicateRequestError: If a concurrent request with the id committed first
            LedgerError: Domain failures from the pipeline, unchanged
            StorageUnavailableError: If the database cannot be reached
            OrchestrationError: If orchestration fails for any other reason
        """
        try:
            validate_request_id(request_id)
            validate_orchestrator_name(self.orchestrator_name)
            if ttl_hours <= 0:
                raise ValueError(f"ttl_hours must be positive, got {ttl_hours}")
        except ValueError as e:
            raise OrchestrationError(f"Invalid input: {str(e)}") from e

        self._current_request_id = request_id
        self._owner_id = self._request_owner(input_data)
        self._start_time = time.time()
        self._execution_steps = []
        self._evidence = []

        try:
            with self._trace_step("check_idempotency"), storage_guard(self.db):
                existing_key = self._get_idempotency_key(request_id)
                if existing_key:
                    cached_result = self._handle_duplicate_request(existing_key, input_data)
                    if cached_result is not None:
                        logger.info(
                            f"[orchestrator] {self.orchestrator_name} replayed cached result for {request_id}"
                        )
                        return cached_result

            with self._trace_step("create_idempotency_key"), storage_guard(self.db):
                idempotency_key = self._create_idempotency_key(
                    request_id=request_id,
                    input_data=input_data,
                    ttl_hours=ttl_hours
                )

            try:
                with self._trace_step("execute_pipeline"):
                    result = self._execute_pipeline(self._prepare_context(input_data))

                with self._trace_step("persist_trace"):
                    self._persist_trace_and_evidence()

                self._complete_request(idempotency_key, self._serialize_result(result))
                self.db.commit()
                return result

            except StorageUnavailableError:
                # Nothing can be recorded while the database is unreachable
                self.db.rollback()
                raise
            except Exception as e:
                self.db.rollback()
                self._record_failure(request_id, input_data, ttl_hours, e)
                raise

        except (OrchestrationError, LedgerError, StorageUnavailableError):
            raise
        except Exception as e:
            self.db.rollback()
            raise OrchestrationError(f"Orchestration failed: {str(e)}") from e

    def _request_owner(self, input_data: Dict[str, Any]) -> Optional[uuid.UUID]:
        """The bound user, else a well-formed ``user_id`` in the payload."""
        if self.user_id is not None:
            return self.user_id
        raw = input_data.get("user_id")
        if raw is None:
            return None
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            return None

    def _get_idempotency_key(self, request_id: str) -> Optional[IdempotencyKey]:
        """Get existing idempotency key if it exists"""
        return self.db.query(IdempotencyKey).filter(
            IdempotencyKey.request_id == request_id
        ).first()

    def _handle_duplicate_request(
        self,
        existing_key: IdempotencyKey,
        input_data: Dict[str, Any]
    ) -> Optional[T]:
        """
        Decide what a reused request id means.

        Returns the cached response, or None after releasing a key that may
        be run again.

        Raises:
            IdempotencyConflictError: If the key belongs to another request
            OrchestrationError: If a completed key has no cached response
        """
        now = self.clock()
        if existing_key.expires_at is not None and existing_key.expires_at <= now:
            self._release_key(existing_key, "expired")
            return None

        if (
            existing_key.orchestrator_name != self.orchestrator_name
            or existing_key.user_id != self._owner_id
            or existing_key.request_payload != input_data
        ):
            logger.warning(
                f"[orchestrator] request id {existing_key.request_id} reused with a different "
                f"owner or payload"
            )
            raise IdempotencyConflictError(
                f"Request {existing_key.request_id} was already used for a different request"
            )

        if existing_key.status == RequestStatus.FAILED:
            self._release_key(existing_key, "failed")
            return None

        if existing_key.status == RequestStatus.COMPLETED and existing_key.response_data:
            return self._deserialize_result(existing_key.response_data)

        raise OrchestrationError(
            f"Request {existing_key.request_id} is in unexpected state: {existing_key.status}"
        )

    def _release_key(self, existing_key: IdempotencyKey, reason: str):
        logger.info(f"[orchestrator] releasing {reason} request id {existing_key.request_id}")
        self.db.delete(existing_key)
        self.db.flush()

    def _create_idempotency_key(
        self,
        request_id: str,
        input_data: Dict[str, Any],
        ttl_hours: int,
        status: RequestStatus = RequestStatus.PROCESSING
    ) -> IdempotencyKey:
        """Create the key for this run; it commits only with the run's outcome"""
        now = self.clock()
        idempotency_key = IdempotencyKey(
            request_id=request_id,
            orchestrator_name=self.orchestrator_name,
            user_id=self._owner_id,
            status=status,
            request_payload=input_data,
            created_at=now,
            started_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )

        self.db.add(idempotency_key)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Another request with the same id committed first
            self.db.rollback()
            raise DuplicateRequestError(
                f"Request {request_id} is already being processed"
            ) from e

        return idempotency_key

    def _complete_request(self, idempotency_key: IdempotencyKey, response_data: Dict[str, Any]):
        """Mark request as completed and cache response"""
        idempotency_key.status = RequestStatus.COMPLETED
        idempotency_key.completed_at = self.clock()
        idempotency_key.response_data = response_data

        resource_id = response_data.get("resource_id")
        if resource_id:
            idempotency_key.result_resource_id = uuid.UUID(resource_id)
            idempotency_key.result_resource_type = response_data.get("resource_type")

        self.db.flush()

    def _record_failure(
        self,
        request_id: str,
        input_data: Dict[str, Any],
        ttl_hours: int,
        error: Exception
    ):
        """
        Persist a FAILED key and the trace after the pipeline was rolled back.

        The rollback discarded this run's key and restored any key it had
        released, so the row is re-read and overwritten, or written afresh.
        """
        idempotency_key = self._get_idempotency_key(request_id)
        if idempotency_key is None:
            idempotency_key = self._create_idempotency_key(
                request_id=request_id,
                input_data=input_data,
                ttl_hours=ttl_hours,
                status=RequestStatus.FAILED
            )
        else:
            now = self.clock()
            idempotency_key.status = RequestStatus.FAILED
            idempotency_key.user_id = self._owner_id
            idempotency_key.request_payload = input_data
            idempotency_key.response_data = None
            idempotency_key.result_resource_id = None
            idempotency_key.result_resource_type = None
            idempotency_key.started_at = now
            idempotency_key.expires_at = now + timedelta(hours=ttl_hours)
        idempotency_key.completed_at = self.clock()
        idempotency_key.error_message = str(error)
        idempotency_key.error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'details': getattr(error, 'details', None) or {}
        }
        self._persist_trace_and_evidence(error=str(error))
        self.db.commit()
        logger.warning(
            f"[orchestrator] {self.orchestrator_name} request {request_id} failed: "
            f"{type(error).__name__}: {error}"
        )

    def _prepare_context(self, input_data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'input': input_data,
            'user_id': self.user_id,
            'request_id': self._current_request_id,
            'orchestrator': self.orchestrator_name
        }

    def _serialize_result(self, result: T) -> Dict[str, Any]:
        if isinstance(result, dict):
            return result
        return {'result': str(result)}

    def _deserialize_result(self, response_data: Dict[str, Any]) -> T:
        return response_data  # type: ignore

    # Execution Tracing Methods

    @contextmanager
    def _trace_step(self, action: str):
        """Trace the wrapped block as one step; failures are recorded and re-raised."""
        step = ExecutionStep(len(self._execution_steps) + 1, action)
        self._execution_steps.append(step)

        try:
            yield step
            step.finish()
        except Exception as e:
            step.finish("failed", error=str(e))
            raise

    def log_step(
        self,
        action: str,
        status: str = "success",
        details: Optional[Dict[str, Any]] = None
    ):
        """Record a step that happened inside the pipeline."""
        step = ExecutionStep(len(self._execution_steps) + 1, action)
        step.finish(status, details=details)
        self._execution_steps.append(step)

    def add_evidence(self, evidence_type: str, data: Any, source: Optional[str] = None):
        """
        Attach evidence to this run's trace.

        Args:
            evidence_type: Type of evidence (e.g., "scoring_result", "quota_state")
            data: The evidence data (must be JSON serializable)
            source: Source of the evidence (e.g., "ResumeScorer:model-name")
        """
        item = {"type": evidence_type, "data": data, "timestamp": to_iso(self.clock())}
        if source:
            item["source"] = source
        self._evidence.append(item)

    def _persist_trace_and_evidence(self, error: Optional[str] = None):
        """Write the DecisionTrace and, if any evidence was collected, its EvidenceBundle."""
        trace_json = {
            "completed_at": to_iso(self.clock()),
            "duration_ms": self.get_elapsed_time_ms(),
            "steps": [step.to_dict() for step in self._execution_steps],
            "result": "failed" if error else "success",
            "metadata": {
                "user_id": str(self._owner_id) if self._owner_id else None,
                "total_steps": len(self._execution_steps)
            }
        }
        if error:
            trace_json["error"] = error

        decision_trace = DecisionTrace(
            request_id=self._current_request_id,
            orchestrator_name=self.orchestrator_name,
            trace_json=trace_json,
            created_at=self.clock()
        )
        self.db.add(decision_trace)
        self.db.flush()

        if self._evidence:
            self.db.add(EvidenceBundle(
                decision_trace_id=decision_trace.id,
                evidence_json={"evidence": list(self._evidence)}
            ))
            self.db.flush()

    # Utility Methods

    def get_elapsed_time_ms(self) -> int:
        """Get elapsed time since orchestration started in milliseconds"""
        if self._start_time:
            return int((time.time() - self._start_time) * 1000)
        return 0
