"""
Idempotency Models

Models for handling idempotent operations and request deduplication.
"""

import uuid
import enum
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, JSON, Uuid
from sqlalchemy import Enum as SQLEnum

from resume_ats.database import Base
from resume_ats.utils.timestamp import utcnow


class RequestStatus(str, enum.Enum):
    """Status of an idempotent request"""
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IdempotencyKey(Base):
    """
    Tracks idempotent requests so a retried submission never consumes quota twice.

    When an orchestrator receives a request with a request_id, it checks this table:
    - Key expired: release it and run again
    - Key made by another user or with another payload: reject as a conflict
    - Status COMPLETED: return cached response
    - Status FAILED: allow retry
    - No key: proceed with operation

    A key is only ever committed as COMPLETED or FAILED; PROCESSING exists
    inside the transaction that runs the pipeline.
    """
    __tablename__ = "idempotency_keys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)

    # Unique request identifier provided by client
    request_id = Column(String(255), unique=True, nullable=False, index=True)

    # Orchestrator that processed this request
    orchestrator_name = Column(String(100), nullable=False, index=True)

    # User who made the request (a replay must match it)
    user_id = Column(Uuid, nullable=True, index=True)

    status = Column(
        SQLEnum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PROCESSING,
        index=True
    )

    # Request payload (a replay must match it exactly)
    request_payload = Column(JSON, nullable=True)

    # Response data (cached for duplicate requests)
    response_data = Column(JSON, nullable=True)

    # Error information if failed
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    # Timing information
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Reference to the created resource (if applicable)
    result_resource_type = Column(String(50), nullable=True)
    result_resource_id = Column(Uuid, nullable=True, index=True)

    # TTL for cleanup (optional)
    expires_at = Column(DateTime, nullable=True, index=True)

    def __repr__(self):
        return f"<IdempotencyKey(request_id='{self.request_id}', status='{self.status}')>"


class DecisionTrace(Base):
    """
    Audit trail of orchestration execution.

    Stores step-by-step execution logs as structured JSON in trace_json.
    """
    __tablename__ = "decision_traces"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)

    request_id = Column(String(255), nullable=False, index=True)
    orchestrator_name = Column(String(100), nullable=False, index=True)
    trace_json = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<DecisionTrace(request_id='{self.request_id}', orchestrator='{self.orchestrator_name}')>"


class EvidenceBundle(Base):
    """
    Evidence used during orchestration (scorer output, quota snapshot).

    Linked to DecisionTrace via foreign key.
    """
    __tablename__ = "evidence_bundles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)

    decision_trace_id = Column(Uuid, ForeignKey('decision_traces.id'), nullable=False, index=True)
    evidence_json = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<EvidenceBundle(decision_trace_id='{self.decision_trace_id}')>"
