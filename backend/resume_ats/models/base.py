"""Shared columns for mutable entities."""
import uuid

from sqlalchemy import Column, DateTime, Uuid

from resume_ats.utils.timestamp import utcnow


class BaseModel:
    """
    Mixin adding a UUID primary key and audit timestamps.

    Attributes:
        id: UUID primary key, generated on insert
        created_at: Insert time (services may set it from their clock)
        updated_at: Last write time
    """

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
