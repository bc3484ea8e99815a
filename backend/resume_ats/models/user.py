"""User model."""
from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from resume_ats.database import Base
from resume_ats.models.base import BaseModel


class User(Base, BaseModel):
    """
    User model representing people who submit resumes for analysis.

    Authentication lives outside this package; only the identity needed to
    own quota state and analyses is stored here.

    Attributes:
        email: Unique, lower-cased email address
        full_name: User's full name
        is_active: Whether the user account is active
    """

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    weekly_usage = relationship(
        "WeeklyUsage",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan"
    )
    analyses = relationship(
        "Analysis",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User(email='{self.email}')>"
