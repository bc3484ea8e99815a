"""WeeklyUsage model."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Uuid, CheckConstraint
from sqlalchemy.orm import relationship

from resume_ats.database import Base
from resume_ats.models.base import BaseModel


class WeeklyUsage(Base, BaseModel):
    """
    Rolling weekly analysis allowance for one user.

    Only QuotaTracker writes these rows, and only through a conditional
    UPDATE that compares ``revision`` (compare-and-swap), so two racing
    admissions for the same user cannot both be counted against a stale
    counter.

    Attributes:
        user_id: Owning user (one row per user)
        count: Analyses created in the current window
        week_start_date: Start of the current window; null if never used
        last_reset_date: When the window last rolled over (informational)
        revision: Incremented on every write
    """

    __tablename__ = "weekly_usage"

    user_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True
    )
    count = Column(Integer, nullable=False, default=0)
    week_start_date = Column(DateTime, nullable=True, index=True)
    last_reset_date = Column(DateTime, nullable=True)
    revision = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_weekly_usage_count_non_negative"),
    )

    # Relationships
    user = relationship("User", back_populates="weekly_usage")

    def __repr__(self):
        return f"<WeeklyUsage(user_id='{self.user_id}', count={self.count}, revision={self.revision})>"
