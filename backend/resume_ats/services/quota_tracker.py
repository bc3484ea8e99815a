"""Rolling weekly quota that gates analysis creation."""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union
from uuid import UUID

from loguru import logger
from sqlalchemy.orm import Session

from resume_ats.config import settings
from resume_ats.database import storage_guard
from resume_ats.errors import (
    ConcurrentModificationError,
    NotFoundError,
    QuotaExceededError,
)
from resume_ats.models.user import User
from resume_ats.models.weekly_usage import WeeklyUsage
from resume_ats.utils.identifiers import coerce_uuid
from resume_ats.utils.invariants import check_quota_state
from resume_ats.utils.timestamp import Clock, to_iso, utcnow

CONTEXT_PREFIX = "[quota]"
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class QuotaState:
    """Snapshot of one user's quota row."""
    count: int = 0
    week_start_date: Optional[datetime] = None
    last_reset_date: Optional[datetime] = None
    revision: int = 0

    @classmethod
    def from_row(cls, usage: Optional[WeeklyUsage]) -> "QuotaState":
        if usage is None:
            return cls()
        return cls(
            count=usage.count,
            week_start_date=usage.week_start_date,
            last_reset_date=usage.last_reset_date,
            revision=usage.revision,
        )


@dataclass
class QuotaPolicy:
    """
    Pure quota rules over a QuotaState and a point in time.

    The window is rolling: it starts at the first analysis after a reset,
    not at a calendar week boundary. A window that started exactly
    ``window_days`` ago counts as elapsed.
    """
    limit: int = 4
    window_days: int = 7

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.window_days)

    def needs_reset(self, state: QuotaState, now: datetime) -> bool:
        """True when the window is unset or has fully elapsed."""
        if state.week_start_date is None:
            return True
        return now - state.week_start_date >= self.window

    def can_create(self, state: QuotaState, now: datetime) -> bool:
        return self.needs_reset(state, now) or state.count < self.limit

    def remaining(self, state: QuotaState, now: datetime) -> int:
        if self.needs_reset(state, now):
            return self.limit
        return max(0, self.limit - state.count)

    def days_until_reset(self, state: QuotaState, now: datetime) -> int:
        if self.needs_reset(state, now):
            return 0
        elapsed_days = (now - state.week_start_date) // ONE_DAY
        return min(self.window_days, max(0, self.window_days - elapsed_days))

    def next_state(self, state: QuotaState, now: datetime) -> QuotaState:
        """
        State after accounting one more analysis.

        Raises:
            QuotaExceededError: If the limit is reached inside a live window
        """
        if self.needs_reset(state, now):
            return QuotaState(
                count=1,
                week_start_date=now,
                last_reset_date=now,
                revision=state.revision + 1,
            )
        if state.count >= self.limit:
            raise QuotaExceededError(
                f"Weekly analysis limit of {self.limit} reached",
                details={
                    "count": state.count,
                    "limit": self.limit,
                    "days_until_reset": self.days_until_reset(state, now),
                }
            )
        return replace(state, count=state.count + 1, revision=state.revision + 1)


class QuotaTracker:
    """
    Service deciding admission for new analyses and accounting usage.

    Rules:
    - can_create() is a pure read; checking never resets the window
    - record_usage() performs the reset or the increment
    - Writes are compare-and-swap on WeeklyUsage.revision; a lost race is
      re-read and re-evaluated a bounded number of times
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        policy: Optional[QuotaPolicy] = None,
        max_attempts: Optional[int] = None,
        auto_commit: bool = True,
    ):
        """
        Initialize quota tracker.

        Args:
            db: Database session
            clock: Source of "now" (naive UTC)
            policy: Quota rules (defaults from settings)
            max_attempts: Compare-and-swap attempts per record_usage call
            auto_commit: Commit after each write; orchestrators pass False
                and commit the whole unit themselves
        """
        self.db = db
        self.clock = clock or utcnow
        self.policy = policy or QuotaPolicy(
            limit=settings.weekly_analysis_limit,
            window_days=settings.quota_window_days,
        )
        self.max_attempts = max_attempts or settings.quota_cas_attempts
        self.auto_commit = auto_commit

    # Reads

    def get_state(self, user_id: Union[UUID, str]) -> QuotaState:
        """
        Current quota snapshot for a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        user_id = coerce_uuid(user_id, "user_id")
        with storage_guard(self.db):
            usage = self.db.query(WeeklyUsage).filter(
                WeeklyUsage.user_id == user_id
            ).populate_existing().first()
            if usage is None:
                self._require_user(user_id)
            return QuotaState.from_row(usage)

    def can_create(self, user_id: Union[UUID, str], now: Optional[datetime] = None) -> bool:
        return self.policy.can_create(self.get_state(user_id), now or self.clock())

    def remaining(self, user_id: Union[UUID, str], now: Optional[datetime] = None) -> int:
        return self.policy.remaining(self.get_state(user_id), now or self.clock())

    def days_until_reset(self, user_id: Union[UUID, str], now: Optional[datetime] = None) -> int:
        return self.policy.days_until_reset(self.get_state(user_id), now or self.clock())

    def usage_summary(
        self,
        user_id: Union[UUID, str],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Dashboard view of a user's allowance.

        Returns:
            Dictionary with used, remaining, days_until_reset, limit and window dates
        """
        now = now or self.clock()
        state = self.get_state(user_id)
        elapsed = self.policy.needs_reset(state, now)
        # An elapsed window reports 0 used; the stored count is only cleared
        # by the next record_usage(), which starts a new window.
        return {
            "used": 0 if elapsed else state.count,
            "remaining": self.policy.remaining(state, now),
            "days_until_reset": self.policy.days_until_reset(state, now),
            "limit": self.policy.limit,
            "can_create": self.policy.can_create(state, now),
            "window_start": to_iso(state.week_start_date),
            "last_reset": to_iso(state.last_reset_date),
        }

    # Writes

    def record_usage(
        self,
        user_id: Union[UUID, str],
        now: Optional[datetime] = None
    ) -> QuotaState:
        """
        Account one analysis against the user's window.

        Starts a new window (count=1) when none is open or the current one
        has elapsed; otherwise increments the counter.

        Args:
            user_id: User ID
            now: Time of the analysis (defaults to the clock)

        Returns:
            The QuotaState that was written

        Raises:
            NotFoundError: If the user does not exist
            QuotaExceededError: If the window is live and the limit is reached
            ConcurrentModificationError: If every compare-and-swap attempt lost a race
        """
        user_id = coerce_uuid(user_id, "user_id")
        now = now or self.clock()

        with storage_guard(self.db):
            for attempt in range(1, self.max_attempts + 1):
                usage = self._get_or_create_usage(user_id)
                current = QuotaState.from_row(usage)
                is_reset = self.policy.needs_reset(current, now)
                updated = self.policy.next_state(current, now)
                check_quota_state(updated.count, self.policy.limit, user_id)

                if self._compare_and_swap(usage, current, updated, now):
                    self._commit()
                    if is_reset:
                        logger.info(f"{CONTEXT_PREFIX} window reset for user {user_id} at {now.isoformat()}")
                    logger.info(
                        f"{CONTEXT_PREFIX} usage recorded for user {user_id}: "
                        f"{updated.count}/{self.policy.limit}"
                    )
                    return updated

                logger.warning(
                    f"{CONTEXT_PREFIX} lost compare-and-swap for user {user_id} "
                    f"(attempt {attempt}/{self.max_attempts}, revision {current.revision})"
                )

        raise ConcurrentModificationError(
            f"Could not record usage for user {user_id} after {self.max_attempts} attempts",
            details={"user_id": str(user_id), "attempts": self.max_attempts}
        )

    # Private helper methods

    def _require_user(self, user_id: UUID) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(
                f"User with ID {user_id} not found",
                details={"user_id": str(user_id)}
            )
        return user

    def _get_or_create_usage(self, user_id: UUID) -> WeeklyUsage:
        usage = self.db.query(WeeklyUsage).filter(
            WeeklyUsage.user_id == user_id
        ).populate_existing().first()
        if usage is not None:
            return usage

        self._require_user(user_id)
        usage = WeeklyUsage(user_id=user_id, count=0, revision=0)
        self.db.add(usage)
        self.db.flush()
        return usage

    def _compare_and_swap(
        self,
        usage: WeeklyUsage,
        expected: QuotaState,
        updated: QuotaState,
        now: datetime
    ) -> bool:
        """Conditional UPDATE keyed on the revision read; True if it won."""
        rows = self.db.query(WeeklyUsage).filter(
            WeeklyUsage.id == usage.id,
            WeeklyUsage.revision == expected.revision
        ).update(
            {
                WeeklyUsage.count: updated.count,
                WeeklyUsage.week_start_date: updated.week_start_date,
                WeeklyUsage.last_reset_date: updated.last_reset_date,
                WeeklyUsage.revision: updated.revision,
                WeeklyUsage.updated_at: now,
            },
            synchronize_session=False
        )
        self.db.expire(usage)
        return rows == 1

    def _commit(self) -> None:
        if self.auto_commit:
            self.db.commit()
        else:
            self.db.flush()
