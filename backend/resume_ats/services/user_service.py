"""Service for registering users and reading them back."""
import re
from typing import Optional, Union
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resume_ats.database import storage_guard
from resume_ats.errors import NotFoundError, ValidationError
from resume_ats.models.user import User
from resume_ats.models.weekly_usage import WeeklyUsage
from resume_ats.utils.identifiers import coerce_uuid

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class UserService:
    """
    Service for user records.

    Email uniqueness is a storage contract: it is declared on the model and
    checked here before insert, so a duplicate surfaces as ValidationError
    instead of a driver IntegrityError.
    """

    def __init__(self, db: Session):
        """
        Initialize user service.

        Args:
            db: Database session
        """
        self.db = db

    def create_user(self, email: str, full_name: Optional[str] = None) -> User:
        """
        Register a user with an empty quota row.

        Args:
            email: Email address (trimmed and lower-cased)
            full_name: Optional display name

        Returns:
            The persisted User

        Raises:
            ValidationError: If the email is malformed or already registered
        """
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(
                "Please provide a valid email address",
                details={"field": "email"}
            )

        with storage_guard(self.db):
            existing = self.db.query(User).filter(User.email == email).first()
            if existing:
                raise ValidationError(
                    f"Email {email} is already registered",
                    details={"field": "email", "duplicate": True}
                )

            user = User(email=email, full_name=full_name, is_active=True)
            user.weekly_usage = WeeklyUsage(count=0, revision=0)
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ValidationError(
                    f"Email {email} is already registered",
                    details={"field": "email", "duplicate": True}
                ) from e
            self.db.refresh(user)

        logger.info(f"[users] registered user {user.id}")
        return user

    def get_user(self, user_id: Union[UUID, str]) -> User:
        """
        Fetch a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        user_id = coerce_uuid(user_id, "user_id")
        with storage_guard(self.db):
            user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError(
                f"User with ID {user_id} not found",
                details={"user_id": str(user_id)}
            )
        return user
