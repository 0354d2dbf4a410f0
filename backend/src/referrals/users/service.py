"""User directory service."""

from datetime import datetime

from sqlalchemy import func, select

from referrals.exceptions import NotFoundError, ValidationError, ValidationReason
from referrals.logging_config import get_logger
from referrals.storage.db import Database, db
from referrals.users.models import User

logger = get_logger(__name__)


class UserService:
    """Read access to users, plus registration for administration tooling."""

    def __init__(self, database: Database | None = None):
        self.db = database or db
        self.logger = get_logger(__name__)

    def get_by_id(self, user_id: int) -> User:
        """Get user by ID.

        Raises:
            NotFoundError: If the user does not exist
        """
        with self.db.session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User with id '{user_id}' does not exist")
            return user

    def get_by_username_or_none(self, username: str) -> User | None:
        if not username or not username.strip():
            raise ValueError("Username is required")

        with self.db.session() as session:
            return session.scalars(
                select(User).where(func.lower(User.username) == username.strip().lower())
            ).first()

    def get_by_username(self, username: str) -> User:
        """Get user by username (case-insensitive).

        Raises:
            NotFoundError: If the user does not exist
        """
        user = self.get_by_username_or_none(username)
        if user is None:
            raise NotFoundError(f"User with username '{username}' does not exist")
        return user

    def create(
        self,
        username: str,
        display_name: str | None = None,
        email: str | None = None,
        country_id: int | None = None,
        date_onboarded: datetime | None = None,
        is_admin: bool = False,
    ) -> User:
        """Register a user.

        Args:
            username: Unique username
            display_name: Optional display name
            email: Optional email
            country_id: Optional country of residence
            date_onboarded: When the profile was completed (None = not onboarded)
            is_admin: Administrator flag

        Returns:
            Created user
        """
        if self.get_by_username_or_none(username) is not None:
            raise ValidationError(
                ValidationReason.INVALID_REQUEST,
                f"User with username '{username}' already exists",
            )

        with self.db.session() as session:
            user = User(
                username=username.strip(),
                display_name=display_name,
                email=email,
                country_id=country_id,
                date_onboarded=date_onboarded,
                is_admin=is_admin,
            )
            session.add(user)
            session.flush()

            self.logger.info("user_created", user_id=user.id, username=user.username)
            return user


# Singleton instance
user_service = UserService()
