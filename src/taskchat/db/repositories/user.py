"""
User and task repositories.
"""

from typing import Optional

from sqlalchemy.orm import Session

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import Task, User


class UserRepository(BaseRepository[User]):
    """Repository for User model."""

    def __init__(self, session: Session):
        super().__init__(User, session)

    def get_by_email(self, email: str) -> Optional[User]:
        """
        Get user by email.

        Args:
            email: User email

        Returns:
            User instance or None
        """
        return self.session.query(User).filter(User.email == email).first()


class TaskRepository(BaseRepository[Task]):
    """Repository for Task model."""

    def __init__(self, session: Session):
        super().__init__(Task, session)
