"""
Collaborators the messaging core resolves identities through.

- CurrentUserProvider: who is signed in on this device
- TaskLinkResolver: turns a task id into a linkable Task
"""

import logging
import threading
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from taskchat.db.repositories import TaskRepository, UserRepository
from taskchat.db.repositories.base import parse_uuid
from taskchat.exceptions import NoCurrentUserError
from taskchat.models.db import Task, User

logger = logging.getLogger(__name__)


class CurrentUserProvider:
    """
    Holds the signed-in user's id.

    The user may be absent (before authentication or after sign-out);
    operations that need an identity call :meth:`require_user_id`.
    """

    def __init__(self, user_id: Optional[Any] = None):
        self._lock = threading.Lock()
        self._user_id: Optional[uuid.UUID] = None
        if user_id:
            self.sign_in(user_id)

    def sign_in(self, user_id: Any) -> None:
        """
        Set the current user.

        Raises:
            ValueError: If ``user_id`` is not a UUID
        """
        parsed = parse_uuid(user_id)
        if parsed is None:
            raise ValueError(f"Invalid user id: {user_id!r}")
        with self._lock:
            self._user_id = parsed
        logger.info(f"Signed in as {parsed}")

    def sign_out(self) -> None:
        """Clear the current user."""
        with self._lock:
            self._user_id = None

    @property
    def user_id(self) -> Optional[uuid.UUID]:
        """Current user id, or None."""
        with self._lock:
            return self._user_id

    def require_user_id(self, operation: Optional[str] = None) -> uuid.UUID:
        """
        Current user id, failing fast when nobody is signed in.

        Raises:
            NoCurrentUserError: If no user is signed in
        """
        user_id = self.user_id
        if user_id is None:
            raise NoCurrentUserError(operation)
        return user_id

    def current_user(self, session: Session) -> Optional[User]:
        """Load the current user from the store, if signed in and known."""
        user_id = self.user_id
        if user_id is None:
            return None
        return UserRepository(session).get(user_id)


class TaskLinkResolver:
    """Resolves task ids for task-link messages."""

    def resolve(self, session: Session, task_id: Any) -> Optional[Task]:
        """
        Look up a task.

        Args:
            session: Open store session
            task_id: Task UUID or UUID string

        Returns:
            Task or None if unknown or not a UUID
        """
        parsed = parse_uuid(task_id)
        if parsed is None:
            return None
        return TaskRepository(session).get(parsed)
