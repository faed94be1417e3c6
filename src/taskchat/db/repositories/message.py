"""
Message repository.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import Message


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def get_window(self, conversation_id: uuid.UUID, limit: int = 50) -> List[Message]:
        """
        Get the most recent messages of a conversation.

        Deleted messages are excluded. The sender is eager-loaded so the
        returned objects can be read after the session closes.

        Args:
            conversation_id: Conversation UUID
            limit: Maximum number of messages

        Returns:
            Messages in ascending creation order
        """
        recent = (
            self.session.query(Message)
            .options(joinedload(Message.sender), selectinload(Message.linked_tasks))
            .filter(
                Message.conversation_id == conversation_id,
                Message.is_deleted.is_(False),
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
            .all()
        )
        recent.reverse()
        return recent

    def count_for_conversation(self, conversation_id: uuid.UUID) -> int:
        """Count all stored messages of a conversation, deleted included."""
        return (
            self.session.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .count()
        )

    def count_unread(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        since: Optional[datetime],
    ) -> int:
        """
        Count messages from other users newer than a read cursor.

        Args:
            conversation_id: Conversation UUID
            user_id: Reader UUID (their own messages never count)
            since: Reader's ``last_read_at`` (None counts everything)

        Returns:
            Number of unread messages
        """
        query = self.session.query(Message).filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.is_deleted.is_(False),
        )
        if since is not None:
            query = query.filter(Message.created_at > since)
        return query.count()
