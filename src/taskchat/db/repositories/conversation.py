"""
Conversation and membership repositories.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import (
    Conversation,
    ConversationMembership,
    ConversationRole,
    NotificationLevel,
    utcnow,
)


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def list_recent(
        self, include_archived: bool = False, limit: Optional[int] = None
    ) -> List[Conversation]:
        """
        Get conversations ordered by most recent activity.

        Conversations that never had activity sort last, newest first.

        Args:
            include_archived: Include archived conversations
            limit: Maximum number of results

        Returns:
            List of conversations
        """
        query = self.session.query(Conversation)
        if not include_archived:
            query = query.filter(Conversation.is_archived.is_(False))
        query = query.order_by(
            Conversation.last_activity_at.is_(None),
            Conversation.last_activity_at.desc(),
            Conversation.created_at.desc(),
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def advance_last_activity(
        self, conversation: Conversation, timestamp: datetime
    ) -> bool:
        """
        Move the conversation's last activity forward.

        Never moves it backwards, so messages applied out of order still
        leave the latest timestamp in place.

        Args:
            conversation: Conversation to update
            timestamp: Timestamp of the accepted message

        Returns:
            True if the timestamp advanced
        """
        if (
            conversation.last_activity_at is not None
            and timestamp <= conversation.last_activity_at
        ):
            return False
        conversation.last_activity_at = timestamp
        conversation.updated_at = utcnow()
        self.session.flush()
        return True

    def set_archived(self, conversation: Conversation, archived: bool = True) -> None:
        """Archive or unarchive a conversation."""
        conversation.is_archived = archived
        self.session.flush()


class MembershipRepository(BaseRepository[ConversationMembership]):
    """Repository for ConversationMembership model."""

    def __init__(self, session: Session):
        super().__init__(ConversationMembership, session)

    def get_for(
        self, conversation_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ConversationMembership]:
        """
        Get the membership of a user in a conversation.

        Args:
            conversation_id: Conversation UUID
            user_id: User UUID

        Returns:
            ConversationMembership or None
        """
        return (
            self.session.query(ConversationMembership)
            .filter(
                ConversationMembership.conversation_id == conversation_id,
                ConversationMembership.user_id == user_id,
            )
            .first()
        )

    def get_active_members(self, conversation_id: uuid.UUID) -> List[ConversationMembership]:
        """Active memberships of a conversation, oldest first."""
        return (
            self.session.query(ConversationMembership)
            .filter(
                ConversationMembership.conversation_id == conversation_id,
                ConversationMembership.is_active.is_(True),
            )
            .order_by(ConversationMembership.joined_at.asc())
            .all()
        )

    def add_member(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        role: ConversationRole = ConversationRole.COMMENTER,
        notification_level: NotificationLevel = NotificationLevel.ALL,
        joined_at: Optional[datetime] = None,
    ) -> ConversationMembership:
        """
        Get the existing membership for the pair, or create it.

        Args:
            conversation_id: Conversation UUID
            user_id: User UUID
            role: Role for a new membership
            notification_level: Notification level for a new membership
            joined_at: Join time (defaults to now)

        Returns:
            ConversationMembership instance
        """
        membership = self.get_for(conversation_id, user_id)
        if membership:
            return membership
        return self.create(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role.value,
            notification_level=notification_level.value,
            joined_at=joined_at or utcnow(),
            is_active=True,
        )

    def advance_read_cursor(
        self, membership: ConversationMembership, read_at: datetime
    ) -> bool:
        """
        Move ``last_read_at`` forward.

        Returns:
            True if the cursor advanced
        """
        if membership.last_read_at is not None and read_at <= membership.last_read_at:
            return False
        membership.last_read_at = read_at
        self.session.flush()
        return True

    def change_role(
        self, membership: ConversationMembership, role: ConversationRole
    ) -> None:
        """Change a participant's role."""
        membership.role = role.value
        self.session.flush()

    def deactivate(self, membership: ConversationMembership) -> None:
        """Mark a participant as no longer active in the conversation."""
        membership.is_active = False
        self.session.flush()
