"""
Outbound message pipeline.

Sends are optimistic: the command is emitted fire-and-forget and, independent
of the network result, the same record is committed locally under the same
client-generated id. When the server echoes the message back, the sync
engine sees an id it already has and does nothing.
"""

import logging
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from taskchat.db.connection import LocalStore
from taskchat.db.repositories import (
    ConversationRepository,
    MembershipRepository,
    MessageRepository,
    UserRepository,
)
from taskchat.db.repositories.base import parse_uuid
from taskchat.exceptions import (
    ConversationValidationError,
    MessageValidationError,
    UnknownTaskError,
)
from taskchat.messaging.resolvers import CurrentUserProvider, TaskLinkResolver
from taskchat.models.db import (
    ConversationRole,
    ConversationType,
    MessageType,
    NotificationLevel,
    TaskConversationLink,
    utcnow,
)
from taskchat.models.events import CreateConversationPayload, EventName, MessagePayload
from taskchat.transport.channel import TransportChannel

logger = logging.getLogger(__name__)


@dataclass
class PendingSend:
    """Handle for an optimistic send."""

    id: uuid.UUID
    emitted: bool  # Whether the transport accepted the command
    committed: "Future[bool]"  # Resolves True once the local row is stored

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the optimistic write finished; True if it was stored."""
        return self.committed.result(timeout)


class OutboundMessagePipeline:
    """Builds, emits and optimistically stores outgoing messages and conversations."""

    def __init__(
        self,
        store: LocalStore,
        channel: TransportChannel,
        identity: CurrentUserProvider,
        task_resolver: Optional[TaskLinkResolver] = None,
        max_message_length: int = 1000,
    ):
        self.store = store
        self.channel = channel
        self.identity = identity
        self.task_resolver = task_resolver or TaskLinkResolver()
        self.max_message_length = max_message_length

    # -------------------------
    # Messages
    # -------------------------

    def send_message(self, text: str, conversation_id: Any) -> PendingSend:
        """
        Send a text message.

        Args:
            text: Message text
            conversation_id: Target conversation UUID or UUID string

        Returns:
            PendingSend for the new message id

        Raises:
            NoCurrentUserError: If nobody is signed in
            MessageValidationError: If the text is empty or too long
            ValueError: If ``conversation_id`` is not a UUID
        """
        sender_id = self.identity.require_user_id("send_message")
        text = self._validate_text(text)
        target = self._require_uuid(conversation_id, "conversation")

        payload = MessagePayload(
            id=uuid.uuid4(),
            conversation_id=target,
            sender_id=sender_id,
            text=text,
            type=MessageType.TEXT,
            timestamp=utcnow(),
        )
        return self._send(payload, link_task=False)

    def send_task_to_conversation(self, task_id: Any, conversation_id: Any) -> PendingSend:
        """
        Share a task into a conversation as a task-link message.

        Raises:
            NoCurrentUserError: If nobody is signed in
            UnknownTaskError: If the task is not in the local store
            ValueError: If ``conversation_id`` is not a UUID
        """
        sender_id = self.identity.require_user_id("send_task_to_conversation")
        target = self._require_uuid(conversation_id, "conversation")

        with self.store.read_session() as session:
            task = self.task_resolver.resolve(session, task_id)
            if task is None:
                raise UnknownTaskError(task_id)
            resolved_task_id, title = task.id, task.title

        payload = MessagePayload(
            id=uuid.uuid4(),
            conversation_id=target,
            sender_id=sender_id,
            text=f"shared a task: {title}",
            type=MessageType.TASK_LINK,
            timestamp=utcnow(),
            task_id=resolved_task_id,
        )
        return self._send(payload, link_task=True)

    def _send(self, payload: MessagePayload, link_task: bool) -> PendingSend:
        emitted = self.channel.emit(EventName.SEND_MESSAGE, payload.to_payload())
        committed = self.store.submit(self._commit_message, payload, link_task)
        return PendingSend(id=payload.id, emitted=emitted, committed=committed)

    def _commit_message(self, payload: MessagePayload, link_task: bool) -> bool:
        try:
            with self.store.transaction() as session:
                conversations = ConversationRepository(session)
                conversation = conversations.get(payload.conversation_id)
                if conversation is None:
                    logger.warning(
                        f"Conversation {payload.conversation_id} not in local store, "
                        f"message {payload.id} not saved locally"
                    )
                    return False
                if UserRepository(session).get(payload.sender_id) is None:
                    logger.warning(f"Sender {payload.sender_id} not in local store")
                    return False

                messages = MessageRepository(session)
                if messages.exists(payload.id):
                    return True

                message = messages.create(
                    id=payload.id,
                    conversation_id=conversation.id,
                    sender_id=payload.sender_id,
                    text=payload.text,
                    message_type=payload.type.value,
                    created_at=payload.timestamp,
                )

                if link_task and payload.task_id is not None:
                    task = self.task_resolver.resolve(session, payload.task_id)
                    if task is not None:
                        message.linked_tasks.append(task)
                        session.add(
                            TaskConversationLink(
                                task_id=task.id,
                                conversation_id=conversation.id,
                                created_by_id=payload.sender_id,
                                created_at=payload.timestamp,
                            )
                        )

                conversations.advance_last_activity(conversation, payload.timestamp)
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to save message {payload.id}: {e}", exc_info=True)
            return False

    # -------------------------
    # Conversations
    # -------------------------

    def create_conversation(
        self,
        participant_ids: Iterable[Any],
        name: Optional[str] = None,
        conversation_type: ConversationType = ConversationType.GROUP,
    ) -> PendingSend:
        """
        Create a conversation with the current user as owner.

        Args:
            participant_ids: Other participants (the owner is added automatically)
            name: Optional conversation name
            conversation_type: ``dm`` or ``group``

        Returns:
            PendingSend for the new conversation id

        Raises:
            NoCurrentUserError: If nobody is signed in
            ConversationValidationError: If a participant id is invalid or a
                direct conversation does not have exactly one other participant
        """
        owner_id = self.identity.require_user_id("create_conversation")
        conversation_type = ConversationType(conversation_type)

        participants: List[uuid.UUID] = []
        for raw in participant_ids:
            parsed = parse_uuid(raw)
            if parsed is None:
                raise ConversationValidationError(f"Invalid participant id: {raw!r}")
            if parsed != owner_id and parsed not in participants:
                participants.append(parsed)

        if conversation_type == ConversationType.DM and len(participants) != 1:
            raise ConversationValidationError(
                "A direct conversation needs exactly one other participant"
            )

        payload = CreateConversationPayload(
            id=uuid.uuid4(),
            type=conversation_type,
            name=name,
            owner_id=owner_id,
            participant_ids=participants,
        )
        emitted = self.channel.emit(EventName.CREATE_CONVERSATION, payload.to_payload())
        committed = self.store.submit(self._commit_conversation, payload)
        return PendingSend(id=payload.id, emitted=emitted, committed=committed)

    def _commit_conversation(self, payload: CreateConversationPayload) -> bool:
        now = utcnow()
        try:
            with self.store.transaction() as session:
                users = UserRepository(session)
                if users.get(payload.owner_id) is None:
                    logger.warning(f"Owner {payload.owner_id} not in local store")
                    return False

                ConversationRepository(session).create(
                    id=payload.id,
                    conversation_type=payload.type.value,
                    name=payload.name,
                    owner_id=payload.owner_id,
                    is_archived=False,
                    created_at=now,
                    updated_at=now,
                    last_activity_at=now,
                )

                memberships = MembershipRepository(session)
                memberships.add_member(
                    payload.id,
                    payload.owner_id,
                    role=ConversationRole.OWNER,
                    notification_level=NotificationLevel.ALL,
                    joined_at=now,
                )
                for participant_id in payload.participant_ids:
                    if users.get(participant_id) is None:
                        logger.warning(
                            f"Participant {participant_id} not in local store, skipping membership"
                        )
                        continue
                    memberships.add_member(
                        payload.id,
                        participant_id,
                        role=ConversationRole.COMMENTER,
                        notification_level=NotificationLevel.ALL,
                        joined_at=now,
                    )
            logger.info(f"Created conversation {payload.id}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to create conversation {payload.id}: {e}", exc_info=True)
            return False

    # -------------------------
    # Validation
    # -------------------------

    def _validate_text(self, text: str) -> str:
        if not isinstance(text, str) or not text.strip():
            raise MessageValidationError("Message text is empty")
        if len(text) > self.max_message_length:
            raise MessageValidationError(
                f"Message is {len(text)} characters, limit is {self.max_message_length}"
            )
        return text

    @staticmethod
    def _require_uuid(value: Any, what: str) -> uuid.UUID:
        parsed = parse_uuid(value)
        if parsed is None:
            raise ValueError(f"Invalid {what} id: {value!r}")
        return parsed
