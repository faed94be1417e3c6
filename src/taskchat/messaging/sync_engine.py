"""
Inbound synchronization engine.

Turns transport events into local store mutations. Every event is treated as
possibly duplicated and possibly stale:

- messages are deduplicated on their client-generated id
- ``last_activity_at`` only ever moves forward
- receipts are inserted once per (message, user) and never overwritten
- anything malformed or referring to unknown rows is logged and dropped

Dropped events are not retried; the next ``conversation_updated`` or
reconnect refresh is what brings the store back in line.
"""

import logging
import uuid
from concurrent.futures import Future
from dataclasses import asdict, dataclass
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskchat.db.connection import LocalStore
from taskchat.db.repositories import (
    ConversationRepository,
    MessageRepository,
    ReceiptRepository,
    UserRepository,
)
from taskchat.exceptions import MalformedEventError, UnresolvableReferenceError
from taskchat.messaging.directory import ConversationDirectory
from taskchat.messaging.resolvers import TaskLinkResolver
from taskchat.models.db import Conversation, utcnow
from taskchat.models.events import EventName, MessagePayload, ReceiptPayload, parse_event
from taskchat.transport.channel import TransportChannel

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Counters for inbound event processing."""

    received: int = 0
    applied: int = 0
    duplicates: int = 0
    malformed: int = 0
    unresolved: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SyncEngine:
    """
    Applies inbound transport events to the local store.

    The ``handle_*`` methods are transport callbacks: they queue the work on
    the store's write context and return a Future. The ``ingest_message`` /
    ``record_delivery`` / ``record_read`` methods do the work synchronously.
    """

    def __init__(
        self,
        store: LocalStore,
        directory: Optional[ConversationDirectory] = None,
        task_resolver: Optional[TaskLinkResolver] = None,
    ):
        """
        Args:
            store: Local store to write into
            directory: Conversation list to reload on ``conversation_updated``
            task_resolver: Resolver for ``taskId`` attachments
        """
        self.store = store
        self.directory = directory or ConversationDirectory(store, follow_store=False)
        self.task_resolver = task_resolver or TaskLinkResolver()
        self.stats = SyncStats()

    def attach(self, channel: TransportChannel) -> None:
        """Subscribe to the inbound events of a transport channel."""
        channel.on(EventName.MESSAGE, self.handle_message)
        channel.on(EventName.MESSAGE_DELIVERED, self.handle_message_delivered)
        channel.on(EventName.MESSAGE_READ, self.handle_message_read)
        channel.on(EventName.CONVERSATION_UPDATED, self.handle_conversation_updated)
        # Every (re)connect refreshes, since events may have been missed
        channel.on(EventName.CONNECT, self.handle_conversation_updated)

    # -------------------------
    # Transport callbacks
    # -------------------------

    def handle_message(self, payload: Any) -> "Future[Optional[uuid.UUID]]":
        return self.store.submit(self.ingest_message, payload)

    def handle_message_delivered(self, payload: Any) -> "Future[bool]":
        return self.store.submit(self.record_delivery, payload)

    def handle_message_read(self, payload: Any) -> "Future[bool]":
        return self.store.submit(self.record_read, payload)

    def handle_conversation_updated(self, payload: Any = None) -> "Future[List[Conversation]]":
        # Queued behind pending writes so the reload sees them
        return self.store.submit(self.directory.reload)

    # -------------------------
    # Messages
    # -------------------------

    def ingest_message(self, payload: Any) -> Optional[uuid.UUID]:
        """
        Apply one inbound ``message`` event.

        Args:
            payload: Raw event payload

        Returns:
            The message id if a new row was stored, None if the event was a
            duplicate or was discarded
        """
        self.stats.received += 1
        try:
            event = parse_event(MessagePayload, EventName.MESSAGE, payload)
        except MalformedEventError as e:
            self.stats.malformed += 1
            logger.warning(f"Discarding event: {e}")
            return None

        try:
            with self.store.transaction() as session:
                stored = self._apply_message(session, event)
        except UnresolvableReferenceError as e:
            self.stats.unresolved += 1
            logger.info(f"Discarding message {event.id}: {e}")
            return None
        except SQLAlchemyError as e:
            self.stats.failed += 1
            logger.error(f"Failed to save incoming message {event.id}: {e}", exc_info=True)
            return None

        if stored:
            self.stats.applied += 1
            logger.debug(f"Stored message {event.id} in conversation {event.conversation_id}")
            return event.id
        return None

    def _apply_message(self, session: Session, event: MessagePayload) -> bool:
        conversations = ConversationRepository(session)
        conversation = conversations.get(event.conversation_id)
        if conversation is None:
            raise UnresolvableReferenceError("conversation", event.conversation_id)
        sender = UserRepository(session).get(event.sender_id)
        if sender is None:
            raise UnresolvableReferenceError("user", event.sender_id)

        messages = MessageRepository(session)
        if messages.exists(event.id):
            self.stats.duplicates += 1
            logger.debug(f"Message {event.id} already stored")
            return False

        message = messages.create(
            id=event.id,
            conversation_id=conversation.id,
            sender_id=sender.id,
            text=event.text,
            message_type=event.type.value,
            created_at=event.timestamp,
        )

        if event.task_id is not None:
            task = self.task_resolver.resolve(session, event.task_id)
            if task is not None:
                message.linked_tasks.append(task)
            else:
                logger.info(f"Task {event.task_id} not known locally, message {event.id} stored unlinked")

        conversations.advance_last_activity(conversation, event.timestamp)
        return True

    # -------------------------
    # Receipts
    # -------------------------

    def record_delivery(self, payload: Any) -> bool:
        """
        Apply one ``message_delivered`` event.

        Returns:
            True if a new delivery receipt was stored
        """
        return self._record_receipt(EventName.MESSAGE_DELIVERED, payload)

    def record_read(self, payload: Any) -> bool:
        """
        Apply one ``message_read`` event.

        Returns:
            True if a new read receipt was stored
        """
        return self._record_receipt(EventName.MESSAGE_READ, payload)

    def _record_receipt(self, event_name: str, payload: Any) -> bool:
        self.stats.received += 1
        try:
            event = parse_event(ReceiptPayload, event_name, payload)
        except MalformedEventError as e:
            self.stats.malformed += 1
            logger.warning(f"Discarding event: {e}")
            return False

        try:
            with self.store.transaction() as session:
                if MessageRepository(session).get(event.message_id) is None:
                    raise UnresolvableReferenceError("message", event.message_id)
                if UserRepository(session).get(event.user_id) is None:
                    raise UnresolvableReferenceError("user", event.user_id)

                receipts = ReceiptRepository(session)
                when = event.timestamp or utcnow()
                if event_name == EventName.MESSAGE_READ:
                    inserted = receipts.record_read(event.message_id, event.user_id, when)
                else:
                    inserted = receipts.record_delivery(event.message_id, event.user_id, when)
        except UnresolvableReferenceError as e:
            self.stats.unresolved += 1
            logger.info(f"Discarding {event_name} for message {event.message_id}: {e}")
            return False
        except SQLAlchemyError as e:
            self.stats.failed += 1
            logger.error(
                f"Failed to save {event_name} receipt for message {event.message_id}: {e}",
                exc_info=True,
            )
            return False

        if inserted:
            self.stats.applied += 1
        else:
            self.stats.duplicates += 1
        return inserted
