"""
Messaging service.

Wires the local store, transport channel and messaging components into a
single object the application talks to.
"""

import logging
from concurrent.futures import Future
from typing import Any, Iterable, List, Optional

from taskchat.config import Settings, settings as default_settings
from taskchat.db.connection import LocalStore
from taskchat.messaging.directory import ConversationDirectory
from taskchat.messaging.outbound import OutboundMessagePipeline, PendingSend
from taskchat.messaging.resolvers import CurrentUserProvider, TaskLinkResolver
from taskchat.messaging.session_manager import ConversationSessionManager
from taskchat.messaging.sync_engine import SyncEngine
from taskchat.models.db import Conversation, ConversationType, Message
from taskchat.transport.channel import TransportChannel

logger = logging.getLogger(__name__)


class MessagingService:
    """
    Entry point for the messaging core.

    Example:
        >>> service = MessagingService.from_settings()
        >>> service.identity.sign_in(user_id)
        >>> service.start()
        >>> service.join_conversation(conversation_id)
        >>> service.send_message("hello", conversation_id)
    """

    def __init__(
        self,
        store: LocalStore,
        channel: TransportChannel,
        identity: Optional[CurrentUserProvider] = None,
        task_resolver: Optional[TaskLinkResolver] = None,
        window_size: int = 50,
        max_message_length: int = 1000,
    ):
        self.store = store
        self.channel = channel
        self.identity = identity or CurrentUserProvider()
        self.task_resolver = task_resolver or TaskLinkResolver()

        self.directory = ConversationDirectory(store)
        self.sync_engine = SyncEngine(store, self.directory, self.task_resolver)
        self.sync_engine.attach(channel)
        self.sessions = ConversationSessionManager(
            store, channel, self.identity, window_size=window_size
        )
        self.outbound = OutboundMessagePipeline(
            store,
            channel,
            self.identity,
            task_resolver=self.task_resolver,
            max_message_length=max_message_length,
        )

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        store: Optional[LocalStore] = None,
        channel: Optional[TransportChannel] = None,
    ) -> "MessagingService":
        """
        Build a service from application settings.

        Args:
            config: Settings to use (defaults to the global settings)
            store: Pre-built store (defaults to one built from ``config``)
            channel: Pre-built channel (defaults to one built from ``config``)
        """
        config = config or default_settings
        return cls(
            store=store or LocalStore.from_settings(config),
            channel=channel or TransportChannel.from_settings(config),
            identity=CurrentUserProvider(config.current_user_id or None),
            window_size=config.message_window_size,
            max_message_length=config.max_message_length,
        )

    def start(self) -> None:
        """Load the conversation list and connect the transport."""
        self.directory.reload()
        self.channel.connect()
        logger.info("Messaging service started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Leave the active conversation, disconnect and flush pending writes."""
        self.sessions.leave_conversation()
        self.channel.disconnect(timeout)
        self.store.drain(timeout)
        logger.info("Messaging service stopped")

    def close(self) -> None:
        """Stop and release the store."""
        self.stop()
        self.sessions.close()
        self.directory.close()
        self.store.close()

    # -------------------------
    # Conversations
    # -------------------------

    @property
    def conversations(self) -> List[Conversation]:
        return self.directory.conversations

    def join_conversation(self, conversation_id: Any) -> Optional["Future[bool]"]:
        return self.sessions.join_conversation(conversation_id)

    def leave_conversation(self) -> None:
        self.sessions.leave_conversation()

    @property
    def messages(self) -> List[Message]:
        """Message window of the joined conversation."""
        return self.sessions.messages

    def unread_count(self, conversation_id: Any) -> int:
        return self.sessions.unread_count(conversation_id)

    def create_conversation(
        self,
        participant_ids: Iterable[Any],
        name: Optional[str] = None,
        conversation_type: ConversationType = ConversationType.GROUP,
    ) -> PendingSend:
        return self.outbound.create_conversation(participant_ids, name, conversation_type)

    # -------------------------
    # Sending
    # -------------------------

    def send_message(self, text: str, conversation_id: Any) -> PendingSend:
        return self.outbound.send_message(text, conversation_id)

    def send_task_to_conversation(self, task_id: Any, conversation_id: Any) -> PendingSend:
        return self.outbound.send_task_to_conversation(task_id, conversation_id)
