"""
Conversation session manager.

Tracks the single conversation the user currently has open, keeps its message
window loaded from the local store, and advances the user's read cursor.
"""

import logging
import threading
import uuid
from concurrent.futures import Future
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from taskchat.db.connection import LocalStore, StoreChange
from taskchat.db.repositories import MembershipRepository, MessageRepository
from taskchat.db.repositories.base import parse_uuid
from taskchat.messaging.resolvers import CurrentUserProvider
from taskchat.models.db import Message, utcnow
from taskchat.models.events import ConversationRef, EventName
from taskchat.transport.channel import TransportChannel

logger = logging.getLogger(__name__)

WindowListener = Callable[[Optional[uuid.UUID], List[Message]], None]


class SessionState(str, Enum):
    """Whether a conversation is currently joined."""

    IDLE = "idle"
    JOINED = "joined"


class ConversationSessionManager:
    """
    Single active conversation: ``IDLE -> JOINED(id) -> IDLE``.

    Joining a conversation while another is joined leaves the first one.
    While joined, commits that touch messages refresh the window; after
    leaving, nothing more is published for that conversation.
    """

    def __init__(
        self,
        store: LocalStore,
        channel: TransportChannel,
        identity: CurrentUserProvider,
        window_size: int = 50,
    ):
        """
        Args:
            store: Local store to read messages from
            channel: Transport for join/leave commands
            identity: Current user, for the read cursor
            window_size: Maximum messages kept in the window
        """
        self.store = store
        self.channel = channel
        self.identity = identity
        self.window_size = window_size

        self._lock = threading.RLock()
        self._active_id: Optional[uuid.UUID] = None
        self._messages: List[Message] = []
        self._listeners: List[WindowListener] = []
        self._unsubscribe = store.subscribe(self._on_store_change)

    @property
    def state(self) -> SessionState:
        return SessionState.JOINED if self._active_id is not None else SessionState.IDLE

    @property
    def active_conversation_id(self) -> Optional[uuid.UUID]:
        return self._active_id

    @property
    def messages(self) -> List[Message]:
        """Snapshot of the loaded message window (oldest first)."""
        with self._lock:
            return list(self._messages)

    def subscribe(self, listener: WindowListener) -> Callable[[], None]:
        """
        Register a listener for window updates.

        The listener receives the active conversation id (None when idle)
        and the message window.

        Returns:
            Callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def join_conversation(self, conversation_id: Any) -> Optional["Future[bool]"]:
        """
        Make a conversation the active one.

        Args:
            conversation_id: Conversation UUID or UUID string

        Returns:
            Future for the read-cursor update, or None if nothing was queued
            (already joined, or no current user)

        Raises:
            ValueError: If ``conversation_id`` is not a UUID
        """
        target = parse_uuid(conversation_id)
        if target is None:
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")

        with self._lock:
            if self._active_id == target:
                logger.debug(f"Already in conversation {target}")
                return None
            left = self._clear_locked()
            self._active_id = target
            self._reload_locked()
            snapshot = (self._active_id, list(self._messages))

        # Emits can block on the socket; the store's writer thread needs the lock
        if left is not None:
            self._emit_leave(left)
        self.channel.emit(
            EventName.JOIN_CONVERSATION,
            ConversationRef(conversation_id=target).to_payload(),
        )
        logger.info(f"Joined conversation {target}")
        self._publish(*snapshot)
        return self._schedule_mark_read(target)

    def leave_conversation(self) -> None:
        """Leave the active conversation, if any, and clear the window."""
        with self._lock:
            left = self._clear_locked()
        if left is None:
            return
        self._emit_leave(left)
        self._publish(None, [])

    def _clear_locked(self) -> Optional[uuid.UUID]:
        left = self._active_id
        self._active_id = None
        self._messages = []
        return left

    def _emit_leave(self, left: uuid.UUID) -> None:
        self.channel.emit(
            EventName.LEAVE_CONVERSATION,
            ConversationRef(conversation_id=left).to_payload(),
        )
        logger.info(f"Left conversation {left}")

    def refresh(self) -> List[Message]:
        """Reload the window of the active conversation."""
        with self._lock:
            if self._active_id is None:
                return []
            self._reload_locked()
            snapshot = (self._active_id, list(self._messages))
        self._publish(*snapshot)
        return snapshot[1]

    def _reload_locked(self) -> None:
        try:
            with self.store.read_session() as session:
                self._messages = MessageRepository(session).get_window(
                    self._active_id, limit=self.window_size
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load messages for {self._active_id}: {e}", exc_info=True)

    def _on_store_change(self, change: StoreChange) -> None:
        if change.touches("messages") and self._active_id is not None:
            self.refresh()

    def _publish(self, conversation_id: Optional[uuid.UUID], messages: List[Message]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(conversation_id, list(messages))
            except Exception as e:
                logger.error(f"Window listener failed: {e}", exc_info=True)

    # -------------------------
    # Read cursor
    # -------------------------

    def _schedule_mark_read(self, conversation_id: uuid.UUID) -> Optional["Future[bool]"]:
        user_id = self.identity.user_id
        if user_id is None:
            logger.debug("No current user, read cursor not advanced")
            return None
        return self.store.submit(self.mark_read, conversation_id, user_id, utcnow())

    def mark_read(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        read_at: Optional[datetime] = None,
    ) -> bool:
        """
        Advance a member's read cursor.

        Args:
            conversation_id: Conversation UUID
            user_id: Member UUID
            read_at: Cursor position (defaults to now)

        Returns:
            True if ``last_read_at`` moved forward
        """
        try:
            with self.store.transaction() as session:
                memberships = MembershipRepository(session)
                membership = memberships.get_for(conversation_id, user_id)
                if membership is None:
                    logger.info(f"User {user_id} has no membership in {conversation_id}")
                    return False
                return memberships.advance_read_cursor(membership, read_at or utcnow())
        except SQLAlchemyError as e:
            logger.error(f"Failed to update read status: {e}", exc_info=True)
            return False

    def unread_count(self, conversation_id: Any) -> int:
        """
        Messages from others newer than the current user's read cursor.

        Returns 0 when nobody is signed in or the user is not a member.
        """
        target = parse_uuid(conversation_id)
        user_id = self.identity.user_id
        if target is None or user_id is None:
            return 0
        with self.store.read_session() as session:
            membership = MembershipRepository(session).get_for(target, user_id)
            if membership is None:
                return 0
            return MessageRepository(session).count_unread(
                target, user_id, membership.last_read_at
            )

    def close(self) -> None:
        """Stop following the store."""
        self._unsubscribe()
