"""
Observable list of conversations.
"""

import logging
import threading
from typing import Callable, List

from sqlalchemy.exc import SQLAlchemyError

from taskchat.db.connection import LocalStore, StoreChange
from taskchat.db.repositories import ConversationRepository
from taskchat.models.db import Conversation

logger = logging.getLogger(__name__)

DirectoryListener = Callable[[List[Conversation]], None]


class ConversationDirectory:
    """
    Non-archived conversations, most recently active first.

    The list is re-read from the local store as a whole rather than patched,
    which is how conflicting conversation metadata gets resolved.
    """

    def __init__(self, store: LocalStore, follow_store: bool = True):
        """
        Args:
            store: Local store to read from
            follow_store: Reload whenever a commit touches conversations
        """
        self.store = store
        self._lock = threading.Lock()
        self._conversations: List[Conversation] = []
        self._listeners: List[DirectoryListener] = []
        self._unsubscribe = store.subscribe(self._on_store_change) if follow_store else None

    @property
    def conversations(self) -> List[Conversation]:
        """Snapshot of the last loaded list."""
        with self._lock:
            return list(self._conversations)

    def reload(self) -> List[Conversation]:
        """
        Re-read the conversation list and notify subscribers.

        Returns:
            The freshly loaded list (the previous list if the read failed)
        """
        try:
            with self.store.read_session() as session:
                loaded = ConversationRepository(session).list_recent()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load conversations: {e}", exc_info=True)
            return self.conversations

        with self._lock:
            self._conversations = loaded
            listeners = list(self._listeners)
        logger.debug(f"Loaded {len(loaded)} conversations")
        for listener in listeners:
            try:
                listener(list(loaded))
            except Exception as e:
                logger.error(f"Directory listener failed: {e}", exc_info=True)
        return list(loaded)

    def subscribe(self, listener: DirectoryListener) -> Callable[[], None]:
        """
        Register a listener for reloaded lists.

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

    def _on_store_change(self, change: StoreChange) -> None:
        if change.touches("conversations"):
            self.reload()

    def close(self) -> None:
        """Stop following the store."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
