"""
Pytest configuration and fixtures for TaskChat tests.

This module provides a fresh in-memory local store per test, a fake transport
channel that records emitted commands, and sample users, conversations and
tasks.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Generator, Optional

import pytest

from taskchat.db.connection import LocalStore
from taskchat.messaging.resolvers import CurrentUserProvider
from taskchat.models.db import (
    Conversation,
    ConversationMembership,
    ConversationRole,
    ConversationType,
    Message,
    Task,
    User,
)

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


def at(minutes: float) -> datetime:
    """Timestamp ``minutes`` after the fixed test base time."""
    return BASE_TIME + timedelta(minutes=minutes)


class FakeChannel:
    """
    In-process stand-in for TransportChannel.

    Records emitted commands and lets tests deliver inbound events to the
    registered handlers synchronously.
    """

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.emitted: list[tuple[str, Any]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self._handlers: dict[str, list[Callable[[Any], Any]]] = {}
        self._state_listeners: list[Callable[[Any], None]] = []

    def on(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._handlers.get(event, []).remove(handler)

    def on_state_change(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        self.connect_calls += 1
        self.deliver("connect", None)

    def disconnect(self, timeout: Optional[float] = None) -> None:
        self.disconnect_calls += 1

    def wait(self, timeout: Optional[float] = None) -> bool:
        return True

    def emit(self, event: str, payload: Any) -> bool:
        if not self.connected:
            return False
        self.emitted.append((event, payload))
        return True

    def deliver(self, event: str, payload: Any) -> list[Any]:
        """Hand an inbound event to every handler; returns their results."""
        return [handler(payload) for handler in list(self._handlers.get(event, []))]

    def emitted_events(self, name: Optional[str] = None) -> list[Any]:
        if name is None:
            return [event for event, _ in self.emitted]
        return [payload for event, payload in self.emitted if event == name]


@pytest.fixture
def store() -> Generator[LocalStore, None, None]:
    """Create a fresh in-memory local store with the schema applied."""
    local_store = LocalStore("sqlite:///:memory:")
    local_store.init_schema()
    yield local_store
    local_store.close()


@pytest.fixture
def channel() -> FakeChannel:
    """Fake transport channel that is connected."""
    return FakeChannel()


@pytest.fixture
def alice(store: LocalStore) -> User:
    """Create the signed-in test user."""
    with store.transaction() as session:
        user = User(id=uuid.uuid4(), email="alice@example.com", display_name="Alice")
        session.add(user)
    return user


@pytest.fixture
def bob(store: LocalStore) -> User:
    """Create a second participant."""
    with store.transaction() as session:
        user = User(id=uuid.uuid4(), email="bob@example.com", display_name="Bob")
        session.add(user)
    return user


@pytest.fixture
def identity(alice: User) -> CurrentUserProvider:
    """Current user provider signed in as Alice."""
    return CurrentUserProvider(alice.id)


def _create_conversation(
    store: LocalStore, owner: User, members: list[User], name: str
) -> Conversation:
    with store.transaction() as session:
        conversation = Conversation(
            id=uuid.uuid4(),
            conversation_type=ConversationType.GROUP.value,
            name=name,
            owner_id=owner.id,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        session.add(conversation)
        session.flush()
        for member in members:
            session.add(
                ConversationMembership(
                    conversation_id=conversation.id,
                    user_id=member.id,
                    role=(
                        ConversationRole.OWNER.value
                        if member.id == owner.id
                        else ConversationRole.COMMENTER.value
                    ),
                    joined_at=BASE_TIME,
                )
            )
    return conversation


@pytest.fixture
def conversation(store: LocalStore, alice: User, bob: User) -> Conversation:
    """Group conversation owned by Alice with Bob as a member."""
    return _create_conversation(store, alice, [alice, bob], "Launch plan")


@pytest.fixture
def other_conversation(store: LocalStore, alice: User, bob: User) -> Conversation:
    """Second group conversation with the same members."""
    return _create_conversation(store, alice, [alice, bob], "Retro")


@pytest.fixture
def task(store: LocalStore) -> Task:
    """Create a task that can be shared into conversations."""
    with store.transaction() as session:
        item = Task(id=uuid.uuid4(), title="Write release notes")
        session.add(item)
    return item


@pytest.fixture
def make_payload() -> Callable[..., dict[str, Any]]:
    """Factory for inbound ``message`` event payloads."""

    def _make(
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        text: str = "hello",
        minutes: float = 0,
        message_id: Optional[uuid.UUID] = None,
        **extra: Any,
    ) -> dict[str, Any]:
        payload = {
            "id": str(message_id or uuid.uuid4()),
            "conversationId": str(conversation_id),
            "senderId": str(sender_id),
            "text": text,
            "type": "text",
            "timestamp": at(minutes).isoformat(),
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def add_message(store: LocalStore) -> Callable[..., Message]:
    """Factory that stores a message directly."""

    def _add(
        conversation: Conversation,
        sender: User,
        text: str = "hello",
        minutes: float = 0,
        is_deleted: bool = False,
    ) -> Message:
        with store.transaction() as session:
            message = Message(
                id=uuid.uuid4(),
                conversation_id=conversation.id,
                sender_id=sender.id,
                text=text,
                created_at=at(minutes),
                is_deleted=is_deleted,
            )
            session.add(message)
        return message

    return _add
