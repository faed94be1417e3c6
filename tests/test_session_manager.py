"""
Tests for the conversation session manager.
"""

import uuid

import pytest

from conftest import FakeChannel, at
from taskchat.messaging.resolvers import CurrentUserProvider
from taskchat.messaging.session_manager import ConversationSessionManager, SessionState
from taskchat.messaging.sync_engine import SyncEngine
from taskchat.models.db import ConversationMembership


@pytest.fixture
def sessions(store, channel, identity):
    manager = ConversationSessionManager(store, channel, identity)
    yield manager
    manager.close()


def _membership(store, conversation_id, user_id):
    with store.read_session() as session:
        return (
            session.query(ConversationMembership)
            .filter_by(conversation_id=conversation_id, user_id=user_id)
            .one()
        )


class TestJoinLeave:
    """Tests for the IDLE -> JOINED -> IDLE lifecycle."""

    def test_join_emits_command_and_loads_window(
        self, sessions, channel, conversation, alice, add_message
    ):
        add_message(conversation, alice, text="first", minutes=1)

        sessions.join_conversation(conversation.id)

        assert sessions.state == SessionState.JOINED
        assert sessions.active_conversation_id == conversation.id
        assert channel.emitted_events("join_conversation") == [
            {"conversationId": str(conversation.id)}
        ]
        assert [m.text for m in sessions.messages] == ["first"]

    def test_switching_leaves_previous_conversation_first(
        self, sessions, channel, conversation, other_conversation, alice, add_message
    ):
        add_message(conversation, alice, text="in A", minutes=1)
        add_message(other_conversation, alice, text="in B", minutes=2)

        sessions.join_conversation(conversation.id)
        sessions.join_conversation(other_conversation.id)

        assert channel.emitted == [
            ("join_conversation", {"conversationId": str(conversation.id)}),
            ("leave_conversation", {"conversationId": str(conversation.id)}),
            ("join_conversation", {"conversationId": str(other_conversation.id)}),
        ]
        assert [m.text for m in sessions.messages] == ["in B"]

    def test_rejoining_active_conversation_is_noop(self, sessions, channel, conversation):
        sessions.join_conversation(conversation.id)

        assert sessions.join_conversation(str(conversation.id)) is None
        assert channel.emitted_events() == ["join_conversation"]

    def test_leave_clears_window(self, sessions, channel, conversation, alice, add_message):
        add_message(conversation, alice)
        sessions.join_conversation(conversation.id)

        sessions.leave_conversation()

        assert sessions.state == SessionState.IDLE
        assert sessions.messages == []
        assert channel.emitted_events("leave_conversation") == [
            {"conversationId": str(conversation.id)}
        ]

    def test_leave_when_idle_does_nothing(self, sessions, channel):
        sessions.leave_conversation()
        assert channel.emitted == []

    def test_invalid_id_rejected(self, sessions):
        with pytest.raises(ValueError):
            sessions.join_conversation("not-a-uuid")

    def test_join_while_offline_still_loads_window(
        self, store, identity, conversation, alice, add_message
    ):
        offline = FakeChannel(connected=False)
        manager = ConversationSessionManager(store, offline, identity)
        add_message(conversation, alice, text="cached")

        manager.join_conversation(conversation.id)

        assert [m.text for m in manager.messages] == ["cached"]
        manager.close()


class TestWindowUpdates:
    """Tests for live window refreshes."""

    def test_window_limited_to_newest_messages(self, store, channel, identity, conversation, alice, add_message):
        manager = ConversationSessionManager(store, channel, identity, window_size=2)
        for minute in range(4):
            add_message(conversation, alice, text=f"m{minute}", minutes=minute)

        manager.join_conversation(conversation.id)

        assert [m.text for m in manager.messages] == ["m2", "m3"]
        manager.close()

    def test_inbound_message_refreshes_window(
        self, store, sessions, conversation, bob, make_payload
    ):
        windows = []
        sessions.subscribe(lambda cid, messages: windows.append((cid, [m.text for m in messages])))
        sessions.join_conversation(conversation.id)

        SyncEngine(store).ingest_message(make_payload(conversation.id, bob.id, text="new", minutes=2))

        assert windows[-1] == (conversation.id, ["new"])

    def test_no_updates_for_left_conversation(
        self, store, sessions, conversation, other_conversation, bob, make_payload
    ):
        windows = []
        sessions.join_conversation(conversation.id)
        sessions.join_conversation(other_conversation.id)
        sessions.subscribe(lambda cid, messages: windows.append(cid))

        SyncEngine(store).ingest_message(make_payload(conversation.id, bob.id))

        assert conversation.id not in windows
        assert sessions.messages == []

    def test_unsubscribe(self, store, sessions, conversation):
        windows = []
        unsubscribe = sessions.subscribe(lambda cid, messages: windows.append(cid))
        unsubscribe()

        sessions.join_conversation(conversation.id)

        assert windows == []


class TestReadCursor:
    """Tests for mark_read and unread_count."""

    def test_join_advances_read_cursor(self, store, sessions, conversation, alice):
        future = sessions.join_conversation(conversation.id)

        assert future.result(timeout=5) is True
        assert _membership(store, conversation.id, alice.id).last_read_at is not None

    def test_join_without_user_does_not_touch_cursor(self, store, channel, conversation, alice):
        manager = ConversationSessionManager(store, channel, CurrentUserProvider())

        assert manager.join_conversation(conversation.id) is None
        assert _membership(store, conversation.id, alice.id).last_read_at is None
        manager.close()

    def test_mark_read_never_moves_backwards(self, store, sessions, conversation, alice):
        assert sessions.mark_read(conversation.id, alice.id, at(10)) is True
        assert sessions.mark_read(conversation.id, alice.id, at(5)) is False

        assert _membership(store, conversation.id, alice.id).last_read_at == at(10)

    def test_mark_read_for_non_member(self, sessions, conversation):
        assert sessions.mark_read(conversation.id, uuid.uuid4(), at(1)) is False

    def test_unread_count(self, store, sessions, conversation, alice, bob, add_message):
        add_message(conversation, bob, minutes=1)
        add_message(conversation, bob, minutes=6)
        add_message(conversation, alice, minutes=7)
        sessions.mark_read(conversation.id, alice.id, at(3))

        assert sessions.unread_count(conversation.id) == 1

    def test_unread_count_without_user(self, store, channel, conversation, bob, add_message):
        add_message(conversation, bob)
        manager = ConversationSessionManager(store, channel, CurrentUserProvider())

        assert manager.unread_count(conversation.id) == 0
        manager.close()


class TestEmitOutsideLock:
    """Store writes are not held up by transport sends."""

    def test_writer_can_refresh_while_join_is_sending(
        self, store, identity, conversation, other_conversation
    ):
        refreshed = []

        class SlowChannel(FakeChannel):
            def emit(self, event, payload):
                # Runs refresh on the writer thread and waits for it
                refreshed.append(store.submit(manager.refresh).result(timeout=2))
                return super().emit(event, payload)

        manager = ConversationSessionManager(store, SlowChannel(), identity)
        manager.join_conversation(conversation.id)
        manager.join_conversation(other_conversation.id)
        manager.leave_conversation()

        assert len(refreshed) == 4
        assert [event for event, _ in manager.channel.emitted] == [
            "join_conversation",
            "leave_conversation",
            "join_conversation",
            "leave_conversation",
        ]
        manager.close()
