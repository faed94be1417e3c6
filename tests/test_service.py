"""
Tests for the MessagingService composition root.
"""

import pytest

from conftest import FakeChannel
from taskchat.config import Settings
from taskchat.messaging.service import MessagingService


@pytest.fixture
def service(store, channel, identity):
    messaging = MessagingService(store, channel, identity)
    yield messaging
    messaging.sessions.close()
    messaging.directory.close()


class TestLifecycle:
    """Tests for start / stop."""

    def test_start_connects_and_loads_directory(self, store, service, channel, conversation):
        service.start()
        store.drain(timeout=5)

        assert channel.connect_calls == 1
        assert [c.id for c in service.conversations] == [conversation.id]

    def test_stop_leaves_and_disconnects(self, service, channel, conversation):
        service.start()
        service.join_conversation(conversation.id)

        service.stop()

        assert channel.emitted_events("leave_conversation") == [
            {"conversationId": str(conversation.id)}
        ]
        assert channel.disconnect_calls == 1

    def test_from_settings(self, store, alice):
        config = Settings(
            _env_file=None,
            current_user_id=str(alice.id),
            message_window_size=10,
            max_message_length=200,
        )

        messaging = MessagingService.from_settings(config, store=store, channel=FakeChannel())

        assert messaging.identity.user_id == alice.id
        assert messaging.sessions.window_size == 10
        assert messaging.outbound.max_message_length == 200
        messaging.sessions.close()
        messaging.directory.close()

    def test_from_settings_without_user(self, store):
        messaging = MessagingService.from_settings(
            Settings(_env_file=None, current_user_id=""), store=store, channel=FakeChannel()
        )

        assert messaging.identity.user_id is None
        messaging.sessions.close()
        messaging.directory.close()


class TestEndToEnd:
    """Round trips through channel, engine and store."""

    def test_send_then_echo_keeps_one_message(self, store, service, channel, conversation):
        service.join_conversation(conversation.id)

        pending = service.send_message("hello", conversation.id)
        pending.wait(timeout=5)
        [echo] = channel.emitted_events("send_message")
        [future] = channel.deliver("message", echo)
        future.result(timeout=5)
        store.drain(timeout=5)

        assert [m.id for m in service.messages] == [pending.id]
        assert service.sync_engine.stats.duplicates == 1

    def test_inbound_message_updates_window_and_unread(
        self, store, service, channel, conversation, bob, make_payload
    ):
        service.join_conversation(conversation.id)
        store.drain(timeout=5)

        # Joining moved the read cursor to now, so the message must be newer
        future_minutes = 60 * 24 * 365 * 20
        payload = make_payload(conversation.id, bob.id, text="ping", minutes=future_minutes)
        [future] = channel.deliver("message", payload)
        future.result(timeout=5)

        assert [m.text for m in service.messages] == ["ping"]
        assert service.unread_count(conversation.id) == 1

    def test_created_conversation_appears_in_directory(self, store, service, bob):
        pending = service.create_conversation([bob.id], name="Planning")
        pending.wait(timeout=5)
        store.drain(timeout=5)

        assert [c.name for c in service.conversations] == ["Planning"]

    def test_shared_task_appears_in_window(self, store, service, conversation, task):
        service.join_conversation(conversation.id)

        service.send_task_to_conversation(task.id, conversation.id).wait(timeout=5)

        [message] = service.messages
        assert [t.id for t in message.linked_tasks] == [task.id]

    def test_leave_conversation(self, service, conversation):
        service.join_conversation(conversation.id)
        service.leave_conversation()
        assert service.messages == []
