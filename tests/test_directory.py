"""
Tests for the conversation directory and identity resolvers.
"""

import uuid

import pytest

from conftest import at
from taskchat.db.repositories import ConversationRepository
from taskchat.exceptions import NoCurrentUserError
from taskchat.messaging.directory import ConversationDirectory
from taskchat.messaging.resolvers import CurrentUserProvider, TaskLinkResolver


class TestConversationDirectory:
    """Tests for ConversationDirectory."""

    def test_reload_sorts_by_activity(self, store, conversation, other_conversation):
        with store.transaction() as session:
            repo = ConversationRepository(session)
            repo.advance_last_activity(repo.get(conversation.id), at(9))
            repo.advance_last_activity(repo.get(other_conversation.id), at(4))

        directory = ConversationDirectory(store, follow_store=False)

        assert [c.id for c in directory.reload()] == [conversation.id, other_conversation.id]

    def test_follows_store_changes(self, store, conversation, other_conversation):
        directory = ConversationDirectory(store)
        published = []
        directory.subscribe(published.append)

        with store.transaction() as session:
            repo = ConversationRepository(session)
            repo.set_archived(repo.get(other_conversation.id))

        assert [c.id for c in published[-1]] == [conversation.id]
        assert [c.id for c in directory.conversations] == [conversation.id]
        directory.close()

    def test_close_stops_following(self, store, conversation):
        directory = ConversationDirectory(store)
        directory.close()

        with store.transaction() as session:
            repo = ConversationRepository(session)
            repo.set_archived(repo.get(conversation.id), archived=False)
            repo.get(conversation.id).name = "Renamed"

        assert directory.conversations == []

    def test_failing_listener_is_isolated(self, store, conversation):
        directory = ConversationDirectory(store, follow_store=False)

        def broken(conversations):
            raise RuntimeError("listener bug")

        directory.subscribe(broken)

        assert len(directory.reload()) == 1


class TestCurrentUserProvider:
    """Tests for CurrentUserProvider."""

    def test_sign_in_and_out(self):
        user_id = uuid.uuid4()
        identity = CurrentUserProvider()
        assert identity.user_id is None

        identity.sign_in(str(user_id))
        assert identity.require_user_id() == user_id

        identity.sign_out()
        with pytest.raises(NoCurrentUserError, match="send_message"):
            identity.require_user_id("send_message")

    def test_invalid_user_id(self):
        with pytest.raises(ValueError):
            CurrentUserProvider("not-a-uuid")

    def test_current_user(self, store, alice):
        identity = CurrentUserProvider(alice.id)
        with store.read_session() as session:
            assert identity.current_user(session).display_name == "Alice"
            assert CurrentUserProvider().current_user(session) is None


class TestTaskLinkResolver:
    """Tests for TaskLinkResolver."""

    def test_resolve(self, store, task):
        resolver = TaskLinkResolver()
        with store.read_session() as session:
            assert resolver.resolve(session, str(task.id)).title == "Write release notes"
            assert resolver.resolve(session, uuid.uuid4()) is None
            assert resolver.resolve(session, "garbage") is None
