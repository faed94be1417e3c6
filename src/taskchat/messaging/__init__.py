"""
Messaging core: inbound sync, conversation sessions and outbound sends.
"""

from taskchat.messaging.directory import ConversationDirectory
from taskchat.messaging.outbound import OutboundMessagePipeline, PendingSend
from taskchat.messaging.resolvers import CurrentUserProvider, TaskLinkResolver
from taskchat.messaging.service import MessagingService
from taskchat.messaging.session_manager import ConversationSessionManager, SessionState
from taskchat.messaging.sync_engine import SyncEngine, SyncStats

__all__ = [
    "ConversationDirectory",
    "ConversationSessionManager",
    "CurrentUserProvider",
    "MessagingService",
    "OutboundMessagePipeline",
    "PendingSend",
    "SessionState",
    "SyncEngine",
    "SyncStats",
    "TaskLinkResolver",
]
