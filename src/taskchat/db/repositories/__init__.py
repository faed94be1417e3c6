"""
Repository layer for local store operations.

Provides a clean API for CRUD operations on database models.
"""

from taskchat.db.repositories.base import BaseRepository
from taskchat.db.repositories.conversation import (
    ConversationRepository,
    MembershipRepository,
)
from taskchat.db.repositories.message import MessageRepository
from taskchat.db.repositories.receipt import ReceiptRepository
from taskchat.db.repositories.user import TaskRepository, UserRepository

__all__ = [
    "BaseRepository",
    "ConversationRepository",
    "MembershipRepository",
    "MessageRepository",
    "ReceiptRepository",
    "TaskRepository",
    "UserRepository",
]
