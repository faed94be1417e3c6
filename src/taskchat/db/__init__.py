"""
Local store layer for TaskChat.

Provides the transactional LocalStore and repositories over it.
"""

from taskchat.db.connection import LocalStore, StoreChange, create_store_engine

__all__ = ["LocalStore", "StoreChange", "create_store_engine"]
