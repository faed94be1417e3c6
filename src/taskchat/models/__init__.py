"""
Data models for TaskChat.

- db: SQLAlchemy models for the local store
- events: pydantic models for transport payloads
"""
