"""
SQLAlchemy database models for TaskChat.

These models represent the local store schema: users, conversations and
their memberships, messages with delivery/read receipts, and the task links
that tie shared tasks to conversations.
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Values are normalised to UTC on the way in and come back aware, so
    comparisons behave the same on SQLite (which drops tzinfo) and PostgreSQL.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ConversationType(str, enum.Enum):
    """Kind of conversation."""

    DM = "dm"  # Direct conversation between two users
    GROUP = "group"


class ConversationRole(str, enum.Enum):
    """Role of a participant within a conversation."""

    OWNER = "owner"
    EDITOR = "editor"
    COMMENTER = "commenter"


class NotificationLevel(str, enum.Enum):
    """Per-membership notification preference."""

    ALL = "all"
    MENTIONS = "mentions"
    MUTED = "muted"


class MessageType(str, enum.Enum):
    """Type of message."""

    TEXT = "text"
    SYSTEM = "system"
    TASK_LINK = "task_link"  # Message carrying a shared task


message_task_links = Table(
    "message_task_links",
    Base.metadata,
    Column(
        "message_id",
        Uuid,
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "task_id",
        Uuid,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(Base):
    """A person who can own conversations and send messages."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    memberships: Mapped[list["ConversationMembership"]] = relationship(
        back_populates="user"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, display_name={self.display_name!r})>"


class Task(Base):
    """A task that can be shared into a conversation."""

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title!r})>"


class Conversation(Base):
    """A direct or group conversation."""

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationType.GROUP.value
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    # Only ever moves forward; see ConversationRepository.advance_last_activity
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    owner: Mapped[Optional["User"]] = relationship()
    memberships: Mapped[list["ConversationMembership"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )
    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
    task_links: Mapped[list["TaskConversationLink"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, "
            f"type={self.conversation_type!r}, "
            f"name={self.name!r})>"
        )


class ConversationMembership(Base):
    """Participation of one user in one conversation."""

    __tablename__ = "conversation_memberships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationRole.COMMENTER.value
    )
    notification_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationLevel.ALL.value
    )
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    conversation: Mapped["Conversation"] = relationship(back_populates="memberships")
    user: Mapped["User"] = relationship(back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_member"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ConversationMembership(conversation_id={self.conversation_id}, "
            f"user_id={self.user_id}, role={self.role!r})>"
        )


class Message(Base):
    """
    A message in a conversation.

    The id is generated by the sending client and is the deduplication key:
    a given id is stored at most once no matter how often it is delivered.
    """

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MessageType.TEXT.value
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    edited_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    sender: Mapped["User"] = relationship()
    linked_tasks: Mapped[list["Task"]] = relationship(secondary=message_task_links)
    delivery_receipts: Mapped[list["DeliveryReceipt"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )
    read_receipts: Mapped[list["ReadReceipt"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, "
            f"conversation_id={self.conversation_id}, "
            f"type={self.message_type!r})>"
        )


class DeliveryReceipt(Base):
    """Proof that a user's device received a message. One per (message, user)."""

    __tablename__ = "delivery_receipts"

    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), primary_key=True
    )
    delivered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    message: Mapped["Message"] = relationship(back_populates="delivery_receipts")
    user: Mapped["User"] = relationship()

    def __repr__(self) -> str:
        return f"<DeliveryReceipt(message_id={self.message_id}, user_id={self.user_id})>"


class ReadReceipt(Base):
    """Proof that a user read a message. One per (message, user)."""

    __tablename__ = "read_receipts"

    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), primary_key=True
    )
    read_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    message: Mapped["Message"] = relationship(back_populates="read_receipts")
    user: Mapped["User"] = relationship()

    def __repr__(self) -> str:
        return f"<ReadReceipt(message_id={self.message_id}, user_id={self.user_id})>"


class TaskConversationLink(Base):
    """Record of a task being shared into a conversation."""

    __tablename__ = "task_conversation_links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    task: Mapped["Task"] = relationship()
    conversation: Mapped["Conversation"] = relationship(back_populates="task_links")
    created_by: Mapped["User"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<TaskConversationLink(task_id={self.task_id}, "
            f"conversation_id={self.conversation_id})>"
        )
