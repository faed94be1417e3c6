"""
Wire models for transport events.

Inbound payloads are validated into these models before the sync engine
touches the local store; outbound commands are built from them and
serialised with camelCase keys.
"""

from datetime import UTC, datetime
from typing import Any, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from taskchat.exceptions import MalformedEventError
from taskchat.models.db import ConversationType, MessageType

M = TypeVar("M", bound=BaseModel)


class EventName:
    """Transport event names."""

    # Outbound commands
    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"
    SEND_MESSAGE = "send_message"
    CREATE_CONVERSATION = "create_conversation"

    # Inbound events
    MESSAGE = "message"
    MESSAGE_DELIVERED = "message_delivered"
    MESSAGE_READ = "message_read"
    CONVERSATION_UPDATED = "conversation_updated"

    # Connection-state pseudo-events
    CONNECT = "connect"
    DISCONNECT = "disconnect"


def _require_iso_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO-8601 string")
    # Lax datetime parsing would read "1700000000" as epoch seconds
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"timestamp is not ISO-8601: {value!r}") from None


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class WireModel(BaseModel):
    """Base for all wire payloads: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        """Serialise for the transport."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class MessagePayload(WireModel):
    """Body of inbound ``message`` events and outbound ``send_message`` commands."""

    id: UUID
    conversation_id: UUID = Field(..., alias="conversationId")
    sender_id: UUID = Field(..., alias="senderId")
    text: str
    type: MessageType
    timestamp: datetime
    task_id: Optional[UUID] = Field(None, alias="taskId")

    @field_validator("type", mode="before")
    @classmethod
    def _accept_legacy_type(cls, value: Any) -> Any:
        # Older clients tag shared tasks as "task_update"
        if value == "task_update":
            return MessageType.TASK_LINK.value
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _check_timestamp(cls, value: Any) -> Any:
        return _require_iso_timestamp(value)

    @field_validator("timestamp")
    @classmethod
    def _normalise_timestamp(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class ReceiptPayload(WireModel):
    """Body of ``message_delivered`` and ``message_read`` events."""

    message_id: UUID = Field(..., alias="messageId")
    user_id: UUID = Field(..., alias="userId")
    timestamp: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _check_timestamp(cls, value: Any) -> Any:
        if value is None:
            return None
        return _require_iso_timestamp(value)

    @field_validator("timestamp")
    @classmethod
    def _normalise_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)


class ConversationRef(WireModel):
    """Body of ``join_conversation`` and ``leave_conversation`` commands."""

    conversation_id: UUID = Field(..., alias="conversationId")


class CreateConversationPayload(WireModel):
    """Body of the ``create_conversation`` command."""

    id: UUID
    type: ConversationType
    name: Optional[str] = None
    owner_id: UUID = Field(..., alias="ownerId")
    participant_ids: list[UUID] = Field(default_factory=list, alias="participantIds")

    def to_payload(self) -> dict[str, Any]:
        # name is sent explicitly even when absent
        return self.model_dump(by_alias=True, mode="json")


def parse_event(model: Type[M], event: str, payload: Any) -> M:
    """
    Validate an inbound payload.

    Args:
        model: Wire model to validate against
        event: Event name (for error reporting)
        payload: Raw decoded payload

    Returns:
        Validated model instance

    Raises:
        MalformedEventError: If the payload is not an object or fails validation
    """
    if not isinstance(payload, dict):
        raise MalformedEventError(event, "payload is not an object", payload)
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in e.errors()
        )
        raise MalformedEventError(event, f"invalid fields: {fields}", payload) from e
