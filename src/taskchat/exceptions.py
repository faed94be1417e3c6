"""Custom exceptions for TaskChat."""

from typing import Any, Optional


class TaskChatError(Exception):
    """Base class for all TaskChat errors."""


class MalformedEventError(TaskChatError):
    """Raised when an inbound transport payload is missing or mistyping fields."""

    def __init__(self, event: str, reason: str, payload: Optional[Any] = None):
        self.event = event
        self.reason = reason
        self.payload = payload
        super().__init__(f"Malformed '{event}' event: {reason}")


class UnresolvableReferenceError(TaskChatError):
    """Raised when an event refers to an entity that is not in the local store."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Unknown {entity}: {entity_id}")


class NoCurrentUserError(TaskChatError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(self, operation: Optional[str] = None):
        self.operation = operation
        message = "No current user is signed in"
        if operation:
            message += f" (required by {operation})"
        super().__init__(message)


class MessageValidationError(TaskChatError):
    """Raised when outbound message text is rejected before sending."""


class ConversationValidationError(TaskChatError):
    """Raised when a conversation cannot be created with the given participants."""


class UnknownTaskError(UnresolvableReferenceError):
    """Raised when a task to be shared cannot be resolved locally."""

    def __init__(self, task_id: Any):
        super().__init__("task", task_id)
