"""Transport layer: the WebSocket event channel to the messaging server."""

from taskchat.transport.channel import ConnectionState, TransportChannel

__all__ = ["ConnectionState", "TransportChannel"]
