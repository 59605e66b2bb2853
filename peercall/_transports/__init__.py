"""
Signalling transport layer.

This package provides transports for the call signalling vocabulary:
- LocalRelay / LocalTransport: in-process relay (tests, demos)
- SocketIOTransport: python-socketio client for the chat server
"""

from .._types import TransportError
from ._base import SignalingTransport, Subscription, with_recipient
from ._memory import LocalRelay, LocalTransport, RelayedMessage

__all__ = [
    # Base classes
    "SignalingTransport",
    "Subscription",
    "with_recipient",
    # In-process relay
    "LocalRelay",
    "LocalTransport",
    "RelayedMessage",
    # Exceptions
    "TransportError",
]


# Socket.IO transport is lazy-loaded to avoid import overhead
def __getattr__(name: str):
    """Lazy import transport implementations."""
    if name == "SocketIOTransport":
        from ._socketio import SocketIOTransport

        return SocketIOTransport

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
