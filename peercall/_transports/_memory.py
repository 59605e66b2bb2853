"""
In-process signalling relay.

`LocalRelay` plays the part of the chat server's socket hub: peers attach a
`LocalTransport`, and messages addressed with `to` are routed to the matching
peer on the next loop iteration (never re-entrantly). The relay can replay
selected events to simulate at-least-once delivery.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .._types import Payload, TransportError
from .._utils import EVENT_USER_LOGGED_OUT, RELAY_REWRITES, logger
from ._base import SignalingTransport, with_recipient


@dataclass
class RelayedMessage:
    """One message as seen by the relay."""

    sender: str
    event: str
    payload: Payload
    to: Optional[str] = None
    delivered: bool = False


@dataclass
class LocalRelay:
    """
    Routes messages between peers attached in the same process.

    Attributes:
        duplicate_events: Event names delivered twice (transport retry)
        dropped_events: Event names silently lost
        history: Every message the relay accepted, in order
    """

    duplicate_events: Set[str] = field(default_factory=set)
    dropped_events: Set[str] = field(default_factory=set)
    history: List[RelayedMessage] = field(default_factory=list)
    _peers: Dict[str, "LocalTransport"] = field(default_factory=dict, init=False, repr=False)

    def connect(self, peer_id: str) -> LocalTransport:
        """
        Attach a new peer.

        Returns:
            Transport bound to `peer_id`
        """
        transport = LocalTransport(peer_id, self)
        self._peers[peer_id] = transport
        return transport

    def disconnect(self, peer_id: str) -> None:
        self._peers.pop(peer_id, None)

    def is_connected(self, peer_id: str) -> bool:
        return peer_id in self._peers

    def route(self, sender: str, event: str, payload: Payload, to: Optional[str]) -> None:
        """
        Queue delivery of one message.

        Messages without a recipient are recorded but go nowhere; the relay
        is the final consumer (e.g. call-ended-log).
        """
        message = RelayedMessage(sender=sender, event=event, payload=dict(payload), to=to)
        self.history.append(message)

        if to is None or event in self.dropped_events:
            return

        target = self._peers.get(to)
        if target is None:
            logger.debug(f"Relay: {to} is offline, {event} not delivered")
            return

        delivered_event = RELAY_REWRITES.get(event, event)
        body = dict(payload)
        body.pop("to", None)
        body.setdefault("from", sender)

        copies = 2 if event in self.duplicate_events else 1
        loop = asyncio.get_running_loop()
        for _ in range(copies):
            loop.call_soon(target.dispatch, delivered_event, dict(body))
        message.delivered = True

    def broadcast(self, event: str, payload: Payload, exclude: Optional[str] = None) -> None:
        """Deliver `event` to every attached peer except `exclude`."""
        loop = asyncio.get_running_loop()
        for peer_id, transport in list(self._peers.items()):
            if peer_id == exclude:
                continue
            loop.call_soon(transport.dispatch, event, dict(payload))

    def logout(self, user_id: str, reason: str = "logout") -> None:
        """Detach `user_id` and tell everyone else why."""
        self.disconnect(user_id)
        self.broadcast(EVENT_USER_LOGGED_OUT, {"userId": user_id, "reason": reason})

    def sent(self, event: str, sender: Optional[str] = None) -> List[RelayedMessage]:
        """Messages of one event type, optionally from one sender."""
        return [
            m
            for m in self.history
            if m.event == event and (sender is None or m.sender == sender)
        ]


class LocalTransport(SignalingTransport):
    """Transport endpoint attached to a `LocalRelay`."""

    def __init__(self, peer_id: str, relay: LocalRelay) -> None:
        super().__init__(peer_id)
        self.relay = relay

    async def send(self, event: str, payload: Payload, to: Optional[str] = None) -> None:
        if self._closed or not self.relay.is_connected(self.peer_id):
            raise TransportError(f"{self.peer_id} is not connected to the relay")
        self.relay.route(self.peer_id, event, with_recipient(payload, to), to)

    async def close(self) -> None:
        self.relay.disconnect(self.peer_id)
        await super().close()

    def _get_transport_name(self) -> str:
        return "Local"
