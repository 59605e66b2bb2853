"""
Socket.IO signalling transport.

Bridges the chat server's Socket.IO channel to the `SignalingTransport`
contract using python-socketio's asyncio client. The server is expected to
route on the `to` field of each payload, exactly as it does for the web and
mobile clients.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import socketio
from socketio.exceptions import BadNamespaceError
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from .._types import Handler, Payload, TransportError
from .._utils import logger
from ._base import SignalingTransport, Subscription, with_recipient


class SocketIOTransport(SignalingTransport):
    """
    Signalling over a python-socketio `AsyncClient`.

    Example:
        >>> transport = SocketIOTransport("alice")
        >>> await transport.connect("https://chat.example.com", auth={"token": jwt})
        >>> call = Call(session, transport)
    """

    def __init__(
        self,
        peer_id: str,
        client: Optional[socketio.AsyncClient] = None,
        namespace: Optional[str] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            peer_id: Local user id (the server addresses this client by it)
            client: Existing AsyncClient to share; a new one is created if None
            namespace: Socket.IO namespace (default namespace if None)
        """
        super().__init__(peer_id)
        self._client = client or socketio.AsyncClient(reconnection=True)
        self._namespace = namespace
        self._bridged: set[str] = set()

    @property
    def client(self) -> socketio.AsyncClient:
        return self._client

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    async def connect(
        self,
        url: str,
        auth: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Open the Socket.IO connection.

        Raises:
            TransportError: If the server refuses or is unreachable
        """
        try:
            await self._client.connect(
                url,
                auth=auth,
                headers=headers or {},
                namespaces=[self._namespace] if self._namespace else None,
            )
        except SocketIOConnectionError as e:
            raise TransportError(f"Cannot connect to {url}: {e}") from e
        logger.info(f"🔌 Signalling connected to {url} as {self.peer_id}")

    async def send(self, event: str, payload: Payload, to: Optional[str] = None) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        try:
            await self._client.emit(event, with_recipient(payload, to), namespace=self._namespace)
        except BadNamespaceError as e:
            raise TransportError(f"Cannot send {event}: {e}") from e

    def on(self, event: str, handler: Handler) -> Subscription:
        """
        Subscribe `handler` to `event`.

        The Socket.IO client gets one bridge per event name; local handlers
        are fanned out by `dispatch`.
        """
        if event not in self._bridged:
            self._bridged.add(event)
            self._client.on(event, handler=self._bridge(event), namespace=self._namespace)
        return super().on(event, handler)

    def _bridge(self, event: str):
        def receive(data: Any = None) -> None:
            payload = data if isinstance(data, dict) else {"data": data}
            self.dispatch(event, payload)

        return receive

    async def close(self) -> None:
        await super().close()
        if self._client.connected:
            await self._client.disconnect()

    def _get_transport_name(self) -> str:
        return "SocketIO"
