"""
Base transport abstractions for call signalling.

A signalling transport is a bidirectional message relay between identified
peers. The core only relies on a narrow contract: targeted `send`, plus
`on`/`off` subscription to named events. The transport provides no
deduplication; duplicate deliveries are the receiver's problem.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
from typing import Any, Dict, List, Optional

from .._types import Handler, Payload
from .._utils import logger


class Subscription:
    """
    Handle for one `on()` registration.

    Cancelling is idempotent, so a session can cancel every handle it holds
    at teardown without tracking which ones are still live.
    """

    def __init__(self, transport: SignalingTransport, event: str, handler: Handler) -> None:
        self.transport = transport
        self.event = event
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Remove the handler from the transport."""
        if not self._active:
            return
        self._active = False
        self.transport.off(self.event, self.handler)

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"<Subscription({self.event}, {state})>"


class SignalingTransport(abc.ABC):
    """
    Abstract base class for signalling transports.

    Subclasses implement `send` and feed inbound messages to `dispatch`.
    Handlers may be plain callables or coroutine functions; coroutines are
    scheduled as tasks so a slow handler never blocks the next delivery.
    """

    def __init__(self, peer_id: str) -> None:
        """
        Initialize transport for one local peer.

        Args:
            peer_id: Identifier the relay uses to address this peer
        """
        self.peer_id = peer_id
        self._handlers: Dict[str, List[Handler]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @abc.abstractmethod
    async def send(self, event: str, payload: Payload, to: Optional[str] = None) -> None:
        """
        Fire-and-forget message to one peer (or the relay when `to` is None).

        Args:
            event: Event name from the signalling vocabulary
            payload: JSON-serialisable body
            to: Remote peer id

        Raises:
            TransportError: If the transport is closed or cannot send
        """
        ...

    def on(self, event: str, handler: Handler) -> Subscription:
        """
        Subscribe `handler` to `event`.

        Returns:
            Subscription handle whose `cancel()` undoes this call
        """
        self._handlers.setdefault(event, []).append(handler)
        return Subscription(self, event, handler)

    def off(self, event: str, handler: Handler) -> None:
        """Unsubscribe `handler` from `event`."""
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    def handler_count(self, event: Optional[str] = None) -> int:
        """Number of registered handlers, for one event or in total."""
        if event is not None:
            return len(self._handlers.get(event, ()))
        return sum(len(h) for h in self._handlers.values())

    def dispatch(self, event: str, payload: Payload) -> None:
        """
        Deliver an inbound message to every handler of `event`.

        Handler errors are logged; one failing handler does not stop the rest.
        """
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(payload)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Signalling handler failed: {error!r}")

    async def close(self) -> None:
        """Close the transport and drop all handlers."""
        self._closed = True
        self._handlers.clear()
        for task in list(self._tasks):
            task.cancel()

    async def __aenter__(self) -> SignalingTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @abc.abstractmethod
    def _get_transport_name(self) -> str:
        """Return a short transport name for logs."""
        ...

    def __repr__(self) -> str:
        return f"<{self._get_transport_name()}Transport({self.peer_id})>"


def with_recipient(payload: Payload, to: Optional[str]) -> Dict[str, Any]:
    """Copy `payload` and stamp the `to` field the relay routes on."""
    body = dict(payload)
    if to is not None:
        body["to"] = to
    return body
