"""
Simplified event system for call notifications.

This module provides a declarative, decorator-based API for reacting to call
events (state changes, streams, errors, duration ticks and call-log records),
plus a small dispatcher that also accepts plain listener callbacks.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from ._types import CallState
from ._utils import logger

if TYPE_CHECKING:
    from ._fsm import CallSession
    from ._models import CallLogRecord


STATE_CHANGE = "state-change"
LOCAL_STREAM = "local-stream"
REMOTE_STREAM = "remote-stream"
ERROR = "error"
DURATION = "duration"
CALL_LOG = "call-log"
WHITEBOARD = "whiteboard"
ANY = "*"

EVENT_TYPES = (
    STATE_CHANGE,
    LOCAL_STREAM,
    REMOTE_STREAM,
    ERROR,
    DURATION,
    CALL_LOG,
    WHITEBOARD,
)


# ============================================================================
# Call Event
# ============================================================================


@dataclass
class CallEvent:
    """
    A notification about one call.

    Only the fields relevant to `type` are set.
    """

    type: str
    session: Optional["CallSession"] = None

    # state-change
    state: Optional[CallState] = None
    previous_state: Optional[CallState] = None

    # local-stream / remote-stream
    stream: Any = None

    # error
    error: Optional[str] = None
    fatal: bool = False

    # duration
    duration: Optional[int] = None

    # call-log
    record: Optional["CallLogRecord"] = None

    # Flexible metadata storage
    metadata: dict = field(default_factory=dict)


# ============================================================================
# Event Handler Decorator
# ============================================================================


def event_handler(
    event_type: Optional[Union[str, tuple[str, ...]]] = None,
    *,
    state: Optional[Union[CallState, tuple[CallState, ...]]] = None,
):
    """
    Decorator for call event handlers.

    Args:
        event_type: Event type(s) to match ('state-change', 'error', ...).
                    If None, matches all events.
        state: For state-change events, the new state(s) to match.
               If None, matches every state.

    Example:
        >>> class MyEvents(Events):
        ...     @event_handler('state-change', state=CallState.CONNECTED)
        ...     def on_connected(self, event):
        ...         print("Media is flowing")
        ...
        ...     @event_handler('error')
        ...     def on_error(self, event):
        ...         print(event.error)
    """

    def decorator(func: Callable) -> Callable:
        if event_type is None:
            types = None
        elif isinstance(event_type, str):
            types = (event_type,)
        else:
            types = tuple(event_type)

        if state is None:
            states = None
        elif isinstance(state, CallState):
            states = (state,)
        else:
            states = tuple(state)

        func._event_handler_types = types
        func._event_handler_states = states
        func._is_event_handler = True

        return func

    return decorator


class Events:
    """
    Base class for call event handlers with declarative API.

    Inherit from this class and either override `on_event(event)` or define
    methods decorated with `@event_handler(...)`.

    Usage with Call:
        >>> call = Call(session, transport, events=MyEvents())
    """

    event_handler = staticmethod(event_handler)

    def __init__(self):
        """Initialize Events instance and discover decorated handlers."""
        self._handlers: list[tuple[Callable, Optional[tuple], Optional[tuple]]] = []
        self._discover_handlers()

    def _discover_handlers(self):
        """Discover all methods decorated with @event_handler."""
        for name in dir(self):
            if name.startswith("_") or name in ("event_handler", "on_event"):
                continue

            attr = getattr(self, name)
            if callable(attr) and getattr(attr, "_is_event_handler", False):
                types = getattr(attr, "_event_handler_types", None)
                states = getattr(attr, "_event_handler_states", None)
                self._handlers.append((attr, types, states))

        logger.debug(
            f"Discovered {len(self._handlers)} event handlers in {self.__class__.__name__}"
        )

    def on_event(self, event: CallEvent) -> None:
        """
        Called for every event before the decorated handlers.

        Override this method to observe all call events in one place.
        """
        pass

    def _matches(
        self, event: CallEvent, types: Optional[tuple], states: Optional[tuple]
    ) -> bool:
        if types is not None and event.type not in types:
            return False
        if states is not None and event.state not in states:
            return False
        return True

    def _call_handlers(self, event: CallEvent) -> None:
        """Call on_event followed by matching decorated handlers."""
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Error in on_event of {self.__class__.__name__}: {e}")

        for handler, types, states in self._handlers:
            if not self._matches(event, types, states):
                continue
            try:
                _schedule_if_awaitable(handler(event))
            except Exception as e:
                logger.error(f"Error in event handler {handler.__name__}: {e}")


def _schedule_if_awaitable(result: Any) -> None:
    if inspect.isawaitable(result):
        asyncio.ensure_future(result)


class EventDispatcher:
    """
    Fans call events out to an optional `Events` instance and to listeners.

    Listeners registered with `on()` get an unsubscribe callable back, so a
    caller can drop its interest without keeping a reference to the callback.
    """

    def __init__(self, events: Optional[Events] = None) -> None:
        self.events = events
        self._listeners: dict[str, list[Callable[[CallEvent], Any]]] = {}

    def on(self, event_type: str, listener: Callable[[CallEvent], Any]) -> Callable[[], None]:
        """
        Register a listener for one event type (or "*" for all).

        Returns:
            Callable that removes the listener
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.off(event_type, listener)

        return unsubscribe

    def off(self, event_type: str, listener: Callable[[CallEvent], Any]) -> None:
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: CallEvent) -> None:
        """Deliver `event`; listener errors are logged, never raised."""
        if self.events is not None:
            self.events._call_handlers(event)

        for key in (event.type, ANY):
            for listener in list(self._listeners.get(key, ())):
                try:
                    _schedule_if_awaitable(listener(event))
                except Exception as e:
                    logger.error(f"Error in {event.type} listener: {e}")
