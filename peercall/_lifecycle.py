"""
Call lifecycle: state transitions, timing and the call log.

The lifecycle owns the single path into ENDED. Whatever triggers termination
(hangup, remote signal, media or negotiation failure), `end()` runs once:
it notifies the remote peer, releases media and emits exactly one
`CallLogRecord`.
"""

from __future__ import annotations

import abc
import asyncio
import time
from typing import Callable, List, Optional

from ._events import CALL_LOG, DURATION, STATE_CHANGE, CallEvent, EventDispatcher
from ._fsm import CallSession
from ._media import MediaSessionController
from ._models import CallLogRecord
from ._transports import SignalingTransport
from ._types import (
    CallConfig,
    CallState,
    CallStatus,
    PeerCallError,
    TerminationCause,
)
from ._utils import EVENT_CALL_ENDED_LOG, EVENT_END_CALL, format_duration, logger


# ============================================================================
# Call-log sinks
# ============================================================================


class CallLogSink(abc.ABC):
    """Consumer of call-log records (a REST endpoint, a database, ...)."""

    @abc.abstractmethod
    async def record(self, record: CallLogRecord) -> None:
        """Store one record."""
        ...


class MemoryCallLogSink(CallLogSink):
    """Keeps records in a list."""

    def __init__(self) -> None:
        self.records: List[CallLogRecord] = []

    async def record(self, record: CallLogRecord) -> None:
        self.records.append(record)


class TransportCallLogSink(CallLogSink):
    """Sends records to the relay as `call-ended-log`; the server persists them."""

    def __init__(self, transport: SignalingTransport) -> None:
        self.transport = transport

    async def record(self, record: CallLogRecord) -> None:
        await self.transport.send(EVENT_CALL_ENDED_LOG, record.to_dict())


def classify_call(previous_state: CallState, cause: TerminationCause) -> CallStatus:
    """
    Classify a terminated call for the call log.

    Connected calls are completed. Calls that never connected (ringing or
    still connecting) are cancelled when this side gave up and missed when
    the remote side ended them.
    """
    if previous_state == CallState.CONNECTED:
        return CallStatus.COMPLETED
    return CallStatus.MISSED if cause.by_remote else CallStatus.CANCELLED


# ============================================================================
# Lifecycle manager
# ============================================================================


class CallLifecycleManager:
    """
    Moves a `CallSession` through ringing → connecting → connected → ended.

    `mark_connected()` may be triggered by the first remote track or by the
    peer connection reporting `connected`; whichever comes first wins and the
    duration ticker starts once.
    """

    def __init__(
        self,
        session: CallSession,
        transport: SignalingTransport,
        media: MediaSessionController,
        sink: Optional[CallLogSink] = None,
        events: Optional[EventDispatcher] = None,
        config: Optional[CallConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.session = session
        self.transport = transport
        self.media = media
        self.sink = sink or TransportCallLogSink(transport)
        self.events = events or EventDispatcher()
        self.config = config or CallConfig()
        self.clock = clock or time.monotonic

        self.cause: Optional[TerminationCause] = None
        self.record: Optional[CallLogRecord] = None
        self.timer_starts = 0
        self._ticker: Optional[asyncio.Task] = None
        self._ending = False

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def duration(self) -> int:
        """Whole seconds connected so far (or in total, once ended)."""
        return self.session.connected_duration(self.clock())

    def _transition(self, new_state: CallState) -> CallState:
        previous = self.session.transition_to(new_state, at=self.clock())
        self.events.emit(
            CallEvent(
                type=STATE_CHANGE,
                session=self.session,
                state=new_state,
                previous_state=previous,
            )
        )
        return previous

    def mark_connecting(self) -> bool:
        """
        Signalling is underway (offer accepted, or answer sent).

        Returns:
            False if the call is already past ringing
        """
        if self.session.state != CallState.RINGING:
            return False
        self._transition(CallState.CONNECTING)
        logger.info(f"📞 Call {self.session.session_id} connecting")
        return True

    def mark_connected(self) -> bool:
        """
        Media is flowing. Starts the duration ticker the first time only.

        Returns:
            False for repeated triggers or a call that already ended
        """
        if self.timer_starts:
            logger.debug("⚠️ Timer already started, skipping")
            return False
        if not self.session.can_transition_to(CallState.CONNECTED):
            return False

        self._transition(CallState.CONNECTED)
        self.timer_starts += 1
        self._ticker = asyncio.ensure_future(self._tick())
        logger.info(f"✅ Call {self.session.session_id} connected, timer started")
        return True

    async def _tick(self) -> None:
        while self.session.state == CallState.CONNECTED:
            await asyncio.sleep(self.config.tick_interval)
            if self.session.state != CallState.CONNECTED:
                break
            self.events.emit(
                CallEvent(type=DURATION, session=self.session, duration=self.duration)
            )

    async def end(self, cause: TerminationCause) -> Optional[CallLogRecord]:
        """
        Terminate the call. Safe from any state and safe to repeat.

        Args:
            cause: What ended the call; decides the log classification

        Returns:
            The call-log record, or None if the call had already ended
        """
        if self._ending or self.session.is_ended():
            logger.debug(f"Call {self.session.session_id} already ended")
            return None
        self._ending = True
        self.cause = cause

        if self._ticker is not None and self._ticker is not asyncio.current_task():
            self._ticker.cancel()

        previous = self.session.state
        try:
            await self.transport.send(
                EVENT_END_CALL,
                {"callState": previous.value},
                to=self.session.remote_peer_id,
            )
        except PeerCallError as e:
            logger.warning(f"Could not notify {self.session.remote_peer_id} of call end: {e}")

        self._transition(CallState.ENDED)

        try:
            await self.media.release()
        except Exception as e:
            logger.error(f"❌ Media release failed: {e}")

        duration = self.session.connected_duration()
        record = CallLogRecord(
            receiver_id=self.session.remote_peer_id,
            call_type=self.session.media_kind,
            duration=duration,
            call_status=classify_call(previous, cause),
        )
        self.record = record
        logger.info(
            f"📴 Call {self.session.session_id} ended ({cause.value}): "
            f"{record.call_status.value}, {format_duration(duration)}"
        )

        try:
            await self.sink.record(record)
        except Exception as e:
            logger.error(f"❌ Could not store call log: {e}")
        self.events.emit(CallEvent(type=CALL_LOG, session=self.session, record=record))
        return record

    def __repr__(self) -> str:
        return f"<CallLifecycleManager({self.session.session_id}, {self.session.state.value})>"
