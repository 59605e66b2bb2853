"""
One peer-to-peer call, from ringing to the call log.

`Call` composes the media controller, the negotiation state machine and the
lifecycle manager of a single `CallSession`, subscribes them to the
signalling transport and owns every background task and subscription of the
session, so teardown is one `end()` away.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from ._events import (
    ERROR,
    LOCAL_STREAM,
    REMOTE_STREAM,
    WHITEBOARD,
    CallEvent,
    EventDispatcher,
    Events,
)
from ._fsm import CallSession
from ._lifecycle import CallLifecycleManager, CallLogSink
from ._media import MediaDevices, MediaSessionController, RenderingSink
from ._models import CallLogRecord, IceCandidate
from ._negotiation import CallNegotiationStateMachine
from ._transports import SignalingTransport, Subscription
from ._types import (
    CallConfig,
    CallState,
    MediaAcquisitionError,
    MediaError,
    NegotiationError,
    NegotiationTimeoutError,
    Payload,
    PeerCallError,
    PeerConnectionState,
    ScreenShareError,
    SignalPayloadError,
    TerminationCause,
)
from ._utils import (
    EVENT_CALL_ACCEPTED,
    EVENT_CALL_ANSWER,
    EVENT_CALL_CANCELLED,
    EVENT_CALL_ENDED,
    EVENT_CALL_OFFER,
    EVENT_CALL_REJECTED,
    EVENT_ICE_CANDIDATE,
    EVENT_USER_LOGGED_OUT,
    EVENT_WHITEBOARD_TOGGLE,
    logger,
    logout_message,
)


class Call:
    """
    A single call session wired to a signalling transport.

    Example:
        >>> session = CallSession("alice", "bob", MediaKind.VIDEO, CallRole.INITIATOR)
        >>> call = Call(session, transport, events=MyEvents())
        >>> await call.start()
        >>> ...
        >>> record = await call.hangup()
    """

    def __init__(
        self,
        session: CallSession,
        transport: SignalingTransport,
        config: Optional[CallConfig] = None,
        devices: Optional[MediaDevices] = None,
        events: Optional[Events] = None,
        log_sink: Optional[CallLogSink] = None,
        local_sink: Optional[RenderingSink] = None,
        remote_sink: Optional[RenderingSink] = None,
        peer_connection_factory: Optional[Callable[[Any], Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the call.

        Args:
            session: Session this call drives (role and media kind included)
            transport: Shared signalling transport
            config: Timeouts and ICE servers
            devices: Capture devices (aiortc MediaPlayer by default)
            events: Optional Events instance receiving call events
            log_sink: Call-log consumer (the relay by default)
            local_sink: Rendering sink for the local preview
            remote_sink: Rendering sink for the remote media
            peer_connection_factory: Builds the peer connection from an
                RTCConfiguration (aiortc RTCPeerConnection by default)
            clock: Monotonic clock used for call timing
        """
        self.session = session
        self.transport = transport
        self.config = config or CallConfig()
        self.dispatcher = EventDispatcher(events)

        self.media = MediaSessionController(
            session,
            self.config,
            devices=devices,
            local_sink=local_sink,
            remote_sink=remote_sink,
            peer_connection_factory=peer_connection_factory,
        )
        self.negotiation = CallNegotiationStateMachine(
            session, self.media, transport, self.config
        )
        self.lifecycle = CallLifecycleManager(
            session,
            transport,
            self.media,
            sink=log_sink,
            events=self.dispatcher,
            config=self.config,
            clock=clock,
        )

        self.media.on_ice_candidate = self._on_local_candidate
        self.media.on_remote_track = self._on_remote_track
        self.media.on_connection_state = self._on_connection_state
        self.media.on_error = self._on_media_error

        self.whiteboard_open = False
        self.errors: List[str] = []

        self._subscriptions: List[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._ring_timer: Optional[asyncio.Task] = None
        self._ended = asyncio.Event()
        self._started = False
        self._ending = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def remote_peer_id(self) -> str:
        return self.session.remote_peer_id

    @property
    def record(self) -> Optional[CallLogRecord]:
        """The call-log record, once the call has ended."""
        return self.lifecycle.record

    @property
    def is_ended(self) -> bool:
        return self._ending or self.session.is_ended()

    def on(self, event_type: str, listener: Callable[[CallEvent], Any]) -> Callable[[], None]:
        """Register a call event listener; returns an unsubscribe callable."""
        return self.dispatcher.on(event_type, listener)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _subscribe(self) -> None:
        handlers = {
            EVENT_CALL_REJECTED: self._on_call_rejected,
            EVENT_CALL_CANCELLED: self._on_call_cancelled,
            EVENT_CALL_OFFER: self._on_call_offer,
            EVENT_CALL_ANSWER: self._on_call_answer,
            EVENT_ICE_CANDIDATE: self._on_ice_candidate,
            EVENT_CALL_ENDED: self._on_call_ended,
            EVENT_USER_LOGGED_OUT: self._on_user_logged_out,
            EVENT_WHITEBOARD_TOGGLE: self._on_whiteboard_toggle,
        }
        if self.session.is_initiator:
            handlers[EVENT_CALL_ACCEPTED] = self._on_call_accepted

        for event, handler in handlers.items():
            self._subscriptions.append(self.transport.on(event, handler))

    async def start(self) -> bool:
        """
        Subscribe to signalling, acquire media and complete initialization.

        Messages that arrive while media is being acquired are held by the
        negotiation state machine and processed when initialization ends.

        Returns:
            False if local media could not be acquired (the call then ends
            after `media_failure_delay`)
        """
        if self._started:
            return not self.is_ended
        self._started = True
        self._subscribe()

        logger.info(
            f"📞 {'Calling' if self.session.is_initiator else 'Incoming call from'} "
            f"{self.session.remote_display_name} ({self.session.media_kind.value})"
        )

        try:
            await self.media.initialize()
        except MediaAcquisitionError as e:
            self._fatal(e, TerminationCause.MEDIA_FAILURE, self.config.media_failure_delay)
            return False
        except MediaError as e:
            # Ended while the devices were opening
            logger.debug(f"Media not started: {e}")
            return False

        self.dispatcher.emit(
            CallEvent(type=LOCAL_STREAM, session=self.session, stream=self.media.local_stream)
        )

        try:
            await self.negotiation.mark_initialized()
        except NegotiationError as e:
            self._report(e)
        self._after_answer()

        if self.session.is_initiator and self.config.ring_timeout:
            self._ring_timer = self._spawn(self._ring_timeout())
        return True

    async def wait_ended(self, timeout: Optional[float] = None) -> Optional[CallLogRecord]:
        """Block until the call has ended; returns its call-log record."""
        await asyncio.wait_for(self._ended.wait(), timeout)
        return self.record

    # ------------------------------------------------------------------
    # Task helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Call task failed: {task.exception()!r}")

    def _report(self, error: Exception, fatal: bool = False) -> None:
        message = str(error)
        self.errors.append(message)
        logger.error(f"❌ {message}")
        self.dispatcher.emit(
            CallEvent(type=ERROR, session=self.session, error=message, fatal=fatal)
        )

    def _fatal(self, error: Exception, cause: TerminationCause, delay: float) -> None:
        """Surface a fatal error, then end the call once it has been readable."""
        self._report(error, fatal=True)
        self._spawn(self._end_later(cause, delay))

    async def _end_later(self, cause: TerminationCause, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.end(cause)

    async def _ring_timeout(self) -> None:
        await asyncio.sleep(self.config.ring_timeout)
        if self.session.state == CallState.RINGING:
            logger.info(f"⏰ No answer from {self.session.remote_display_name}")
            await self.end(TerminationCause.RING_TIMEOUT)

    def _cancel_ring_timer(self) -> None:
        if self._ring_timer is not None and self._ring_timer is not asyncio.current_task():
            self._ring_timer.cancel()
        self._ring_timer = None

    def _from_remote(self, payload: Payload) -> bool:
        sender = payload.get("from")
        if sender is not None and sender != self.session.remote_peer_id:
            logger.debug(f"Ignoring message from {sender}, not part of this call")
            return False
        return True

    def _after_answer(self) -> None:
        if not self.session.is_initiator and self.negotiation.context.has_local_description:
            self.lifecycle.mark_connecting()

    # ------------------------------------------------------------------
    # Signalling handlers
    # ------------------------------------------------------------------

    async def _on_call_accepted(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        logger.info(f"✅ {self.session.remote_display_name} accepted the call")
        self._cancel_ring_timer()
        self.lifecycle.mark_connecting()
        try:
            await self.negotiation.handle_call_accepted()
        except NegotiationTimeoutError as e:
            self._fatal(e, TerminationCause.NEGOTIATION_TIMEOUT, self.config.fatal_delay)
        except NegotiationError as e:
            self._report(e)

    async def _on_call_rejected(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        self._report(PeerCallError(f"{self.session.remote_display_name} declined the call"))
        await self.end(TerminationCause.REJECTED)

    async def _on_call_cancelled(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        logger.info(f"📴 {self.session.remote_display_name} cancelled the call")
        await self.end(TerminationCause.CANCELLED_BY_REMOTE)

    async def _on_call_offer(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        try:
            await self.negotiation.handle_offer(payload.get("offer"))
        except SignalPayloadError as e:
            logger.warning(f"Malformed offer ignored: {e}")
            return
        except NegotiationError as e:
            self._report(e)
            return
        self._after_answer()

    async def _on_call_answer(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        try:
            await self.negotiation.handle_answer(payload.get("answer"))
        except SignalPayloadError as e:
            logger.warning(f"Malformed answer ignored: {e}")
        except NegotiationError as e:
            self._report(e)

    async def _on_ice_candidate(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        try:
            await self.negotiation.handle_ice_candidate(payload.get("candidate"))
        except SignalPayloadError as e:
            logger.warning(f"Malformed ICE candidate ignored: {e}")

    async def _on_call_ended(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        logger.info(f"📞 {self.session.remote_display_name} ended the call")
        await self.end(TerminationCause.REMOTE_HANGUP)

    async def _on_user_logged_out(self, payload: Payload) -> None:
        if self.is_ended or payload.get("userId") != self.session.remote_peer_id:
            return
        reason = payload.get("reason") or "logout"
        logger.info(f"🚪 {self.session.remote_display_name} logged out ({reason}), ending call")
        self._report(
            PeerCallError(logout_message(self.session.remote_display_name, reason)),
            fatal=True,
        )
        await self.end(TerminationCause.REMOTE_LOGOUT)

    def _on_whiteboard_toggle(self, payload: Payload) -> None:
        if self.is_ended or not self._from_remote(payload):
            return
        self.whiteboard_open = bool(payload.get("isOpen"))
        self.dispatcher.emit(
            CallEvent(
                type=WHITEBOARD,
                session=self.session,
                metadata={"is_open": self.whiteboard_open},
            )
        )

    # ------------------------------------------------------------------
    # Media callbacks
    # ------------------------------------------------------------------

    async def _on_local_candidate(self, candidate: IceCandidate) -> None:
        await self.negotiation.send_candidate(candidate)

    def _on_remote_track(self, track: Any, stream: Any) -> None:
        if self.is_ended:
            return
        self.dispatcher.emit(CallEvent(type=REMOTE_STREAM, session=self.session, stream=stream))
        self._connected()

    def _on_connection_state(self, state: PeerConnectionState) -> None:
        if self.is_ended:
            return
        if state == PeerConnectionState.CONNECTED:
            self._connected()
        elif state == PeerConnectionState.FAILED:
            self._fatal(
                PeerCallError("Connection failed"),
                TerminationCause.CONNECTION_FAILED,
                self.config.fatal_delay,
            )

    def _on_media_error(self, error: Exception) -> None:
        self._report(error)

    def _connected(self) -> None:
        self._cancel_ring_timer()
        if self.lifecycle.mark_connected():
            self.negotiation.mark_stable()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def toggle_mute(self) -> bool:
        """Flip the microphone; returns True when muted."""
        return self.media.toggle_mute()

    def toggle_camera(self) -> bool:
        """Flip the camera; returns True when the camera is off."""
        return self.media.toggle_camera()

    async def start_screen_share(self) -> bool:
        """
        Share the screen in place of the camera.

        Returns:
            False if sharing could not start (the call carries on)
        """
        try:
            await self.media.start_screen_share()
        except ScreenShareError as e:
            self._report(e)
            return False
        return True

    async def stop_screen_share(self) -> bool:
        """
        Go back to the camera.

        Returns:
            False if the camera could not be restored (the call carries on)
        """
        try:
            await self.media.stop_screen_share()
        except ScreenShareError as e:
            self._report(e)
            return False
        return True

    async def switch_camera(self, facing: Optional[str] = None) -> Optional[str]:
        """Swap front/back camera; returns the new facing mode, or None on failure."""
        try:
            return await self.media.switch_camera(facing)
        except ScreenShareError as e:
            self._report(e)
            return None

    async def toggle_whiteboard(self, is_open: Optional[bool] = None) -> bool:
        """Open or close the shared whiteboard on both sides."""
        self.whiteboard_open = (not self.whiteboard_open) if is_open is None else is_open
        try:
            await self.transport.send(
                EVENT_WHITEBOARD_TOGGLE,
                {"isOpen": self.whiteboard_open},
                to=self.session.remote_peer_id,
            )
        except PeerCallError as e:
            self._report(e)
        return self.whiteboard_open

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def hangup(self) -> Optional[CallLogRecord]:
        """End the call from this side."""
        return await self.end(TerminationCause.LOCAL_HANGUP)

    async def end(
        self, cause: TerminationCause = TerminationCause.LOCAL_HANGUP
    ) -> Optional[CallLogRecord]:
        """
        Tear the call down. Idempotent.

        Returns:
            The call-log record the first time, None afterwards
        """
        if self._ending:
            return None
        self._ending = True

        self._cancel_ring_timer()
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        self.negotiation.close()

        try:
            return await self.lifecycle.end(cause)
        finally:
            self._ended.set()

    async def __aenter__(self) -> Call:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.end()

    def __repr__(self) -> str:
        return f"<Call({self.session!r})>"
