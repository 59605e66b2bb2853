"""
Call client: places, accepts and rejects calls for one local user.

The client shares one signalling transport between all of its calls and
keeps the ringing invitations it received until they are answered, declined
or withdrawn by the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ._call import Call
from ._events import STATE_CHANGE, CallEvent, Events
from ._fsm import SessionManager
from ._lifecycle import CallLogSink
from ._media import MediaDevices
from ._transports import SignalingTransport, Subscription
from ._types import (
    CallConfig,
    CallRole,
    CallState,
    MediaKind,
    Payload,
    PeerCallError,
    SignalPayloadError,
)
from ._utils import (
    EVENT_CALL_ACCEPTED,
    EVENT_CALL_CANCELLED,
    EVENT_CALL_ENDED,
    EVENT_CALL_REJECTED,
    EVENT_INCOMING_CALL,
    EVENT_INITIATE_CALL,
    EVENT_USER_LOGGED_OUT,
    logger,
)


@dataclass
class IncomingCall:
    """A ringing invitation that has not been answered yet."""

    caller_id: str
    caller_name: str
    media_kind: MediaKind
    received_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_payload(cls, payload: Payload) -> IncomingCall:
        """
        Parse an `incoming-call` message.

        Raises:
            SignalPayloadError: If the caller or call type is missing
        """
        caller_id = payload.get("from")
        if not caller_id:
            raise SignalPayloadError("incoming-call without caller id")
        try:
            media_kind = MediaKind(payload.get("callType") or MediaKind.VOICE.value)
        except ValueError as e:
            raise SignalPayloadError(f"Unknown call type: {payload.get('callType')!r}") from e
        return cls(
            caller_id=str(caller_id),
            caller_name=str(payload.get("fromName") or caller_id),
            media_kind=media_kind,
        )


class CallClient:
    """
    Entry point for applications: one instance per signed-in user.

    Example:
        >>> client = CallClient("alice", transport, display_name="Alice")
        >>> client.on_incoming_call = lambda invite: print(invite.caller_name)
        >>> call = await client.place_call("bob", MediaKind.VIDEO)
        >>> await call.wait_ended()
    """

    def __init__(
        self,
        user_id: str,
        transport: SignalingTransport,
        display_name: Optional[str] = None,
        config: Optional[CallConfig] = None,
        devices: Optional[MediaDevices] = None,
        events: Optional[Events] = None,
        log_sink: Optional[CallLogSink] = None,
        peer_connection_factory: Optional[Callable[[Any], Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the client and start listening for invitations.

        Args:
            user_id: Local user id, as the relay knows it
            transport: Signalling transport bound to `user_id`
            display_name: Name shown to the people this user calls
            config: Settings applied to every call
            devices: Capture devices applied to every call
            events: Events instance attached to every call
            log_sink: Call-log consumer applied to every call
            peer_connection_factory: Peer connection builder for every call
            clock: Monotonic clock for call timing
        """
        self.user_id = user_id
        self.transport = transport
        self.display_name = display_name or user_id
        self.config = config or CallConfig()
        self.devices = devices
        self.events = events
        self.log_sink = log_sink
        self.peer_connection_factory = peer_connection_factory
        self.clock = clock

        self.sessions = SessionManager()
        self.calls: Dict[str, Call] = {}
        self.incoming: Dict[str, IncomingCall] = {}

        self.on_incoming_call: Optional[Callable[[IncomingCall], Any]] = None
        self.on_incoming_withdrawn: Optional[Callable[[IncomingCall], Any]] = None

        self._subscriptions: List[Subscription] = [
            transport.on(EVENT_INCOMING_CALL, self._on_incoming_call),
            transport.on(EVENT_CALL_ENDED, self._on_invitation_withdrawn),
            transport.on(EVENT_CALL_CANCELLED, self._on_invitation_withdrawn),
            transport.on(EVENT_USER_LOGGED_OUT, self._on_user_logged_out),
        ]
        self._closed = False

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def place_call(
        self,
        remote_id: str,
        media_kind: MediaKind = MediaKind.VOICE,
        remote_name: str = "",
    ) -> Call:
        """
        Call `remote_id`.

        Local media is acquired before the invitation goes out, so the offer
        can be sent as soon as the remote side accepts.

        Returns:
            The ringing call (already ending if media could not be acquired)

        Raises:
            InvalidTransitionError: If a call with `remote_id` is in progress
        """
        session = self.sessions.create_session(
            self.user_id, remote_id, media_kind, CallRole.INITIATOR, remote_name
        )
        call = self._new_call(session)
        if not await call.start():
            return call

        try:
            await self.transport.send(
                EVENT_INITIATE_CALL,
                {
                    "from": self.user_id,
                    "fromName": self.display_name,
                    "callType": media_kind.value,
                },
                to=remote_id,
            )
        except PeerCallError as e:
            logger.error(f"❌ Could not ring {remote_id}: {e}")
            await call.hangup()
            raise
        logger.info(f"📤 Ringing {session.remote_display_name}")
        return call

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    def _notify(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"Error in client callback: {e}")
            return
        if inspect.isawaitable(result):
            asyncio.ensure_future(result)

    def _on_incoming_call(self, payload: Payload) -> None:
        try:
            invite = IncomingCall.from_payload(payload)
        except SignalPayloadError as e:
            logger.warning(f"Malformed incoming call ignored: {e}")
            return
        if invite.caller_id in self.incoming:
            logger.debug(f"Repeated invitation from {invite.caller_id}")
            return
        if self.sessions.find_active(invite.caller_id) is not None:
            logger.warning(f"Already in a call with {invite.caller_id}, ignoring invitation")
            return

        self.incoming[invite.caller_id] = invite
        logger.info(f"📲 Incoming {invite.media_kind.value} call from {invite.caller_name}")
        self._notify(self.on_incoming_call, invite)

    def _withdraw(self, caller_id: Optional[str]) -> None:
        invite = self.incoming.pop(caller_id, None) if caller_id else None
        if invite is None:
            return
        logger.info(f"📴 {invite.caller_name} hung up before the call was answered")
        self._notify(self.on_incoming_withdrawn, invite)

    def _on_invitation_withdrawn(self, payload: Payload) -> None:
        self._withdraw(payload.get("from"))

    def _on_user_logged_out(self, payload: Payload) -> None:
        self._withdraw(payload.get("userId"))

    async def accept(self, caller_id: str) -> Call:
        """
        Answer a ringing invitation.

        Returns:
            The call; it sends its answer when the caller's offer arrives

        Raises:
            PeerCallError: If there is no invitation from `caller_id`
        """
        invite = self.incoming.pop(caller_id, None)
        if invite is None:
            raise PeerCallError(f"No incoming call from {caller_id}")

        session = self.sessions.create_session(
            self.user_id,
            caller_id,
            invite.media_kind,
            CallRole.RECEIVER,
            invite.caller_name,
        )
        call = self._new_call(session)
        if not await call.start():
            return call

        try:
            await self.transport.send(EVENT_CALL_ACCEPTED, {}, to=caller_id)
        except PeerCallError as e:
            logger.error(f"❌ Could not accept call from {caller_id}: {e}")
            await call.hangup()
            raise
        logger.info(f"✅ Accepted call from {invite.caller_name}")
        return call

    async def reject(self, caller_id: str) -> bool:
        """
        Decline a ringing invitation.

        Returns:
            False if there was no invitation from `caller_id`
        """
        invite = self.incoming.pop(caller_id, None)
        if invite is None:
            return False
        try:
            await self.transport.send(EVENT_CALL_REJECTED, {}, to=caller_id)
        except PeerCallError as e:
            logger.warning(f"Could not decline call from {caller_id}: {e}")
        logger.info(f"🚫 Declined call from {invite.caller_name}")
        return True

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _new_call(self, session) -> Call:
        call = Call(
            session,
            self.transport,
            config=self.config,
            devices=self.devices,
            events=self.events,
            log_sink=self.log_sink,
            peer_connection_factory=self.peer_connection_factory,
            clock=self.clock,
        )
        self.calls[session.session_id] = call

        def forget(event: CallEvent) -> None:
            if event.state == CallState.ENDED:
                self.calls.pop(session.session_id, None)
                self.sessions.remove_session(session.session_id)

        call.on(STATE_CHANGE, forget)
        return call

    @property
    def active_call(self) -> Optional[Call]:
        """The call that has not ended yet, if any."""
        for call in self.calls.values():
            if not call.is_ended:
                return call
        return None

    async def close(self) -> None:
        """Hang up every call and stop listening. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.cancel()
        for call in list(self.calls.values()):
            await call.hangup()
        self.incoming.clear()

    async def __aenter__(self) -> CallClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<CallClient({self.user_id}, {len(self.calls)} calls)>"
