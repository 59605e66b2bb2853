"""
Offer/answer/ICE exchange for one call session.

`CallNegotiationStateMachine` turns signalling messages into operations on the
`MediaSessionController`, enforcing the ordering rules of the protocol:

- an offer is answered at most once, however often it is delivered
- ICE candidates are applied only after a remote description exists, in the
  order they arrived
- messages that arrive before local media is ready are held and replayed
  when `mark_initialized()` completes the initialization future
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from ._fsm import CallSession, NegotiationContext
from ._media import MediaSessionController
from ._models import IceCandidate, SessionDescription
from ._sdp import describe_sdp
from ._transports import SignalingTransport
from ._types import (
    CallConfig,
    NegotiationError,
    NegotiationState,
    NegotiationTimeoutError,
    PeerCallError,
)
from ._utils import (
    EVENT_CALL_ANSWER,
    EVENT_CALL_OFFER,
    EVENT_ICE_CANDIDATE,
    logger,
)


class CallNegotiationStateMachine:
    """
    Drives the WebRTC signalling exchange of one session.

    Roles are fixed by the session: only an initiator sends offers, only a
    receiver sends answers, so two offers can never cross.

    Example:
        >>> negotiation = CallNegotiationStateMachine(session, media, transport)
        >>> await media.initialize()
        >>> await negotiation.mark_initialized()
        >>> await negotiation.handle_call_accepted()   # initiator
    """

    def __init__(
        self,
        session: CallSession,
        media: MediaSessionController,
        transport: SignalingTransport,
        config: Optional[CallConfig] = None,
        context: Optional[NegotiationContext] = None,
    ) -> None:
        self.session = session
        self.media = media
        self.transport = transport
        self.config = config or CallConfig()
        self.context = context or NegotiationContext(
            max_pending_candidates=self.config.max_pending_candidates
        )

        self._initialized: Optional[asyncio.Future] = None
        self._offer_started = False
        self._applying_answer = False
        self._draining = False
        self._closed = False

        # Wire-level history, handy for diagnostics
        self.sent_offers: List[SessionDescription] = []
        self.sent_answers: List[SessionDescription] = []
        self.applied_candidates: List[IceCandidate] = []

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> asyncio.Future:
        """Future completed once local media and the peer connection exist."""
        if self._initialized is None:
            self._initialized = asyncio.get_running_loop().create_future()
        return self._initialized

    @property
    def is_initialized(self) -> bool:
        return self.context.is_initialized

    async def mark_initialized(self) -> None:
        """
        Complete two-phase initialization.

        Processes the offer held while uninitialized, then releases queued
        candidates that can now be applied (the rest stay queued).

        Raises:
            NegotiationError: If the held offer cannot be answered
        """
        if self.context.is_initialized or self._closed:
            return
        self.context.transition_to(NegotiationState.INITIALIZED)
        if not self.initialized.done():
            self.initialized.set_result(True)
        logger.debug(f"Negotiation {self.session.session_id} initialized")

        offer = self.context.take_pending_offer()
        if offer is not None:
            logger.info("📨 Processing offer received during initialization")
            await self._answer(offer)
        await self._drain_candidates()

    async def wait_initialized(self, timeout: Optional[float] = None) -> None:
        """
        Wait for `mark_initialized()`.

        Raises:
            NegotiationTimeoutError: If initialization does not finish in time
        """
        if self.context.is_initialized:
            return
        timeout = self.config.init_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(asyncio.shield(self.initialized), timeout)
        except asyncio.TimeoutError:
            raise NegotiationTimeoutError(
                f"Connection not ready after {timeout:g}s, cannot send offer"
            ) from None

    # ------------------------------------------------------------------
    # Initiator
    # ------------------------------------------------------------------

    async def handle_call_accepted(self) -> Optional[SessionDescription]:
        """
        Send the offer once the remote peer has accepted.

        Returns:
            The offer sent, or None if this side must not send one

        Raises:
            NegotiationTimeoutError: If initialization does not finish in time
            NegotiationError: If the offer cannot be created or sent
        """
        if not self.session.is_initiator:
            logger.warning("Ignoring call-accepted on the receiving side")
            return None
        if self._offer_started:
            logger.debug("Offer already sent, ignoring repeated call-accepted")
            return None
        self._offer_started = True

        await self.wait_initialized()
        if self._closed:
            return None

        try:
            offer = await self.media.create_offer()
            local = await self.media.set_local_description(offer)
            self.context.has_local_description = True
            self.context.transition_to(NegotiationState.OFFER_SENT)
            await self.transport.send(
                EVENT_CALL_OFFER,
                {"offer": local.to_dict(), "callType": self.session.media_kind.value},
                to=self.session.remote_peer_id,
            )
        except NegotiationError:
            raise
        except Exception as e:
            raise NegotiationError(f"Cannot send offer: {e}") from e

        self.sent_offers.append(local)
        logger.info(f"📤 Offer sent to {self.session.remote_peer_id}: {describe_sdp(local.sdp)}")
        return local

    async def handle_answer(self, data: Any) -> bool:
        """
        Apply the receiver's answer.

        Returns:
            True if the answer was applied, False for a duplicate or stray one

        Raises:
            SignalPayloadError: If the payload is not an answer
            NegotiationError: If the description cannot be applied
        """
        answer = SessionDescription.from_dict(data, expected_type="answer")
        if not self.session.is_initiator:
            logger.warning("Ignoring call-answer on the receiving side")
            return False
        if self.context.has_remote_description or self._applying_answer:
            logger.debug("Answer already applied, ignoring duplicate")
            return False
        if self.context.state != NegotiationState.OFFER_SENT:
            logger.warning(f"Answer received in state {self.context.state.value}, ignoring")
            return False

        self._applying_answer = True
        try:
            await self.media.set_remote_description(answer)
        except Exception as e:
            raise NegotiationError(f"Cannot apply answer: {e}") from e
        finally:
            self._applying_answer = False

        self.context.has_remote_description = True
        self.context.transition_to(NegotiationState.ANSWERED)
        logger.info(f"📥 Answer applied: {describe_sdp(answer.sdp)}")
        await self._drain_candidates()
        return True

    # ------------------------------------------------------------------
    # Receiver
    # ------------------------------------------------------------------

    async def handle_offer(self, data: Any) -> bool:
        """
        Answer an offer, or hold it until initialization completes.

        Returns:
            True if an answer was sent by this call

        Raises:
            SignalPayloadError: If the payload is not an offer
            NegotiationError: If answering fails (a later offer may retry)
        """
        offer = SessionDescription.from_dict(data, expected_type="offer")
        if self.session.is_initiator:
            logger.warning("Ignoring call-offer on the initiating side")
            return False
        if not self.context.is_initialized:
            if self.context.store_pending_offer(offer):
                logger.info("📨 Offer received before initialization, holding it")
            return False
        return await self._answer(offer)

    async def _answer(self, offer: SessionDescription) -> bool:
        if not self.context.can_process_offer():
            logger.warning("⚠️ Duplicate offer ignored")
            return False

        self.context.begin_offer()
        self.context.transition_to(NegotiationState.OFFER_RECEIVED)
        try:
            await self.media.set_remote_description(offer)
            self.context.has_remote_description = True
            answer = await self.media.create_answer()
            local = await self.media.set_local_description(answer)
            self.context.has_local_description = True
            await self.transport.send(
                EVENT_CALL_ANSWER,
                {"answer": local.to_dict()},
                to=self.session.remote_peer_id,
            )
        except Exception as e:
            self.context.abort_offer(remote_applied=self.media.has_remote_description)
            await self._drain_candidates()
            raise NegotiationError(f"Cannot answer offer: {e}") from e

        self.context.transition_to(NegotiationState.ANSWERED)
        self.context.finish_offer()
        self.sent_answers.append(local)
        logger.info(f"📤 Answer sent to {self.session.remote_peer_id}")

        await self._drain_candidates()
        return True

    # ------------------------------------------------------------------
    # ICE
    # ------------------------------------------------------------------

    async def handle_ice_candidate(self, data: Any) -> bool:
        """
        Apply a remote candidate now, or queue it until it can be applied.

        Returns:
            True if the candidate was applied immediately

        Raises:
            SignalPayloadError: If the payload carries no candidate
        """
        candidate = IceCandidate.from_dict(data)
        if self._closed:
            return False

        ready = self.context.can_apply_candidates()
        if ready and not self.context.pending_candidates and not self._draining:
            await self._apply(candidate)
            return True

        # Behind queued candidates (or too early): keep arrival order
        self.context.queue_candidate(candidate)
        if ready:
            await self._drain_candidates()
        return False

    async def _drain_candidates(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while not self._closed:
                batch = self.context.drain_candidates()
                if not batch:
                    break
                logger.info(f"🧊 Applying {len(batch)} queued ICE candidates")
                for candidate in batch:
                    await self._apply(candidate)
        finally:
            self._draining = False

    async def _apply(self, candidate: IceCandidate) -> None:
        try:
            await self.media.add_ice_candidate(candidate)
        except Exception as e:
            logger.error(f"❌ Error adding ICE candidate: {e}")
            return
        self.context.candidates_applied += 1
        self.applied_candidates.append(candidate)
        logger.debug("🧊 Added ICE candidate")

    async def send_candidate(self, candidate: IceCandidate) -> None:
        """Forward a local candidate to the remote peer (best effort)."""
        if self._closed:
            return
        try:
            await self.transport.send(
                EVENT_ICE_CANDIDATE,
                {"candidate": candidate.to_dict()},
                to=self.session.remote_peer_id,
            )
        except PeerCallError as e:
            logger.warning(f"Could not send ICE candidate: {e}")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def mark_stable(self) -> None:
        """Record that media is flowing after a completed exchange."""
        if self.context.state == NegotiationState.ANSWERED:
            self.context.transition_to(NegotiationState.STABLE)

    def close(self) -> None:
        """Stop processing and drop everything still queued. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._initialized is not None and not self._initialized.done():
            self._initialized.set_result(False)
        self.context.reset()

    def __repr__(self) -> str:
        return f"<CallNegotiationStateMachine({self.session.session_id}, {self.context!r})>"
