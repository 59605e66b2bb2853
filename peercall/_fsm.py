"""
Finite State Machines (FSM) for calls and their negotiation.

This module holds the session-owned state for a peer-to-peer call:
- CallSession: who is calling whom, the lifecycle state and timing
- NegotiationContext: offer/answer bookkeeping and early-message queues

FSM Overview:
=============

Call lifecycle:
  RINGING → CONNECTING → CONNECTED → ENDED
     ↓           ↓
   ENDED   (no backward moves)

Negotiation:
  UNINITIALIZED → INITIALIZED → OFFER_SENT     → ANSWERED → STABLE  (initiator)
                              → OFFER_RECEIVED → ANSWERED → STABLE  (receiver)

The guards live here as methods so they can be tested without any media or
network in place.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from ._models import IceCandidate, SessionDescription
from ._types import (
    CallRole,
    CallState,
    InvalidTransitionError,
    MediaKind,
    NegotiationState,
)
from ._utils import MAX_PENDING_CANDIDATES, logger, session_id_for

# Allowed lifecycle moves. Anything else is a programming error.
CALL_TRANSITIONS: Dict[CallState, frozenset] = {
    CallState.RINGING: frozenset(
        {CallState.CONNECTING, CallState.CONNECTED, CallState.ENDED}
    ),
    CallState.CONNECTING: frozenset({CallState.CONNECTED, CallState.ENDED}),
    CallState.CONNECTED: frozenset({CallState.ENDED}),
    CallState.ENDED: frozenset(),
}

NEGOTIATION_TRANSITIONS: Dict[NegotiationState, frozenset] = {
    NegotiationState.UNINITIALIZED: frozenset({NegotiationState.INITIALIZED}),
    NegotiationState.INITIALIZED: frozenset(
        {NegotiationState.OFFER_SENT, NegotiationState.OFFER_RECEIVED}
    ),
    NegotiationState.OFFER_SENT: frozenset({NegotiationState.ANSWERED}),
    NegotiationState.OFFER_RECEIVED: frozenset(
        {NegotiationState.ANSWERED, NegotiationState.INITIALIZED}
    ),
    NegotiationState.ANSWERED: frozenset({NegotiationState.STABLE}),
    NegotiationState.STABLE: frozenset(),
}


@dataclass
class CallSession:
    """
    Represents one active or historical call.

    The role is fixed at creation. `connected_at` is set at most once and only
    together with the CONNECTED state.
    """

    # Identity
    local_peer_id: str
    remote_peer_id: str
    media_kind: MediaKind = MediaKind.VOICE
    role: CallRole = CallRole.INITIATOR
    session_id: str = ""

    # State
    state: CallState = CallState.RINGING

    # Timing (monotonic clock values)
    started_at: float = field(default_factory=time.monotonic)
    connected_at: Optional[float] = None
    ended_at: Optional[float] = None

    # Active local tracks keyed by kind ("audio", "video")
    tracks: Dict[str, Any] = field(default_factory=dict)

    # Display name of the remote peer, used in user-facing messages
    remote_display_name: str = ""

    # Metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.session_id:
            self.session_id = session_id_for(self.local_peer_id, self.remote_peer_id)
        if not self.remote_display_name:
            self.remote_display_name = self.remote_peer_id

    @property
    def is_initiator(self) -> bool:
        return self.role == CallRole.INITIATOR

    @property
    def is_video(self) -> bool:
        return self.media_kind == MediaKind.VIDEO

    def can_transition_to(self, new_state: CallState) -> bool:
        """Check if the lifecycle allows moving to `new_state`."""
        return new_state in CALL_TRANSITIONS[self.state]

    def transition_to(self, new_state: CallState, at: Optional[float] = None) -> CallState:
        """
        Transition to a new state.

        Args:
            new_state: The new state
            at: Clock value of the transition (defaults to now)

        Returns:
            The previous state

        Raises:
            InvalidTransitionError: If the move is not in the transition table
        """
        if not self.can_transition_to(new_state):
            raise InvalidTransitionError(
                f"Cannot move call {self.session_id} from {self.state.value} to {new_state.value}"
            )

        now = time.monotonic() if at is None else at
        old_state = self.state
        self.state = new_state

        if new_state == CallState.CONNECTED:
            self.connected_at = now
        elif new_state == CallState.ENDED:
            self.ended_at = now

        logger.debug(f"Call {self.session_id}: {old_state.value} → {new_state.value}")
        return old_state

    def connected_duration(self, now: Optional[float] = None) -> int:
        """
        Whole seconds spent connected.

        Returns:
            0 if the call never connected
        """
        if self.connected_at is None:
            return 0
        end = self.ended_at if self.ended_at is not None else now
        if end is None:
            end = time.monotonic()
        return max(int(end - self.connected_at), 0)

    def is_ended(self) -> bool:
        """Check if the call is over."""
        return self.state == CallState.ENDED

    def __repr__(self) -> str:
        return (
            f"<CallSession({self.session_id}, {self.role.value}, "
            f"{self.media_kind.value}, {self.state.value})>"
        )


@dataclass
class NegotiationContext:
    """
    Per-session WebRTC signalling bookkeeping.

    An offer is processed at most once: re-entry while `is_processing_offer`
    is set, or once either description exists, is refused by
    `can_process_offer`. Candidates that arrive before a remote description
    are held in a bounded FIFO and released in arrival order.
    """

    max_pending_candidates: int = MAX_PENDING_CANDIDATES

    # Progress
    state: NegotiationState = NegotiationState.UNINITIALIZED
    has_remote_description: bool = False
    has_local_description: bool = False
    is_processing_offer: bool = False
    offer_aborted: bool = False

    # Early-arrival queues
    pending_offer: Optional[SessionDescription] = None
    pending_candidates: Deque[IceCandidate] = field(default_factory=deque)

    # Counters
    offers_processed: int = 0
    candidates_applied: int = 0
    dropped_candidates: int = 0

    @property
    def is_initialized(self) -> bool:
        return self.state != NegotiationState.UNINITIALIZED

    def transition_to(self, new_state: NegotiationState) -> None:
        """
        Move the negotiation forward.

        Raises:
            InvalidTransitionError: If the move is not in the transition table
        """
        if new_state not in NEGOTIATION_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move negotiation from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    # Offer guards

    def can_process_offer(self) -> bool:
        """
        True only for the first offer of the session.

        After a failed attempt the remote description may already be in
        place; a retry is still allowed until an answer exists.
        """
        if self.is_processing_offer or self.has_local_description:
            return False
        return self.offer_aborted or not self.has_remote_description

    def store_pending_offer(self, offer: SessionDescription) -> bool:
        """
        Keep an offer that arrived before initialization.

        Returns:
            False if an offer is already waiting (the duplicate is dropped)
        """
        if self.pending_offer is not None:
            logger.debug("Offer already queued, dropping duplicate delivery")
            return False
        self.pending_offer = offer
        return True

    def take_pending_offer(self) -> Optional[SessionDescription]:
        offer, self.pending_offer = self.pending_offer, None
        return offer

    def begin_offer(self) -> None:
        self.is_processing_offer = True

    def abort_offer(self, remote_applied: bool = False) -> None:
        """
        Allow a fresh offer to be processed after a failure.

        Args:
            remote_applied: The peer connection kept the remote description,
                so candidates can still be applied
        """
        self.is_processing_offer = False
        self.has_remote_description = remote_applied
        self.has_local_description = False
        self.offer_aborted = True
        if self.state == NegotiationState.OFFER_RECEIVED:
            self.state = NegotiationState.INITIALIZED

    def finish_offer(self) -> None:
        self.is_processing_offer = False
        self.offer_aborted = False
        self.offers_processed += 1

    # Candidate queue

    def queue_candidate(self, candidate: IceCandidate) -> bool:
        """
        Hold a candidate until a remote description exists.

        Returns:
            False if the queue is full and the candidate was dropped
        """
        if len(self.pending_candidates) >= self.max_pending_candidates:
            self.dropped_candidates += 1
            logger.warning(
                f"⚠️ Candidate queue full ({self.max_pending_candidates}), dropping candidate"
            )
            return False
        self.pending_candidates.append(candidate)
        return True

    def can_apply_candidates(self) -> bool:
        return self.is_initialized and self.has_remote_description

    def drain_candidates(self) -> List[IceCandidate]:
        """
        Release queued candidates in arrival order.

        Returns:
            All queued candidates if a remote description exists, else nothing
        """
        if not self.can_apply_candidates():
            return []
        drained = list(self.pending_candidates)
        self.pending_candidates.clear()
        return drained

    def reset(self) -> None:
        """Discard all bookkeeping at session end."""
        self.pending_offer = None
        self.pending_candidates.clear()
        self.is_processing_offer = False

    def __repr__(self) -> str:
        return (
            f"<NegotiationContext({self.state.value}, "
            f"remote={self.has_remote_description}, local={self.has_local_description}, "
            f"{len(self.pending_candidates)} queued)>"
        )


class SessionManager:
    """
    Tracks the call sessions of one client.

    A client talks to many peers over one transport; this registry maps each
    remote peer to at most one live session.
    """

    def __init__(self) -> None:
        """Initialize session manager."""
        self._sessions: Dict[str, CallSession] = {}

    @property
    def sessions(self) -> Dict[str, CallSession]:
        """Get all sessions."""
        return self._sessions

    def create_session(
        self,
        local_peer_id: str,
        remote_peer_id: str,
        media_kind: MediaKind,
        role: CallRole,
        remote_display_name: str = "",
    ) -> CallSession:
        """
        Create and store a new session.

        Raises:
            InvalidTransitionError: If a live session with this peer exists
        """
        existing = self.find_active(remote_peer_id)
        if existing is not None:
            raise InvalidTransitionError(
                f"A call with {remote_peer_id} is already {existing.state.value}"
            )

        session = CallSession(
            local_peer_id=local_peer_id,
            remote_peer_id=remote_peer_id,
            media_kind=media_kind,
            role=role,
            remote_display_name=remote_display_name,
        )
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[CallSession]:
        return self._sessions.get(session_id)

    def find_active(self, remote_peer_id: str) -> Optional[CallSession]:
        """First session with `remote_peer_id` that has not ended."""
        for session in self._sessions.values():
            if session.remote_peer_id == remote_peer_id and not session.is_ended():
                return session
        return None

    def remove_session(self, session_id: str) -> None:
        if session_id in self._sessions:
            del self._sessions[session_id]

    def cleanup_sessions(self) -> int:
        """
        Drop ended sessions.

        Returns:
            Number of sessions removed
        """
        to_remove = [sid for sid, s in self._sessions.items() if s.is_ended()]
        for sid in to_remove:
            del self._sessions[sid]
        return len(to_remove)

    def get_statistics(self) -> dict:
        """Count sessions by state."""
        by_state: Dict[str, int] = {}
        for session in self._sessions.values():
            by_state[session.state.value] = by_state.get(session.state.value, 0) + 1
        return {"total": len(self._sessions), "by_state": by_state}

    def __repr__(self) -> str:
        return f"<SessionManager({len(self._sessions)} sessions)>"
