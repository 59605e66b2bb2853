"""
Type definitions and aliases for peer-to-peer call signalling.

This module centralizes all type definitions used throughout the library,
including call and negotiation states, configuration dataclasses and the
exception hierarchy.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ._utils import (
    DEFAULT_STUN_URL,
    DEFAULT_TURN_CREDENTIAL,
    DEFAULT_TURN_URL,
    DEFAULT_TURN_USERNAME,
    MAX_PENDING_CANDIDATES,
)


# =============================================================================
# Call States and Types
# =============================================================================


class MediaKind(str, Enum):
    """Kind of call, as carried in the `callType` wire field."""

    VOICE = "voice"
    VIDEO = "video"


class CallRole(str, Enum):
    """
    Role of the local peer in a session.

    Fixed at session creation. Only the initiator creates offers and only the
    receiver creates answers, which rules out glare by construction.
    """

    INITIATOR = "initiator"
    RECEIVER = "receiver"


class CallState(str, Enum):
    """
    Lifecycle states of a call.

    RINGING → CONNECTING → CONNECTED → ENDED
       ↓
     ENDED (cancel / reject / missed)
    """

    RINGING = "ringing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"


class NegotiationState(str, Enum):
    """
    Offer/answer progress of a session.

    UNINITIALIZED → INITIALIZED → OFFER_SENT | OFFER_RECEIVED → ANSWERED → STABLE
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    ANSWERED = "answered"
    STABLE = "stable"


class CallStatus(str, Enum):
    """Classification of a terminated call in the call log."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class TerminationCause(str, Enum):
    """Why a call reached the ENDED state."""

    LOCAL_HANGUP = "local-hangup"
    RING_TIMEOUT = "ring-timeout"
    MEDIA_FAILURE = "media-failure"
    NEGOTIATION_TIMEOUT = "negotiation-timeout"
    CONNECTION_FAILED = "connection-failed"
    REMOTE_HANGUP = "remote-hangup"
    REMOTE_LOGOUT = "remote-logout"
    REJECTED = "rejected"
    CANCELLED_BY_REMOTE = "cancelled-by-remote"

    @property
    def by_remote(self) -> bool:
        """True when the remote side initiated the termination."""
        return self in (
            TerminationCause.REMOTE_HANGUP,
            TerminationCause.REMOTE_LOGOUT,
            TerminationCause.REJECTED,
            TerminationCause.CANCELLED_BY_REMOTE,
        )


class PeerConnectionState(str, Enum):
    """Values of `RTCPeerConnection.connectionState`."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class IceServer:
    """A STUN or TURN server entry."""

    urls: str
    username: Optional[str] = None
    credential: Optional[str] = None

    @property
    def is_turn(self) -> bool:
        """Check if this entry is a TURN relay."""
        return self.urls.startswith(("turn:", "turns:"))

    def to_dict(self) -> dict[str, str]:
        data = {"urls": self.urls}
        if self.username is not None:
            data["username"] = self.username
        if self.credential is not None:
            data["credential"] = self.credential
        return data


def default_ice_servers() -> list[IceServer]:
    """One public STUN server plus one TURN relay fallback."""
    return [
        IceServer(urls=DEFAULT_STUN_URL),
        IceServer(
            urls=DEFAULT_TURN_URL,
            username=DEFAULT_TURN_USERNAME,
            credential=DEFAULT_TURN_CREDENTIAL,
        ),
    ]


@dataclass
class VideoConstraints:
    """Camera capture constraints (pixel sizes and frame rate)."""

    min_width: int = 320
    ideal_width: int = 640
    max_width: int = 1280
    min_height: int = 240
    ideal_height: int = 480
    max_height: int = 720
    ideal_frame_rate: int = 30
    max_frame_rate: int = 30
    facing_mode: str = "user"


@dataclass
class MediaConstraints:
    """
    Capture constraints for local media.

    Audio processing flags are always requested; video constraints apply only
    to video calls.
    """

    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    video: VideoConstraints = field(default_factory=VideoConstraints)

    def to_dict(self, media_kind: MediaKind) -> dict[str, Any]:
        """
        Render the constraints in the browser `getUserMedia` shape.

        Args:
            media_kind: Voice calls request no video at all

        Returns:
            Dictionary with `audio` and `video` entries
        """
        audio = {
            "echoCancellation": self.echo_cancellation,
            "noiseSuppression": self.noise_suppression,
            "autoGainControl": self.auto_gain_control,
        }
        if media_kind != MediaKind.VIDEO:
            return {"audio": audio, "video": False}

        v = self.video
        return {
            "audio": audio,
            "video": {
                "width": {"min": v.min_width, "ideal": v.ideal_width, "max": v.max_width},
                "height": {
                    "min": v.min_height,
                    "ideal": v.ideal_height,
                    "max": v.max_height,
                },
                "facingMode": v.facing_mode,
                "frameRate": {"ideal": v.ideal_frame_rate, "max": v.max_frame_rate},
            },
        }

    def player_options(self) -> dict[str, str]:
        """Options for an ffmpeg-backed camera capture at the ideal size."""
        v = self.video
        return {
            "video_size": f"{v.ideal_width}x{v.ideal_height}",
            "framerate": str(v.ideal_frame_rate),
        }


@dataclass
class CallConfig:
    """Timeouts, limits and network settings for a call."""

    # Network settings
    ice_servers: list[IceServer] = field(default_factory=default_ice_servers)
    constraints: MediaConstraints = field(default_factory=MediaConstraints)

    # Initialization wait on the initiator side (in seconds)
    init_timeout: float = 5.0

    # Delays before a fatal error tears the call down, so the message is readable
    fatal_delay: float = 2.0
    media_failure_delay: float = 3.0

    # Unanswered outgoing calls end after this long
    ring_timeout: Optional[float] = 45.0

    # Queue bound for ICE candidates received too early
    max_pending_candidates: int = MAX_PENDING_CANDIDATES

    # Duration ticker resolution
    tick_interval: float = 1.0

    # How long a rejected game action stays visible
    error_clear_delay: float = 3.0

    def __post_init__(self) -> None:
        if not any(server.is_turn for server in self.ice_servers):
            raise ValueError("ice_servers must include at least one TURN relay")
        if not any(not server.is_turn for server in self.ice_servers):
            raise ValueError("ice_servers must include at least one STUN server")


# =============================================================================
# Exceptions
# =============================================================================


class PeerCallError(Exception):
    """Base exception for all peercall errors."""

    pass


class MediaError(PeerCallError):
    """Base exception for local media problems."""

    pass


class MediaAcquisitionError(MediaError):
    """Raised when the microphone or camera cannot be opened. Fatal."""

    pass


class ScreenShareError(MediaError):
    """Raised when screen capture or camera re-acquisition fails. Non-fatal."""

    pass


class NegotiationError(PeerCallError):
    """Raised when offer/answer processing fails."""

    pass


class NegotiationTimeoutError(NegotiationError):
    """Raised when the initiator cannot send its offer in time. Fatal."""

    pass


class SignalPayloadError(NegotiationError):
    """Raised when a signalling payload is malformed."""

    pass


class InvalidTransitionError(PeerCallError):
    """Raised on a state change the call lifecycle does not allow."""

    pass


class TransportError(PeerCallError):
    """Raised when the signalling transport cannot deliver a message."""

    pass


class GameError(PeerCallError):
    """Raised when a game action is rejected."""

    pass


# =============================================================================
# Type Aliases
# =============================================================================

Payload = dict[str, Any]
Handler = typing.Callable[[Payload], Any]


__all__ = [
    # Enums
    "MediaKind",
    "CallRole",
    "CallState",
    "NegotiationState",
    "CallStatus",
    "TerminationCause",
    "PeerConnectionState",
    # Configuration
    "IceServer",
    "VideoConstraints",
    "MediaConstraints",
    "CallConfig",
    "default_ice_servers",
    # Exceptions
    "PeerCallError",
    "MediaError",
    "MediaAcquisitionError",
    "ScreenShareError",
    "NegotiationError",
    "NegotiationTimeoutError",
    "SignalPayloadError",
    "InvalidTransitionError",
    "TransportError",
    "GameError",
    # Type aliases
    "Payload",
    "Handler",
]
