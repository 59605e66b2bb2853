"""peercall - WebRTC call negotiation and call lifecycle for Python."""

from __future__ import annotations

# Calls
from ._call import Call
from ._client import CallClient, IncomingCall

# FSM components
from ._fsm import CallSession, NegotiationContext, SessionManager

# Core controllers
from ._lifecycle import (
    CallLifecycleManager,
    CallLogSink,
    MemoryCallLogSink,
    TransportCallLogSink,
    classify_call,
)
from ._media import (
    MediaDevices,
    MediaSessionController,
    MediaStream,
    MemoryRenderingSink,
    PlayerMediaDevices,
    RenderingSink,
    SwitchableTrack,
    SyntheticMediaDevices,
)
from ._negotiation import CallNegotiationStateMachine

# Event system
from ._events import (
    ANY,
    CALL_LOG,
    DURATION,
    ERROR,
    LOCAL_STREAM,
    REMOTE_STREAM,
    STATE_CHANGE,
    WHITEBOARD,
    CallEvent,
    EventDispatcher,
    Events,
    event_handler,
)

# Message models
from ._models import CallLogRecord, IceCandidate, SessionDescription

# SDP helpers
from ._sdp import SdpSummary, describe_sdp, parse_sdp, sdp_candidates

# Transports
from ._transports import (
    LocalRelay,
    LocalTransport,
    SignalingTransport,
    Subscription,
)

# Types, configuration and exceptions
from ._types import (
    CallConfig,
    CallRole,
    CallState,
    CallStatus,
    GameError,
    IceServer,
    InvalidTransitionError,
    MediaAcquisitionError,
    MediaConstraints,
    MediaError,
    MediaKind,
    NegotiationError,
    NegotiationState,
    NegotiationTimeoutError,
    PeerCallError,
    PeerConnectionState,
    ScreenShareError,
    SignalPayloadError,
    TerminationCause,
    TransportError,
    VideoConstraints,
)

# Backgammon
from ._game import (
    BackgammonClient,
    BackgammonReferee,
    register_backgammon_handlers,
)

__version__ = "0.1.0"

__all__ = [
    # Calls
    "Call",
    "CallClient",
    "IncomingCall",
    # FSM
    "CallSession",
    "NegotiationContext",
    "SessionManager",
    # Controllers
    "CallLifecycleManager",
    "CallLogSink",
    "MemoryCallLogSink",
    "TransportCallLogSink",
    "classify_call",
    "MediaDevices",
    "MediaSessionController",
    "MediaStream",
    "MemoryRenderingSink",
    "PlayerMediaDevices",
    "RenderingSink",
    "SwitchableTrack",
    "SyntheticMediaDevices",
    "CallNegotiationStateMachine",
    # Events
    "ANY",
    "CALL_LOG",
    "DURATION",
    "ERROR",
    "LOCAL_STREAM",
    "REMOTE_STREAM",
    "STATE_CHANGE",
    "WHITEBOARD",
    "CallEvent",
    "EventDispatcher",
    "Events",
    "event_handler",
    # Models
    "CallLogRecord",
    "IceCandidate",
    "SessionDescription",
    # SDP
    "SdpSummary",
    "describe_sdp",
    "sdp_candidates",
    "parse_sdp",
    # Transports
    "LocalRelay",
    "LocalTransport",
    "SignalingTransport",
    "Subscription",
    # Types
    "CallConfig",
    "CallRole",
    "CallState",
    "CallStatus",
    "IceServer",
    "MediaConstraints",
    "MediaKind",
    "NegotiationState",
    "PeerConnectionState",
    "TerminationCause",
    "VideoConstraints",
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
    # Backgammon
    "BackgammonClient",
    "BackgammonReferee",
    "register_backgammon_handlers",
    # Version
    "__version__",
]
