"""Utilities and constants for peer-to-peer call signalling."""

import logging
from rich.console import Console
from rich.logging import RichHandler

# Rich Console for pretty printing
console = Console()

# Configure logging with RichHandler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
)

# Get logger for the package
logger = logging.getLogger("peercall")

# Queued ICE candidates per session before a remote description exists
MAX_PENDING_CANDIDATES = 50

# Signalling vocabulary shared by both peers and the relay
EVENT_INITIATE_CALL = "initiate-call"
EVENT_INCOMING_CALL = "incoming-call"
EVENT_CALL_OFFER = "call-offer"
EVENT_CALL_ANSWER = "call-answer"
EVENT_ICE_CANDIDATE = "ice-candidate"
EVENT_CALL_ACCEPTED = "call-accepted"
EVENT_CALL_REJECTED = "call-rejected"
EVENT_CALL_CANCELLED = "call-cancelled"
EVENT_CALL_ENDED = "call-ended"
EVENT_END_CALL = "end-call"
EVENT_CALL_ENDED_LOG = "call-ended-log"
EVENT_USER_LOGGED_OUT = "user-logged-out"
EVENT_WHITEBOARD_TOGGLE = "whiteboard-toggle"

# Relay rewrites: what the sender emits -> what the addressee receives
RELAY_REWRITES = {
    EVENT_INITIATE_CALL: EVENT_INCOMING_CALL,
    EVENT_END_CALL: EVENT_CALL_ENDED,
}

# ICE servers used when the caller supplies none: one STUN, one TURN fallback
DEFAULT_STUN_URL = "stun:stun.l.google.com:19302"
DEFAULT_TURN_URL = "turn:openrelay.metered.ca:443"
DEFAULT_TURN_USERNAME = "openrelayproject"
DEFAULT_TURN_CREDENTIAL = "openrelayproject"

# Human readable reasons for remote logout notifications
LOGOUT_REASONS = {
    "session-expired": "been logged out due to inactivity",
}


def session_id_for(local_peer_id: str, remote_peer_id: str) -> str:
    """
    Build a stable session identifier from a pair of peer ids.

    Both peers derive the same value regardless of who calls whom.
    """
    first, second = sorted((local_peer_id, remote_peer_id))
    return f"{first}:{second}"


def format_duration(seconds: int) -> str:
    """Render a duration as MM:SS."""
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes:02d}:{secs:02d}"


def logout_message(display_name: str, reason: str) -> str:
    """Explain why the remote peer disappeared."""
    detail = LOGOUT_REASONS.get(reason, "logged out")
    return f"{display_name} has {detail}"
