"""
Signalling payload models.

These dataclasses mirror the JSON objects exchanged over the relay. Wire keys
use the browser's camelCase names so that a Python peer can talk to a web or
mobile client unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .._sdp import parse_sdp
from .._types import CallStatus, MediaKind, SignalPayloadError


@dataclass(frozen=True)
class SessionDescription:
    """
    An offer or answer.

    Validation happens in `from_dict`, so a malformed description is rejected
    before it reaches the peer connection.
    """

    type: str
    sdp: str

    @property
    def is_offer(self) -> bool:
        return self.type == "offer"

    @property
    def is_answer(self) -> bool:
        return self.type == "answer"

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(
        cls, data: Any, expected_type: Optional[str] = None
    ) -> SessionDescription:
        """
        Parse a description received from the relay.

        Args:
            data: Mapping with `type` and `sdp`
            expected_type: "offer" or "answer" if the caller requires one

        Returns:
            SessionDescription

        Raises:
            SignalPayloadError: If the payload is not a usable description
        """
        if isinstance(data, SessionDescription):
            description = data
        elif isinstance(data, Mapping):
            description = cls(type=str(data.get("type") or ""), sdp=str(data.get("sdp") or ""))
        else:
            raise SignalPayloadError(f"Description must be a mapping, got {type(data).__name__}")

        if description.type not in ("offer", "answer", "pranswer", "rollback"):
            raise SignalPayloadError(f"Unknown description type: {description.type!r}")
        if expected_type and description.type != expected_type:
            raise SignalPayloadError(
                f"Expected {expected_type}, received {description.type}"
            )
        try:
            parse_sdp(description.sdp)
        except ValueError as e:
            raise SignalPayloadError(f"Malformed SDP: {e}") from e
        return description

    @classmethod
    def from_rtc(cls, rtc_description: Any) -> SessionDescription:
        """Convert an aiortc `RTCSessionDescription` (or lookalike)."""
        return cls(type=rtc_description.type, sdp=rtc_description.sdp)


@dataclass(frozen=True)
class IceCandidate:
    """A trickled ICE candidate in browser form (`candidate:...` line)."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }

    @property
    def sdp_line(self) -> str:
        """The candidate without its `candidate:` prefix."""
        if self.candidate.startswith("candidate:"):
            return self.candidate.split(":", 1)[1]
        return self.candidate

    @classmethod
    def from_dict(cls, data: Any) -> IceCandidate:
        if isinstance(data, IceCandidate):
            return data
        if not isinstance(data, Mapping):
            raise SignalPayloadError(f"Candidate must be a mapping, got {type(data).__name__}")
        candidate = data.get("candidate")
        if not isinstance(candidate, str) or not candidate.strip():
            raise SignalPayloadError("Candidate payload has no candidate line")
        index = data.get("sdpMLineIndex")
        return cls(
            candidate=candidate.strip(),
            sdp_mid=data.get("sdpMid"),
            sdp_mline_index=int(index) if index is not None else None,
        )


@dataclass(frozen=True)
class CallLogRecord:
    """One record per terminated call, consumed by the call-log sink."""

    receiver_id: str
    call_type: MediaKind
    duration: int
    call_status: CallStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiverId": self.receiver_id,
            "callType": self.call_type.value,
            "duration": self.duration,
            "callStatus": self.call_status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CallLogRecord:
        try:
            return cls(
                receiver_id=str(data["receiverId"]),
                call_type=MediaKind(data["callType"]),
                duration=int(data.get("duration") or 0),
                call_status=CallStatus(data["callStatus"]),
            )
        except (KeyError, ValueError) as e:
            raise SignalPayloadError(f"Malformed call log record: {e}") from e


__all__ = ["SessionDescription", "IceCandidate", "CallLogRecord"]
