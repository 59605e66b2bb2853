"""
Wire models for the signalling relay.

- SessionDescription: offer/answer
- IceCandidate: trickled candidate
- CallLogRecord: terminated call summary
"""

from ._signal import CallLogRecord, IceCandidate, SessionDescription

__all__ = [
    "SessionDescription",
    "IceCandidate",
    "CallLogRecord",
]
