from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(slots=True)
class SdpSummary:
    """Minimal SDP view: the lines a signalling layer needs to reason about."""

    origin: str
    session_name: str
    media: List[str]
    attributes: List[str]
    raw: str

    def media_kinds(self) -> List[str]:
        kinds: List[str] = []
        for line in self.media:
            parts = line[2:].split()
            if parts:
                kinds.append(parts[0])
        return kinds

    def has_media(self, kind: str) -> bool:
        return kind in self.media_kinds()

    @property
    def ice_ufrag(self) -> Optional[str]:
        return next(
            (line.split(":", 1)[1] for line in self.attributes if line.startswith("a=ice-ufrag:")),
            None,
        )

    def candidate_count(self) -> int:
        return sum(1 for line in self.attributes if line.startswith("a=candidate:"))


def parse_sdp(raw: str) -> SdpSummary:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if not lines:
        raise ValueError("Empty SDP")
    if not lines[0].startswith("v="):
        raise ValueError("SDP must start with a version line")

    origin = next((line[2:] for line in lines if line.startswith("o=")), "")
    session_name = next((line[2:] for line in lines if line.startswith("s=")), "")
    media = [line for line in lines if line.startswith("m=")]
    if not media:
        raise ValueError("SDP has no media section")
    attributes = [line for line in lines if line.startswith("a=")]
    return SdpSummary(
        origin=origin,
        session_name=session_name,
        media=media,
        attributes=attributes,
        raw="\r\n".join(lines) + "\r\n",
    )


def sdp_candidates(raw: str) -> List[Tuple[str, Optional[str], int]]:
    """
    Candidates embedded in an SDP, in order.

    Returns:
        (`candidate:...` line, media id, m-line index) per candidate
    """
    # a=mid may come before or after the candidates of its section
    sections: List[Tuple[Optional[str], List[str]]] = []
    for line in raw.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append((None, []))
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1] = (line[len("a=mid:"):], sections[-1][1])
        elif line.startswith("a=candidate:"):
            sections[-1][1].append(line[2:])
    return [
        (candidate, mid, index)
        for index, (mid, candidates) in enumerate(sections)
        for candidate in candidates
    ]


def describe_sdp(raw: str) -> str:
    """One-line description for logs, never raises."""
    try:
        summary = parse_sdp(raw)
    except ValueError as e:
        return f"<invalid sdp: {e}>"
    kinds = "+".join(summary.media_kinds())
    return f"{kinds} ({summary.candidate_count()} candidates)"


__all__ = [
    "SdpSummary",
    "parse_sdp",
    "sdp_candidates",
    "describe_sdp",
]
