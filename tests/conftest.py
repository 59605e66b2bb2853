"""
Shared fixtures and fakes for the peercall test suite.

The peer connection is replaced by `FakePeerConnection`, which records every
negotiation call and lets a test fire the aiortc events (`track`,
`icecandidate`, `connectionstatechange`) by hand. Capture devices are the
real `SyntheticMediaDevices`, so tracks are genuine aiortc tracks.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pytest

from peercall import (
    CallConfig,
    CallRole,
    CallSession,
    LocalRelay,
    MediaKind,
    MediaSessionController,
    MemoryRenderingSink,
    SyntheticMediaDevices,
)


def sdp_for(kind: str = "audio", session: str = "1") -> str:
    """Smallest SDP text the signalling layer accepts."""
    lines = [
        "v=0",
        f"o=- {session} 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "a=ice-ufrag:abcd",
    ]
    if kind == "video":
        lines.append("m=video 9 UDP/TLS/RTP/SAVPF 96")
    return "\r\n".join(lines) + "\r\n"


def gathered_sdp() -> str:
    """An aiortc-style description with candidates already gathered."""
    lines = [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=audio 54400 UDP/TLS/RTP/SAVPF 111",
        "a=candidate:1 1 udp 2130706431 192.168.1.2 54400 typ host",
        "a=candidate:2 1 udp 1694498815 203.0.113.7 54400 typ srflx raddr 192.168.1.2 rport 54400",
        "a=mid:0",
        "m=video 54402 UDP/TLS/RTP/SAVPF 96",
        "a=mid:1",
        "a=candidate:3 1 udp 2130706431 192.168.1.2 54402 typ host",
    ]
    return "\r\n".join(lines) + "\r\n"


def candidate_payload(port: int) -> Dict[str, Any]:
    """A host candidate as a browser would send it; `port` tells them apart."""
    return {
        "candidate": f"candidate:1 1 udp 2130706431 192.168.1.2 {port} typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }


async def settle(delay: float = 0.05) -> None:
    """Let relayed messages and spawned tasks run."""
    await asyncio.sleep(delay)


# =============================================================================
# FAKE PEER CONNECTION
# =============================================================================


@dataclass
class FakeDescription:
    type: str
    sdp: str


class FakeSender:
    """RTCRtpSender lookalike that records every replaceTrack call."""

    def __init__(self, track: Any) -> None:
        self.track = track
        self.replaced: List[Any] = []

    async def replaceTrack(self, track: Any) -> None:
        self.replaced.append(track)
        self.track = track


class FakePeerConnection:
    """
    RTCPeerConnection lookalike.

    `addIceCandidate` fails without a remote description, as a browser does,
    so ordering bugs surface as errors instead of passing silently.
    """

    def __init__(self, configuration: Any = None, kind: str = "audio") -> None:
        self.configuration = configuration
        self.kind = kind
        self.handlers: Dict[str, List[Callable]] = {}
        self.senders: List[FakeSender] = []
        self.localDescription: Optional[FakeDescription] = None
        self.remoteDescription: Optional[FakeDescription] = None
        self.connectionState = "new"
        self.offers_created = 0
        self.answers_created = 0
        self.remote_descriptions: List[FakeDescription] = []
        self.candidates: List[Any] = []
        self.remote_delay = 0.0
        self.fail_remote = False
        self.closed = 0

    def on(self, event: str, handler: Callable) -> Callable:
        self.handlers.setdefault(event, []).append(handler)
        return handler

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self.handlers.get(event, ())):
            handler(*args)

    def addTrack(self, track: Any) -> FakeSender:
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    async def createOffer(self) -> FakeDescription:
        self.offers_created += 1
        return FakeDescription("offer", sdp_for(self.kind, "offer"))

    async def createAnswer(self) -> FakeDescription:
        self.answers_created += 1
        return FakeDescription("answer", sdp_for(self.kind, "answer"))

    async def setLocalDescription(self, description: Any) -> None:
        self.localDescription = FakeDescription(description.type, description.sdp)

    async def setRemoteDescription(self, description: Any) -> None:
        if self.remote_delay:
            await asyncio.sleep(self.remote_delay)
        if self.fail_remote:
            raise ValueError("remote description rejected")
        self.remoteDescription = FakeDescription(description.type, description.sdp)
        self.remote_descriptions.append(self.remoteDescription)

    async def addIceCandidate(self, candidate: Any) -> None:
        if self.remoteDescription is None:
            raise RuntimeError("addIceCandidate before setRemoteDescription")
        self.candidates.append(candidate)

    def set_state(self, state: str) -> None:
        self.connectionState = state
        self.emit("connectionstatechange")

    async def close(self) -> None:
        self.closed += 1
        self.connectionState = "closed"


class PeerConnectionFactory:
    """Builds fake peer connections and keeps them for inspection."""

    def __init__(self, kind: str = "audio") -> None:
        self.kind = kind
        self.created: List[FakePeerConnection] = []

    def __call__(self, configuration: Any) -> FakePeerConnection:
        pc = FakePeerConnection(configuration, kind=self.kind)
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def config():
    """Call settings with delays short enough for tests."""
    return CallConfig(
        init_timeout=0.2,
        fatal_delay=0.05,
        media_failure_delay=0.05,
        ring_timeout=None,
        tick_interval=0.02,
    )


@pytest.fixture
def devices():
    return SyntheticMediaDevices()


@pytest.fixture
def pc_factory():
    return PeerConnectionFactory()


@pytest.fixture
def video_pc_factory():
    return PeerConnectionFactory(kind="video")


@pytest.fixture
def relay():
    return LocalRelay()


@pytest.fixture
def make_controller(config, devices, pc_factory):
    """Build a media controller for a fresh session."""

    def build(media_kind=MediaKind.VOICE, role=CallRole.INITIATOR, **kwargs):
        session = CallSession("alice", "bob", media_kind, role)
        options = {
            "config": config,
            "devices": devices,
            "local_sink": MemoryRenderingSink("local"),
            "remote_sink": MemoryRenderingSink("remote"),
            "peer_connection_factory": pc_factory,
        }
        options.update(kwargs)
        return MediaSessionController(session, **options)

    return build
