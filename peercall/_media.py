"""
Local media and peer connection ownership.

`MediaSessionController` acquires the microphone and camera, owns the aiortc
`RTCPeerConnection` of one call, and swaps tracks in place on the existing
video sender for screen sharing and camera switching. Nothing here ever
creates an offer on its own: every track substitution is a sender-level
`replaceTrack`.
"""

from __future__ import annotations

import asyncio
import inspect
import platform
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from aiortc import (
    AudioStreamTrack,
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
    VideoStreamTrack,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from av import AudioFrame, VideoFrame
from av.error import FFmpegError

from ._fsm import CallSession
from ._models import IceCandidate, SessionDescription
from ._sdp import sdp_candidates
from ._types import (
    CallConfig,
    MediaAcquisitionError,
    MediaConstraints,
    MediaError,
    MediaKind,
    PeerConnectionState,
    ScreenShareError,
)
from ._utils import logger

FACING_USER = "user"
FACING_ENVIRONMENT = "environment"


# ============================================================================
# Streams and Sinks
# ============================================================================


class MediaStream:
    """An id plus an ordered set of tracks, like the browser object."""

    def __init__(self, tracks: Optional[List[Any]] = None, stream_id: Optional[str] = None):
        self.id = stream_id or str(uuid.uuid4())
        self._tracks: List[Any] = list(tracks or [])

    def get_tracks(self) -> List[Any]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[Any]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[Any]:
        return [t for t in self._tracks if t.kind == "video"]

    def add_track(self, track: Any) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: Any) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def __contains__(self, track: Any) -> bool:
        return track in self._tracks

    def __len__(self) -> int:
        return len(self._tracks)

    def __repr__(self) -> str:
        kinds = ",".join(t.kind for t in self._tracks)
        return f"<MediaStream({self.id[:8]}, [{kinds}])>"


class RenderingSink(Protocol):
    """Output element a stream is painted into (video tag, window, recorder)."""

    stream: Optional[MediaStream]

    def attach(self, stream: MediaStream) -> None: ...

    def clear(self) -> None: ...

    def play(self) -> None: ...


class MemoryRenderingSink:
    """Rendering sink that only remembers what happened to it."""

    def __init__(self, name: str = "sink") -> None:
        self.name = name
        self.stream: Optional[MediaStream] = None
        self.attach_count = 0
        self.clear_count = 0
        self.play_count = 0

    def attach(self, stream: MediaStream) -> None:
        self.stream = stream
        self.attach_count += 1

    def clear(self) -> None:
        self.stream = None
        self.clear_count += 1

    def play(self) -> None:
        self.play_count += 1

    def __repr__(self) -> str:
        return f"<MemoryRenderingSink({self.name}, {self.stream!r})>"


# ============================================================================
# Devices
# ============================================================================


class MediaDevices(Protocol):
    """Source of raw capture tracks."""

    async def get_user_media(
        self, media_kind: MediaKind, constraints: MediaConstraints
    ) -> List[MediaStreamTrack]: ...

    async def get_display_media(self) -> MediaStreamTrack: ...

    async def get_camera(
        self, constraints: MediaConstraints, facing: str = FACING_USER
    ) -> MediaStreamTrack: ...


# (file, format) per platform, as accepted by ffmpeg
_PLATFORM_DEVICES: Dict[str, Dict[str, Tuple[str, str]]] = {
    "Linux": {
        "audio": ("default", "pulse"),
        "video": ("/dev/video0", "v4l2"),
        "screen": (":0.0", "x11grab"),
    },
    "Darwin": {
        "audio": (":default", "avfoundation"),
        "video": ("default:none", "avfoundation"),
        "screen": ("Capture screen 0:none", "avfoundation"),
    },
    "Windows": {
        "audio": ("audio=Microphone", "dshow"),
        "video": ("video=Integrated Camera", "dshow"),
        "screen": ("desktop", "gdigrab"),
    },
}


class PlayerMediaDevices:
    """
    Capture devices opened through aiortc's `MediaPlayer`.

    Args:
        system: Platform name; defaults to `platform.system()`
        cameras: Camera device per facing mode ("user", "environment")
    """

    def __init__(
        self, system: Optional[str] = None, cameras: Optional[Dict[str, str]] = None
    ) -> None:
        system = system or platform.system()
        if system not in _PLATFORM_DEVICES:
            raise MediaError(f"No capture devices known for platform {system}")
        self.devices = _PLATFORM_DEVICES[system]
        self.cameras = cameras or {FACING_USER: self.devices["video"][0]}
        self._players: List[MediaPlayer] = []
        self.requested: Dict[str, Any] = {}

    def _open(self, kind: str, file: Optional[str] = None, options: Optional[dict] = None):
        default_file, fmt = self.devices[kind]
        player = MediaPlayer(file or default_file, format=fmt, options=options or {})
        self._players.append(player)
        return player

    async def get_user_media(
        self, media_kind: MediaKind, constraints: MediaConstraints
    ) -> List[MediaStreamTrack]:
        self.requested = constraints.to_dict(media_kind)
        logger.debug(f"🎙️ Requesting capture: {self.requested}")
        processing = [name for name, on in self.requested["audio"].items() if on]
        if processing:
            # ffmpeg capture delivers the raw device signal
            logger.warning(f"⚠️ Audio processing not available here: {', '.join(processing)}")
        try:
            tracks = [self._open("audio").audio]
            if media_kind == MediaKind.VIDEO:
                tracks.append(await self.get_camera(constraints))
        except (OSError, FFmpegError) as e:
            raise MediaAcquisitionError(f"Cannot open microphone/camera: {e}") from e
        return tracks

    async def get_display_media(self) -> MediaStreamTrack:
        try:
            return self._open("screen").video
        except (OSError, FFmpegError) as e:
            raise ScreenShareError(f"Screen capture unavailable: {e}") from e

    async def get_camera(
        self, constraints: MediaConstraints, facing: str = FACING_USER
    ) -> MediaStreamTrack:
        device = self.cameras.get(facing)
        if device is None:
            logger.warning(f"No {facing} camera configured, using the default camera")
            device = self.cameras[FACING_USER]
        return self._open("video", device, constraints.player_options()).video


class SyntheticMediaDevices:
    """
    Generated silence and test-pattern video (aiortc's built-in tracks).

    Args:
        deny: Kinds to refuse ("audio", "video", "screen"), simulating a
              denied permission prompt
    """

    def __init__(self, deny: Tuple[str, ...] = ()) -> None:
        self.deny = set(deny)
        self.opened: List[MediaStreamTrack] = []
        self.requested: Dict[str, Any] = {}

    def _track(self, kind: str) -> MediaStreamTrack:
        track = AudioStreamTrack() if kind == "audio" else VideoStreamTrack()
        self.opened.append(track)
        return track

    async def get_user_media(
        self, media_kind: MediaKind, constraints: MediaConstraints
    ) -> List[MediaStreamTrack]:
        self.requested = constraints.to_dict(media_kind)
        kinds = ["audio", "video"] if media_kind == MediaKind.VIDEO else ["audio"]
        refused = self.deny.intersection(kinds)
        if refused:
            raise MediaAcquisitionError(f"Permission denied: {', '.join(sorted(refused))}")
        return [self._track(kind) for kind in kinds]

    async def get_display_media(self) -> MediaStreamTrack:
        if "screen" in self.deny:
            raise ScreenShareError("Permission denied: screen")
        return self._track("video")

    async def get_camera(
        self, constraints: MediaConstraints, facing: str = FACING_USER
    ) -> MediaStreamTrack:
        if "video" in self.deny:
            raise ScreenShareError("Permission denied: video")
        return self._track("video")


# ============================================================================
# Switchable Track
# ============================================================================


def _blank_like(frame):
    """Silent audio or blank video with the timing of `frame`."""
    if isinstance(frame, AudioFrame):
        blank = AudioFrame(
            format=frame.format.name, layout=frame.layout.name, samples=frame.samples
        )
        blank.sample_rate = frame.sample_rate
    else:
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    for index, plane in enumerate(blank.planes):
        # yuv420p black: zero luma, mid-range chroma
        level = 128 if index and isinstance(blank, VideoFrame) else 0
        plane.update(bytes([level]) * plane.buffer_size)
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class SwitchableTrack(MediaStreamTrack):
    """
    Forwards frames from a source track, with a browser-style `enabled` flag.

    While disabled the track keeps its timing but sends silence or blank
    video, so muting never touches the negotiated session.
    """

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        return _blank_like(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()


# ============================================================================
# Media Session Controller
# ============================================================================


def default_peer_connection_factory(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class MediaSessionController:
    """
    Owns the local media and the peer connection of one call session.

    The owner wires the outbound channels by assigning callbacks:

    - `on_ice_candidate(candidate)`: a local candidate to forward
    - `on_remote_track(track, stream)`: remote media arrived
    - `on_connection_state(state)`: a `PeerConnectionState`
    - `on_error(error)`: a non-fatal failure raised outside a caller's frame
      (an automatic screen-share stop that could not restore the camera)
    """

    def __init__(
        self,
        session: CallSession,
        config: Optional[CallConfig] = None,
        devices: Optional[MediaDevices] = None,
        local_sink: Optional[RenderingSink] = None,
        remote_sink: Optional[RenderingSink] = None,
        peer_connection_factory: Optional[Callable[[RTCConfiguration], Any]] = None,
    ) -> None:
        self.session = session
        self.config = config or CallConfig()
        self.devices = devices or PlayerMediaDevices()
        self.local_sink = local_sink or MemoryRenderingSink("local")
        self.remote_sink = remote_sink or MemoryRenderingSink("remote")
        self._pc_factory = peer_connection_factory or default_peer_connection_factory

        self.on_ice_candidate: Optional[Callable[[IceCandidate], Any]] = None
        self.on_remote_track: Optional[Callable[[Any, MediaStream], Any]] = None
        self.on_connection_state: Optional[Callable[[PeerConnectionState], Any]] = None
        self.on_error: Optional[Callable[[Exception], Any]] = None

        self.pc: Any = None
        self.local_stream: Optional[MediaStream] = None
        self.remote_stream: Optional[MediaStream] = None
        self.muted = False
        self.camera_off = False
        self.facing = self.config.constraints.video.facing_mode

        self._video_sender: Any = None
        self._screen_track: Optional[SwitchableTrack] = None
        self._rendered_remote: Optional[Tuple[str, int]] = None
        self._tasks: set[asyncio.Task] = set()
        self._released = False
        self._announced_candidates: set[str] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self.pc is not None

    @property
    def is_released(self) -> bool:
        return self._released

    @property
    def is_screen_sharing(self) -> bool:
        return self._screen_track is not None

    @property
    def video_sender(self) -> Any:
        return self._video_sender

    def _local_track(self, kind: str) -> Optional[SwitchableTrack]:
        if self.local_stream is None:
            return None
        tracks = (
            self.local_stream.get_audio_tracks()
            if kind == "audio"
            else self.local_stream.get_video_tracks()
        )
        return tracks[0] if tracks else None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def rtc_configuration(self) -> RTCConfiguration:
        """Build the aiortc configuration from the configured ICE servers."""
        return RTCConfiguration(
            iceServers=[
                RTCIceServer(urls=s.urls, username=s.username, credential=s.credential)
                for s in self.config.ice_servers
            ]
        )

    async def initialize(self, media_kind: Optional[MediaKind] = None) -> Any:
        """
        Acquire local media and create the peer connection.

        Args:
            media_kind: Defaults to the session's media kind

        Returns:
            The peer connection

        Raises:
            MediaAcquisitionError: If the microphone or camera is unavailable
        """
        if self._released:
            raise MediaError("Media session already released")
        if self.pc is not None:
            return self.pc

        media_kind = media_kind or self.session.media_kind
        try:
            sources = await self.devices.get_user_media(media_kind, self.config.constraints)
        except MediaAcquisitionError:
            raise
        except Exception as e:
            raise MediaAcquisitionError(f"Cannot access microphone/camera: {e}") from e

        if self._released:
            # Hung up while the permission prompt was open
            for source in sources:
                source.stop()
            raise MediaError("Media session released during acquisition")

        self.local_stream = MediaStream([SwitchableTrack(source) for source in sources])
        for track in self.local_stream.get_tracks():
            self.session.tracks[track.kind] = track

        pc = self._pc_factory(self.rtc_configuration())
        pc.on("track", self._handle_remote_track)
        pc.on("icecandidate", self._handle_local_candidate)
        pc.on("connectionstatechange", self._handle_connection_state)

        for track in self.local_stream.get_tracks():
            sender = pc.addTrack(track)
            if track.kind == "video":
                self._video_sender = sender

        self.pc = pc
        self.local_sink.attach(self.local_stream)
        self.local_sink.play()

        logger.info(
            f"🎙️ Local media ready for {self.session.session_id} "
            f"({', '.join(t.kind for t in self.local_stream.get_tracks())})"
        )
        return pc

    # ------------------------------------------------------------------
    # Peer connection callbacks
    # ------------------------------------------------------------------

    def _invoke(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"Media callback {getattr(callback, '__name__', callback)} failed: {e}")
            return
        if inspect.isawaitable(result):
            self._track_task(asyncio.ensure_future(result))

    def _track_task(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_remote_track(self, track: Any, stream: Optional[MediaStream] = None) -> None:
        if self._released:
            return
        if stream is None:
            if self.remote_stream is None:
                self.remote_stream = MediaStream()
            stream = self.remote_stream
        else:
            self.remote_stream = stream
        stream.add_track(track)

        # Only a new stream or one with strictly more tracks is re-rendered
        previous = self._rendered_remote
        if previous is None or previous[0] != stream.id or len(stream) > previous[1]:
            self._rendered_remote = (stream.id, len(stream))
            self.remote_sink.attach(stream)
            self.remote_sink.play()
            logger.info(f"📺 Remote {track.kind} track rendered ({len(stream)} tracks)")
        else:
            logger.debug(f"Remote {track.kind} track ignored, stream unchanged")

        self._invoke(self.on_remote_track, track, stream)

    def _handle_local_candidate(self, candidate: Any) -> None:
        if candidate is None or self._released:
            return
        if not isinstance(candidate, IceCandidate):
            candidate = IceCandidate(
                candidate="candidate:" + candidate_to_sdp(candidate),
                sdp_mid=candidate.sdpMid,
                sdp_mline_index=candidate.sdpMLineIndex,
            )
        if candidate.candidate in self._announced_candidates:
            return
        self._announced_candidates.add(candidate.candidate)
        self._invoke(self.on_ice_candidate, candidate)

    def _announce_gathered(self, sdp: str) -> None:
        # aiortc gathers before setLocalDescription returns and never fires
        # "icecandidate"; its candidates only appear in the description
        for line, mid, index in sdp_candidates(sdp):
            self._handle_local_candidate(
                IceCandidate(candidate=line, sdp_mid=mid, sdp_mline_index=index)
            )

    def _handle_connection_state(self, *_: Any) -> None:
        if self.pc is None:
            return
        try:
            state = PeerConnectionState(self.pc.connectionState)
        except ValueError:
            logger.debug(f"Unknown connection state {self.pc.connectionState!r}")
            return

        if state == PeerConnectionState.DISCONNECTED:
            logger.warning(f"⚠️ Connection {self.session.session_id} disconnected, waiting")
        else:
            logger.info(f"🔗 Connection {self.session.session_id}: {state.value}")
        self._invoke(self.on_connection_state, state)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def toggle_mute(self) -> bool:
        """
        Flip the microphone on or off.

        Returns:
            True if the microphone is now muted
        """
        track = self._local_track("audio")
        if track is None:
            logger.warning("No local audio track to mute")
            return self.muted
        track.enabled = not track.enabled
        self.muted = not track.enabled
        logger.info("🔇 Microphone muted" if self.muted else "🎙️ Microphone unmuted")
        return self.muted

    def toggle_camera(self) -> bool:
        """
        Flip the camera on or off.

        Re-enabling forces the local sink to refresh (clear, reattach, play);
        some renderers do not resume painting a track re-enabled in place.

        Returns:
            True if the camera is now off
        """
        track = self._local_track("video")
        if track is None:
            logger.warning("No local video track to toggle")
            return self.camera_off
        track.enabled = not track.enabled
        self.camera_off = not track.enabled
        if track.enabled:
            self._refresh_local_sink()
        logger.info("📷 Camera off" if self.camera_off else "📷 Camera on")
        return self.camera_off

    def _refresh_local_sink(self) -> None:
        self.local_sink.clear()
        if self.local_stream is not None:
            self.local_sink.attach(self.local_stream)
            self.local_sink.play()

    async def _replace_video(self, track: Optional[MediaStreamTrack]) -> None:
        result = self._video_sender.replaceTrack(track)
        if inspect.isawaitable(result):
            await result

    async def start_screen_share(self) -> None:
        """
        Send the screen instead of the camera, on the same sender.

        Raises:
            ScreenShareError: If there is no video sender or capture fails
        """
        if self.is_screen_sharing:
            return
        if self._video_sender is None or self.local_stream is None:
            raise ScreenShareError("Screen sharing needs an active video call")

        try:
            capture = await self.devices.get_display_media()
        except ScreenShareError:
            raise
        except Exception as e:
            raise ScreenShareError(f"Screen capture unavailable: {e}") from e

        screen = SwitchableTrack(capture)
        try:
            await self._replace_video(screen)
        except Exception as e:
            screen.stop()
            raise ScreenShareError(f"Cannot send screen capture: {e}") from e

        camera = self._local_track("video")
        if camera is not None:
            self.local_stream.remove_track(camera)
            camera.stop()
        self.local_stream.add_track(screen)
        self.session.tracks["video"] = screen
        self._screen_track = screen
        self._refresh_local_sink()

        capture.on("ended", lambda: self._capture_ended(screen))
        logger.info("🖥️ Screen sharing started")

    def _capture_ended(self, screen: SwitchableTrack) -> None:
        if self._screen_track is not screen:
            return
        logger.info("🖥️ Screen capture ended by the system")
        self._track_task(asyncio.ensure_future(self._stop_after_capture_ended()))

    async def _stop_after_capture_ended(self) -> None:
        try:
            await self.stop_screen_share()
        except ScreenShareError as e:
            logger.error(f"❌ {e}")
            self._invoke(self.on_error, e)

    async def stop_screen_share(self) -> None:
        """
        Put a fresh camera track back on the sender and stop the capture.

        Raises:
            ScreenShareError: If the camera cannot be re-acquired; the call
                continues without outgoing video
        """
        screen = self._screen_track
        if screen is None:
            return
        self._screen_track = None

        try:
            source = await self.devices.get_camera(self.config.constraints, self.facing)
        except Exception as e:
            self._drop_video(screen)
            await self._replace_video(None)
            raise ScreenShareError(f"Cannot restore camera: {e}") from e

        if self._released:
            source.stop()
            return

        camera = SwitchableTrack(source)
        camera.enabled = not self.camera_off
        await self._replace_video(camera)
        self.local_stream.remove_track(screen)
        self.local_stream.add_track(camera)
        self.session.tracks["video"] = camera
        self._refresh_local_sink()
        screen.stop()
        logger.info("🖥️ Screen sharing stopped, camera restored")

    def _drop_video(self, track: SwitchableTrack) -> None:
        if self.local_stream is not None:
            self.local_stream.remove_track(track)
        self.session.tracks.pop("video", None)
        track.stop()
        self._refresh_local_sink()

    async def switch_camera(self, facing: Optional[str] = None) -> str:
        """
        Swap to the other camera (front/back) on the same sender.

        Returns:
            The facing mode now in use

        Raises:
            ScreenShareError: While sharing the screen, or if the camera
                cannot be opened
        """
        if self.is_screen_sharing:
            raise ScreenShareError("Cannot switch camera while sharing the screen")
        current = self._local_track("video")
        if current is None or self._video_sender is None:
            raise ScreenShareError("No camera to switch")

        if facing is None:
            facing = FACING_ENVIRONMENT if self.facing == FACING_USER else FACING_USER
        try:
            source = await self.devices.get_camera(self.config.constraints, facing)
        except Exception as e:
            raise ScreenShareError(f"Cannot open {facing} camera: {e}") from e

        camera = SwitchableTrack(source)
        camera.enabled = current.enabled
        await self._replace_video(camera)
        self.local_stream.remove_track(current)
        self.local_stream.add_track(camera)
        self.session.tracks["video"] = camera
        current.stop()
        self.facing = facing
        self._refresh_local_sink()
        logger.info(f"🔄 Switched to {facing} camera")
        return facing

    # ------------------------------------------------------------------
    # Negotiation primitives
    # ------------------------------------------------------------------

    @property
    def has_remote_description(self) -> bool:
        """Whether the peer connection currently holds a remote description."""
        return self.pc is not None and self.pc.remoteDescription is not None

    def _require_pc(self) -> Any:
        if self.pc is None:
            raise MediaError("Peer connection not initialized")
        return self.pc

    async def create_offer(self) -> SessionDescription:
        offer = await self._require_pc().createOffer()
        return SessionDescription.from_rtc(offer)

    async def create_answer(self) -> SessionDescription:
        answer = await self._require_pc().createAnswer()
        return SessionDescription.from_rtc(answer)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """
        Apply a local description.

        Candidates found in the applied description are passed to
        `on_ice_candidate`, once each.

        Returns:
            The description as the connection now holds it (aiortc adds the
            gathered candidates to it)
        """
        pc = self._require_pc()
        await pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        local = pc.localDescription
        applied = SessionDescription.from_rtc(local) if local is not None else description
        self._announce_gathered(applied.sdp)
        return applied

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._require_pc().setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        line = candidate.sdp_line
        if not line:
            return
        rtc_candidate = candidate_from_sdp(line)
        rtc_candidate.sdpMid = candidate.sdp_mid
        rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
        await self._require_pc().addIceCandidate(rtc_candidate)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def release(self) -> None:
        """Stop every track and close the peer connection. Idempotent."""
        if self._released:
            return
        self._released = True

        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()

        tracks: List[Any] = []
        if self.local_stream is not None:
            tracks.extend(self.local_stream.get_tracks())
        if self._screen_track is not None and self._screen_track not in tracks:
            tracks.append(self._screen_track)
        self._screen_track = None
        for track in tracks:
            try:
                track.stop()
            except Exception as e:
                logger.debug(f"Stopping {track.kind} track failed: {e}")
        self.session.tracks.clear()

        self.local_sink.clear()
        self.remote_sink.clear()

        if self.pc is not None:
            try:
                await self.pc.close()
            except Exception as e:
                logger.warning(f"Closing peer connection failed: {e}")

        logger.info(f"🧹 Media released for {self.session.session_id}")

    def __repr__(self) -> str:
        state = "released" if self._released else ("ready" if self.pc else "idle")
        return f"<MediaSessionController({self.session.session_id}, {state})>"
