"""
Capture Engine

Acquires the tab stream (and optionally the microphone), mixes them, encodes
the mixed audio into fixed-interval chunks and tears everything down again.

Chunks are produced on the event loop: device callbacks run on driver threads
and hand each mixed frame over with call_soon_threadsafe.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ..config.settings import CaptureConfig
from ..errors import (
    MIC_FALLBACK_ERRORS,
    CaptureError,
    DeviceError,
    InvalidStateError,
    MicPermissionError,
    ProtocolTimeout,
    TabScribeError,
)
from .encoder import ChunkEncoder
from .mixer import AudioMixer, MonitorSink
from .streams import MediaConstraints, MediaDevices, MediaTrack, StreamHandle

logger = logging.getLogger(__name__)

MIC_DENIED_WARNING = "Microphone access was denied. Recording tab audio only."


@dataclass
class CaptureSession:
    """Everything one recording holds on to."""

    tab: StreamHandle
    mic: StreamHandle | None
    mixed: StreamHandle
    mixer: AudioMixer
    encoder: ChunkEncoder

    def tracks(self) -> list[MediaTrack]:
        """Every distinct underlying track (tab, mic, mixed)."""
        seen: list[MediaTrack] = []
        for stream in (self.tab, self.mic, self.mixed):
            if stream is None:
                continue
            for track in stream.tracks:
                if all(track is not t for t in seen):
                    seen.append(track)
        return seen


@dataclass(frozen=True)
class CaptureStartInfo:
    """What start() actually achieved."""

    use_microphone: bool
    warning: str | None = None


class CaptureEngine:
    """Runs one capture session at a time."""

    def __init__(
        self,
        devices: MediaDevices,
        config: CaptureConfig | None = None,
        monitor: MonitorSink | None = None,
        on_chunk: Callable[[bytes], None] | None = None,
        on_error: Callable[[Exception, Path | None], None] | None = None,
    ):
        """
        Initialize capture engine.

        Args:
            devices: Media devices to request streams from
            config: Gain, chunk interval, recordings directory and retry policy
            monitor: Playback output for the tab audio
            on_chunk: Callback for every encoded chunk
            on_error: Callback when the session dies mid-recording (error, artifact)
        """
        self.devices = devices
        self.config = config or CaptureConfig()
        self.monitor = monitor
        self.on_chunk = on_chunk
        self.on_error = on_error

        self._session: CaptureSession | None = None
        self._last_artifact: Path | None = None
        self._failure_task: asyncio.Task | None = None

    @property
    def is_capturing(self) -> bool:
        return self._session is not None

    @property
    def last_artifact(self) -> Path | None:
        return self._last_artifact

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def _request(self, constraints: MediaConstraints) -> StreamHandle:
        """Request a stream under the configured retry policy."""
        policy = self.config.retry
        delays = policy.delays()
        last_error: TabScribeError | None = None

        for attempt in range(len(delays) + 1):
            try:
                return await asyncio.wait_for(
                    self.devices.get_user_media(constraints), timeout=policy.timeout_s
                )
            except TimeoutError:
                last_error = ProtocolTimeout(
                    f"{constraints.source} request timed out after {policy.timeout_s:.0f}s"
                )
            except MicPermissionError:
                # The user said no; asking again will not change that
                raise
            except TabScribeError as e:
                last_error = e
            except Exception as e:
                last_error = DeviceError(str(e))

            if attempt < len(delays):
                logger.info(
                    f"Retrying {constraints.source} request in {delays[attempt]:.1f}s: {last_error}"
                )
                await asyncio.sleep(delays[attempt])

        raise last_error

    async def acquire_tab_stream(self, stream_id: str) -> StreamHandle:
        """
        Acquire the primary tab stream.

        Raises:
            CaptureError: If the tab stream could not be obtained
        """
        try:
            return await self._request(MediaConstraints(source="tab", stream_id=stream_id))
        except CaptureError:
            raise
        except TabScribeError as e:
            raise CaptureError(f"Failed to capture tab audio: {e}") from e

    async def acquire_mic_stream(self) -> StreamHandle:
        """
        Acquire the microphone.

        Raises:
            MicPermissionError: If access was denied
            DeviceError: If there is no usable microphone
            ProtocolTimeout: If the request did not complete in time
        """
        return await self._request(MediaConstraints(source="microphone", echo_cancellation=True))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start(self, stream_id: str, use_microphone: bool) -> CaptureStartInfo:
        """
        Start a capture session.

        A microphone failure degrades to tab-only capture with a warning; a
        tab failure fails the start.

        Raises:
            InvalidStateError: If a session is already running
            CaptureError: If the tab stream could not be obtained
        """
        if self._session is not None:
            raise InvalidStateError("Capture already running")

        tab = await self.acquire_tab_stream(stream_id)

        mic = None
        warning = None
        if use_microphone:
            try:
                mic = await self.acquire_mic_stream()
            except MIC_FALLBACK_ERRORS as e:
                if isinstance(e, MicPermissionError):
                    warning = MIC_DENIED_WARNING
                else:
                    warning = f"Microphone unavailable ({e}). Recording tab audio only."
                logger.warning(warning)

        mixer = AudioMixer(mic_gain=self.config.mic_gain, monitor=self.monitor)
        try:
            mixed = mixer.mix(tab, mic)
            encoder = ChunkEncoder(
                sample_rate=tab.sample_rate,
                chunk_interval_ms=self.config.chunk_interval_ms,
                recordings_dir=self.config.recordings_dir,
                on_chunk=self._emit_chunk,
            )
            encoder.start()
        except Exception:
            mixer.close()
            tab.stop()
            if mic is not None:
                mic.stop()
            raise

        session = CaptureSession(tab=tab, mic=mic, mixed=mixed, mixer=mixer, encoder=encoder)
        self._session = session
        self._last_artifact = None

        loop = asyncio.get_running_loop()
        mixed.add_listener(lambda frame: loop.call_soon_threadsafe(self._on_frame, session, frame))
        tab.add_failure_listener(
            lambda error: loop.call_soon_threadsafe(self._on_failure, session, error)
        )

        logger.info(f"Capture started (microphone: {mic is not None})")
        return CaptureStartInfo(use_microphone=mic is not None, warning=warning)

    def _on_frame(self, session: CaptureSession, frame: bytes) -> None:
        # Frames scheduled before stop() may still arrive
        if session is not self._session:
            return
        session.encoder.write(frame)

    def _emit_chunk(self, chunk: bytes) -> None:
        if self.on_chunk:
            try:
                self.on_chunk(chunk)
            except Exception as e:
                logger.error(f"Chunk consumer error: {e}")

    def _on_failure(self, session: CaptureSession, error: Exception) -> None:
        if session is not self._session:
            return
        logger.error(f"Tab capture failed mid-session: {error}")
        self._failure_task = asyncio.create_task(self._fail(error))

    async def _fail(self, error: Exception) -> None:
        artifact = await self.stop()
        if self.on_error:
            try:
                self.on_error(error, artifact)
            except Exception as e:
                logger.error(f"Capture error callback failed: {e}")

    async def stop(self) -> Path | None:
        """
        Stop the session: every track stopped once, mixer released, encoder
        finalized. Safe to call when idle; returns the last artifact then.

        Returns:
            Path of the session artifact, or None when nothing was recorded
        """
        session, self._session = self._session, None
        if session is None:
            return self._last_artifact

        for track in session.tracks():
            track.stop()
        session.mixer.close()

        # On the loop: the tail chunk goes to the same consumer as the others
        self._last_artifact = await session.encoder.finalize()
        logger.info(f"Capture stopped (artifact: {self._last_artifact})")
        return self._last_artifact
