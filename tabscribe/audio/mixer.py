"""
Audio mixing context.

One fixed topology:

    tab ─────────────┬──────────────> monitor (so the user still hears the tab)
                     │
                     └──> (+) ──────> mixed stream
    mic ──> gain x2 ─────┘

The tab stream is the clock: every tab frame produces one mixed frame of the
same length, using whatever microphone audio has been buffered since. Missing
microphone audio is filled with silence.
"""

import logging
import threading
from typing import Protocol

from ..config.settings import MIC_GAIN
from ..errors import InvalidStateError
from .streams import MediaTrack, StreamHandle
from .utils import SAMPLE_WIDTH, mix_pcm, resample_audio

logger = logging.getLogger(__name__)

# Keep at most this much unmixed microphone audio (seconds)
MAX_MIC_BACKLOG = 1.0


class MonitorSink(Protocol):
    """Playback output for the tab audio."""

    def write(self, frame: bytes) -> None: ...

    def close(self) -> None: ...


class AudioMixer:
    """Mixes the tab stream with an optional microphone stream."""

    def __init__(self, mic_gain: float = MIC_GAIN, monitor: MonitorSink | None = None):
        """
        Initialize mixer.

        Args:
            mic_gain: Linear gain applied to the microphone before summing
            monitor: Where to play the tab audio back, or None for no monitoring
        """
        self.mic_gain = mic_gain
        self.monitor = monitor

        self._lock = threading.Lock()
        self._mic_buffer = bytearray()
        self._tab: StreamHandle | None = None
        self._mic: StreamHandle | None = None
        self._output: StreamHandle | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def mix(self, tab: StreamHandle, mic: StreamHandle | None = None) -> StreamHandle:
        """
        Wire the streams together.

        Args:
            tab: Primary stream (also routed to the monitor)
            mic: Optional microphone stream

        Returns:
            The mixed stream, or the tab stream itself when there is no mic
        """
        if self._closed:
            raise InvalidStateError("Mixing context already closed")
        if self._tab is not None:
            raise InvalidStateError("Mixer is already wired")

        self._tab = tab

        if mic is None:
            tab.add_listener(self._on_tab_only_frame)
            logger.info("Mixer: tab only")
            return tab

        self._mic = mic
        self._output = StreamHandle(
            [MediaTrack("audio", label="mixed")], sample_rate=tab.sample_rate, label="mixed"
        )
        mic.add_listener(self._on_mic_frame)
        tab.add_listener(self._on_tab_frame)
        logger.info(f"Mixer: tab + microphone (gain x{self.mic_gain})")
        return self._output

    def _monitor(self, frame: bytes) -> None:
        if self.monitor is None:
            return
        try:
            self.monitor.write(frame)
        except Exception as e:
            logger.warning(f"Monitor output error: {e}")

    def _on_tab_only_frame(self, frame: bytes) -> None:
        self._monitor(frame)

    def _on_mic_frame(self, frame: bytes) -> None:
        if self._mic.sample_rate != self._tab.sample_rate:
            frame = resample_audio(frame, self._mic.sample_rate, self._tab.sample_rate)

        limit = int(self._tab.sample_rate * MAX_MIC_BACKLOG) * SAMPLE_WIDTH
        with self._lock:
            self._mic_buffer.extend(frame)
            overflow = len(self._mic_buffer) - limit
            if overflow > 0:
                del self._mic_buffer[:overflow]

    def _on_tab_frame(self, frame: bytes) -> None:
        self._monitor(frame)

        with self._lock:
            mic_part = bytes(self._mic_buffer[: len(frame)])
            del self._mic_buffer[: len(frame)]

        self._output.emit(mix_pcm(frame, mic_part, self.mic_gain))

    def close(self) -> None:
        """Release the mixing context. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._tab is not None:
            self._tab.remove_listener(self._on_tab_frame)
            self._tab.remove_listener(self._on_tab_only_frame)
        if self._mic is not None:
            self._mic.remove_listener(self._on_mic_frame)

        with self._lock:
            self._mic_buffer.clear()

        if self.monitor is not None:
            try:
                self.monitor.close()
            except Exception as e:
                logger.warning(f"Error closing monitor output: {e}")

        logger.debug("Mixing context released")
