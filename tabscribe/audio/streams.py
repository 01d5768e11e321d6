"""
Media streams and tracks.

A StreamHandle is a set of tracks plus a fan-out of 16-bit mono PCM frames to
listeners. Device streams emit frames from driver threads, so listeners must
be cheap and thread-safe.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Protocol

from .utils import TARGET_SAMPLE_RATE

logger = logging.getLogger(__name__)

FrameListener = Callable[[bytes], None]
FailureListener = Callable[[Exception], None]


@dataclass(frozen=True)
class MediaConstraints:
    """What to request from the media devices.

    Attributes:
        source: "tab" for the primary source, "microphone" for the mic
        stream_id: Opaque capture token for the tab source
        echo_cancellation: Ask the device for echo cancellation (mic only)
    """

    source: Literal["tab", "microphone"]
    stream_id: str | None = None
    echo_cancellation: bool = True


class TrackState(str, Enum):
    LIVE = "live"
    ENDED = "ended"


class MediaTrack:
    """One underlying audio track. stop() releases it exactly once."""

    def __init__(self, kind: str, label: str = "", on_stop: Callable[[], None] | None = None):
        self.kind = kind
        self.label = label or kind
        self._on_stop = on_stop
        self._state = TrackState.LIVE
        self._lock = threading.Lock()

    @property
    def ready_state(self) -> TrackState:
        return self._state

    def stop(self) -> bool:
        """Stop the track. Returns False if it was already stopped."""
        with self._lock:
            if self._state is TrackState.ENDED:
                return False
            self._state = TrackState.ENDED

        if self._on_stop:
            try:
                self._on_stop()
            except Exception as e:
                logger.warning(f"Error releasing track {self.label}: {e}")
        logger.debug(f"Track stopped: {self.label}")
        return True

    def __repr__(self) -> str:
        return f"MediaTrack({self.label!r}, {self._state.value})"


class StreamHandle:
    """A live stream: its tracks and the listeners receiving its frames."""

    def __init__(
        self, tracks: list[MediaTrack], sample_rate: int = TARGET_SAMPLE_RATE, label: str = ""
    ):
        self.tracks = list(tracks)
        self.sample_rate = sample_rate
        self.label = label
        self._listeners: list[FrameListener] = []
        self._failure_listeners: list[FailureListener] = []
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        """True while at least one track is live."""
        return any(t.ready_state is TrackState.LIVE for t in self.tracks)

    def add_listener(self, listener: FrameListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: FrameListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def add_failure_listener(self, listener: FailureListener) -> None:
        with self._lock:
            self._failure_listeners.append(listener)

    def emit(self, frame: bytes) -> None:
        """Deliver one PCM frame to every listener (no-op once ended)."""
        if not self.active:
            return
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(frame)
            except Exception as e:
                logger.error(f"Frame listener error on {self.label}: {e}")

    def fail(self, error: Exception) -> None:
        """Report an unrecoverable device error to the failure listeners."""
        with self._lock:
            listeners = list(self._failure_listeners)
        for listener in listeners:
            try:
                listener(error)
            except Exception as e:
                logger.error(f"Failure listener error on {self.label}: {e}")

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()

    def __repr__(self) -> str:
        return f"StreamHandle({self.label!r}, tracks={self.tracks})"


class MediaDevices(Protocol):
    """Host media devices: hands out live streams for a set of constraints."""

    async def get_user_media(self, constraints: MediaConstraints) -> StreamHandle: ...
