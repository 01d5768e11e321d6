"""Audio capture, mixing and encoding."""

from .capture import MIC_DENIED_WARNING, CaptureEngine, CaptureSession, CaptureStartInfo
from .encoder import ChunkEncoder
from .mixer import AudioMixer, MonitorSink
from .streams import MediaConstraints, MediaDevices, MediaTrack, StreamHandle, TrackState

__all__ = [
    "AudioMixer",
    "CaptureEngine",
    "CaptureSession",
    "CaptureStartInfo",
    "ChunkEncoder",
    "MIC_DENIED_WARNING",
    "MediaConstraints",
    "MediaDevices",
    "MediaTrack",
    "MonitorSink",
    "StreamHandle",
    "TrackState",
]
