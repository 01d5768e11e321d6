"""Streaming transcription client and transcript handling."""

from .result import TranscriptionUpdate, TranscriptSegment
from .segments import reconstruct_segments
from .transcript import TranscriptAccumulator
from .websocket_client import ConnectionState, ConnectionStatus, StreamingClient

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "StreamingClient",
    "TranscriptAccumulator",
    "TranscriptSegment",
    "TranscriptionUpdate",
    "reconstruct_segments",
]
