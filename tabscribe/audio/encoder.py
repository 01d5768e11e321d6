"""Chunk encoder that cuts the mixed stream into fixed-interval chunks.

Every chunk is kept in memory for the session artifact and handed to the
on_chunk callback (the transcription client). On finalize the chunks are
written to one WAV file in the recordings directory.

Usage:
    encoder = ChunkEncoder(on_chunk=client.send)
    encoder.start()

    # For every mixed frame:
    encoder.write(frame)

    # When done:
    path = await encoder.finalize()
"""

import asyncio
import logging
import threading
import wave
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ..config.settings import CHUNK_INTERVAL_MS, RECORDINGS_DIR
from .utils import CHANNELS, SAMPLE_WIDTH, TARGET_SAMPLE_RATE, calculate_chunk_size, pcm_duration

logger = logging.getLogger(__name__)


class ChunkEncoder:
    """Encodes raw linear16 PCM into fixed-interval chunks and a WAV artifact."""

    def __init__(
        self,
        sample_rate: int = TARGET_SAMPLE_RATE,
        chunk_interval_ms: int = CHUNK_INTERVAL_MS,
        recordings_dir: Path = RECORDINGS_DIR,
        on_chunk: Callable[[bytes], None] | None = None,
    ):
        """Initialize encoder.

        Args:
            sample_rate: Sample rate of the incoming PCM
            chunk_interval_ms: Length of every emitted chunk
            recordings_dir: Where finalize() writes the WAV file
            on_chunk: Callback for every completed chunk
        """
        self.sample_rate = sample_rate
        self.chunk_interval_ms = chunk_interval_ms
        self.recordings_dir = Path(recordings_dir)
        self.on_chunk = on_chunk

        self._chunk_bytes = calculate_chunk_size(sample_rate, chunk_interval_ms) * SAMPLE_WIDTH
        self._chunks: list[bytes] = []
        self._buffer = bytearray()
        self._recording = False
        self._start_time: datetime | None = None
        self._current_filename: str | None = None
        self._total_bytes = 0
        self._lock = threading.Lock()

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def chunks(self) -> list[bytes]:
        """Chunks emitted so far, in order."""
        with self._lock:
            return list(self._chunks)

    @property
    def duration(self) -> float:
        """Get current recording duration in seconds."""
        return pcm_duration(self._total_bytes, self.sample_rate)

    @property
    def duration_str(self) -> str:
        """Get duration as formatted string (MM:SS)."""
        total_seconds = int(self.duration)
        return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"

    def start(self) -> bool:
        """Start a new session.

        Returns:
            True if started, False if already recording
        """
        with self._lock:
            if self._recording:
                logger.warning("Encoder already recording")
                return False

            self._chunks = []
            self._buffer = bytearray()
            self._total_bytes = 0
            self._start_time = datetime.now()
            self._recording = True

            timestamp = self._start_time.strftime("%Y%m%d_%H%M%S")
            self._current_filename = f"recording_{timestamp}.wav"

        logger.info(f"Encoder started: {self._current_filename}")
        return True

    def write(self, frame: bytes) -> None:
        """Add PCM audio; emits every chunk that becomes complete."""
        if not self._recording:
            return

        ready: list[bytes] = []
        with self._lock:
            self._buffer.extend(frame)
            while len(self._buffer) >= self._chunk_bytes:
                chunk = bytes(self._buffer[: self._chunk_bytes])
                del self._buffer[: self._chunk_bytes]
                self._chunks.append(chunk)
                self._total_bytes += len(chunk)
                ready.append(chunk)

        for chunk in ready:
            self._emit(chunk)

    def _emit(self, chunk: bytes) -> None:
        if self.on_chunk:
            try:
                self.on_chunk(chunk)
            except Exception as e:
                logger.error(f"Chunk callback error: {e}")

    async def finalize(self) -> Path | None:
        """Flush the partial chunk and write the session artifact.

        The tail chunk is emitted on the calling loop; the WAV file is written
        in a worker thread.

        Returns:
            Path of the WAV file, or None when nothing was recorded
        """
        with self._lock:
            if not self._recording:
                return None
            self._recording = False

            tail = bytes(self._buffer)
            self._buffer = bytearray()
            if tail:
                self._chunks.append(tail)
                self._total_bytes += len(tail)

            chunks = list(self._chunks)

        if tail:
            self._emit(tail)

        if not chunks:
            logger.warning("No audio recorded, no artifact produced")
            return None

        path = self.recordings_dir / self._current_filename
        await asyncio.to_thread(self._write_wav, path, b"".join(chunks))

        logger.info(f"Saved recording: {path} ({self.duration_str}, {len(chunks)} chunks)")
        return path

    def _write_wav(self, path: Path, audio_data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with wave.open(str(path), "wb") as wav:
            wav.setnchannels(CHANNELS)
            wav.setsampwidth(SAMPLE_WIDTH)
            wav.setframerate(self.sample_rate)
            wav.writeframes(audio_data)
