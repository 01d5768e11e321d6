"""Audio utility functions for resampling, format conversion and mixing."""

import logging
from math import gcd

import numpy as np
from scipy import signal

logger = logging.getLogger(__name__)

# Audio settings
TARGET_SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2  # 16-bit = 2 bytes
CHANNELS = 1

INT16_MIN = -32768
INT16_MAX = 32767


def resample_audio(audio_data: bytes, from_rate: int, to_rate: int) -> bytes:
    """
    Resample audio using polyphase filtering.

    Args:
        audio_data: Raw 16-bit PCM audio bytes
        from_rate: Source sample rate in Hz
        to_rate: Target sample rate in Hz

    Returns:
        Resampled audio as bytes
    """
    if from_rate == to_rate or not audio_data:
        return audio_data

    audio_np = np.frombuffer(audio_data, dtype=np.int16).astype(np.float32)

    g = gcd(from_rate, to_rate)
    resampled = signal.resample_poly(audio_np, to_rate // g, from_rate // g)

    return np.clip(resampled, INT16_MIN, INT16_MAX).astype(np.int16).tobytes()


def stereo_to_mono(audio_data: bytes) -> bytes:
    """
    Convert stereo audio to mono by averaging channels.

    Args:
        audio_data: Stereo 16-bit PCM audio bytes (interleaved L/R)

    Returns:
        Mono audio as bytes
    """
    stereo = np.frombuffer(audio_data, dtype=np.int16)
    left = stereo[0::2]
    right = stereo[1::2]
    mono = ((left.astype(np.int32) + right.astype(np.int32)) // 2).astype(np.int16)
    return mono.tobytes()


def mix_pcm(primary: bytes, secondary: bytes, secondary_gain: float = 1.0) -> bytes:
    """
    Sum two 16-bit PCM buffers: primary unchanged plus secondary x gain.

    The output has the primary's length. A shorter secondary is padded with
    silence; a longer one is truncated. Sums are clipped to the int16 range.
    """
    a = np.frombuffer(primary, dtype=np.int16).astype(np.float32)
    b = np.frombuffer(secondary, dtype=np.int16).astype(np.float32)

    if len(b) < len(a):
        b = np.pad(b, (0, len(a) - len(b)))
    elif len(b) > len(a):
        b = b[: len(a)]

    mixed = a + b * secondary_gain
    return np.clip(mixed, INT16_MIN, INT16_MAX).astype(np.int16).tobytes()


def calculate_chunk_size(sample_rate: int, duration_ms: int) -> int:
    """Calculate chunk size in samples for given duration."""
    return int(sample_rate * duration_ms / 1000)


def pcm_duration(num_bytes: int, sample_rate: int = TARGET_SAMPLE_RATE) -> float:
    """Duration in seconds of mono 16-bit PCM of the given size."""
    return num_bytes / (sample_rate * SAMPLE_WIDTH * CHANNELS)
