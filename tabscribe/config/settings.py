"""
Runtime Settings

Single source of truth for TabScribe configuration. Every value can be
overridden through an environment variable so the same code runs on a
developer machine, in CI and inside a container.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlencode

# ============== Transcription Backend ==============

DEEPGRAM_URL = os.getenv("DEEPGRAM_URL", "wss://api.deepgram.com/v1/listen")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-3")
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "en")
UTTERANCE_END_MS = int(os.getenv("UTTERANCE_END_MS", "3000"))

CONNECT_TIMEOUT = float(os.getenv("CONNECT_TIMEOUT", "10.0"))
KEEPALIVE_INTERVAL = float(os.getenv("KEEPALIVE_INTERVAL", "30.0"))
CLOSE_TIMEOUT = float(os.getenv("CLOSE_TIMEOUT", "2.0"))
PENDING_QUEUE_SIZE = int(os.getenv("PENDING_QUEUE_SIZE", "50"))

# ============== Capture ==============

MIC_GAIN = float(os.getenv("MIC_GAIN", "2.0"))
CHUNK_INTERVAL_MS = int(os.getenv("CHUNK_INTERVAL_MS", "1000"))
MEDIA_REQUEST_TIMEOUT = float(os.getenv("MEDIA_REQUEST_TIMEOUT", "10.0"))
MEDIA_RETRY_ATTEMPTS = int(os.getenv("MEDIA_RETRY_ATTEMPTS", "1"))
MEDIA_RETRY_BACKOFF = float(os.getenv("MEDIA_RETRY_BACKOFF", "0.5"))

# ============== Coordination ==============

WORKER_READY_TIMEOUT = float(os.getenv("WORKER_READY_TIMEOUT", "10.0"))
STOP_TIMEOUT = float(os.getenv("STOP_TIMEOUT", "15.0"))
START_CONFIRM_TIMEOUT = float(os.getenv("START_CONFIRM_TIMEOUT", "30.0"))

# ============== Storage ==============

DATA_DIR = Path(os.getenv("TABSCRIBE_DATA_DIR", Path.home() / ".tabscribe"))
STATE_FILE = Path(os.getenv("TABSCRIBE_STATE_FILE", DATA_DIR / "state.json"))
RECORDINGS_DIR = Path(os.getenv("TABSCRIBE_RECORDINGS_DIR", DATA_DIR / "recordings"))
DOWNLOADS_DIR = Path(os.getenv("TABSCRIBE_DOWNLOADS_DIR", Path.home() / "Downloads"))

# Key-value store keys
API_KEY_SETTING = "deepgram_api_key"
LANGUAGE_SETTING = "transcription_language"
RECORDING_STATE_KEY = "recording_state"


@dataclass
class StreamingOptions:
    """Query parameters baked into the transcription connection URL."""

    model: str = DEEPGRAM_MODEL
    language: str = TRANSCRIPTION_LANGUAGE
    diarize: bool = True
    interim_results: bool = True
    punctuate: bool = True
    smart_format: bool = True
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1
    utterance_end_ms: int = UTTERANCE_END_MS
    base_url: str = DEEPGRAM_URL

    def query_params(self) -> dict[str, str]:
        """Get the query parameters as strings, booleans lowercased."""
        params = {
            "model": self.model,
            "diarize": self.diarize,
            "interim_results": self.interim_results,
            "punctuate": self.punctuate,
            "smart_format": self.smart_format,
            "encoding": self.encoding,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "utterance_end_ms": self.utterance_end_ms,
        }
        if self.language:
            params["language"] = self.language
        return {
            key: str(value).lower() if isinstance(value, bool) else str(value)
            for key, value in params.items()
        }

    @property
    def url(self) -> str:
        """Full WebSocket URL for the backend."""
        return f"{self.base_url}?{urlencode(self.query_params())}"


@dataclass
class RetryPolicy:
    """Retry policy for media acquisition.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_s: Delay before the second attempt, doubled after each failure
        timeout_s: Hard timeout for each individual attempt
    """

    max_attempts: int = MEDIA_RETRY_ATTEMPTS
    backoff_s: float = MEDIA_RETRY_BACKOFF
    timeout_s: float = MEDIA_REQUEST_TIMEOUT

    def delays(self) -> list[float]:
        """Delays to wait before each retry (empty when retries are off)."""
        return [self.backoff_s * (2**i) for i in range(max(self.max_attempts - 1, 0))]


@dataclass
class CoordinatorConfig:
    """Timeouts and defaults used by the recording coordinator."""

    worker_ready_timeout: float = WORKER_READY_TIMEOUT
    stop_timeout: float = STOP_TIMEOUT
    start_confirm_timeout: float = START_CONFIRM_TIMEOUT
    default_language: str = TRANSCRIPTION_LANGUAGE


@dataclass
class CaptureConfig:
    """Capture engine settings."""

    mic_gain: float = MIC_GAIN
    chunk_interval_ms: int = CHUNK_INTERVAL_MS
    recordings_dir: Path = RECORDINGS_DIR
    retry: RetryPolicy = field(default_factory=RetryPolicy)
