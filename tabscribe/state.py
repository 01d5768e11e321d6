"""
Recording and transcription state held by the coordinator.

RecordingState is persisted to the key-value store on every transition so an
interrupted session can be detected on the next startup.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from .client.result import TranscriptSegment
from .config.settings import RECORDING_STATE_KEY
from .host import KeyValueStore
from .messages import RecordingSnapshot

logger = logging.getLogger(__name__)


@dataclass
class RecordingState:
    """
    Attributes:
        is_recording: Capture is confirmed running
        start_time: Epoch seconds when capture actually started
        artifact_ref: Path of the last finished recording
        error: Last error shown to the user
        warning: Non-fatal warning for the current session
        use_microphone: Whether the microphone is actually mixed in
        worker_ready: Whether the capture worker has announced itself
    """

    is_recording: bool = False
    start_time: float | None = None
    artifact_ref: str | None = None
    error: str | None = None
    warning: str | None = None
    use_microphone: bool = False
    worker_ready: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordingState":
        """Build from stored data, ignoring keys this version does not know."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def snapshot(self) -> RecordingSnapshot:
        return RecordingSnapshot(**self.to_dict())


@dataclass
class TranscriptionState:
    enabled: bool = False
    status: str = "disconnected"
    error: str | None = None
    segments: list[TranscriptSegment] = field(default_factory=list)


class RecordingStateStore:
    """Saves and loads RecordingState under one key of a key-value store."""

    def __init__(self, store: KeyValueStore, key: str = RECORDING_STATE_KEY):
        self.store = store
        self.key = key

    async def save(self, state: RecordingState) -> None:
        await self.store.set({self.key: state.to_dict()})
        logger.debug(f"Saved recording state: {state}")

    async def load(self) -> RecordingState:
        """Load the saved state, or a fresh one if nothing usable is stored."""
        data = (await self.store.get([self.key])).get(self.key)
        if not isinstance(data, dict):
            if data is not None:
                logger.warning(f"Discarding unreadable recording state: {data!r}")
            return RecordingState()
        return RecordingState.from_dict(data)
