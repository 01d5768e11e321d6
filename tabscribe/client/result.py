"""
Transcription Result Data Classes

Represents the speaker segments reconstructed from backend result frames.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TranscriptSegment:
    """
    One run of words attributed to a single speaker.

    Attributes:
        speaker_id: Diarized speaker index (0 when the backend gave no tags)
        text: Words of the run joined by spaces
        is_final: Whether the backend committed this text
        start_time: Start of the first word in seconds, if known
    """

    speaker_id: int
    text: str
    is_final: bool
    start_time: float | None = None

    @property
    def label(self) -> str:
        """Human-readable speaker label."""
        return f"Speaker {self.speaker_id}"

    def __str__(self) -> str:
        status = "final" if self.is_final else "interim"
        return f"TranscriptSegment({self.label}, {status}: {self.text[:50]})"


@dataclass(frozen=True)
class TranscriptionUpdate:
    """One reconstructed batch, forwarded to the coordinator as a unit."""

    is_final: bool
    segments: tuple[TranscriptSegment, ...] = field(default_factory=tuple)

    @property
    def text(self) -> str:
        """Concatenated text of all segments."""
        return " ".join(segment.text for segment in self.segments if segment.text)
