"""
Transcript Accumulator

Builds the session transcript out of TranscriptionUpdate batches.

Rules:
  - Interim batch: replaces the running interim segments wholesale
  - Final batch: drops the running interim and commits its segments
  - Committed segments are never mutated afterwards
  - Empty final segments are not committed; they only end the utterance

Usage:
    transcript = TranscriptAccumulator()
    transcript.on_change = lambda: print(transcript.get_text())
    transcript.apply(update)
"""

import logging
from collections.abc import Callable

from .result import TranscriptSegment, TranscriptionUpdate

logger = logging.getLogger(__name__)


class TranscriptAccumulator:
    """
    Keeps committed final segments followed by the current interim segments.

    The accumulator does not reorder anything: batches are applied in the
    order the backend sent them.
    """

    def __init__(self, max_segments: int = 1000):
        """
        Initialize transcript accumulator.

        Args:
            max_segments: Maximum committed segments to keep (oldest removed first)
        """
        self._final: list[TranscriptSegment] = []
        self._interim: list[TranscriptSegment] = []
        self._max_segments = max_segments

        # Callback when transcript changes
        self.on_change: Callable[[], None] | None = None

    def apply(self, update: TranscriptionUpdate) -> None:
        """Apply one batch to the transcript."""
        if update.is_final:
            self._interim = []
            for segment in update.segments:
                if segment.text:
                    self._final.append(segment)
            logger.debug(f"[FINAL] committed {len(update.segments)} segment(s)")
        else:
            self._interim = list(update.segments)
            logger.debug(f"[INTERIM] {update.text[:50]}")

        # Enforce max segments (remove oldest)
        overflow = len(self._final) - self._max_segments
        if overflow > 0:
            del self._final[:overflow]

        self._notify()

    def _notify(self) -> None:
        if self.on_change:
            try:
                self.on_change()
            except Exception as e:
                logger.warning(f"Transcript change callback failed: {e}")

    @property
    def segments(self) -> list[TranscriptSegment]:
        """Committed segments followed by the running interim segments."""
        return self._final + self._interim

    @property
    def final_segments(self) -> list[TranscriptSegment]:
        return list(self._final)

    def get_text(self, include_interim: bool = True) -> str:
        """
        Render the transcript as "Speaker N: text" lines.

        Consecutive segments from the same speaker are merged onto one line.
        """
        source = self.segments if include_interim else self._final
        lines: list[tuple[int, str]] = []
        for segment in source:
            if not segment.text:
                continue
            if lines and lines[-1][0] == segment.speaker_id:
                lines[-1] = (segment.speaker_id, f"{lines[-1][1]} {segment.text}")
            else:
                lines.append((segment.speaker_id, segment.text))
        return "\n".join(f"Speaker {speaker}: {text}" for speaker, text in lines)

    def clear(self) -> None:
        """Clear all segments."""
        self._final.clear()
        self._interim.clear()
        self._notify()

    @property
    def is_empty(self) -> bool:
        return not self._final and not self._interim

    def __len__(self) -> int:
        return len(self._final) + len(self._interim)

    def __repr__(self) -> str:
        return f"TranscriptAccumulator({len(self._final)} final, {len(self._interim)} interim)"
