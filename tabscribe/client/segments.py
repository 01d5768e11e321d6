"""
Speaker Segment Reconstruction

Turns one backend result frame into speaker-attributed segments.

Frame shape (only the fields we read):
  {
    "type": "Results",
    "is_final": true,
    "channel": {"alternatives": [{"transcript": "...", "words": [
        {"word": "hi", "punctuated_word": "Hi", "start": 0.1, "speaker": 0}, ...
    ]}]}
  }

Older payloads nest the channel as results.channels[0]; both are accepted.
"""

import logging
from typing import Any

from .result import TranscriptSegment, TranscriptionUpdate

logger = logging.getLogger(__name__)


def _first_alternative(data: dict[str, Any]) -> dict[str, Any] | None:
    """Find the first alternative in either supported frame layout."""
    channel = data.get("channel")
    if channel is None:
        channels = (data.get("results") or {}).get("channels") or []
        channel = channels[0] if channels else None

    if not isinstance(channel, dict):
        return None

    alternatives = channel.get("alternatives") or []
    return alternatives[0] if alternatives else None


def _word_text(word: dict[str, Any]) -> str:
    return str(word.get("punctuated_word") or word.get("word") or "")


def _make_segment(speaker: int, words: list[dict[str, Any]], is_final: bool) -> TranscriptSegment:
    return TranscriptSegment(
        speaker_id=speaker,
        text=" ".join(_word_text(w) for w in words).strip(),
        is_final=is_final,
        start_time=words[0].get("start"),
    )


def _finish(is_final: bool, segments: list[TranscriptSegment]) -> TranscriptionUpdate:
    kept = tuple(s for s in segments if s.text or not s.is_final)
    return TranscriptionUpdate(is_final=is_final, segments=kept)


def reconstruct_segments(data: dict[str, Any] | None) -> TranscriptionUpdate:
    """
    Group the words of one result frame into speaker segments.

    Consecutive words with the same speaker index form one segment; a speaker
    change starts a new one. Without per-word speaker tags the whole
    transcript becomes one segment for speaker 0. Empty final segments are
    dropped; the update itself keeps its finality so the consumer still sees
    where an utterance ended. An empty interim keeps its one empty segment.

    Args:
        data: Parsed JSON result frame

    Returns:
        TranscriptionUpdate carrying the frame's finality and its segments
    """
    if not data:
        return TranscriptionUpdate(is_final=False)

    is_final = data.get("is_final") is True
    alternative = _first_alternative(data)
    if alternative is None:
        logger.debug("Result frame has no alternatives")
        return TranscriptionUpdate(is_final=is_final)

    words = alternative.get("words") or []
    transcript = (alternative.get("transcript") or "").strip()

    if words and any("speaker" in w for w in words):
        segments: list[TranscriptSegment] = []
        current_speaker: int | None = None
        run: list[dict[str, Any]] = []

        for word in words:
            speaker = int(word.get("speaker", current_speaker or 0))
            if run and speaker != current_speaker:
                segments.append(_make_segment(current_speaker, run, is_final))
                run = []
            current_speaker = speaker
            run.append(word)

        if run:
            segments.append(_make_segment(current_speaker, run, is_final))

        return _finish(is_final, segments)

    # No diarization tags: whole transcript (possibly empty) for speaker 0
    start_time = words[0].get("start") if words else None
    segment = TranscriptSegment(
        speaker_id=0, text=transcript, is_final=is_final, start_time=start_time
    )
    return _finish(is_final, [segment])
