"""
Unit tests for bus messages.

Tests the wire shape of tagged messages and conversion of transcription
batches.
"""

import pytest
from pydantic import TypeAdapter, ValidationError

from tabscribe.client.result import TranscriptSegment, TranscriptionUpdate
from tabscribe.messages import (
    CoordinatorInbound,
    StartRecording,
    StopCapture,
    TranscriptionUpdateMessage,
    WorkerCommand,
    WorkerReady,
)


class TestWireShape:
    """Tests for JSON field names and tags."""

    def test_transcription_update_aliases(self):
        """Test transcription updates use camelCase field names on the wire."""
        segment = TranscriptSegment(speaker_id=1, text="hi", is_final=False, start_time=0.5)
        message = TranscriptionUpdateMessage.from_update(
            TranscriptionUpdate(is_final=False, segments=(segment,))
        )

        data = message.model_dump(by_alias=True)

        assert data["kind"] == "transcriptionUpdate"
        assert data["isFinal"] is False
        assert data["segments"][0] == {
            "speakerId": 1,
            "text": "hi",
            "isFinal": False,
            "start_time": 0.5,
        }

    def test_update_conversion(self):
        """Test a batch converts to a message and back unchanged."""
        update = TranscriptionUpdate(
            is_final=True,
            segments=(
                TranscriptSegment(speaker_id=0, text="a", is_final=True),
                TranscriptSegment(speaker_id=1, text="b", is_final=True, start_time=2.0),
            ),
        )

        assert TranscriptionUpdateMessage.from_update(update).to_update() == update

    def test_messages_frozen(self):
        """Test messages cannot be mutated after creation."""
        message = StartRecording(use_mic=True)

        with pytest.raises(ValidationError):
            message.use_mic = False


class TestUnions:
    """Tests for tagged unions."""

    def test_coordinator_accepts_ui_commands(self):
        """Test UI commands parse by their kind tag."""
        adapter = TypeAdapter(CoordinatorInbound)

        message = adapter.validate_json('{"kind": "startRecording", "use_mic": true}')

        assert isinstance(message, StartRecording)
        assert message.use_mic is True
        assert message.use_tab is True

    def test_coordinator_accepts_worker_events(self):
        """Test worker events parse by their kind tag."""
        adapter = TypeAdapter(CoordinatorInbound)

        assert isinstance(adapter.validate_json('{"kind": "workerReady"}'), WorkerReady)

    def test_unknown_kind_rejected(self):
        """Test an unknown tag fails validation."""
        with pytest.raises(ValidationError):
            TypeAdapter(WorkerCommand).validate_json('{"kind": "selfDestruct"}')

    def test_worker_command_tag(self):
        """Test commands carry their tag."""
        assert StopCapture().kind == "stopCapture"
