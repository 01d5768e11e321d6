"""Unit tests for the command line."""

import io

import pytest

from tabscribe.cli import ConsoleUI, build_parser
from tabscribe.config.settings import MIC_GAIN
from tabscribe.messages import (
    RecordingStarted,
    RecordingStopped,
    SegmentPayload,
    TranscriptionConnectionMessage,
    TranscriptionUpdateMessage,
)


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test defaults record tab audio only, until stopped."""
        args = build_parser().parse_args([])

        assert args.mic is False
        assert args.duration is None
        assert args.mic_gain == MIC_GAIN
        assert args.download is False

    def test_options(self):
        """Test recording options are parsed."""
        args = build_parser().parse_args(
            ["--mic", "--duration", "30", "--api-key", "k", "--language", "multi", "--device", "2"]
        )

        assert args.mic is True
        assert args.duration == 30.0
        assert args.api_key == "k"
        assert args.language == "multi"
        assert args.device == 2


class TestConsoleUI:
    """Tests for the console UI endpoint."""

    @pytest.mark.asyncio
    async def test_started(self):
        """Test the start notification is printed with its warning."""
        out = io.StringIO()
        ui = ConsoleUI(out)

        await ui.handle_message(RecordingStarted(start_time=1.0, warning="mic off"))

        assert "Recording started (tab only)" in out.getvalue()
        assert "Warning: mic off" in out.getvalue()
        assert ui.started.is_set()

    @pytest.mark.asyncio
    async def test_stopped_with_error(self):
        """Test a stop error is remembered."""
        ui = ConsoleUI(io.StringIO())

        await ui.handle_message(RecordingStopped(error="Recording did not start in time"))

        assert ui.stopped.is_set()
        assert ui.last_error == "Recording did not start in time"

    @pytest.mark.asyncio
    async def test_transcript_lines(self):
        """Test final segments are printed per speaker."""
        out = io.StringIO()
        ui = ConsoleUI(out)
        segments = [
            SegmentPayload(speaker_id=0, text="hello", is_final=True),
            SegmentPayload(speaker_id=1, text="hi", is_final=True),
        ]

        await ui.handle_message(TranscriptionUpdateMessage(is_final=True, segments=segments))

        assert "Speaker 0: hello" in out.getvalue()
        assert "Speaker 1: hi" in out.getvalue()

    @pytest.mark.asyncio
    async def test_connection_status(self):
        """Test connection status changes are shown."""
        out = io.StringIO()
        ui = ConsoleUI(out)

        await ui.handle_message(TranscriptionConnectionMessage(status="error", error="bad key"))

        assert "[transcription error (bad key)]" in out.getvalue()
