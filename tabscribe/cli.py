"""
TabScribe command line

Wires the three contexts (coordinator, capture worker, console UI) onto one
in-process bus and records until Ctrl+C or the requested duration.

Usage:
  tabscribe                          # Record system audio until Ctrl+C
  tabscribe --mic                    # Mix in the microphone
  tabscribe --duration 60            # Stop after one minute
  tabscribe --api-key KEY            # Save the transcription key and record
  tabscribe --download               # Copy the last recording to Downloads
"""

import argparse
import asyncio
import logging
import signal
import sys

from . import __version__
from .audio.devices import PyAudioMediaDevices
from .bus import UI, LocalMessageBus
from .config.settings import (
    API_KEY_SETTING,
    DOWNLOADS_DIR,
    LANGUAGE_SETTING,
    MIC_GAIN,
    STATE_FILE,
    CaptureConfig,
)
from .coordinator import RecordingCoordinator
from .host import LocalTabCapture, LocalWorkerHost
from .messages import (
    RecordingStarted,
    RecordingStateChanged,
    RecordingStopped,
    TranscriptionConnectionMessage,
    TranscriptionUpdateMessage,
    UiNotification,
)
from .storage import JsonFileStore
from .utils.logging import setup_logging
from .worker import CaptureWorker

logger = logging.getLogger(__name__)


class ConsoleUI:
    """UI context that prints notifications to the terminal."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.started = asyncio.Event()
        self.stopped = asyncio.Event()
        self.last_error: str | None = None

    def _print(self, text: str, end: str = "\n") -> None:
        self.stream.write(text + end)
        self.stream.flush()

    async def handle_message(self, message) -> None:
        match message:
            case RecordingStarted():
                source = "tab + microphone" if message.use_microphone else "tab only"
                self._print(f"Recording started ({source})")
                if message.warning:
                    self._print(f"Warning: {message.warning}")
                self.started.set()
            case RecordingStopped():
                if message.error:
                    self.last_error = message.error
                    self._print(f"Recording stopped: {message.error}")
                self.stopped.set()
            case RecordingStateChanged():
                logger.debug(f"State: {message.state}")
            case TranscriptionConnectionMessage():
                detail = f" ({message.error})" if message.error else ""
                self._print(f"[transcription {message.status}{detail}]")
            case TranscriptionUpdateMessage():
                for segment in message.segments:
                    if not segment.text:
                        continue
                    line = f"Speaker {segment.speaker_id}: {segment.text}"
                    if message.is_final:
                        self._print("\r" + line)
                    else:
                        self._print("\r… " + line, end="")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabscribe", description=f"TabScribe v{__version__}: record and transcribe audio"
    )
    parser.add_argument("--mic", action="store_true", help="Mix the microphone into the recording")
    parser.add_argument("--device", type=int, help="Microphone device index")
    parser.add_argument(
        "--loopback-device", type=int, help="Loopback device index for the tab source"
    )
    parser.add_argument(
        "--mic-gain", type=float, default=MIC_GAIN, help=f"Microphone gain (default: {MIC_GAIN})"
    )
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--api-key", help="Save the transcription API key before recording")
    parser.add_argument("--language", help="Save the transcription language (e.g. 'en', 'multi')")
    parser.add_argument(
        "--download", action="store_true", help="Copy the last recording to the downloads folder"
    )
    parser.add_argument("--state-file", default=str(STATE_FILE), help="Settings and state file")
    parser.add_argument("--downloads-dir", default=str(DOWNLOADS_DIR), help="Downloads folder")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _install_stop_handler(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop.set))


async def run(args: argparse.Namespace) -> int:
    store = JsonFileStore(args.state_file)
    bus = LocalMessageBus()
    devices = PyAudioMediaDevices(mic_device=args.device, loopback_device=args.loopback_device)
    capture_config = CaptureConfig(mic_gain=args.mic_gain)

    host = LocalWorkerHost(
        lambda: CaptureWorker(bus, devices, capture_config, downloads_dir=args.downloads_dir)
    )
    coordinator = RecordingCoordinator(bus, LocalTabCapture(), host, store)
    ui = ConsoleUI()
    bus.register(UI, ui.handle_message, UiNotification)

    await coordinator.attach()
    await coordinator.initialize()

    try:
        if args.api_key or args.language:
            saved = await store.get([API_KEY_SETTING, LANGUAGE_SETTING])
            await coordinator.update_transcription_settings(
                api_key=args.api_key or saved.get(API_KEY_SETTING),
                language=args.language or saved.get(LANGUAGE_SETTING),
            )

        if args.download:
            reply = await coordinator.download_artifact()
            if not reply.success:
                print(f"Download failed: {reply.error}")
                return 1
            print(f"Saved to {reply.path}")
            return 0

        result = await coordinator.start(use_mic=args.mic)
        if not result.success:
            print(f"Could not start recording: {result.error}")
            return 1

        waiters = [asyncio.create_task(ui.started.wait()), asyncio.create_task(ui.stopped.wait())]
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if not coordinator.state.is_recording:
            print(f"Could not start recording: {ui.last_error or coordinator.state.error}")
            return 1

        print("Press Ctrl+C to stop")
        stop = asyncio.Event()
        _install_stop_handler(stop)
        waiters = [asyncio.create_task(stop.wait()), asyncio.create_task(ui.stopped.wait())]
        _, pending = await asyncio.wait(
            waiters, timeout=args.duration, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

        if coordinator.state.is_recording:
            reply = await coordinator.stop()
            if reply.artifact_ref:
                print(f"\nRecording saved: {reply.artifact_ref}")
            elif reply.error:
                print(f"\nStop failed: {reply.error}")

        transcript = coordinator.transcript.get_text(include_interim=False)
        if transcript:
            print("\nTranscript:\n" + transcript)
        return 0
    finally:
        await coordinator.shutdown()


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()

    setup_logging("tabscribe", level="DEBUG" if args.debug else None)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
