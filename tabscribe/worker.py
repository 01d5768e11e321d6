"""
Capture Worker

The capture-worker context: owns the capture engine and the streaming
client, and talks to the coordinator only through the bus.

Start sequence:
    1. Transcription requested without a key -> CaptureStartFailed
    2. Begin connecting the streaming client (chunks queue meanwhile)
    3. Start capture; a tab failure -> CaptureStartFailed
    4. Wait for the connection outcome (failure does not abort the recording)
    5. CaptureStarted with what was actually achieved
"""

import asyncio
import logging
import shutil
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from .audio.capture import CaptureEngine
from .audio.mixer import MonitorSink
from .audio.streams import MediaDevices
from .bus import COORDINATOR, WORKER, MessageBus
from .client.result import TranscriptionUpdate
from .client.websocket_client import ConnectionStatus, StreamingClient
from .config.settings import DOWNLOADS_DIR, TRANSCRIPTION_LANGUAGE, CaptureConfig, StreamingOptions
from .errors import DeliveryError, TabScribeError
from .messages import (
    Ack,
    CaptureEnded,
    CaptureStarted,
    CaptureStartFailed,
    CaptureWarning,
    DownloadArtifact,
    DownloadReply,
    StartCapture,
    StopCapture,
    StopCaptureReply,
    TranscriptionConnectionMessage,
    TranscriptionUpdateMessage,
    UpdateTranscriptionSettings,
    WorkerCommand,
    WorkerReady,
)

logger = logging.getLogger(__name__)


class CaptureWorker:
    """Runs capture and transcription on behalf of the coordinator."""

    def __init__(
        self,
        bus: MessageBus,
        devices: MediaDevices,
        capture_config: CaptureConfig | None = None,
        downloads_dir: Path = DOWNLOADS_DIR,
        monitor: MonitorSink | None = None,
        client_factory: Callable[..., StreamingClient] = StreamingClient,
    ):
        """
        Initialize capture worker.

        Args:
            bus: Message bus shared with the coordinator
            devices: Media devices for the tab and microphone streams
            capture_config: Capture engine settings
            downloads_dir: Where downloaded recordings are copied
            monitor: Playback output for the tab audio
            client_factory: Builds the streaming client for each session
        """
        self.bus = bus
        self.downloads_dir = Path(downloads_dir)
        self.client_factory = client_factory
        self.engine = CaptureEngine(
            devices,
            capture_config,
            monitor=monitor,
            on_chunk=self._on_chunk,
            on_error=self._on_capture_error,
        )

        self.client: StreamingClient | None = None
        self._api_key: str | None = None
        self._language: str = TRANSCRIPTION_LANGUAGE
        self._stopping: asyncio.Future | None = None
        # CaptureStarted has been sent for the running session
        self._announced = False
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def attach(self) -> None:
        """Register on the bus and announce readiness."""
        self.bus.register(WORKER, self.handle_message, WorkerCommand)
        logger.info("Capture worker attached")
        self._send(WorkerReady())

    async def shutdown(self) -> None:
        """Stop any capture and leave the bus."""
        await self._stop()
        self.bus.unregister(WORKER)
        logger.info("Capture worker shut down")

    def _send(self, event: BaseModel) -> None:
        try:
            self.bus.send(COORDINATOR, event)
        except DeliveryError as e:
            logger.debug(f"Dropped {type(event).__name__}: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_message(self, message) -> BaseModel | None:
        """Bus entry point for coordinator commands."""
        match message:
            case StartCapture():
                await self._start(message)
                return Ack()
            case StopCapture():
                return await self._stop()
            case DownloadArtifact():
                return await self._download(message.artifact_ref)
            case UpdateTranscriptionSettings():
                self._update_settings(message)
                return Ack()
        logger.warning(f"Unhandled command: {message!r}")
        return None

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def _start(self, command: StartCapture) -> None:
        logger.info(
            f"Start capture: mic={command.use_microphone}, "
            f"transcription={command.enable_transcription}"
        )

        if self.engine.is_capturing:
            self._send(CaptureStartFailed(error="Capture already running"))
            return

        api_key = command.api_key or self._api_key
        if command.enable_transcription and not (api_key and api_key.strip()):
            logger.error("Transcription requested without an API key")
            self._send(CaptureStartFailed(error="Transcription API key not configured"))
            return

        await self._disconnect_client()

        connect_task: asyncio.Task | None = None
        if command.enable_transcription:
            language = command.language or self._language
            self.client = self.client_factory(
                on_transcript=self._on_transcript, on_status=self._on_status
            )
            connect_task = asyncio.create_task(
                self.client.connect(api_key, StreamingOptions(language=language))
            )

        try:
            info = await self.engine.start(command.stream_id, command.use_microphone)
        except TabScribeError as e:
            logger.error(f"Capture failed to start: {e}")
            if connect_task is not None:
                connect_task.cancel()
                await asyncio.gather(connect_task, return_exceptions=True)
            await self._disconnect_client()
            self._send(CaptureStartFailed(error=str(e)))
            return

        start_time = time.time()

        connected = False
        if connect_task is not None:
            try:
                await connect_task
                connected = True
            except TabScribeError as e:
                # The recording goes on without transcription
                logger.warning(f"Transcription unavailable: {e}")

        self._send(
            CaptureStarted(
                start_time=start_time,
                use_microphone=info.use_microphone,
                transcription_enabled=command.enable_transcription,
                transcription_connected=connected,
                warning=info.warning,
            )
        )
        self._announced = True

    def _update_settings(self, message: UpdateTranscriptionSettings) -> None:
        # Used by the next connection, the live one is left alone
        if message.api_key:
            self._api_key = message.api_key
        if message.language:
            self._language = message.language
        logger.info(f"Transcription settings updated (language={self._language})")

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def _stop(self) -> StopCaptureReply:
        """Stop capture and transcription. Concurrent calls share one teardown."""
        if self._stopping is None:
            self._stopping = asyncio.ensure_future(self._teardown())
            self._stopping.add_done_callback(self._clear_stopping)
        return await asyncio.shield(self._stopping)

    def _clear_stopping(self, future: asyncio.Future) -> None:
        if self._stopping is future:
            self._stopping = None

    async def _teardown(self) -> StopCaptureReply:
        self._announced = False
        try:
            # Capture first: the last partial chunk still goes to the open client
            artifact = await self.engine.stop()
        except OSError as e:
            logger.error(f"Failed to finalize recording: {e}")
            await self._disconnect_client()
            return StopCaptureReply(success=False, error=f"Failed to save recording: {e}")

        await self._disconnect_client()
        return StopCaptureReply(success=True, artifact_ref=str(artifact) if artifact else None)

    async def _disconnect_client(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.disconnect()

    # ------------------------------------------------------------------
    # Callbacks from the engine and the client
    # ------------------------------------------------------------------

    def _on_chunk(self, chunk: bytes) -> None:
        if self.client is not None:
            self.client.send(chunk)

    def _on_capture_error(self, error: Exception, artifact: Path | None) -> None:
        self._spawn(self._report_capture_end(error, artifact))

    async def _report_capture_end(self, error: Exception, artifact: Path | None) -> None:
        self._announced = False
        await self._disconnect_client()
        self._send(
            CaptureEnded(
                artifact_ref=str(artifact) if artifact else None,
                error=f"Capture failed: {error}",
            )
        )

    def _on_transcript(self, update: TranscriptionUpdate) -> None:
        self._send(TranscriptionUpdateMessage.from_update(update))

    def _on_status(self, status: ConnectionStatus, error: str | None) -> None:
        self._send(TranscriptionConnectionMessage(status=status.value, error=error))
        if status is ConnectionStatus.ERROR and self._announced:
            self._send(CaptureWarning(warning=f"Transcription unavailable: {error}"))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def _download(self, artifact_ref: str | None) -> DownloadReply:
        source = Path(artifact_ref) if artifact_ref else self.engine.last_artifact
        if source is None or not source.exists():
            return DownloadReply(success=False, error="No recording available")

        timestamp = datetime.now().isoformat(timespec="milliseconds")
        timestamp = timestamp.replace(":", "-").replace(".", "-")
        destination = self.downloads_dir / f"tab-audio-{timestamp}{source.suffix or '.wav'}"

        try:
            self.downloads_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as e:
            logger.error(f"Download failed: {e}")
            return DownloadReply(success=False, error=str(e))

        logger.info(f"Recording downloaded to {destination}")
        return DownloadReply(success=True, path=str(destination))
