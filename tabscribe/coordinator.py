"""
Recording Coordinator

The controller context. Owns RecordingState, drives the capture worker over
the bus and keeps the UI informed.

Start is a two-step handshake: start() dispatches StartCapture and returns
{success: True, pending_confirmation: True}; the recording only counts as
started when the worker confirms with CaptureStarted (or refuses with
CaptureStartFailed).

Every transition is persisted so that a session interrupted by a crash is
detected and reset on the next startup.
"""

import asyncio
import logging

from pydantic import BaseModel

from .bus import COORDINATOR, UI, WORKER, MessageBus
from .client.transcript import TranscriptAccumulator
from .config.settings import API_KEY_SETTING, LANGUAGE_SETTING, CoordinatorConfig
from .errors import (
    DeliveryError,
    ProtocolAnomaly,
    ProtocolTimeout,
    TabScribeError,
    WorkerExistsError,
)
from .host import KeyValueStore, LoggingIndicator, RecordingIndicator, TabCapture, WorkerHost
from .messages import (
    Ack,
    CaptureEnded,
    CaptureStarted,
    CaptureStartFailed,
    CaptureWarning,
    CoordinatorInbound,
    DownloadArtifact,
    DownloadRecording,
    DownloadReply,
    GetRecordingState,
    GetTranscriptionState,
    RecordingSnapshot,
    RecordingStarted,
    RecordingStateChanged,
    RecordingStopped,
    SegmentPayload,
    StartCapture,
    StartRecording,
    StartResult,
    StopCapture,
    StopCaptureReply,
    StopRecording,
    StopResult,
    ToggleRecording,
    TranscriptionConnectionMessage,
    TranscriptionStateReply,
    TranscriptionUpdateMessage,
    UpdateSettings,
    UpdateTranscriptionSettings,
    WorkerReady,
)
from .state import RecordingState, RecordingStateStore, TranscriptionState

logger = logging.getLogger(__name__)

TRANSCRIPTION_DISABLED = "Transcription disabled (no API key)"


class RecordingCoordinator:
    """Recording lifecycle state machine for one controller context."""

    def __init__(
        self,
        bus: MessageBus,
        tab_capture: TabCapture,
        worker_host: WorkerHost,
        store: KeyValueStore,
        indicator: RecordingIndicator | None = None,
        config: CoordinatorConfig | None = None,
    ):
        """
        Initialize coordinator.

        Args:
            bus: Message bus shared with the worker and the UI
            tab_capture: Resolves tabs and issues capture stream ids
            worker_host: Creates and closes the capture worker
            store: Key-value store for settings and the recording state
            indicator: Recording badge (logs only when not given)
            config: Timeouts and defaults
        """
        self.bus = bus
        self.tab_capture = tab_capture
        self.worker_host = worker_host
        self.store = store
        self.indicator = indicator or LoggingIndicator()
        self.config = config or CoordinatorConfig()

        self.state = RecordingState()
        self.state_store = RecordingStateStore(store)
        self.transcription = TranscriptionState()
        self.transcript = TranscriptAccumulator()

        self._ready: asyncio.Future | None = None
        self._pending_start = False
        self._start_watchdog: asyncio.TimerHandle | None = None
        self._stopping: asyncio.Future | None = None
        self._tasks: set[asyncio.Task] = set()
        self.anomalies: list[ProtocolAnomaly] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def attach(self) -> None:
        """Register on the bus for worker events and UI commands."""
        self.bus.register(COORDINATOR, self.handle_message, CoordinatorInbound)

    async def initialize(self) -> None:
        """
        Restore the persisted state, resetting an interrupted session.

        A session that was recording when the process died is not resumed:
        it is marked with an "Interrupted session" error and any stale worker
        is torn down.
        """
        self.state = await self.state_store.load()
        interrupted = self.state.is_recording

        self.state.is_recording = False
        self.state.worker_ready = False
        if interrupted:
            logger.warning("Found interrupted recording session, resetting state")
            self.state.start_time = None
            self.state.warning = None
            self.state.error = "Interrupted session"
        await self._persist()
        self.indicator.clear()

        if interrupted:
            try:
                if await self.worker_host.query_existing():
                    await self.worker_host.close()
            except Exception as e:
                logger.error(f"Failed to tear down stale capture worker: {e}")

        logger.info(f"Coordinator initialized (interrupted session: {interrupted})")

    async def shutdown(self) -> None:
        if self.state.is_recording:
            await self.stop()
        if self._start_watchdog is not None:
            self._start_watchdog.cancel()
        await self.worker_host.close()
        self.bus.unregister(COORDINATOR)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        try:
            await self.state_store.save(self.state)
        except OSError as e:
            logger.error(f"Failed to persist recording state: {e}")

    def _notify_ui(self, notification: BaseModel) -> None:
        # At-most-once: nobody listening is not an error
        try:
            self.bus.send(UI, notification)
        except DeliveryError:
            logger.debug(f"No UI listening for {type(notification).__name__}")

    def _notify_state_changed(self) -> None:
        self._notify_ui(RecordingStateChanged(state=self.state.snapshot()))

    def _anomaly(self, description: str) -> None:
        anomaly = ProtocolAnomaly(description)
        self.anomalies.append(anomaly)
        logger.warning(f"Protocol anomaly: {anomaly}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def get_recording_state(self) -> RecordingSnapshot:
        """A copy of the current recording state."""
        return self.state.snapshot()

    # ------------------------------------------------------------------
    # Worker management
    # ------------------------------------------------------------------

    async def _ensure_worker(self) -> None:
        """
        Make sure the capture worker exists and has announced readiness.

        Raises:
            ProtocolTimeout: If the worker did not become ready in time
        """
        if self.state.worker_ready and await self.worker_host.query_existing():
            return

        self.state.worker_ready = False
        self._ready = asyncio.get_running_loop().create_future()

        try:
            await self.worker_host.create()
            logger.info("Capture worker created, waiting for readiness")
        except WorkerExistsError:
            logger.info("Capture worker already exists")
            if self.state.worker_ready:
                return

        try:
            await asyncio.wait_for(
                asyncio.shield(self._ready), timeout=self.config.worker_ready_timeout
            )
        except TimeoutError:
            raise ProtocolTimeout(
                f"Capture worker not ready after {self.config.worker_ready_timeout:.0f}s"
            ) from None

    async def _on_worker_ready(self) -> None:
        logger.info("Capture worker ready")
        self.state.worker_ready = True
        await self._persist()
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(True)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(
        self, use_mic: bool = False, use_tab: bool = True, tab_id: int | None = None
    ) -> StartResult:
        """
        Request a recording.

        Returns:
            StartResult with pending_confirmation=True when the worker has been
            asked to start; the outcome arrives as a notification.
        """
        if self.state.is_recording:
            return StartResult(success=False, error="Recording already in progress")
        if self._pending_start:
            return StartResult(success=False, error="Recording start already pending")
        if not use_tab:
            return StartResult(success=False, error="Tab audio capture is required")

        self._pending_start = True
        logger.info(f"Starting recording (mic={use_mic}, tab_id={tab_id})")
        try:
            return await self._dispatch_start(use_mic, tab_id)
        except BaseException:
            self._clear_pending_start()
            raise

    async def _dispatch_start(self, use_mic: bool, tab_id: int | None) -> StartResult:
        settings = await self.store.get([API_KEY_SETTING, LANGUAGE_SETTING])
        api_key = settings.get(API_KEY_SETTING)
        language = settings.get(LANGUAGE_SETTING) or self.config.default_language
        enable_transcription = bool(api_key and api_key.strip())

        try:
            if tab_id is None:
                tab = await self.tab_capture.query_active_tab()
                if tab is None:
                    return await self._start_failed("No active tab to record")
                tab_id = tab.id
            stream_id = await self.tab_capture.get_tab_capture_stream_id(tab_id)
        except TabScribeError as e:
            return await self._start_failed(f"Failed to get tab capture stream: {e}")

        try:
            await self._ensure_worker()
        except TabScribeError as e:
            return await self._start_failed(str(e))

        self.transcript.clear()
        self.transcription = TranscriptionState(
            enabled=enable_transcription,
            status="connecting" if enable_transcription else "disconnected",
            error=None if enable_transcription else TRANSCRIPTION_DISABLED,
        )
        self._notify_ui(
            TranscriptionConnectionMessage(
                status=self.transcription.status, error=self.transcription.error
            )
        )

        command = StartCapture(
            stream_id=stream_id,
            use_microphone=use_mic,
            enable_transcription=enable_transcription,
            api_key=api_key if enable_transcription else None,
            language=language if enable_transcription else None,
        )
        try:
            self.bus.send(WORKER, command)
        except DeliveryError as e:
            return await self._start_failed(f"Failed to reach capture worker: {e}")

        self._start_watchdog = asyncio.get_running_loop().call_later(
            self.config.start_confirm_timeout, self._on_start_timeout
        )
        logger.info("Start dispatched, waiting for confirmation")
        return StartResult(success=True, pending_confirmation=True)

    async def _start_failed(self, error: str) -> StartResult:
        logger.error(f"Recording start failed: {error}")
        self._pending_start = False
        self.state.is_recording = False
        self.state.error = error
        await self._persist()
        self._notify_state_changed()
        return StartResult(success=False, error=error)

    def _clear_pending_start(self) -> None:
        self._pending_start = False
        if self._start_watchdog is not None:
            self._start_watchdog.cancel()
            self._start_watchdog = None

    def _on_start_timeout(self) -> None:
        self._start_watchdog = None
        if not self._pending_start:
            return
        self._spawn(self._abandon_start())

    async def _abandon_start(self) -> None:
        error = "Recording did not start in time"
        logger.error(error)
        self._pending_start = False
        self.state.error = error
        await self._persist()
        self._notify_ui(RecordingStopped(error=error))
        self._notify_state_changed()

        # A capture that is still starting is stopped when its confirmation arrives
        self._send_stop_capture()

    def _send_stop_capture(self) -> None:
        try:
            self.bus.send(WORKER, StopCapture())
        except DeliveryError as e:
            logger.debug(f"Could not ask the worker to stop: {e}")

    async def _on_capture_started(self, message: CaptureStarted) -> None:
        if self.state.is_recording:
            self._anomaly("duplicate start confirmation while already recording")
            return
        if not self._pending_start:
            self._anomaly("start confirmation without a pending start")
            # Nobody owns this session, so the worker must not keep it running
            self._send_stop_capture()
            return

        self._clear_pending_start()
        self.state.is_recording = True
        self.state.start_time = message.start_time
        self.state.use_microphone = message.use_microphone
        self.state.warning = message.warning
        self.state.error = None
        self.state.artifact_ref = None
        self.transcription.enabled = message.transcription_enabled

        self.indicator.set_recording()
        await self._persist()

        logger.info(
            f"Recording started (mic={message.use_microphone}, "
            f"transcription connected={message.transcription_connected})"
        )
        if message.warning:
            logger.warning(f"Recording warning: {message.warning}")

        self._notify_ui(
            RecordingStarted(
                start_time=message.start_time,
                use_microphone=message.use_microphone,
                warning=message.warning,
            )
        )
        self._notify_state_changed()

    async def _on_capture_start_failed(self, message: CaptureStartFailed) -> None:
        if self.state.is_recording:
            self._anomaly(f"start failure while recording: {message.error}")
            return

        self._clear_pending_start()
        self.state.error = message.error
        self.indicator.clear()
        await self._persist()
        logger.error(f"Worker failed to start recording: {message.error}")

        self._notify_ui(RecordingStopped(error=message.error))
        self._notify_state_changed()

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self) -> StopResult:
        """
        Stop the recording. Concurrent calls share one teardown and result.
        """
        if self._stopping is None:
            if not self.state.is_recording:
                return StopResult(success=False, error="No active recording")
            self._stopping = asyncio.ensure_future(self._stop())
            self._stopping.add_done_callback(self._clear_stopping)
        return await asyncio.shield(self._stopping)

    def _clear_stopping(self, future: asyncio.Future) -> None:
        if self._stopping is future:
            self._stopping = None

    async def _stop(self) -> StopResult:
        logger.info("Stopping recording")
        try:
            reply = await self.bus.request(
                WORKER, StopCapture(), StopCaptureReply, timeout=self.config.stop_timeout
            )
        except TabScribeError as e:
            logger.error(f"No stop confirmation from capture worker: {e}")
            reply = StopCaptureReply(success=False, error=f"Failed to stop recording: {e}")

        self.state.is_recording = False
        self.state.start_time = None
        if reply.success:
            self.state.artifact_ref = reply.artifact_ref
            self.state.error = None
        else:
            self.state.error = reply.error

        self.indicator.clear()
        await self._persist()
        logger.info(f"Recording stopped (artifact: {reply.artifact_ref})")

        self._notify_ui(RecordingStopped(artifact_ref=reply.artifact_ref, error=reply.error))
        self._notify_state_changed()
        return StopResult(success=reply.success, artifact_ref=reply.artifact_ref, error=reply.error)

    async def _on_capture_ended(self, message: CaptureEnded) -> None:
        if not self.state.is_recording:
            logger.debug("Capture ended while not recording")
            return
        if self._stopping is not None:
            # stop() is already tearing the session down
            return

        logger.error(f"Capture ended unexpectedly: {message.error}")
        self.state.is_recording = False
        self.state.start_time = None
        self.state.error = message.error
        if message.artifact_ref:
            self.state.artifact_ref = message.artifact_ref
        self.indicator.clear()
        await self._persist()

        self._notify_ui(RecordingStopped(artifact_ref=message.artifact_ref, error=message.error))
        self._notify_state_changed()

    async def _on_capture_warning(self, message: CaptureWarning) -> None:
        if not self.state.is_recording:
            logger.debug(f"Ignoring warning outside a recording: {message.warning}")
            return
        logger.warning(f"Recording warning: {message.warning}")
        self.state.warning = message.warning
        await self._persist()
        self._notify_state_changed()

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    async def toggle_recording(self, tab_id: int | None = None) -> StartResult | StopResult:
        """Quick record: start a tab-only recording, or stop the running one."""
        if self.state.is_recording:
            return await self.stop()
        return await self.start(use_mic=False, use_tab=True, tab_id=tab_id)

    async def download_artifact(self, artifact_ref: str | None = None) -> DownloadReply:
        """Ask the worker to copy the recording to the downloads directory."""
        ref = artifact_ref or self.state.artifact_ref
        if not ref:
            return DownloadReply(success=False, error="No recording available")

        try:
            await self._ensure_worker()
            return await self.bus.request(
                WORKER,
                DownloadArtifact(artifact_ref=ref),
                DownloadReply,
                timeout=self.config.stop_timeout,
            )
        except TabScribeError as e:
            logger.error(f"Download failed: {e}")
            return DownloadReply(success=False, error=str(e))

    async def update_transcription_settings(
        self, api_key: str | None = None, language: str | None = None
    ) -> Ack:
        """Store transcription settings and forward them to a ready worker."""
        await self.store.set({API_KEY_SETTING: api_key, LANGUAGE_SETTING: language})
        logger.info(
            f"Transcription settings saved (api key: {'provided' if api_key else 'not provided'}, "
            f"language: {language})"
        )

        if self.state.worker_ready:
            try:
                update = UpdateTranscriptionSettings(api_key=api_key, language=language)
                self.bus.send(WORKER, update)
            except DeliveryError:
                logger.debug("Capture worker not running, settings apply on next start")
        return Ack()

    def get_transcription_state(self) -> TranscriptionStateReply:
        return TranscriptionStateReply(
            enabled=self.transcription.enabled,
            status=self.transcription.status,
            error=self.transcription.error,
            segments=[SegmentPayload.from_segment(s) for s in self.transcript.segments],
            text=self.transcript.get_text(),
        )

    def _on_transcription_update(self, message: TranscriptionUpdateMessage) -> None:
        self.transcript.apply(message.to_update())
        self.transcription.segments = self.transcript.segments
        self._notify_ui(message)

    def _on_connection_update(self, message: TranscriptionConnectionMessage) -> None:
        logger.info(f"Transcription connection: {message.status}")
        self.transcription.status = message.status
        self.transcription.error = message.error
        self._notify_ui(message)

    # ------------------------------------------------------------------
    # Bus entry points
    # ------------------------------------------------------------------

    async def handle_ui_command(self, command) -> BaseModel:
        """Serve one UI command; failures come back as replies, never raised."""
        match command:
            case GetRecordingState():
                return self.get_recording_state()
            case StartRecording():
                return await self.start(command.use_mic, command.use_tab, command.tab_id)
            case StopRecording():
                return await self.stop()
            case ToggleRecording():
                return await self.toggle_recording(command.tab_id)
            case DownloadRecording():
                return await self.download_artifact(command.artifact_ref)
            case GetTranscriptionState():
                return self.get_transcription_state()
            case UpdateSettings():
                return await self.update_transcription_settings(command.api_key, command.language)
        return Ack(success=False, error=f"Unknown command: {type(command).__name__}")

    async def handle_message(self, message) -> BaseModel | None:
        """Bus entry point for everything addressed to the coordinator."""
        match message:
            case WorkerReady():
                await self._on_worker_ready()
            case CaptureStarted():
                await self._on_capture_started(message)
            case CaptureStartFailed():
                await self._on_capture_start_failed(message)
            case CaptureWarning():
                await self._on_capture_warning(message)
            case CaptureEnded():
                await self._on_capture_ended(message)
            case TranscriptionUpdateMessage():
                self._on_transcription_update(message)
            case TranscriptionConnectionMessage():
                self._on_connection_update(message)
            case _:
                return await self.handle_ui_command(message)
        return None
