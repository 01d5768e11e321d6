"""
Streaming Transcription Client

Owns the WebSocket connection to the speech-to-text backend.

Protocol:
1. Connect with all configuration in the query string, auth in a header
2. Stream binary audio frames (linear16 PCM)
3. Send JSON control frames: {"type": "KeepAlive"}, {"type": "CloseStream"},
   {"type": "Finalize"}
4. Receive JSON result frames, reconstructed into speaker segments

State machine:
    CLOSED -> CONNECTING -> OPEN -> CLOSED
                  |           |
                  +--> ERROR <+      (left only through disconnect())

Usage:
    client = StreamingClient(on_transcript=handle_update, on_status=handle_status)
    await client.connect(api_key, StreamingOptions(language="en"))
    client.send(chunk)
    await client.disconnect()
"""

import asyncio
import contextlib
import json
import logging
from collections import deque
from collections.abc import Callable
from enum import Enum

import websockets
from websockets.exceptions import ConnectionClosed

from ..config.settings import (
    CLOSE_TIMEOUT,
    CONNECT_TIMEOUT,
    KEEPALIVE_INTERVAL,
    PENDING_QUEUE_SIZE,
    StreamingOptions,
)
from ..errors import ConfigError, InvalidStateError, ProtocolTimeout, TransportError
from .result import TranscriptionUpdate
from .segments import reconstruct_segments

logger = logging.getLogger(__name__)

KEEPALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})
FINALIZE_MESSAGE = json.dumps({"type": "Finalize"})

NORMAL_CLOSURE = 1000

# Sentinel that tells the send loop to exit after flushing
_STOP = object()


class ConnectionState(str, Enum):
    CLOSED = "CLOSED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    ERROR = "ERROR"


class ConnectionStatus(str, Enum):
    """Externally reported connection status (relayed to the UI)."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    API_KEY_MISSING = "apiKeyMissing"


StatusCallback = Callable[[ConnectionStatus, str | None], None]
TranscriptCallback = Callable[[TranscriptionUpdate], None]


class StreamingClient:
    """WebSocket client for a Deepgram-compatible streaming backend."""

    def __init__(
        self,
        options: StreamingOptions | None = None,
        queue_size: int = PENDING_QUEUE_SIZE,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
        close_timeout: float = CLOSE_TIMEOUT,
        on_transcript: TranscriptCallback | None = None,
        on_status: StatusCallback | None = None,
    ):
        """
        Initialize streaming client.

        Args:
            options: Query-string options for the backend
            queue_size: Capacity of the pending queue used while connecting
            keepalive_interval: Seconds between KeepAlive frames while open
            connect_timeout: Seconds to wait for the backend handshake
            close_timeout: Seconds to wait for flushing and closing on disconnect
            on_transcript: Callback for every reconstructed batch
            on_status: Callback when connection status changes (status, error)
        """
        self.options = options or StreamingOptions()
        self.queue_size = queue_size
        self.keepalive_interval = keepalive_interval
        self.connect_timeout = connect_timeout
        self.close_timeout = close_timeout
        self.on_transcript = on_transcript
        self.on_status = on_status

        self._state = ConnectionState.CLOSED
        self._ws = None
        self._pending: deque[bytes] = deque()
        self._outbound: asyncio.Queue | None = None
        self._sender_task: asyncio.Task | None = None
        self._receiver_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None

        # Bumped by every connect() and disconnect() so a stale handshake
        # can tell it has been superseded
        self._attempt = 0
        self._detached = False
        self.dropped_chunks = 0

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def pending_count(self) -> int:
        """Number of chunks waiting for the connection to open."""
        return len(self._pending)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, api_key: str | None, options: StreamingOptions | None = None) -> None:
        """
        Open the connection and wait for the backend handshake.

        Raises:
            InvalidStateError: If not CLOSED
            ConfigError: If no API key was provided (no attempt is made)
            ProtocolTimeout: If the handshake did not complete in time
            TransportError: If the handshake failed
        """
        if self._state is not ConnectionState.CLOSED:
            raise InvalidStateError(f"connect() requires CLOSED state, not {self._state.value}")

        if not api_key or not api_key.strip():
            message = "Transcription API key not configured"
            self._emit_status(ConnectionStatus.API_KEY_MISSING, message)
            raise ConfigError(message)

        if options is not None:
            self.options = options

        self._attempt += 1
        attempt = self._attempt
        self._pending.clear()
        self._outbound = asyncio.Queue()
        self._state = ConnectionState.CONNECTING
        self._emit_status(ConnectionStatus.CONNECTING)

        logger.info(
            f"Connecting to transcription backend: {self.options.base_url} "
            f"(model={self.options.model}, language={self.options.language})"
        )

        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    self.options.url,
                    additional_headers={"Authorization": f"Token {api_key.strip()}"},
                    open_timeout=None,
                ),
                timeout=self.connect_timeout,
            )
        except TimeoutError:
            message = f"Timeout connecting to transcription backend ({self.connect_timeout:.0f}s)"
            self._fail_connect(attempt, message)
            raise ProtocolTimeout(message) from None
        except Exception as e:
            message = f"Failed to connect to transcription backend: {e}"
            self._fail_connect(attempt, message)
            raise TransportError(message) from e

        if attempt != self._attempt or self._state is not ConnectionState.CONNECTING:
            # disconnect() ran while the handshake was in flight
            logger.info("Connection attempt superseded, closing new socket")
            with contextlib.suppress(Exception):
                await ws.close(code=NORMAL_CLOSURE, reason="Superseded")
            raise TransportError("Connection attempt cancelled by disconnect()")

        self._ws = ws
        self._open(ws)

    def _fail_connect(self, attempt: int, message: str) -> None:
        logger.error(message)
        if attempt != self._attempt:
            return
        self._pending.clear()
        self._state = ConnectionState.ERROR
        self._emit_status(ConnectionStatus.ERROR, message)

    def _open(self, ws) -> None:
        """Enter OPEN: drain the pending queue in order and start the loops."""
        self._state = ConnectionState.OPEN

        queued = len(self._pending)
        while self._pending:
            self._outbound.put_nowait(self._pending.popleft())
        if queued:
            logger.info(f"Flushing {queued} queued audio chunks")

        self._detached = False
        self._sender_task = asyncio.create_task(self._send_loop(ws))
        self._receiver_task = asyncio.create_task(self._receive_loop(ws))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

        logger.info("Transcription connection open")
        self._emit_status(ConnectionStatus.CONNECTED)

    async def disconnect(self) -> None:
        """
        Close the connection. Idempotent, never raises.

        When open, CloseStream and Finalize are sent best-effort before a
        normal closure. The state is CLOSED when this returns, whatever
        happened during teardown.
        """
        previous = self._state
        ws, self._ws = self._ws, None
        sender, self._sender_task = self._sender_task, None
        receiver, self._receiver_task = self._receiver_task, None

        # Detach handlers first so the close is not mistaken for a backend one
        self._detached = True
        self._attempt += 1
        self._stop_keepalive()
        self._pending.clear()
        self._state = ConnectionState.CLOSED

        if receiver is not None:
            receiver.cancel()

        try:
            if sender is not None:
                self._outbound.put_nowait(_STOP)
                try:
                    await asyncio.wait_for(sender, timeout=self.close_timeout)
                except TimeoutError:
                    logger.warning("Timed out flushing audio before disconnect")

            if ws is not None:
                if previous is ConnectionState.OPEN:
                    for control in (CLOSE_STREAM_MESSAGE, FINALIZE_MESSAGE):
                        try:
                            await ws.send(control)
                        except Exception as e:
                            logger.warning(f"Could not send control frame {control}: {e}")

                await asyncio.wait_for(
                    ws.close(code=NORMAL_CLOSURE, reason="Disconnected by user"),
                    timeout=self.close_timeout,
                )
        except Exception as e:
            logger.warning(f"Error during transcription disconnect: {e}")
        finally:
            self._state = ConnectionState.CLOSED
            self._outbound = None

        if previous is not ConnectionState.CLOSED:
            logger.info(f"Transcription connection closed (was {previous.value})")
            self._emit_status(ConnectionStatus.DISCONNECTED)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, chunk: bytes) -> bool:
        """
        Send one audio chunk.

        OPEN: queued for immediate transmission. CONNECTING: held in the
        pending queue, dropping the oldest chunk when full. CLOSED/ERROR:
        nothing happens.

        Returns:
            True if the chunk was sent or queued, False otherwise
        """
        if self._state is ConnectionState.OPEN:
            self._outbound.put_nowait(chunk)
            return True

        if self._state is ConnectionState.CONNECTING:
            if len(self._pending) >= self.queue_size:
                self._pending.popleft()
                self.dropped_chunks += 1
                logger.warning("Pending audio queue full, dropping oldest chunk")
            self._pending.append(chunk)
            return True

        logger.debug(f"Cannot send audio, connection is {self._state.value}")
        return False

    async def _send_loop(self, ws) -> None:
        """Single writer for the socket: audio and control frames in order."""
        while True:
            item = await self._outbound.get()
            if item is _STOP:
                break
            try:
                await ws.send(item)
            except ConnectionClosed:
                # The receive loop reports the closure
                break
            except Exception as e:
                logger.error(f"Send error: {e}")
                break

    async def _keepalive_loop(self) -> None:
        while self._state is ConnectionState.OPEN:
            await asyncio.sleep(self.keepalive_interval)
            if self._state is not ConnectionState.OPEN:
                break
            logger.debug("Sending KeepAlive")
            self._outbound.put_nowait(KEEPALIVE_MESSAGE)

    def _stop_keepalive(self) -> None:
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    async def _receive_loop(self, ws) -> None:
        try:
            while True:
                message = await ws.recv()
                if self._detached:
                    return
                self._process_message(message)
        except ConnectionClosed as e:
            if self._detached:
                return
            code = e.rcvd.code if e.rcvd else None
            reason = e.rcvd.reason if e.rcvd else ""
            self._handle_closed(code, reason)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._detached:
                return
            logger.error(f"Receive error: {e}")
            self._handle_closed(None, str(e))

    def _handle_closed(self, code: int | None, reason: str) -> None:
        """Backend closed the socket without us asking."""
        self._stop_keepalive()
        if self._outbound is not None:
            self._outbound.put_nowait(_STOP)

        if self._state is ConnectionState.ERROR:
            return

        if code == NORMAL_CLOSURE:
            logger.info("Transcription backend closed the connection")
            self._state = ConnectionState.CLOSED
            self._emit_status(ConnectionStatus.DISCONNECTED)
        else:
            message = f"Connection closed unexpectedly (code {code}): {reason}".rstrip(": ")
            logger.warning(message)
            self._state = ConnectionState.ERROR
            self._emit_status(ConnectionStatus.ERROR, message)

    def _process_message(self, message: str | bytes) -> None:
        """Process one frame from the backend."""
        if isinstance(message, bytes):
            logger.debug(f"Ignoring {len(message)}-byte binary frame")
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Unparseable frame from backend: {message[:100]}")
            return

        msg_type = data.get("type")

        if msg_type in (None, "Results", "Transcript"):
            update = reconstruct_segments(data)
            if self.on_transcript:
                try:
                    self.on_transcript(update)
                except Exception as e:
                    logger.error(f"Transcript callback failed: {e}")
        elif msg_type == "UtteranceEnd":
            logger.debug("Utterance end detected")
        elif msg_type == "Metadata":
            logger.debug(f"Metadata received: request_id={data.get('request_id')}")
        elif msg_type == "Error":
            description = data.get("description") or data.get("message") or "Backend error"
            logger.error(f"Transcription backend error: {description}")
            self._stop_keepalive()
            self._state = ConnectionState.ERROR
            self._emit_status(ConnectionStatus.ERROR, description)
        else:
            logger.debug(f"Ignoring frame of type {msg_type}")

    def _emit_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        if self.on_status:
            try:
                self.on_status(status, error)
            except Exception as e:
                logger.error(f"Status callback failed: {e}")
