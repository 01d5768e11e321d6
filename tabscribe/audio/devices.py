"""
PyAudio-backed media devices.

The microphone is opened with PyAudio. The primary "tab" source is the WASAPI
loopback of the default speaker, opened with PyAudioWPatch, so whatever is
playing is what gets recorded. Both libraries are imported lazily: they are
only needed when a device is actually opened.

Every stream is converted to 16 kHz mono linear16 in the driver callback
before it reaches the listeners.
"""

import asyncio
import logging

from ..errors import CaptureError, DeviceError, MicPermissionError
from .streams import MediaConstraints, MediaTrack, StreamHandle
from .utils import TARGET_SAMPLE_RATE, calculate_chunk_size, resample_audio, stereo_to_mono

logger = logging.getLogger(__name__)

# Driver callback period
FRAME_DURATION_MS = 100

_PERMISSION_MARKERS = ("permission", "denied", "not authorized")


class PyAudioMediaDevices:
    """Opens device streams on request."""

    def __init__(self, mic_device: int | None = None, loopback_device: int | None = None):
        """
        Initialize media devices.

        Args:
            mic_device: Input device index, or None for the default microphone
            loopback_device: Loopback device index, or None for the default speaker
        """
        self.mic_device = mic_device
        self.loopback_device = loopback_device

    async def get_user_media(self, constraints: MediaConstraints) -> StreamHandle:
        """Open the requested source. Blocking driver calls run in a thread."""
        if constraints.source == "tab":
            if not constraints.stream_id:
                raise CaptureError("No capture stream id for the tab source")
            return await asyncio.to_thread(self._open_loopback, constraints.stream_id)
        return await asyncio.to_thread(self._open_microphone)

    def _open_microphone(self) -> StreamHandle:
        try:
            import pyaudio
        except ImportError as e:
            raise DeviceError("pyaudio not installed. Run: pip install pyaudio") from e

        pa = pyaudio.PyAudio()
        try:
            if self.mic_device is not None:
                device_info = pa.get_device_info_by_index(self.mic_device)
            else:
                device_info = pa.get_default_input_device_info()
        except OSError as e:
            pa.terminate()
            raise DeviceError(f"No microphone found: {e}") from e

        name = device_info["name"]
        rate = int(device_info["defaultSampleRate"])
        is_stereo_mix = "stereo mix" in name.lower()
        channels = 2 if is_stereo_mix and int(device_info["maxInputChannels"]) >= 2 else 1

        logger.info(f"Microphone: {name}")
        logger.info(f"Rate: {rate}Hz → {TARGET_SAMPLE_RATE}Hz, Channels: {channels}")

        device_index = device_info.get("index", self.mic_device)
        return self._open_stream(pa, pyaudio, device_index, rate, channels, "microphone", name)

    def _open_loopback(self, stream_id: str) -> StreamHandle:
        try:
            import pyaudiowpatch as pyaudio
        except ImportError as e:
            raise CaptureError("pyaudiowpatch not installed. Run: pip install pyaudiowpatch") from e

        pa = pyaudio.PyAudio()
        loopback = None
        try:
            if self.loopback_device is not None:
                loopback = pa.get_device_info_by_index(self.loopback_device)
            else:
                wasapi_info = pa.get_host_api_info_by_type(pyaudio.paWASAPI)
                default_output = pa.get_device_info_by_index(wasapi_info["defaultOutputDevice"])
                for i in range(pa.get_device_count()):
                    dev = pa.get_device_info_by_index(i)
                    if dev.get("isLoopbackDevice") and default_output["name"] in dev["name"]:
                        loopback = dev
                        break
        except OSError as e:
            pa.terminate()
            raise CaptureError(f"Failed to find loopback device: {e}") from e

        if not loopback:
            pa.terminate()
            raise CaptureError("No loopback device found")

        name = loopback["name"].replace(" [Loopback]", "")
        rate = int(loopback["defaultSampleRate"])
        channels = int(loopback["maxInputChannels"])

        logger.info(f"Tab audio ({stream_id}): {name}")
        logger.info(f"Rate: {rate}Hz → {TARGET_SAMPLE_RATE}Hz, Channels: {channels}")

        return self._open_stream(pa, pyaudio, loopback["index"], rate, channels, "tab", name)

    def _open_stream(
        self, pa, pyaudio, device_index, rate: int, channels: int, kind: str, name: str
    ) -> StreamHandle:
        """Open a callback-driven input stream and wrap it in a StreamHandle."""
        holder: dict = {}

        def release():
            stream = holder.get("stream")
            if stream is not None:
                try:
                    stream.stop_stream()
                    stream.close()
                except OSError as e:
                    logger.debug(f"Error closing {kind} stream: {e}")
            pa.terminate()

        track = MediaTrack(kind, label=name, on_stop=release)
        handle = StreamHandle([track], sample_rate=TARGET_SAMPLE_RATE, label=kind)

        def callback(in_data, frame_count, time_info, status):
            if not handle.active:
                return (None, pyaudio.paComplete)
            try:
                audio_data = in_data
                if channels == 2:
                    audio_data = stereo_to_mono(audio_data)
                audio_data = resample_audio(audio_data, rate, TARGET_SAMPLE_RATE)
                handle.emit(audio_data)
            except Exception as e:
                logger.error(f"{kind} callback error: {e}")
                handle.fail(e)
                return (None, pyaudio.paAbort)
            return (None, pyaudio.paContinue)

        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=channels,
                rate=rate,
                input=True,
                input_device_index=device_index,
                frames_per_buffer=calculate_chunk_size(rate, FRAME_DURATION_MS),
                stream_callback=callback,
            )
        except OSError as e:
            pa.terminate()
            message = str(e)
            if kind == "tab":
                raise CaptureError(f"Failed to open tab audio: {message}") from e
            if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
                raise MicPermissionError(f"Microphone access was denied: {message}") from e
            raise DeviceError(f"Failed to open microphone: {message}") from e

        holder["stream"] = stream
        stream.start_stream()
        logger.info(f"{kind.capitalize()} capture started")
        return handle
