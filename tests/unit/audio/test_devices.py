"""
Unit tests for PyAudio-backed media devices.

PyAudio and PyAudioWPatch are replaced with mocks in sys.modules.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from tabscribe.audio.devices import PyAudioMediaDevices
from tabscribe.audio.streams import MediaConstraints
from tabscribe.errors import CaptureError, DeviceError, MicPermissionError


@pytest.fixture
def mock_pyaudio():
    """Mock pyaudio module with one 16 kHz mono microphone."""
    module = MagicMock()
    pa = module.PyAudio.return_value
    pa.get_default_input_device_info.return_value = {
        "index": 3,
        "name": "USB Microphone",
        "defaultSampleRate": 16000.0,
        "maxInputChannels": 1,
    }
    with patch.dict("sys.modules", {"pyaudio": module}):
        yield module


@pytest.fixture
def mock_wpatch():
    """Mock pyaudiowpatch module with a 48 kHz stereo loopback device."""
    module = MagicMock()
    pa = module.PyAudio.return_value
    devices = {
        0: {"index": 0, "name": "Microphone", "defaultSampleRate": 44100.0, "maxInputChannels": 1},
        1: {"index": 1, "name": "Speakers", "defaultSampleRate": 48000.0, "maxInputChannels": 0},
        2: {
            "index": 2,
            "name": "Speakers [Loopback]",
            "defaultSampleRate": 48000.0,
            "maxInputChannels": 2,
            "isLoopbackDevice": True,
        },
    }
    pa.get_host_api_info_by_type.return_value = {"defaultOutputDevice": 1}
    pa.get_device_count.return_value = len(devices)
    pa.get_device_info_by_index.side_effect = lambda i: devices[i]
    with patch.dict("sys.modules", {"pyaudiowpatch": module}):
        yield module


def stream_callback(module):
    return module.PyAudio.return_value.open.call_args.kwargs["stream_callback"]


class TestMicrophone:
    """Tests for opening the microphone."""

    @pytest.mark.asyncio
    async def test_open_default_microphone(self, mock_pyaudio):
        """Test the default input device is opened and started."""
        handle = await PyAudioMediaDevices().get_user_media(MediaConstraints(source="microphone"))

        pa = mock_pyaudio.PyAudio.return_value
        kwargs = pa.open.call_args.kwargs
        assert kwargs["input_device_index"] == 3
        assert kwargs["rate"] == 16000
        assert kwargs["channels"] == 1
        pa.open.return_value.start_stream.assert_called_once()
        assert handle.active

    def test_callback_emits_frames(self, mock_pyaudio):
        """Test driver callbacks reach the stream listeners."""
        handle = PyAudioMediaDevices()._open_microphone()
        listener = MagicMock()
        handle.add_listener(listener)

        result = stream_callback(mock_pyaudio)(b"\x01\x00" * 4, 4, None, 0)

        listener.assert_called_once_with(b"\x01\x00" * 4)
        assert result == (None, mock_pyaudio.paContinue)

    def test_stop_releases_device(self, mock_pyaudio):
        """Test stopping the track closes the stream and PyAudio."""
        handle = PyAudioMediaDevices()._open_microphone()
        pa = mock_pyaudio.PyAudio.return_value

        handle.stop()
        handle.stop()

        pa.open.return_value.stop_stream.assert_called_once()
        pa.open.return_value.close.assert_called_once()
        pa.terminate.assert_called_once()

    def test_callback_after_stop_completes(self, mock_pyaudio):
        """Test the driver is told to finish once the track is stopped."""
        handle = PyAudioMediaDevices()._open_microphone()
        handle.stop()

        result = stream_callback(mock_pyaudio)(b"\x00\x00", 1, None, 0)

        assert result == (None, mock_pyaudio.paComplete)

    def test_permission_denied(self, mock_pyaudio):
        """Test a refused open maps to MicPermissionError."""
        pa = mock_pyaudio.PyAudio.return_value
        pa.open.side_effect = OSError("Permission denied")

        with pytest.raises(MicPermissionError):
            PyAudioMediaDevices()._open_microphone()

        pa.terminate.assert_called_once()

    def test_open_failure(self, mock_pyaudio):
        """Test other open errors map to DeviceError."""
        mock_pyaudio.PyAudio.return_value.open.side_effect = OSError("Invalid sample rate")

        with pytest.raises(DeviceError):
            PyAudioMediaDevices()._open_microphone()

    def test_no_microphone(self, mock_pyaudio):
        """Test a missing default device maps to DeviceError."""
        pa = mock_pyaudio.PyAudio.return_value
        pa.get_default_input_device_info.side_effect = OSError("No Default Input Device")

        with pytest.raises(DeviceError, match="No microphone found"):
            PyAudioMediaDevices()._open_microphone()

    def test_pyaudio_missing(self):
        """Test a missing pyaudio install is a DeviceError."""
        with patch.dict("sys.modules", {"pyaudio": None}):
            with pytest.raises(DeviceError, match="pyaudio not installed"):
                PyAudioMediaDevices()._open_microphone()


class TestLoopback:
    """Tests for opening the tab (loopback) source."""

    @pytest.mark.asyncio
    async def test_tab_requires_stream_id(self):
        """Test a tab request without a stream id is rejected."""
        with pytest.raises(CaptureError):
            await PyAudioMediaDevices().get_user_media(MediaConstraints(source="tab"))

    def test_finds_default_loopback(self, mock_wpatch):
        """Test the loopback of the default speaker is opened."""
        PyAudioMediaDevices()._open_loopback("tab-0-abc")

        kwargs = mock_wpatch.PyAudio.return_value.open.call_args.kwargs
        assert kwargs["input_device_index"] == 2
        assert kwargs["channels"] == 2
        assert kwargs["rate"] == 48000

    def test_loopback_converted_to_16k_mono(self, mock_wpatch):
        """Test stereo 48 kHz frames are emitted as 16 kHz mono."""
        handle = PyAudioMediaDevices()._open_loopback("tab-0-abc")
        listener = MagicMock()
        handle.add_listener(listener)

        frame = np.zeros(480 * 2, dtype=np.int16).tobytes()
        stream_callback(mock_wpatch)(frame, 480, None, 0)

        assert len(listener.call_args.args[0]) == 160 * 2

    def test_no_loopback_device(self, mock_wpatch):
        """Test a system without a loopback device fails with CaptureError."""
        pa = mock_wpatch.PyAudio.return_value
        pa.get_device_count.return_value = 2

        with pytest.raises(CaptureError, match="No loopback device found"):
            PyAudioMediaDevices()._open_loopback("tab-0-abc")

        pa.terminate.assert_called_once()

    def test_open_failure(self, mock_wpatch):
        """Test an open error on the tab source is a CaptureError."""
        mock_wpatch.PyAudio.return_value.open.side_effect = OSError("Device unavailable")

        with pytest.raises(CaptureError, match="Failed to open tab audio"):
            PyAudioMediaDevices()._open_loopback("tab-0-abc")

    def test_callback_error_fails_stream(self, mock_wpatch):
        """Test a callback error is reported and aborts the stream."""
        handle = PyAudioMediaDevices()._open_loopback("tab-0-abc")
        on_failure = MagicMock()
        handle.add_failure_listener(on_failure)
        handle.add_listener(MagicMock())

        with patch("tabscribe.audio.devices.stereo_to_mono", side_effect=ValueError("bad")):
            result = stream_callback(mock_wpatch)(b"\x00" * 8, 2, None, 0)

        assert result == (None, mock_wpatch.paAbort)
        on_failure.assert_called_once()

    def test_pyaudiowpatch_missing(self):
        """Test a missing pyaudiowpatch install is a CaptureError."""
        with patch.dict("sys.modules", {"pyaudiowpatch": None}):
            with pytest.raises(CaptureError, match="pyaudiowpatch not installed"):
                PyAudioMediaDevices()._open_loopback("tab-0-abc")
