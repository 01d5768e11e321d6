"""Error taxonomy shared by the capture engine, streaming client and coordinator."""


class TabScribeError(Exception):
    """Base class for all TabScribe errors."""


class ConfigError(TabScribeError):
    """Missing or invalid credentials or settings. Fatal to that operation only."""


class MicPermissionError(TabScribeError):
    """Microphone access was denied or the prompt was dismissed."""


class DeviceError(TabScribeError):
    """No usable audio device (e.g. no microphone connected)."""


class CaptureError(TabScribeError):
    """The primary tab stream could not be obtained."""


class ProtocolTimeout(TabScribeError):
    """A connect, readiness or media request did not complete in time."""


class TransportError(TabScribeError):
    """The transcription transport failed or closed unexpectedly."""


class ProtocolAnomaly(TabScribeError):
    """A duplicate or unexpected message was received over the bus."""


class InvalidStateError(TabScribeError):
    """An operation was attempted from a state that does not allow it."""


class DeliveryError(TabScribeError):
    """A bus message could not be delivered (receiving end does not exist)."""


class WorkerExistsError(TabScribeError):
    """The capture worker is already running."""


# Failures during microphone acquisition that degrade to tab-only capture
MIC_FALLBACK_ERRORS = (MicPermissionError, DeviceError, ProtocolTimeout)
