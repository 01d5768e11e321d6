"""
Bus Messages

Every message crossing the bus is one of a closed set of tagged variants,
grouped by direction. The `kind` field is the tag; receivers validate the
JSON against the union for their direction and dispatch with `match`.

    coordinator -> worker      WorkerCommand
    worker      -> coordinator WorkerEvent
    coordinator -> ui          UiNotification
    ui          -> coordinator UiCommand

Request/response pairs (stop, download, settings, UI commands) reply with
one of the *Reply / *Result models.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .client.result import TranscriptSegment, TranscriptionUpdate


class Message(BaseModel):
    """Base for all bus messages."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


# ==============================================================================
# Shared payloads
# ==============================================================================


class SegmentPayload(Message):
    """A transcript segment as it travels over the bus."""

    speaker_id: int = Field(alias="speakerId")
    text: str
    is_final: bool = Field(alias="isFinal")
    start_time: float | None = None

    @classmethod
    def from_segment(cls, segment: TranscriptSegment) -> "SegmentPayload":
        return cls(
            speaker_id=segment.speaker_id,
            text=segment.text,
            is_final=segment.is_final,
            start_time=segment.start_time,
        )

    def to_segment(self) -> TranscriptSegment:
        return TranscriptSegment(
            speaker_id=self.speaker_id,
            text=self.text,
            is_final=self.is_final,
            start_time=self.start_time,
        )


class RecordingSnapshot(Message):
    """A copy of the coordinator's RecordingState."""

    is_recording: bool = False
    start_time: float | None = None
    artifact_ref: str | None = None
    error: str | None = None
    warning: str | None = None
    use_microphone: bool = False
    worker_ready: bool = False


# ==============================================================================
# Coordinator -> Worker
# ==============================================================================


class StartCapture(Message):
    kind: Literal["startCapture"] = "startCapture"
    stream_id: str
    use_microphone: bool = False
    enable_transcription: bool = False
    api_key: str | None = None
    language: str | None = None


class StopCapture(Message):
    kind: Literal["stopCapture"] = "stopCapture"


class DownloadArtifact(Message):
    kind: Literal["downloadArtifact"] = "downloadArtifact"
    artifact_ref: str | None = None


class UpdateTranscriptionSettings(Message):
    kind: Literal["updateTranscriptionSettings"] = "updateTranscriptionSettings"
    api_key: str | None = None
    language: str | None = None


WorkerCommand = Annotated[
    Union[StartCapture, StopCapture, DownloadArtifact, UpdateTranscriptionSettings],
    Field(discriminator="kind"),
]


# ==============================================================================
# Worker -> Coordinator
# ==============================================================================


class WorkerReady(Message):
    kind: Literal["workerReady"] = "workerReady"


class CaptureStarted(Message):
    """Capture is actually running; carries what was really achieved."""

    kind: Literal["recordingActuallyStarted"] = "recordingActuallyStarted"
    start_time: float
    use_microphone: bool = False
    transcription_enabled: bool = False
    transcription_connected: bool = False
    warning: str | None = None


class CaptureStartFailed(Message):
    kind: Literal["recordingStartFailed"] = "recordingStartFailed"
    error: str


class CaptureWarning(Message):
    kind: Literal["captureWarning"] = "captureWarning"
    warning: str


class CaptureEnded(Message):
    """Capture died mid-session; whatever was recorded is in the artifact."""

    kind: Literal["captureEnded"] = "captureEnded"
    artifact_ref: str | None = None
    error: str | None = None


class TranscriptionUpdateMessage(Message):
    kind: Literal["transcriptionUpdate"] = "transcriptionUpdate"
    is_final: bool = Field(alias="isFinal")
    segments: list[SegmentPayload] = []

    @classmethod
    def from_update(cls, update: TranscriptionUpdate) -> "TranscriptionUpdateMessage":
        return cls(
            is_final=update.is_final,
            segments=[SegmentPayload.from_segment(s) for s in update.segments],
        )

    def to_update(self) -> TranscriptionUpdate:
        return TranscriptionUpdate(
            is_final=self.is_final, segments=tuple(s.to_segment() for s in self.segments)
        )


class TranscriptionConnectionMessage(Message):
    kind: Literal["transcriptionConnectionUpdate"] = "transcriptionConnectionUpdate"
    status: str
    error: str | None = None


WorkerEvent = Annotated[
    Union[
        WorkerReady,
        CaptureStarted,
        CaptureStartFailed,
        CaptureWarning,
        CaptureEnded,
        TranscriptionUpdateMessage,
        TranscriptionConnectionMessage,
    ],
    Field(discriminator="kind"),
]


class StopCaptureReply(Message):
    success: bool
    artifact_ref: str | None = None
    error: str | None = None


class DownloadReply(Message):
    success: bool
    path: str | None = None
    error: str | None = None


class Ack(Message):
    success: bool = True
    error: str | None = None


# ==============================================================================
# Coordinator -> UI
# ==============================================================================


class RecordingStarted(Message):
    kind: Literal["recordingStarted"] = "recordingStarted"
    start_time: float
    use_microphone: bool = False
    warning: str | None = None


class RecordingStopped(Message):
    kind: Literal["recordingStopped"] = "recordingStopped"
    artifact_ref: str | None = None
    error: str | None = None


class RecordingStateChanged(Message):
    kind: Literal["recordingStateChanged"] = "recordingStateChanged"
    state: RecordingSnapshot


UiNotification = Annotated[
    Union[
        RecordingStarted,
        RecordingStopped,
        RecordingStateChanged,
        TranscriptionUpdateMessage,
        TranscriptionConnectionMessage,
    ],
    Field(discriminator="kind"),
]


# ==============================================================================
# UI -> Coordinator
# ==============================================================================


class GetRecordingState(Message):
    kind: Literal["getRecordingState"] = "getRecordingState"


class StartRecording(Message):
    kind: Literal["startRecording"] = "startRecording"
    use_mic: bool = False
    use_tab: bool = True
    tab_id: int | None = None


class StopRecording(Message):
    kind: Literal["stopRecording"] = "stopRecording"


class ToggleRecording(Message):
    kind: Literal["toggleRecording"] = "toggleRecording"
    tab_id: int | None = None


class DownloadRecording(Message):
    kind: Literal["downloadRecording"] = "downloadRecording"
    artifact_ref: str | None = None


class GetTranscriptionState(Message):
    kind: Literal["getTranscriptionState"] = "getTranscriptionState"


class UpdateSettings(Message):
    kind: Literal["updateSettings"] = "updateSettings"
    api_key: str | None = None
    language: str | None = None


UiCommand = Annotated[
    Union[
        GetRecordingState,
        StartRecording,
        StopRecording,
        ToggleRecording,
        DownloadRecording,
        GetTranscriptionState,
        UpdateSettings,
    ],
    Field(discriminator="kind"),
]


class StartResult(Message):
    success: bool
    pending_confirmation: bool = False
    error: str | None = None


class StopResult(Message):
    success: bool
    artifact_ref: str | None = None
    error: str | None = None


class TranscriptionStateReply(Message):
    enabled: bool = False
    status: str = "disconnected"
    error: str | None = None
    segments: list[SegmentPayload] = []
    text: str = ""


UiReply = Union[
    StartResult, StopResult, RecordingSnapshot, DownloadReply, TranscriptionStateReply, Ack
]


# Everything the coordinator endpoint accepts (worker events and UI commands)
CoordinatorInbound = Annotated[
    Union[
        WorkerReady,
        CaptureStarted,
        CaptureStartFailed,
        CaptureWarning,
        CaptureEnded,
        TranscriptionUpdateMessage,
        TranscriptionConnectionMessage,
        GetRecordingState,
        StartRecording,
        StopRecording,
        ToggleRecording,
        DownloadRecording,
        GetTranscriptionState,
        UpdateSettings,
    ],
    Field(discriminator="kind"),
]
