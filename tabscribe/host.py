"""
Host Platform Interfaces

Everything the coordinator and the capture worker need from the platform
they run on, as protocols, plus the local implementations used when all
three contexts run in one process.
"""

import logging
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .audio.streams import MediaConstraints, MediaDevices
from .errors import CaptureError, WorkerExistsError

logger = logging.getLogger(__name__)

__all__ = [
    "KeyValueStore",
    "LocalTabCapture",
    "LocalWorkerHost",
    "LoggingIndicator",
    "MediaConstraints",
    "MediaDevices",
    "RecordingIndicator",
    "TabCapture",
    "TabInfo",
    "WorkerContext",
    "WorkerHost",
]


@dataclass(frozen=True)
class TabInfo:
    id: int
    title: str = ""
    url: str = ""


class TabCapture(Protocol):
    async def get_tab_capture_stream_id(self, tab_id: int) -> str: ...

    async def query_active_tab(self) -> TabInfo | None: ...


class WorkerHost(Protocol):
    async def create(self) -> None: ...

    async def query_existing(self) -> bool: ...

    async def close(self) -> None: ...


class KeyValueStore(Protocol):
    async def get(self, keys: list[str]) -> dict[str, Any]: ...

    async def set(self, items: dict[str, Any]) -> None: ...


class RecordingIndicator(Protocol):
    def set_recording(self) -> None: ...

    def clear(self) -> None: ...


class WorkerContext(Protocol):
    """What a worker host needs from the worker it runs."""

    async def attach(self) -> None: ...

    async def shutdown(self) -> None: ...


class LocalTabCapture:
    """
    Tab capture for a desktop session.

    There is one "tab": the system audio output. Stream ids are single-use
    tokens naming the tab they were issued for.
    """

    def __init__(self, tabs: dict[int, str] | None = None, active_tab_id: int = 0):
        self.tabs = tabs if tabs is not None else {0: "System audio"}
        self.active_tab_id = active_tab_id

    async def query_active_tab(self) -> TabInfo | None:
        title = self.tabs.get(self.active_tab_id)
        if title is None:
            return None
        return TabInfo(id=self.active_tab_id, title=title)

    async def get_tab_capture_stream_id(self, tab_id: int) -> str:
        if tab_id not in self.tabs:
            raise CaptureError(f"No tab with id: {tab_id}")
        stream_id = f"tab-{tab_id}-{secrets.token_hex(8)}"
        logger.debug(f"Issued stream id {stream_id}")
        return stream_id


class LocalWorkerHost:
    """Runs the capture worker in-process, at most one at a time."""

    def __init__(self, factory: Callable[[], WorkerContext | Awaitable[WorkerContext]]):
        """
        Args:
            factory: Builds a fresh worker (sync or async)
        """
        self.factory = factory
        self._worker: WorkerContext | None = None

    @property
    def worker(self) -> WorkerContext | None:
        return self._worker

    async def create(self) -> None:
        """
        Start the worker. It announces itself with WorkerReady once attached.

        Raises:
            WorkerExistsError: If a worker is already running
        """
        if self._worker is not None:
            raise WorkerExistsError("Capture worker already has an active document")

        worker = self.factory()
        if isinstance(worker, Awaitable):
            worker = await worker
        self._worker = worker
        await worker.attach()
        logger.info("Capture worker created")

    async def query_existing(self) -> bool:
        return self._worker is not None

    async def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        await worker.shutdown()
        logger.info("Capture worker closed")


class LoggingIndicator:
    """Recording indicator that logs badge changes."""

    def __init__(self):
        self.is_recording = False

    def set_recording(self) -> None:
        self.is_recording = True
        logger.info("● REC")

    def clear(self) -> None:
        self.is_recording = False
        logger.info("○ idle")
