"""
Shared Test Fixtures

Fake media devices that hand out in-memory streams, so capture can be
exercised without audio hardware.
"""

import asyncio

import pytest

from tabscribe.audio.streams import MediaConstraints, MediaTrack, StreamHandle


class FakeMediaDevices:
    """
    Media devices backed by in-memory streams.

    Set `tab_error` / `mic_error` to an exception to make that source fail,
    or `delay` to slow every request down.
    """

    def __init__(self):
        self.tab_error: Exception | None = None
        self.mic_error: Exception | None = None
        self.delay = 0.0
        self.requests: list[MediaConstraints] = []
        self.handles: dict[str, StreamHandle] = {}
        self.released: list[str] = []

    async def get_user_media(self, constraints: MediaConstraints) -> StreamHandle:
        self.requests.append(constraints)
        if self.delay:
            await asyncio.sleep(self.delay)

        error = self.tab_error if constraints.source == "tab" else self.mic_error
        if error is not None:
            raise error

        kind = constraints.source
        track = MediaTrack(kind, on_stop=lambda: self.released.append(kind))
        handle = StreamHandle([track], label=kind)
        self.handles[kind] = handle
        return handle


@pytest.fixture
def devices():
    return FakeMediaDevices()
