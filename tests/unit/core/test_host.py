"""Unit tests for the local host implementations."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tabscribe.errors import CaptureError, WorkerExistsError
from tabscribe.host import LocalTabCapture, LocalWorkerHost, LoggingIndicator


class TestLocalTabCapture:
    """Tests for LocalTabCapture."""

    @pytest.mark.asyncio
    async def test_active_tab(self):
        """Test the default active tab is system audio."""
        tab = await LocalTabCapture().query_active_tab()

        assert tab.id == 0
        assert tab.title == "System audio"

    @pytest.mark.asyncio
    async def test_no_active_tab(self):
        """Test an unknown active tab id reads as no tab."""
        assert await LocalTabCapture(tabs={}, active_tab_id=0).query_active_tab() is None

    @pytest.mark.asyncio
    async def test_stream_ids_unique(self):
        """Test every request issues a fresh stream id for the tab."""
        capture = LocalTabCapture()

        first = await capture.get_tab_capture_stream_id(0)
        second = await capture.get_tab_capture_stream_id(0)

        assert first.startswith("tab-0-")
        assert first != second

    @pytest.mark.asyncio
    async def test_unknown_tab(self):
        """Test an unknown tab cannot be captured."""
        with pytest.raises(CaptureError):
            await LocalTabCapture().get_tab_capture_stream_id(42)


def make_worker():
    worker = MagicMock()
    worker.attach = AsyncMock()
    worker.shutdown = AsyncMock()
    return worker


class TestLocalWorkerHost:
    """Tests for LocalWorkerHost."""

    @pytest.mark.asyncio
    async def test_create_attaches(self):
        """Test create() builds and attaches the worker."""
        worker = make_worker()
        host = LocalWorkerHost(lambda: worker)

        await host.create()

        worker.attach.assert_awaited_once()
        assert await host.query_existing() is True
        assert host.worker is worker

    @pytest.mark.asyncio
    async def test_async_factory(self):
        """Test the factory may be a coroutine function."""
        worker = make_worker()

        async def factory():
            return worker

        host = LocalWorkerHost(factory)
        await host.create()

        assert host.worker is worker

    @pytest.mark.asyncio
    async def test_create_twice(self):
        """Test only one worker can exist."""
        host = LocalWorkerHost(make_worker)
        await host.create()

        with pytest.raises(WorkerExistsError):
            await host.create()

    @pytest.mark.asyncio
    async def test_close(self):
        """Test close() shuts the worker down once."""
        worker = make_worker()
        host = LocalWorkerHost(lambda: worker)
        await host.create()

        await host.close()
        await host.close()

        worker.shutdown.assert_awaited_once()
        assert await host.query_existing() is False


class TestLoggingIndicator:
    """Tests for LoggingIndicator."""

    def test_toggle(self):
        """Test the badge follows set_recording() and clear()."""
        indicator = LoggingIndicator()

        indicator.set_recording()
        assert indicator.is_recording is True

        indicator.clear()
        assert indicator.is_recording is False
