"""
Unit tests for persistence.

Tests the JSON key-value store and RecordingState save/load.
"""

import pytest

from tabscribe.state import RecordingState, RecordingStateStore
from tabscribe.storage import JsonFileStore


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "state.json")


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    @pytest.mark.asyncio
    async def test_get_missing_file(self, store):
        """Test a missing file reads as empty."""
        assert await store.get(["anything"]) == {}

    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        """Test stored values come back; missing keys are omitted."""
        await store.set({"a": 1, "b": "two"})

        assert await store.get(["a", "b", "c"]) == {"a": 1, "b": "two"}

    @pytest.mark.asyncio
    async def test_set_merges(self, store):
        """Test set() keeps keys it does not touch."""
        await store.set({"a": 1})
        await store.set({"b": 2})

        assert await store.get(["a", "b"]) == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_corrupt_file(self, store):
        """Test an unreadable file is treated as empty."""
        store.path.write_text("{broken", encoding="utf-8")

        assert await store.get(["a"]) == {}

        await store.set({"a": 1})
        assert await store.get(["a"]) == {"a": 1}

    @pytest.mark.asyncio
    async def test_no_temp_file_left(self, store, tmp_path):
        """Test writes leave only the store file behind."""
        await store.set({"a": 1})

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


class TestRecordingState:
    """Tests for RecordingState."""

    def test_from_dict_ignores_unknown_keys(self):
        """Test stored data from another version still loads."""
        state = RecordingState.from_dict({"is_recording": True, "legacy_field": 1})

        assert state.is_recording is True

    def test_snapshot(self):
        """Test the snapshot carries every field."""
        state = RecordingState(is_recording=True, start_time=5.0, warning="mic off")

        snapshot = state.snapshot()

        assert snapshot.is_recording is True
        assert snapshot.start_time == 5.0
        assert snapshot.warning == "mic off"


class TestRecordingStateStore:
    """Tests for RecordingStateStore."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        """Test a saved state loads back unchanged."""
        state_store = RecordingStateStore(store)
        state = RecordingState(is_recording=True, start_time=1.5, artifact_ref="/r.wav")

        await state_store.save(state)

        assert await state_store.load() == state

    @pytest.mark.asyncio
    async def test_load_default(self, store):
        """Test nothing stored loads a fresh state."""
        assert await RecordingStateStore(store).load() == RecordingState()

    @pytest.mark.asyncio
    async def test_load_garbage(self, store):
        """Test a non-object value loads a fresh state."""
        await store.set({"recording_state": "nonsense"})

        assert await RecordingStateStore(store).load() == RecordingState()
