"""JSON-file key-value store used for settings and the persisted recording state."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from .config.settings import STATE_FILE

logger = logging.getLogger(__name__)


class JsonFileStore:
    """
    Key-value store backed by one JSON file.

    Writes go to a temporary file that replaces the original, so a crash
    never leaves a half-written file behind.
    """

    def __init__(self, path: Path | str = STATE_FILE):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object store file {self.path}")
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    async def get(self, keys: list[str]) -> dict[str, Any]:
        """Get the stored values for the given keys (missing keys are omitted)."""
        async with self._lock:
            data = self._read()
        return {key: data[key] for key in keys if key in data}

    async def set(self, items: dict[str, Any]) -> None:
        async with self._lock:
            data = self._read()
            data.update(items)
            self._write(data)
