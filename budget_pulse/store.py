"""Durable key-value store for the background context's Config and SyncState."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .models import Config, SyncState

LOGGER = logging.getLogger(__name__)

CONFIG_KEY = "config"
STATE_KEY = "state"
DEFAULT_STATE_PATH = Path.home() / ".budget_pulse" / "state.json"


class JsonFileStore:
    """
    Small JSON-file store. Unreadable files are treated as empty so a
    corrupted store never stops the background worker.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or os.getenv("BUDGET_PULSE_STATE_PATH") or DEFAULT_STATE_PATH)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Ignoring unreadable store %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    def put(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Readers only ever see a complete file
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def load_config(self) -> Config:
        return Config.from_dict(self.get(CONFIG_KEY))

    def store_config(self, config: Config) -> None:
        self.put(CONFIG_KEY, config.to_dict())

    def load_state(self) -> SyncState:
        return SyncState.from_dict(self.get(STATE_KEY))

    def store_state(self, state: SyncState) -> None:
        self.put(STATE_KEY, state.to_dict())
