"""
Typed command channel between the foreground dashboard and the background
worker, plus the foreground client that publishes configuration on it.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

from .models import Config, Preferences

LOGGER = logging.getLogger(__name__)

CONFIG_UPDATE = "CONFIG_UPDATE"
SYNC_NOW = "SYNC_NOW"


@dataclass(frozen=True)
class ConfigUpdate:
    config: Config

    def to_message(self) -> Dict[str, Any]:
        return {"type": CONFIG_UPDATE, "payload": self.config.to_dict()}


@dataclass(frozen=True)
class SyncNow:
    """Explicit foreground request to run the background pipeline."""

    trigger: str = "foreground"

    def to_message(self) -> Dict[str, Any]:
        return {"type": SYNC_NOW, "payload": {"trigger": self.trigger}}


Command = Union[ConfigUpdate, SyncNow]


def parse_message(message: Any) -> Optional[Command]:
    """Decode a raw ``{type, payload}`` message; unknown messages yield None."""
    if not isinstance(message, dict):
        return None
    payload = message.get("payload")
    if message.get("type") == CONFIG_UPDATE:
        return ConfigUpdate(Config.from_dict(payload if isinstance(payload, dict) else None))
    if message.get("type") == SYNC_NOW:
        trigger = payload.get("trigger") if isinstance(payload, dict) else None
        return SyncNow(trigger or "foreground")
    return None


class CommandChannel:
    """Thread-safe FIFO of commands from the foreground to the background."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Command]" = queue.Queue()

    def publish(self, command: Command) -> None:
        self._queue.put(command)

    def publish_raw(self, message: Any) -> bool:
        command = parse_message(message)
        if command is None:
            LOGGER.debug("Dropping unknown channel message: %r", message)
            return False
        self.publish(command)
        return True

    def drain(self) -> List[Command]:
        commands = []
        while True:
            try:
                commands.append(self._queue.get_nowait())
            except queue.Empty:
                return commands


class BackgroundSyncClient:
    """
    Foreground end of the channel. Keeps the last config sent, pushes a
    CONFIG_UPDATE whenever credentials or preferences change, and keeps the
    background wake registration in line with them.
    """

    def __init__(self, channel: CommandChannel, config: Optional[Config] = None, scheduler=None) -> None:
        self.channel = channel
        self.config = config or Config()
        self.scheduler = scheduler

    def update_api_credentials(self, api_key: Optional[str], api_base_url: Optional[str] = None) -> None:
        self.config = replace(
            self.config,
            api_key=api_key,
            api_base_url=api_base_url or self.config.api_base_url,
        )
        self._publish()

    def update_budget_preferences(self, preferences: Preferences) -> None:
        self.config = replace(self.config, preferences=replace(preferences))
        self._publish()

    def request_sync(self) -> None:
        self.channel.publish(SyncNow())

    def _publish(self) -> None:
        self.channel.publish(ConfigUpdate(self.config))
        if self.scheduler is not None:
            self.scheduler.refresh_registration(self.config)
