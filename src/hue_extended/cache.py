from __future__ import annotations

import copy
from typing import Any


class StateCache:
    """Mirror of the values the engine wrote, plus shadow values and the device index.

    The command path reads device state from here instead of the host store.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._devices: dict[str, dict[str, Any]] = {}

    def get(self, path: str, default: Any = None) -> Any:
        value = self._values.get(path)
        return default if value is None else value

    def set(self, path: str, value: Any) -> None:
        self._values[path] = value

    def index(self, channel: str, data: Any) -> None:
        if isinstance(data, dict):
            self._devices[channel] = copy.deepcopy(data)

    def devices(self, channel: str) -> dict[str, Any] | None:
        return self._devices.get(channel)

    def device(self, channel: str, rid: Any) -> dict[str, Any] | None:
        devices = self._devices.get(channel) or {}
        device = devices.get(str(rid))
        return device if isinstance(device, dict) else None

    def clear(self) -> None:
        self._values.clear()
        self._devices.clear()
