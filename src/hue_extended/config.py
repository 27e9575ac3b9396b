from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import os


DEFAULT_SYNC_CHANNELS = "lights,groups,scenes,schedules,rules,sensors,config"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    port: int
    bridge_ip: Optional[str]
    bridge_port: int
    bridge_user: Optional[str]
    auth_tokens: list[str]
    api_keys: list[str]
    refresh_seconds: float
    sync_channels: frozenset[str]
    sync_recycled: frozenset[str]
    name_id: str
    use_queue: bool
    queue_seconds: float
    bri_when_off: bool
    hue_to_xy: bool
    devicetype: str
    log_level: str

    def syncs(self, channel: str) -> bool:
        return channel in self.sync_channels

    def syncs_recycled(self, channel: str) -> bool:
        return channel in self.sync_recycled

    @staticmethod
    def from_env() -> "AppConfig":
        name_id = os.getenv("NAME_ID", "prepend").strip().lower()
        return AppConfig(
            port=int(os.getenv("PORT", "8000")),
            bridge_ip=os.getenv("HUE_BRIDGE_IP"),
            bridge_port=int(os.getenv("HUE_BRIDGE_PORT", "80")),
            bridge_user=os.getenv("HUE_BRIDGE_USER"),
            auth_tokens=_split_csv(os.getenv("GATEWAY_AUTH_TOKENS")),
            api_keys=_split_csv(os.getenv("GATEWAY_API_KEYS")),
            refresh_seconds=float(os.getenv("REFRESH_SECONDS", "30")),
            sync_channels=frozenset(_split_csv(os.getenv("SYNC_CHANNELS", DEFAULT_SYNC_CHANNELS))),
            sync_recycled=frozenset(_split_csv(os.getenv("SYNC_RECYCLED"))),
            name_id="append" if name_id == "append" else "prepend",
            use_queue=_env_bool("USE_QUEUE", True),
            queue_seconds=float(os.getenv("QUEUE_SECONDS", "3")),
            bri_when_off=_env_bool("BRI_WHEN_OFF", True),
            hue_to_xy=_env_bool("HUE_TO_XY", False),
            devicetype=os.getenv("DEVICETYPE", "hue-extended#python"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
