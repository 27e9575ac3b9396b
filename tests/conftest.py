from dataclasses import replace

import httpx
import pytest

from hue_extended.config import DEFAULT_SYNC_CHANNELS, AppConfig
from hue_extended.engine import SyncEngine
from hue_extended.hue_client import HueClient
from hue_extended.store import MemoryStateStore


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        port=8000,
        bridge_ip="bridge.test",
        bridge_port=80,
        bridge_user="user",
        auth_tokens=["dev-token"],
        api_keys=["dev-key"],
        refresh_seconds=30,
        sync_channels=frozenset(DEFAULT_SYNC_CHANNELS.split(",")),
        sync_recycled=frozenset(),
        name_id="prepend",
        use_queue=True,
        queue_seconds=3,
        bri_when_off=True,
        hue_to_xy=False,
        devicetype="hue-extended#test",
        log_level="DEBUG",
    )


@pytest.fixture
def bridge_payload() -> dict:
    return {
        "lights": {
            "1": {
                "name": "Lamp",
                "type": "Extended color light",
                "manufacturername": "Signify Netherlands B.V.",
                "state": {"on": True, "bri": 200, "hue": 0, "sat": 0, "reachable": True},
            },
            "2": {
                "name": "Spot",
                "type": "Color light",
                "manufacturername": "IKEA of Sweden",
                "state": {"on": False, "bri": 100, "hue": 21845, "sat": 254, "reachable": False},
            },
        },
        "groups": {
            "5": {
                "name": "Living room",
                "type": "Room",
                "lights": ["1", "2"],
                "state": {"all_on": False, "any_on": True},
                "action": {"on": True, "bri": 127, "hue": 0, "sat": 0, "xy": [0.3, 0.3]},
            },
        },
        "scenes": {
            "3": {"name": "Relax", "type": "GroupScene", "group": "5", "lights": ["1", "2"]},
            "4": {"name": "Evening", "type": "LightScene", "lights": ["2"]},
            "7": {"name": "Old", "type": "LightScene", "lights": ["1"], "recycle": True},
        },
        "schedules": {
            "1": {
                "name": "Wake up",
                "localtime": "W124/T07:00:00",
                "status": "enabled",
                "command": {"address": "/api/user/groups/5/action", "method": "PUT", "body": {"on": True}},
            },
        },
        "rules": {
            "1": {
                "name": "Switch",
                "status": "enabled",
                "actions": [{"address": "/groups/5/action", "method": "PUT", "body": {"on": True, "bri": 100}}],
            },
        },
        "sensors": {
            "1": {
                "name": "Hallway temp",
                "type": "ZLLTemperature",
                "state": {"temperature": 2150, "lastupdated": "2026-01-01T10:00:00"},
                "config": {"on": True, "battery": 90, "reachable": True},
            },
        },
        "config": {"name": "Philips hue", "ipaddress": "192.168.1.2", "zigbeechannel": 15},
    }


@pytest.fixture
def make_engine(config: AppConfig):
    def _make(*, handler=None, **overrides) -> SyncEngine:
        cfg = replace(config, **overrides)
        hue = HueClient(
            bridge_ip=cfg.bridge_ip,
            bridge_user=cfg.bridge_user,
            bridge_port=cfg.bridge_port,
            transport=httpx.MockTransport(handler) if handler else None,
        )
        return SyncEngine(config=cfg, hue=hue, store=MemoryStateStore())

    return _make
