from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from hue_extended import colors
from hue_extended.cache import StateCache
from hue_extended.colors import ColorError
from hue_extended.config import AppConfig
from hue_extended.store import StateStore


logger = logging.getLogger("hue_extended.commands")

# Manufacturers whose lights take hue/sat natively.
REFERENCE_MANUFACTURERS = frozenset({"Philips", "Signify Netherlands B.V."})


class CommandError(Exception):
    pass


class ResourceType(str, Enum):
    LIGHTS = "lights"
    GROUPS = "groups"
    SCENES = "scenes"
    SCHEDULES = "schedules"
    RULES = "rules"
    SENSORS = "sensors"
    CONFIG = "config"
    INFO = "info"

    @property
    def sub_resource(self) -> str:
        if self is ResourceType.GROUPS:
            return "action"
        if self is ResourceType.SENSORS:
            return "config"
        return "state"


@dataclass(frozen=True)
class Appliance:
    type: ResourceType
    device_id: str
    path: str
    uid: str
    name: str | None
    trigger: str
    method: str | None = None

    @property
    def base(self) -> str:
        return f"{self.type.value}.{self.device_id}"


@dataclass
class PendingCommand:
    appliance: Appliance
    commands: dict[str, Any] = field(default_factory=dict)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "on"}
    return bool(value)


def _as_number(action: str, value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise CommandError(f"Invalid value {value!r} given for {action}!") from exc
    return int(number) if number.is_integer() else number


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class CommandNormalizer:
    """Turns a user write on the tree into a bridge command."""

    def __init__(self, *, config: AppConfig, cache: StateCache, store: StateStore) -> None:
        self.config = config
        self.cache = cache
        self.store = store

    def build(self, path: str, value: Any) -> PendingCommand:
        params = path.split(".")
        if len(params) < 3:
            raise CommandError(f"State {path} does not address a device.")
        action = params[-1]
        try:
            rtype = ResourceType(params[0])
        except ValueError as exc:
            raise CommandError(f"Unknown resource type {params[0]!r}.") from exc

        device_id = ".".join(params[1:3]) if rtype is ResourceType.SCENES else params[1]
        base = f"{rtype.value}.{device_id}"
        uid = self.cache.get(f"{base}.uid")
        if uid is None or uid == "":
            raise CommandError("Command can not be send to device due to error (no UID)!")

        appliance = Appliance(
            type=rtype,
            device_id=device_id,
            path=".".join(params[:-1]),
            uid=str(uid),
            name=self.cache.get(f"{base}.name"),
            trigger=f"{rtype.value}/{uid}/{rtype.sub_resource}",
        )

        commands: dict[str, Any] = {action: value}
        if action == "_commands":
            commands = self._parse_bulk(value)
            self.store.set_value(path, "")
        elif action == "scene":
            self.store.set_value(path, "")

        if rtype is ResourceType.SCENES:
            return self._scene_command(appliance)
        if rtype in (ResourceType.SCHEDULES, ResourceType.RULES):
            return self._replay_command(appliance)
        if rtype in (ResourceType.LIGHTS, ResourceType.GROUPS):
            return PendingCommand(appliance, self.normalize(appliance, commands))
        if rtype is ResourceType.SENSORS:
            return PendingCommand(appliance, commands)
        raise CommandError(f"Resources of type {rtype.value} are read-only.")

    @staticmethod
    def _parse_bulk(value: Any) -> dict[str, Any]:
        try:
            commands = json.loads(value) if isinstance(value, str) else value
        except ValueError as exc:
            raise CommandError(
                'Commands supplied in wrong format! Format shall be {"command": value}, e.g. {"on": true}.'
            ) from exc
        if not isinstance(commands, dict) or not commands:
            raise CommandError('Commands supplied in wrong format! Format shall be {"command": value}, e.g. {"on": true}.')
        return dict(commands)

    def _scene_command(self, appliance: Appliance) -> PendingCommand:
        scene_type = self.cache.get(f"{appliance.base}.type")
        scene_name = self.cache.get(f"{appliance.base}.name")

        if scene_type == "GroupScene":
            group_id = self.cache.get(f"{appliance.base}.group")
            if group_id is None or group_id == "":
                raise CommandError(f"Scene {scene_name} has no group.")
            group = self.cache.device("groups", group_id) or {}
            group_name = group.get("name") or f"Group {group_id}"
            appliance = replace(appliance, trigger=f"groups/{group_id}/action", name=f"{group_name} ({scene_name})")
        elif scene_type == "LightScene":
            appliance = replace(appliance, trigger="groups/0/action", name=f"lights ({scene_name})")
        else:
            raise CommandError("Invalid scene type given! Must be either GroupScene or LightScene.")

        return PendingCommand(appliance, {"scene": appliance.uid})

    def _replay_command(self, appliance: Appliance) -> PendingCommand:
        raw = self.cache.get(f"{appliance.path}.options")
        try:
            options = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise CommandError(f"Invalid {appliance.type.value} data given!") from exc

        if (
            not isinstance(options, dict)
            or not isinstance(options.get("address"), str)
            or not isinstance(options.get("body", {}), dict)
        ):
            raise CommandError(f"Invalid {appliance.type.value} data given!")

        appliance = replace(appliance, trigger=options["address"], method=options.get("method"))
        return PendingCommand(appliance, dict(options.get("body") or {}))

    def normalize(self, appliance: Appliance, requested: dict[str, Any]) -> dict[str, Any]:
        commands = dict(requested)
        rgb: tuple[int, int, int] | None = None
        hsv: tuple[float, float, float] | None = None

        for action, value in list(requested.items()):
            if action in colors.COLOR_FIELDS:
                try:
                    rgb, hsv = colors.parse_color(action, value)
                except ColorError as exc:
                    raise CommandError(f"Invalid color {value!r} given for {action}!") from exc
                del commands[action]
                hue, sat, bri = colors.hsv_to_bridge(*hsv)
                commands.update(hue=hue, sat=sat, bri=bri)

            elif action == "on":
                on = _as_bool(value)
                commands["on"] = on
                if "level" not in commands and "bri" not in commands:
                    if on:
                        real_bri = self.cache.get(f"{appliance.path}.real_bri")
                        commands["bri"] = real_bri if _positive(real_bri) else colors.BRI_MAX
                    elif self.config.bri_when_off:
                        current = self.cache.get(f"{appliance.path}.bri")
                        if _positive(current):
                            self.cache.set(f"{appliance.path}.real_bri", current)
                        self.store.set_value(f"{appliance.path}.bri", 0)
                        self.store.set_value(f"{appliance.path}.level", 0)

            elif action in ("level", "bri"):
                number = _as_number(action, value)
                if number <= 0:
                    commands.pop("level", None)
                    commands["on"] = False
                elif action == "level":
                    del commands["level"]
                    commands.update(on=True, bri=colors.level_to_bri(number))
                else:
                    commands.update(on=True, bri=number)

            elif action == "hue_degrees":
                del commands[action]
                commands["hue"] = colors.degrees_to_hue(_as_number(action, value))

        if "hue" in commands and self.config.hue_to_xy and not self._is_reference_brand(appliance):
            if rgb is None and hsv is None:
                sat = commands.get("sat", self.cache.get(f"{appliance.base}.action.sat"))
                bri = commands.get("bri", self.cache.get(f"{appliance.base}.action.bri"))
                if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (commands["hue"], sat, bri)):
                    hsv = colors.bridge_to_hsv(commands["hue"], sat, bri)
            if rgb is None and hsv is not None:
                rgb = colors.hsv_to_rgb(*hsv)

            if rgb is None:
                logger.warning("Invalid RGB given (%s) for %s!", hsv, appliance.name)
            else:
                commands["xy"] = colors.rgb_to_xy(*rgb)

        # the bridge rejects color / brightness changes while a device is off
        if "on" not in commands:
            commands["on"] = True

        if appliance.type is ResourceType.LIGHTS and not self.cache.get(f"{appliance.base}.state.reachable"):
            logger.warning("Device %s does not seem to be reachable! Command is sent anyway.", appliance.name)

        return commands

    def _is_reference_brand(self, appliance: Appliance) -> bool:
        return self.cache.get(f"{appliance.base}.manufacturername") in REFERENCE_MANUFACTURERS
