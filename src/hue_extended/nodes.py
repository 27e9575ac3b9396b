from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class NodeDescriptor:
    description: str
    role: str = "text"
    type: str = "string"
    convert: str | None = None
    # Prefix the owning device's name to the description.
    device: bool = True


DEFAULT_NODE = NodeDescriptor(description="(no description given)")


def _d(description: str, role: str = "text", type: str = "string", **kwargs: Any) -> NodeDescriptor:
    return NodeDescriptor(description=description, role=role, type=type, **kwargs)


NODES: dict[str, NodeDescriptor] = {
    # meta data
    "datetime": _d("Date/Time of last change", device=False),
    "timestamp": _d("Timestamp of last change", "value", "number", device=False),
    "syncing": _d("Indicates whether the tree is synchronized with the bridge", "indicator", "boolean", device=False),
    "connection": _d("Adapter connected to the bridge", "indicator.connected", "boolean", device=False),
    "lastaction": _d("Last action"),
    "lastcommand": _d("Last command sent to the bridge", "json"),
    "lastresult": _d("Last result received from the bridge", "json"),
    "error": _d("Indicates whether the last action failed", "indicator.error", "boolean"),
    # device data
    "uid": _d("Unique ID of the device on the bridge"),
    "name": _d("Name of the device"),
    "type": _d("Type of the device"),
    "modelid": _d("Model ID"),
    "manufacturername": _d("Manufacturer"),
    "productname": _d("Product name"),
    "productid": _d("Product ID"),
    "uniqueid": _d("Unique hardware ID"),
    "luminaireuniqueid": _d("Unique luminaire ID"),
    "swversion": _d("Software version"),
    "swconfigid": _d("Software configuration ID"),
    "lights": _d("IDs of the lights (comma-separated)"),
    "sensors": _d("IDs of the sensors (comma-separated)"),
    "group": _d("ID of the group"),
    "class": _d("Class of the group"),
    "recycle": _d("Resource is recycled by the bridge", "indicator", "boolean"),
    "locked": _d("Resource is locked", "indicator", "boolean"),
    "owner": _d("Owner of the resource"),
    "lastupdated": _d("Last update reported by the bridge", "date"),
    # states and actions
    "on": _d("Switch device on / off", "switch", "boolean"),
    "reachable": _d("Device is reachable", "indicator.reachable", "boolean"),
    "bri": _d("Brightness (0 to 254)", "level.dimmer", "number"),
    "level": _d("Brightness level in percent (0 to 100)", "level.dimmer", "number"),
    "real_bri": _d("Brightness before the device was switched off", "level.dimmer", "number"),
    "hue": _d("Hue (0 to 65535)", "level.color.hue", "number"),
    "hue_degrees": _d("Hue in degrees (0 to 360)", "level.color.hue", "number"),
    "sat": _d("Saturation (0 to 254)", "level.color.saturation", "number"),
    "ct": _d("Color temperature (mired)", "level.color.temperature", "number"),
    "xy": _d("Color in CIE xy color space (comma-separated)", "level.color.xy"),
    "colormode": _d("Color mode of the device"),
    "effect": _d("Dynamic effect (none or colorloop)"),
    "alert": _d("Alert effect (none, select or lselect)"),
    "mode": _d("Mode of the device"),
    "transitiontime": _d("Transition time (multiple of 100ms)", "level", "number"),
    "scene": _d("Activate a scene by its ID"),
    "_commands": _d("Send several commands at once, e.g. {\"on\": true, \"bri\": 100}", "json"),
    "_rgb": _d("Color in RGB color space (comma-separated)", "level.color.rgb"),
    "_hsv": _d("Color in HSV color space (comma-separated)", "level.color.hsv"),
    "_cmyk": _d("Color in CMYK color space (comma-separated)", "level.color.cmyk"),
    "_xyz": _d("Color in XYZ color space (comma-separated)", "level.color.xyz"),
    "_hex": _d("Color in HEX color space", "level.color.hex"),
    "all_on": _d("All lights of the group are on", "indicator", "boolean"),
    "any_on": _d("Any light of the group is on", "indicator", "boolean"),
    # schedules, rules, scenes
    "trigger": _d("Trigger the action", "button", "boolean"),
    "options": _d("Stored command of the action", "json"),
    "status": _d("Status"),
    "localtime": _d("Local time of the schedule"),
    "time": _d("Time of the schedule"),
    "created": _d("Creation date", "date"),
    "autodelete": _d("Delete after execution", "indicator", "boolean"),
    "timestriggered": _d("Number of times triggered", "value", "number"),
    "lasttriggered": _d("Last triggered", "date"),
    "picture": _d("Picture"),
    "version": _d("Version"),
    # sensors
    "temperature": _d("Temperature", "value.temperature", "number", convert="temperature"),
    "presence": _d("Presence detected", "sensor.motion", "boolean"),
    "lightlevel": _d("Light level", "value.brightness", "number"),
    "dark": _d("Darkness detected", "indicator", "boolean"),
    "daylight": _d("Daylight detected", "indicator", "boolean"),
    "buttonevent": _d("Last button event", "value", "number"),
    "battery": _d("Battery level", "value.battery", "number"),
    "sensors.config.on": _d("Sensor enabled", "switch", "boolean"),
    # bridge configuration
    "config.name": _d("Name of the bridge", device=False),
    "config.ipaddress": _d("IP address of the bridge", device=False),
    "config.mac": _d("MAC address of the bridge", device=False),
    "config.apiversion": _d("API version of the bridge", device=False),
    "config.zigbeechannel": _d("ZigBee channel", "value", "number", device=False),
}

# Fields a user may write; they live under ``.action.`` in the tree.
CONTROLLABLE_FIELDS: frozenset[str] = frozenset(
    {
        "on",
        "bri",
        "level",
        "hue",
        "hue_degrees",
        "sat",
        "ct",
        "xy",
        "effect",
        "alert",
        "transitiontime",
        "scene",
        "_commands",
        "_rgb",
        "_hsv",
        "_cmyk",
        "_xyz",
        "_hex",
        "trigger",
    }
)

_NON_PATH_CHARS = re.compile(r"[^a-z0-9_.\-]")


def clean_path(value: str) -> str:
    return _NON_PATH_CHARS.sub("", value.strip().lower().replace(" ", "_"))


def lookup(segments: list[str]) -> NodeDescriptor:
    """Resolve display metadata for a tree path.

    Tries the full path, then the path without its device segment, then the
    last segment alone.
    """
    if not segments:
        return DEFAULT_NODE
    collapsed = segments[:1] + segments[2:]
    for candidate in (".".join(segments), ".".join(collapsed), segments[-1]):
        node = NODES.get(clean_path(candidate))
        if node is not None:
            return node
    return DEFAULT_NODE


def convert(node: NodeDescriptor, value: Any) -> Any:
    if isinstance(value, list):
        value = ",".join(_join_item(item) for item in value)
    if node.convert == "temperature" and isinstance(value, (int, float)) and not isinstance(value, bool):
        value = value / 100
    return value


def _join_item(item: Any) -> str:
    if isinstance(item, bool):
        return "true" if item else "false"
    if item is None:
        return ""
    return str(item)
