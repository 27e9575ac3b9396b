"""Maps the bridge's resource graph onto the state tree.

Mapping is split into a transform pass (``TreeMapper.map``), which walks a
bridge JSON value and returns ``StateRecord`` objects in write order, and an
apply pass (``apply_records``) which writes them into the store and the
device-state mirror.
"""

from __future__ import annotations

import json
import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Literal

from hue_extended import colors, nodes
from hue_extended.cache import StateCache
from hue_extended.config import AppConfig
from hue_extended.store import NodeMeta, StateStore, channel_meta


logger = logging.getLogger("hue_extended.mapper")

LAST_ACTION_FIELDS = ("timestamp", "datetime", "lastCommand", "lastResult", "error")
SCENE_TYPES = ("GroupScene", "LightScene")

RecordKind = Literal["channel", "state", "shadow"]


@dataclass(frozen=True)
class StateRecord:
    path: str
    kind: RecordKind
    meta: NodeMeta | None = None
    value: Any = None
    subscribe: bool = False


@dataclass
class GlobalAggregates:
    """Power summary over the lights of one poll.

    ``all_on`` means every light reported ``on: true`` (and at least one light
    was seen), not a flag seeded false that can only stay false.
    """

    lights_seen: int = 0
    lights_on: int = 0

    def reset(self) -> None:
        self.lights_seen = 0
        self.lights_on = 0

    def fold(self, on: bool) -> None:
        self.lights_seen += 1
        if on:
            self.lights_on += 1

    @property
    def all_on(self) -> bool:
        return self.lights_seen > 0 and self.lights_on == self.lights_seen

    @property
    def any_on(self) -> bool:
        return self.lights_on > 0


_UMLAUTS = {"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"}


def slugify(value: str, replacement: str = "_") -> str:
    value = value.strip().lower()
    for source, target in _UMLAUTS.items():
        value = value.replace(source, target)
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-z0-9]+", replacement, value)
    return value.strip(replacement)


def humanize(segment: str) -> str:
    return segment[:1].upper() + segment[1:]


def state_meta(path: str, *, device: str | None = None, writable: bool = False) -> NodeMeta:
    segments = path.split(".")
    descriptor = nodes.lookup(segments)
    description = descriptor.description or humanize(segments[-1])
    if descriptor.device and device:
        description = f"{device} - {description}"
    return NodeMeta(type=descriptor.type, role=descriptor.role, description=description, writable=writable)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_scalar_list(key: str) -> bool:
    return key.endswith("xy") or key.endswith("lights")


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def stamp(now: float | None = None) -> tuple[int, str]:
    """Unix timestamp and ISO datetime used for ``timestamp`` / ``datetime`` states."""
    now = time.time() if now is None else now
    return int(now), time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(now))


class TreeMapper:
    def __init__(self, *, config: AppConfig, lookup: Callable[[str], Any]) -> None:
        self.config = config
        self._lookup = lookup

    def map(
        self,
        key: str,
        data: Any,
        channel: str | None = None,
        *,
        aggregates: GlobalAggregates | None = None,
    ) -> list[StateRecord]:
        records: list[StateRecord] = []
        self._walk(key, data, channel, None, aggregates, records)
        return records

    def _walk(
        self,
        key: str,
        data: Any,
        channel: str | None,
        device: str | None,
        aggregates: GlobalAggregates | None,
        out: list[StateRecord],
    ) -> None:
        if data is None:
            return

        if (
            channel
            and isinstance(data, dict)
            and data.get("recycle") is True
            and not self.config.syncs_recycled(channel)
        ):
            logger.debug("Skipping device %s in channel %s.", data.get("name"), channel)
            return

        key = key.replace(" ", "_")
        if isinstance(data, dict) or (isinstance(data, list) and not _is_scalar_list(key)):
            self._walk_object(key, data, channel, device, aggregates, out)
        else:
            self._write_state(key, data, device, out)

    def _walk_object(
        self,
        key: str,
        data: dict[str, Any] | list[Any],
        channel: str | None,
        device: str | None,
        aggregates: GlobalAggregates | None,
        out: list[StateRecord],
    ) -> None:
        if not data:
            return

        segments = key.split(".")
        node: Any = dict(data) if isinstance(data, dict) else list(data)

        # named resources get a readable path segment
        device_id = None
        name = node.get("name") if isinstance(node, dict) else None
        if isinstance(name, str) and name:
            device = name
        if isinstance(name, str) and name and "config" not in segments:
            node["uid"] = segments[-1]
            device_id = self._device_segment(segments[0], segments[-1], slugify(name))
            segments[-1] = device_id

        if channel == "rules" and segments[-1] == "actions" and isinstance(node, list):
            segments[-1] = "action"
            node = self._rule_actions(node)

        if channel == "schedules" and segments[-1] == "command" and isinstance(node, dict):
            segments[-1] = "action"
            node = self._schedule_command(node)

        if isinstance(node, list):
            node = {str(index): value for index, value in enumerate(node)}

        key = ".".join(segments)
        action_key = ".".join(segments[:-1] + ["action"]) if segments[-1] == "state" else key

        bri = node.get("bri")
        has_bri = _is_number(bri)
        shadow_bri = None
        if has_bri:
            node["level"] = colors.bri_to_level(bri)
            node["scene"] = ""
            node["_commands"] = ""

            if _is_number(node.get("sat")) and _is_number(node.get("hue")):
                hue_degrees = colors.hue_to_degrees(node["hue"])
                node["hue_degrees"] = hue_degrees
                node["transitiontime"] = node.get("transitiontime") or 4
                node.update(colors.color_spaces(hue_degrees, colors.bri_to_level(node["sat"]), node["level"]))

            if self.config.bri_when_off:
                if node.get("on") is False:
                    node["bri"] = 0
                    node["level"] = 0
                elif node.get("on") is True and bri > 0:
                    shadow_bri = bri

        if channel == "lights" and aggregates is not None and isinstance(node.get("on"), bool):
            aggregates.fold(node["on"])

        if node.get("type") in SCENE_TYPES:
            node["action"] = {"trigger": False}

        out.append(StateRecord(key, "channel", channel_meta(name if device_id else humanize(segments[-1]))))

        if has_bri:
            # telemetry of the last command, kept next to the controllable states
            if action_key != key:
                out.append(StateRecord(action_key, "channel", channel_meta("Action")))
            self._walk(action_key, {"lastAction": self.last_action(action_key)}, channel, device, aggregates, out)
            if shadow_bri is not None:
                out.append(StateRecord(f"{action_key}.real_bri", "shadow", value=shadow_bri))

        base = key
        if segments[0] == "scenes":
            reference = self._scene_reference(node)
            if reference is not None:
                base = f"{key}.{node['type']}-{reference}_{node.get('uid', segments[-1])}"
                out.append(StateRecord(base, "channel", channel_meta(f"{node['type']} {reference}")))

        for nested_key, value in node.items():
            self._walk(f"{base}.{nested_key}", value, channel, device, aggregates, out)

    def _write_state(self, key: str, data: Any, device: str | None, out: list[StateRecord]) -> None:
        segments = key.split(".")
        value = nodes.convert(nodes.lookup(segments), data)

        field = segments[-1]
        controllable = field in nodes.CONTROLLABLE_FIELDS
        if controllable and len(segments) > 2 and segments[-2] in ("state", "config"):
            segments[-2] = "action"
            out.append(StateRecord(".".join(segments[:-1]), "channel", channel_meta("Action")))

        writable = controllable and "action" in segments[1:-1]
        meta = state_meta(key, device=device, writable=writable)
        out.append(StateRecord(".".join(segments), "state", meta, value, subscribe=writable))

    def _device_segment(self, root: str, uid: str, slug: str) -> str:
        # names without any ascii letter or digit keep the bare id
        if not slug:
            return uid if root == "scenes" or self.config.name_id == "append" else uid.zfill(3)
        if root == "scenes":
            return slug
        if self.config.name_id == "append":
            return f"{slug}-{uid}"
        return f"{uid.zfill(3)}-{slug}"

    def last_action(self, base: str) -> dict[str, Any]:
        return {field: self._lookup(f"{base}.lastAction.{field}") for field in LAST_ACTION_FIELDS}

    @staticmethod
    def _scene_reference(node: dict[str, Any]) -> Any:
        if node.get("type") == "GroupScene" and node.get("group"):
            return node["group"]
        lights = node.get("lights")
        if node.get("type") == "LightScene" and isinstance(lights, list) and lights and lights[0]:
            return lights[0]
        return None

    @staticmethod
    def _rule_actions(actions: list[Any]) -> dict[str, Any]:
        states: dict[str, Any] = {}
        for trigger in actions:
            if not isinstance(trigger, dict):
                continue
            body = trigger.get("body") if isinstance(trigger.get("body"), dict) else {}
            states[slugify("-".join(body), "-") or "action"] = {"trigger": False, "options": compact_json(trigger)}
        return states

    @staticmethod
    def _schedule_command(command: dict[str, Any]) -> dict[str, Any]:
        command = dict(command)
        address = command.get("address")
        if isinstance(address, str):
            # "/api/<user>/groups/1/action" -> "groups/1/action"
            command["address"] = address[address.find("/", 5) + 1 :]
        return {"trigger": False, "options": compact_json(command)}


def apply_records(records: list[StateRecord], *, store: StateStore, cache: StateCache) -> None:
    for record in records:
        if record.kind == "shadow":
            cache.set(record.path, record.value)
        elif record.kind == "channel":
            store.set(record.path, record.meta)
        else:
            store.set(record.path, record.meta, record.value)
            cache.set(record.path, record.value)
            if record.subscribe:
                store.subscribe(record.path)
