from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from hue_extended.cache import StateCache
from hue_extended.commands import Appliance, PendingCommand
from hue_extended.hue_client import HueClient, HueTransportError, HueUpstreamError
from hue_extended.mapper import compact_json, stamp


logger = logging.getLogger("hue_extended.dispatch")

ActionWriter = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class DispatchResult:
    trigger: str
    commands: dict[str, Any]
    response: Any
    error: bool


class CommandQueue:
    """Pending commands per trigger address; later fields overwrite earlier ones."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingCommand] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def get(self, trigger: str) -> PendingCommand | None:
        return self._pending.get(trigger)

    def enqueue(self, appliance: Appliance, commands: dict[str, Any]) -> PendingCommand:
        logger.debug("Add to queue (%s) commands: %s", appliance.trigger, compact_json(commands))
        existing = self._pending.get(appliance.trigger)
        merged = {**existing.commands, **commands} if existing else dict(commands)
        entry = PendingCommand(appliance=appliance, commands=merged)
        self._pending[appliance.trigger] = entry
        return entry

    def drain(self) -> list[PendingCommand]:
        pending = list(self._pending.values())
        self._pending.clear()
        return pending


def action_record(commands: dict[str, Any], result: Any, *, error: bool) -> dict[str, Any]:
    timestamp, datetime = stamp()
    return {
        "timestamp": timestamp,
        "datetime": datetime,
        "lastCommand": compact_json(commands),
        "lastResult": result if isinstance(result, str) else compact_json(result),
        "error": error,
    }


class CommandDispatcher:
    def __init__(self, *, hue: HueClient, cache: StateCache, record_action: ActionWriter) -> None:
        self.hue = hue
        self.cache = cache
        self._record_action = record_action

    async def flush(self, queue: CommandQueue) -> list[DispatchResult]:
        pending = queue.drain()
        if not pending:
            return []
        results = await asyncio.gather(*(self.send(entry.appliance, entry.commands) for entry in pending))
        return list(results)

    async def send(self, appliance: Appliance, commands: dict[str, Any]) -> DispatchResult:
        # forget local echoes so the next poll shows what the bridge applied
        for field in commands:
            self.cache.set(f"{appliance.path}.{field}", "")

        commands = dict(commands)
        xy = commands.get("xy")
        if isinstance(xy, str):
            try:
                commands["xy"] = [float(value) for value in xy.strip("[] ").split(",")]
            except ValueError:
                logger.warning("Invalid xy value %r given for %s, dropping it.", xy, appliance.name)
                del commands["xy"]

        trigger = appliance.trigger[1:] if appliance.trigger.startswith("/") else appliance.trigger
        method = (appliance.method or "PUT").upper()
        logger.debug("Send command to %s (%s): %s.", appliance.name, trigger, compact_json(commands))

        try:
            response = await self.hue.send(trigger=trigger, body=commands, method=method)
        except (HueTransportError, HueUpstreamError) as exc:
            logger.warning("Failed sending request to %s!", trigger)
            logger.debug("Error Message: %s", exc)
            response = [{"error": {"type": "unknown", "address": trigger, "description": str(exc)}}]
            self._record(appliance, commands, response, error=True)
            return DispatchResult(trigger=trigger, commands=commands, response=response, error=True)

        if not isinstance(response, list):
            logger.warning(
                "Unknown error applying actions %s on %s (to %s)!", compact_json(commands), appliance.name, trigger
            )
            logger.debug("Response: %r", response)
            error = True
        else:
            error = any(isinstance(message, dict) and "error" in message for message in response)
            for message in response:
                if not isinstance(message, dict):
                    continue
                if "error" in message:
                    detail = message["error"] if isinstance(message["error"], dict) else {}
                    logger.warning("Error setting %s: %s", detail.get("address"), detail.get("description"))
                elif isinstance(message.get("success"), dict):
                    for address, value in message["success"].items():
                        logger.debug("Successfully set %s on %s (to %s).", address, appliance.name, value)
            if not error:
                logger.info("Successfully set %s.", appliance.name)

        self._record(appliance, commands, response, error=error)
        return DispatchResult(trigger=trigger, commands=commands, response=response, error=error)

    def _record(self, appliance: Appliance, commands: dict[str, Any], response: Any, *, error: bool) -> None:
        record = action_record(commands, response, error=error)
        self._record_action(appliance.path, record)
        self._record_action("info", record)
