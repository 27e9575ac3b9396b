from __future__ import annotations

import asyncio
import logging
from typing import Any

from hue_extended.cache import StateCache
from hue_extended.commands import CommandError, CommandNormalizer
from hue_extended.config import AppConfig
from hue_extended.dispatch import CommandDispatcher, CommandQueue, DispatchResult
from hue_extended.hue_client import HueClient, HueTransportError, HueUpstreamError
from hue_extended.mapper import GlobalAggregates, TreeMapper, apply_records, humanize, stamp, state_meta
from hue_extended.store import StateStore, channel_meta


logger = logging.getLogger("hue_extended.engine")

RETRY_LIMIT = 10
RETRY_SECONDS = 10.0
MIN_REFRESH_SECONDS = 3.0

# Static action template of the virtual group 0 the bridge uses for "all lights".
ALL_LIGHTS_ACTION = {
    "on": False,
    "bri": 0,
    "hue": 0,
    "sat": 0,
    "effect": "none",
    "xy": [0, 0],
    "ct": 0,
    "alert": "lselect",
    "colormode": "xy",
}


class SyncEngine:
    """Polls the bridge into the state tree and sends user writes back to it.

    Everything here runs on one event loop: the poll timer, the queue flush
    timer and the state-change listener. ``stop()`` cancels both timers
    synchronously; polls and dispatches already in flight finish but no
    longer write or reschedule.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        hue: HueClient,
        store: StateStore,
        cache: StateCache | None = None,
    ) -> None:
        self.config = config
        self.hue = hue
        self.store = store
        self.cache = cache or StateCache()
        self.aggregates = GlobalAggregates()
        self.mapper = TreeMapper(config=config, lookup=self.cache.get)
        self.normalizer = CommandNormalizer(config=config, cache=self.cache, store=store)
        self.queue = CommandQueue()
        self.dispatcher = CommandDispatcher(hue=hue, cache=self.cache, record_action=self.record_action)

        self.retry = 0
        self.refresh_seconds = config.refresh_seconds
        self.cycles = 0
        self._poll_handle: asyncio.TimerHandle | None = None
        self._queue_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unloaded = False
        self._terminated = False
        self._terminate_reason: str | None = None

    @property
    def syncing(self) -> bool:
        return self.cache.get("info.syncing") is True

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def terminate_reason(self) -> str | None:
        return self._terminate_reason

    @property
    def running(self) -> bool:
        return not self._unloaded and not self._terminated

    def start(self) -> None:
        """Validate settings, kick off the first poll and the queue timer. Needs a running loop."""
        self._unloaded = False
        self.store.set("info", channel_meta("Info"))
        self._set_state("info.connection", True)

        if not self.config.bridge_ip or not self.config.bridge_user:
            self.terminate("Please provide connection settings for Hue Bridge!")
            return

        refresh = self.config.refresh_seconds
        if 0 < refresh < MIN_REFRESH_SECONDS:
            logger.warning(
                "Due to performance reasons, the refresh rate can not be set to less than %d seconds. "
                "Using %d seconds now.",
                MIN_REFRESH_SECONDS,
                MIN_REFRESH_SECONDS,
            )
            refresh = MIN_REFRESH_SECONDS
        self.refresh_seconds = refresh

        logger.info("Sync engine started for bridge %s.", self.config.bridge_ip)
        self._spawn_poll()
        if self.config.use_queue:
            self._schedule_flush()

    def stop(self) -> None:
        self._unloaded = True
        self._cancel_timers()
        dropped = len(self.queue.drain())
        if dropped:
            logger.debug("Dropped %d queued command(s) on stop.", dropped)
        self.aggregates.reset()
        self.cache.clear()
        logger.info("Sync engine stopped.")

    async def close(self) -> None:
        """Stop and wait for polls and dispatches that are still in flight."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def terminate(self, message: str) -> None:
        logger.error(message)
        self._terminated = True
        self._terminate_reason = message
        self._cancel_timers()
        self._set_state("info.connection", False)

    def _cancel_timers(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None
        if self._queue_handle is not None:
            self._queue_handle.cancel()
            self._queue_handle = None

    def _track(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- sync path ----

    def _spawn_poll(self) -> None:
        self._poll_handle = None
        if self.running:
            self._track(self.poll())

    def _schedule_poll(self, delay: float) -> None:
        if not self.running or delay <= 0:
            return
        if self._poll_handle is not None:
            self._poll_handle.cancel()
        self._poll_handle = asyncio.get_running_loop().call_later(delay, self._spawn_poll)

    async def poll(self) -> bool:
        """One fetch of the full bridge payload. Returns True when it was applied."""
        try:
            payload = await self.hue.get_payload()
        except HueTransportError as exc:
            self._on_fetch_error(exc.reason, exc)
            return False
        except HueUpstreamError as exc:
            reason = "Hue Bridge is busy" if exc.status_code >= 500 else str(exc)
            self._on_fetch_error(reason, exc)
            return False

        if self._unloaded:
            return False

        if not isinstance(payload, dict) or not payload:
            description = None
            if isinstance(payload, list) and payload and isinstance(payload[0], dict):
                error = payload[0].get("error")
                description = error.get("description") if isinstance(error, dict) else None
            if description:
                logger.error("Error retrieving data from Hue Bridge: %s", description)
            else:
                logger.error("Error retrieving data from Hue Bridge!")
            self._schedule_poll(self.refresh_seconds)
            return False

        self.apply_payload(payload)
        self._schedule_poll(self.refresh_seconds)
        return True

    def _on_fetch_error(self, reason: str, exc: Exception) -> None:
        if self._unloaded:
            return
        self._set_state("info.syncing", False)

        if self.retry < RETRY_LIMIT:
            logger.debug(
                "Error connecting to Hue Bridge: %s. %sTry again in %d seconds..",
                reason,
                f"Retried {self.retry}x so far. " if self.retry > 0 else "",
                RETRY_SECONDS,
            )
            self.retry += 1
            self._schedule_poll(RETRY_SECONDS)
            return

        self.terminate(
            f"Error connecting to Hue Bridge: {reason}. "
            f"Retried {self.retry}x already, thus connection closed now. See debug log for details."
        )
        logger.debug("Last error: %r", exc)

    def apply_payload(self, payload: dict[str, Any]) -> None:
        self.retry = 0

        timestamp, datetime = stamp()
        self._set_state("info.datetime", datetime)
        self._set_state("info.timestamp", timestamp)
        self._set_state("info.syncing", True)
        self._apply(self.mapper.map("info", {"lastAction": self.mapper.last_action("info")}))

        for channel, data in payload.items():
            self.store.set(channel, channel_meta(humanize(channel)))
            if self.config.syncs(channel):
                self.add_bridge_data(channel, data)
            else:
                self._set_state(f"{channel}.syncing", False)

        self.cycles += 1

    def add_bridge_data(self, channel: str, data: Any) -> None:
        self.cache.index(channel, data)

        if channel == "lights":
            self.aggregates.reset()
        elif channel == "groups" and isinstance(data, dict):
            data = {"0": self._all_lights_group(), **data}

        timestamp, datetime = stamp()
        self._set_state(f"{channel}.datetime", datetime)
        self._set_state(f"{channel}.timestamp", timestamp)
        self._set_state(f"{channel}.syncing", True)

        self._apply(self.mapper.map(channel, data, channel, aggregates=self.aggregates))

    def _all_lights_group(self) -> dict[str, Any]:
        group: dict[str, Any] = {"name": "All Lights", "type": "LightGroup", "action": dict(ALL_LIGHTS_ACTION)}
        lights = self.cache.devices("lights")
        if lights is not None:
            group["lights"] = list(lights)
            group["state"] = {"all_on": self.aggregates.all_on, "any_on": self.aggregates.any_on}
        return group

    # ---- command path ----

    async def handle_state_change(self, path: str, value: Any) -> DispatchResult | None:
        """Listener for user writes on subscribed states."""
        if self._unloaded:
            return None
        logger.debug("State of %s has changed to %r.", path, value)

        try:
            pending = self.normalizer.build(path, value)
        except CommandError as exc:
            logger.warning("%s", exc)
            return None

        if self.config.use_queue:
            self.queue.enqueue(pending.appliance, pending.commands)
            return None
        return await self.dispatcher.send(pending.appliance, pending.commands)

    def _schedule_flush(self) -> None:
        self._queue_handle = asyncio.get_running_loop().call_later(self.config.queue_seconds, self._spawn_flush)

    def _spawn_flush(self) -> None:
        self._queue_handle = None
        if not self.running:
            return
        if len(self.queue):
            self._track(self.flush_queue())
        self._schedule_flush()

    async def flush_queue(self) -> list[DispatchResult]:
        return await self.dispatcher.flush(self.queue)

    def record_action(self, path: str, record: dict[str, Any]) -> None:
        if self._unloaded:
            return
        self._apply(self.mapper.map(path, {"lastAction": record}))

    # ---- store helpers ----

    def _apply(self, records: list) -> None:
        apply_records(records, store=self.store, cache=self.cache)

    def _set_state(self, path: str, value: Any) -> None:
        self.store.set(path, state_meta(path), value)
        self.cache.set(path, value)
